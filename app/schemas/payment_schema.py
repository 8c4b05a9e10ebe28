# app/schemas/payment_schema.py

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime
from decimal import Decimal

from app.models.payment import PaymentStatus

# --- 1. 建立託管 (Input) ---
class EscrowCreate(BaseModel):
    order_id: str

# --- 2. 建立託管 (Output)：前端拿 client_handle 完成付款 ---
class EscrowIntentOut(BaseModel):
    payment_id: str
    client_handle: str
    amount: Decimal         # 訂單金額
    platform_fee: Decimal
    total_charge: Decimal   # 買家實付

# --- 3. 確認付款 (Input) ---
class EscrowConfirm(BaseModel):
    processor_charge_id: str = Field(..., min_length=1)

# --- 4. 退款 / 拒付 (Input) ---
class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=10, max_length=500)

class ChargebackFlag(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)

# --- 5. 手續費試算 (Output) ---
class FeeEstimateOut(BaseModel):
    amount: Decimal
    platform_fee: Decimal
    freelancer_amount: Decimal
    total_charge: Decimal

# --- 6. 付款紀錄 (Output) ---
class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_id: str
    order_id: str
    client_id: str
    freelancer_id: str
    amount: Decimal
    platform_fee: Decimal
    freelancer_amount: Decimal
    refund_amount: Optional[Decimal] = None
    status: PaymentStatus
    payment_method: str
    processor_intent_id: Optional[str] = None
    refund_reason: Optional[str] = None
    dispute_reason: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
