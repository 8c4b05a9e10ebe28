# app/schemas/dispute_schema.py

from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from app.models.dispute import DisputeStatus, DisputeType, DisputeResolution, EvidenceType

# --- 1. 提出爭議 (Input) ---
class DisputeCreate(BaseModel):
    order_id: str
    type: DisputeType
    reason: str = Field(..., min_length=10, max_length=1000)

# --- 2. 證據 ---
class EvidenceCreate(BaseModel):
    type: EvidenceType
    description: str = Field(..., min_length=1, max_length=500)
    file_url: Optional[str] = Field(None, max_length=500)

class EvidenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    evidence_id: str
    type: EvidenceType
    description: str
    file_url: Optional[str] = None
    uploaded_by: str
    uploaded_at: datetime

# --- 3. 爭議訊息 ---
class DisputeMessageCreate(BaseModel):
    message: str = Field(..., min_length=1, max_length=1000)

class DisputeMessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    message_id: str
    sender_id: str
    message: str
    is_admin: bool
    created_at: datetime

# --- 4. 仲裁 (Input) ---
class DisputeResolve(BaseModel):
    # 用 str 接收，由 Service 驗證，不合法的值回 InvalidResolution
    resolution: str
    admin_notes: Optional[str] = Field(None, max_length=2000)
    # 只有 refund_partial 需要
    refund_amount: Optional[Decimal] = None

# --- 5. 完整爭議 (Output) ---
class DisputeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    dispute_id: str
    order_id: str
    initiator_id: str
    respondent_id: str
    type: DisputeType
    reason: str
    status: DisputeStatus
    resolution: Optional[DisputeResolution] = None
    admin_notes: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    assigned_admin_id: Optional[str] = None
    evidence: List[EvidenceOut] = []
    messages: List[DisputeMessageOut] = []
    created_at: datetime
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
