# app/schemas/order_schema.py

from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from app.models.order import OrderStatus

# --- 1. 下單 (Input) ---
class OrderCreate(BaseModel):
    gig_id: str
    requirements: str = Field(..., min_length=10, max_length=2000)
    delivery_date: datetime

# --- 2. 狀態更新 (Input) ---
class OrderStatusUpdate(BaseModel):
    status: OrderStatus # 是否允許轉移由 Service 的轉移表決定

# --- 3. 訂單訊息 ---
class OrderMessageCreate(BaseModel):
    message: str = Field(..., min_length=1, max_length=1000)

class OrderMessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    message_id: str
    sender_id: str
    message: str
    created_at: datetime

# --- 4. 評價 ---
class OrderRatingCreate(BaseModel):
    score: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=1000)

class OrderRatingOut(BaseModel):
    score: int
    review: Optional[str] = None
    created_at: Optional[datetime] = None

# --- 5. 交付物 ---
class DeliverableCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    file_url: Optional[str] = Field(None, max_length=500)

class DeliverableOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    deliverable_id: str
    title: str
    description: Optional[str] = None
    file_url: Optional[str] = None
    uploaded_at: datetime

class RevisionsOut(BaseModel):
    requested: int
    completed: int
    max_allowed: int

# --- 6. 完整訂單 (Output) ---
class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: str
    gig_id: str
    client_id: str
    freelancer_id: str
    status: OrderStatus
    amount: Decimal
    requirements: str
    delivery_date: datetime
    completed_date: Optional[datetime] = None
    rating: Optional[OrderRatingOut] = None
    revisions: RevisionsOut
    messages: List[OrderMessageOut] = []
    deliverables: List[DeliverableOut] = []
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order) -> "OrderOut":
        """ORM 物件 -> Schema (評價與修改次數在 DB 是平鋪欄位，這裡組回巢狀結構)"""
        rating = None
        if order.rating_score is not None:
            rating = OrderRatingOut(
                score=order.rating_score,
                review=order.rating_review,
                created_at=order.rated_at
            )
        return cls(
            order_id=order.order_id,
            gig_id=order.gig_id,
            client_id=order.client_id,
            freelancer_id=order.freelancer_id,
            status=order.status,
            amount=order.amount,
            requirements=order.requirements,
            delivery_date=order.delivery_date,
            completed_date=order.completed_date,
            rating=rating,
            revisions=RevisionsOut(
                requested=order.revisions_requested,
                completed=order.revisions_completed,
                max_allowed=order.revisions_max_allowed
            ),
            messages=[OrderMessageOut.model_validate(m) for m in order.messages],
            deliverables=[DeliverableOut.model_validate(d) for d in order.deliverables],
            created_at=order.created_at,
            updated_at=order.updated_at
        )
