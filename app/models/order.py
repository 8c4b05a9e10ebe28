# app/models/order.py

import enum
import uuid
from sqlalchemy import (
    Column, String, TEXT, DECIMAL, TIMESTAMP, INT, ForeignKey, Enum, CHAR
)
from sqlalchemy.orm import relationship
from app.core.database import Base
from app.utils.time_utils import utcnow

# 訂單狀態：值就是既有資料 / 前端使用的字串，不可更動
class OrderStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in-progress"
    completed = "completed"
    cancelled = "cancelled"
    disputed = "disputed"

OrderStatusEnum = Enum(
    OrderStatus,
    values_callable=lambda obj: [e.value for e in obj],
    name="order_status_enum",
)

class Order(Base):
    __tablename__ = "orders"

    order_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # --- 關聯 ---
    gig_id = Column(CHAR(36), ForeignKey("gigs.gig_id", ondelete="RESTRICT"), nullable=False, index=True)
    client_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)
    freelancer_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)

    # --- 訂單內容 ---
    status = Column(OrderStatusEnum, default=OrderStatus.pending, nullable=False, index=True)
    # 下單時的服務價格快照，建立後不再變動
    amount = Column(DECIMAL(10, 2), nullable=False)
    requirements = Column(TEXT, nullable=False)
    delivery_date = Column(TIMESTAMP, nullable=False)
    completed_date = Column(TIMESTAMP, nullable=True)

    # --- 評價 (只能設定一次) ---
    rating_score = Column(INT, nullable=True)
    rating_review = Column(TEXT, nullable=True)
    rated_at = Column(TIMESTAMP, nullable=True)

    # --- 修改次數 ---
    revisions_requested = Column(INT, default=0, nullable=False)
    revisions_completed = Column(INT, default=0, nullable=False)
    revisions_max_allowed = Column(INT, default=0, nullable=False)

    # 樂觀鎖：UPDATE 時比對版本，版本不符 SQLAlchemy 會丟 StaleDataError
    version = Column(INT, nullable=False)

    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    # 訂單獨佔的子紀錄 (append-only)
    messages = relationship(
        "OrderMessage",
        back_populates="order",
        order_by="OrderMessage.created_at",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    deliverables = relationship(
        "OrderDeliverable",
        back_populates="order",
        order_by="OrderDeliverable.uploaded_at",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.client_id, self.freelancer_id)

    def other_party(self, user_id: str) -> str:
        return self.freelancer_id if user_id == self.client_id else self.client_id

    @property
    def is_rated(self) -> bool:
        return self.rating_score is not None


class OrderMessage(Base):
    __tablename__ = "order_messages"

    message_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(CHAR(36), ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    message = Column(String(1000), nullable=False)
    created_at = Column(TIMESTAMP, default=utcnow)

    order = relationship("Order", back_populates="messages")


class OrderDeliverable(Base):
    __tablename__ = "order_deliverables"

    deliverable_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(CHAR(36), ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(TEXT)
    file_url = Column(String(500))
    uploaded_at = Column(TIMESTAMP, default=utcnow)

    order = relationship("Order", back_populates="deliverables")
