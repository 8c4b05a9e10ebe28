# app/models/payment.py

import enum
import uuid
from sqlalchemy import Column, String, DECIMAL, TIMESTAMP, INT, ForeignKey, Enum, CHAR
from app.core.database import Base
from app.utils.time_utils import utcnow

# 付款 (託管) 狀態：值為既有資料使用的字串，不可更動
class PaymentStatus(str, enum.Enum):
    pending = "pending"         # 已建立付款意圖，買家尚未完成付款
    processing = "processing"   # 已扣款，款項託管中
    completed = "completed"     # 已撥款給工作者
    failed = "failed"
    refunded = "refunded"
    disputed = "disputed"       # 金流端拒付 (chargeback)

# 仍可能變動的狀態；同一訂單同時最多一筆
ACTIVE_PAYMENT_STATUSES = (PaymentStatus.pending, PaymentStatus.processing)

PaymentStatusEnum = Enum(
    PaymentStatus,
    values_callable=lambda obj: [e.value for e in obj],
    name="payment_status_enum",
)

class Payment(Base):
    __tablename__ = "payments"

    payment_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # --- 關聯 (只是查詢用的參照，不會連帶修改訂單) ---
    order_id = Column(CHAR(36), ForeignKey("orders.order_id", ondelete="RESTRICT"), nullable=False, index=True)
    client_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)
    freelancer_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)

    # --- 金額 (由 calculate_fee_split 一次寫入) ---
    amount = Column(DECIMAL(10, 2), nullable=False)
    platform_fee = Column(DECIMAL(10, 2), nullable=False)
    freelancer_amount = Column(DECIMAL(10, 2), nullable=False)
    refund_amount = Column(DECIMAL(10, 2), nullable=True)

    status = Column(PaymentStatusEnum, default=PaymentStatus.pending, nullable=False, index=True)
    payment_method = Column(String(32), default="stripe", nullable=False)

    # --- 金流端的參照 ---
    processor_intent_id = Column(String(255), index=True)
    processor_charge_id = Column(String(255))
    processor_refund_id = Column(String(255))
    # 同一個請求重送時沿用，避免重複扣款
    idempotency_key = Column(String(128), unique=True, nullable=False)

    refund_reason = Column(String(500))
    dispute_reason = Column(String(500))

    version = Column(INT, nullable=False)

    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)
    completed_at = Column(TIMESTAMP, nullable=True)
    refunded_at = Column(TIMESTAMP, nullable=True)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_PAYMENT_STATUSES
