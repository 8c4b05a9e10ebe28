# app/models/dispute.py

import enum
import uuid
from sqlalchemy import (
    Column, String, TEXT, DECIMAL, TIMESTAMP, INT, Boolean, ForeignKey, Enum, CHAR
)
from sqlalchemy.orm import relationship
from app.core.database import Base
from app.utils.time_utils import utcnow

# --- 以下 Enum 的值都是既有資料 / 前端使用的字串，不可更動 ---
class DisputeStatus(str, enum.Enum):
    open = "open"
    under_review = "under_review"
    resolved = "resolved"
    closed = "closed"

ACTIVE_DISPUTE_STATUSES = (DisputeStatus.open, DisputeStatus.under_review)
TERMINAL_DISPUTE_STATUSES = (DisputeStatus.resolved, DisputeStatus.closed)

class DisputeType(str, enum.Enum):
    quality = "quality"
    delivery = "delivery"
    communication = "communication"
    payment = "payment"
    other = "other"

class DisputeResolution(str, enum.Enum):
    refund_full = "refund_full"
    refund_partial = "refund_partial"
    continue_work = "continue_work"
    revision = "revision"
    cancelled = "cancelled"

class EvidenceType(str, enum.Enum):
    message = "message"
    file = "file"
    screenshot = "screenshot"
    other = "other"

def _enum_column(enum_cls, name: str) -> Enum:
    return Enum(enum_cls, values_callable=lambda obj: [e.value for e in obj], name=name)


class Dispute(Base):
    __tablename__ = "disputes"

    dispute_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(CHAR(36), ForeignKey("orders.order_id", ondelete="RESTRICT"), nullable=False, index=True)
    initiator_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)
    respondent_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)

    type = Column(_enum_column(DisputeType, "dispute_type_enum"), nullable=False)
    reason = Column(String(1000), nullable=False)
    status = Column(_enum_column(DisputeStatus, "dispute_status_enum"), default=DisputeStatus.open, nullable=False, index=True)

    # --- 仲裁結果 ---
    resolution = Column(_enum_column(DisputeResolution, "dispute_resolution_enum"), nullable=True)
    admin_notes = Column(String(2000))
    # 只有 refund_partial 會寫入
    refund_amount = Column(DECIMAL(10, 2), nullable=True)
    assigned_admin_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True)

    version = Column(INT, nullable=False)

    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)
    resolved_at = Column(TIMESTAMP, nullable=True)
    closed_at = Column(TIMESTAMP, nullable=True)

    __mapper_args__ = {"version_id_col": version}

    evidence = relationship(
        "DisputeEvidence",
        back_populates="dispute",
        order_by="DisputeEvidence.uploaded_at",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    messages = relationship(
        "DisputeMessage",
        back_populates="dispute",
        order_by="DisputeMessage.created_at",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DISPUTE_STATUSES

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.initiator_id, self.respondent_id)


class DisputeEvidence(Base):
    __tablename__ = "dispute_evidence"

    evidence_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    dispute_id = Column(CHAR(36), ForeignKey("disputes.dispute_id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(_enum_column(EvidenceType, "evidence_type_enum"), nullable=False)
    description = Column(String(500), nullable=False)
    file_url = Column(String(500))
    uploaded_by = Column(CHAR(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    uploaded_at = Column(TIMESTAMP, default=utcnow)

    dispute = relationship("Dispute", back_populates="evidence")


class DisputeMessage(Base):
    __tablename__ = "dispute_messages"

    message_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    dispute_id = Column(CHAR(36), ForeignKey("disputes.dispute_id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    message = Column(String(1000), nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(TIMESTAMP, default=utcnow)

    dispute = relationship("Dispute", back_populates="messages")
