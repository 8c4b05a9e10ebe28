# app/models/gig.py

import uuid
from sqlalchemy import Column, String, TEXT, DECIMAL, TIMESTAMP, INT, Boolean, ForeignKey, CHAR
from app.core.database import Base
from app.utils.time_utils import utcnow

class Gig(Base):
    """
    服務 (Gig) 目錄。
    CRUD 與搜尋屬於目錄服務，這裡只用到：價格、上架狀態、訂單數與評價統計。
    """
    __tablename__ = "gigs"

    gig_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    freelancer_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True)

    title = Column(String(100), nullable=False)
    description = Column(TEXT)
    price = Column(DECIMAL(10, 2), nullable=False)
    # 每筆訂單可要求的修改次數
    revisions = Column(INT, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # --- 統計欄位 (由訂單流程更新) ---
    order_count = Column(INT, default=0, nullable=False)
    rating_average = Column(DECIMAL(3, 2), default=0, nullable=False)
    rating_count = Column(INT, default=0, nullable=False)

    created_at = Column(TIMESTAMP, default=utcnow)
