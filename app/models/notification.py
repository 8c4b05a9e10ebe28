# app/models/notification.py

import uuid
from sqlalchemy import Column, String, TEXT, BOOLEAN, CHAR, JSON, ForeignKey, TIMESTAMP
from app.core.database import Base
from app.utils.time_utils import utcnow

class Notification(Base):
    __tablename__ = "notifications"

    notification_id = Column(CHAR(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    
    # (重要) 關聯到接收通知的 user
    user_id = Column(CHAR(36), ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    
    # 事件種類 (e.g. order_status_changed, payment_completed, dispute_opened)
    kind = Column(String(64), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(TEXT)
    # 事件內容 (狀態、金額等)，前端可直接使用
    payload = Column(JSON)
    
    # (關鍵) 點擊通知後要導向的前端 URL
    link_url = Column(String(500)) 
    
    is_read = Column(BOOLEAN, default=False, nullable=False)
    created_at = Column(TIMESTAMP, default=utcnow)
