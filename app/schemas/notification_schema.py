# app/schemas/notification_schema.py

from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Any, Dict, Optional

class NotificationOut(BaseModel):
    """
    用於 API 回傳 / WebSocket 推播的通知格式
    """
    model_config = ConfigDict(from_attributes=True)

    notification_id: str
    user_id: str
    kind: str
    title: str
    message: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    link_url: Optional[str] = None
    is_read: bool
    created_at: datetime
