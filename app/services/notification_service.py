# app/services/notification_service.py

from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status
from typing import Any, Dict, List, Optional
import logging

from app.core.websocket_manager import manager
from app.models.user import User
from app.models.notification import Notification
from app.repositories.notification_repo import NotificationRepository
from app.schemas.notification_schema import NotificationOut

logger = logging.getLogger(__name__)

# 事件種類 -> 通知標題
NOTIFICATION_TITLES = {
    "order_created": "您收到一筆新訂單",
    "order_status_changed": "訂單狀態已更新",
    "order_message": "訂單有新訊息",
    "order_rated": "買家已評價您的訂單",
    "order_revision_requested": "買家要求修改",
    "order_delivered": "工作者已提交交付物",
    "payment_held": "款項已進入託管",
    "payment_released": "託管款項已撥付",
    "payment_refunded": "款項已退回",
    "payment_flagged": "付款被標記為拒付",
    "dispute_opened": "訂單出現爭議",
    "dispute_updated": "爭議有新的進度",
    "dispute_resolved": "爭議已處理完成",
    "dispute_closed": "爭議已關閉",
}

class NotificationService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = NotificationRepository(db)

    async def create_notification(
        self,
        user_id: str,
        kind: str,
        title: str,
        link_url: str,
        message: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """
        (內部使用) 寫入一筆通知
        """
        new_notification = Notification(
            user_id=user_id,
            kind=kind,
            title=title,
            message=message,
            payload=payload,
            link_url=link_url,
            is_read=False
        )
        logger.info(f"建立通知 for User ID: {user_id}, Kind: {kind}, Link: {link_url}")
        return await self.repo.create_notification(new_notification)

    async def notify(
        self,
        kind: str,
        recipient_id: str,
        payload: Dict[str, Any],
        link_url: str = "/",
        message: Optional[str] = None
    ) -> None:
        """
        通知轉送 (fire-and-forget)。
        只在業務狀態 commit 之後呼叫；任何失敗都只記錄，不影響已完成的狀態轉移。
        """
        try:
            notification = await self.create_notification(
                user_id=recipient_id,
                kind=kind,
                title=NOTIFICATION_TITLES.get(kind, kind),
                link_url=link_url,
                message=message,
                payload=payload
            )
            out = NotificationOut.model_validate(notification)
            await manager.send_to_user(recipient_id, out.model_dump_json())
        except Exception as e:
            logger.warning(f"通知發送失敗 (kind={kind}, user={recipient_id}): {e}")

    async def get_my_notifications(self, user: User) -> List[Notification]:
        """
        (API 用) 獲取當前登入者的通知列表
        """
        return await self.repo.list_notifications_by_user(user.user_id)

    async def mark_notification_as_read(
        self, 
        notification_id: str, 
        user: User
    ) -> Notification:
        """
        (API 用) 將通知設為已讀，並檢查權限
        """
        notification = await self.repo.get_notification_by_id(notification_id)
        
        # 只能標記自己的通知；不是自己的也回 404，不透露通知是否存在
        if not notification or notification.user_id != user.user_id:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "通知不存在")
            
        if notification.is_read:
            return notification # 已讀，直接回傳
            
        return await self.repo.mark_as_read(notification)
