# app/routers/notification_router.py

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging

from app.core.database import get_db
from app.core.websocket_manager import manager
from app.models.user import User
from app.core.security import get_current_user, get_current_user_from_websocket_token
from app.services.notification_service import NotificationService
from app.schemas.notification_schema import NotificationOut

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"]
)

@router.get(
    "/my", 
    response_model=List[NotificationOut],
    summary="獲取我的通知列表"
)
async def get_my_notifications(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    獲取當前登入者的通知列表 (依時間倒序)。
    未連上 WebSocket 的前端可以用此 API 輪詢。
    """
    service = NotificationService(db)
    return await service.get_my_notifications(current_user)

@router.patch(
    "/{notification_id}/read", 
    response_model=NotificationOut,
    summary="將通知設為已讀"
)
async def mark_as_read(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    當使用者點擊通知時，前端應呼叫此 API 將其標記為已讀。
    """
    service = NotificationService(db)
    return await service.mark_notification_as_read(notification_id, current_user)


# --- WebSocket Endpoint ---

@router.websocket("/ws")
async def notification_websocket(
    websocket: WebSocket,
    # 連線 URL: /notifications/ws?token=<JWT_TOKEN>
    user: User = Depends(get_current_user_from_websocket_token)
):
    """
    即時推播：訂單 / 付款 / 爭議的狀態變更 commit 後推送給相關使用者。
    這條連線只負責接收，前端送來的內容一律忽略。
    """
    user_id = user.user_id
    await manager.connect(user_id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(user_id, websocket)
    except Exception as e:
        logger.error(f"Unexpected error in notification WS for user {user_id}: {e}")
        manager.disconnect(user_id, websocket)
