# app/core/websocket_manager.py
# 即時推播：只推送「已經 commit」的狀態變更，不參與任何交易

from fastapi import WebSocket
from typing import Dict, List
import logging

logger = logging.getLogger(__name__)

# 連線管理器：維護 'user_id' -> List[WebSocket] 的映射
class ConnectionManager:
    """管理 WebSocket 連線：用於推播通知給特定使用者的所有連線。"""
    
    def __init__(self):
        # 結構: {user_id: [WebSocket, ...]} (同一使用者可能開多個分頁)
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.setdefault(user_id, []).append(websocket)
        logger.info(f"User {user_id} connected. Total connections: {len(self.active_connections[user_id])}")

    def disconnect(self, user_id: str, websocket: WebSocket):
        connections = self.active_connections.get(user_id)
        if not connections or websocket not in connections:
            return # 可能是重複斷開
        connections.remove(websocket)
        if not connections:
            del self.active_connections[user_id]
        logger.info(f"User {user_id} disconnected.")

    async def send_to_user(self, user_id: str, message_json: str) -> int:
        """將 JSON 字串推播給特定使用者的所有連線，回傳成功送出的數量。"""
        delivered = 0
        for ws in list(self.active_connections.get(user_id, [])):
            try:
                await ws.send_text(message_json)
                delivered += 1
            except Exception as e:
                logger.warning(f"Failed to push to user {user_id}: {e}")
                # 清理已斷開的連線
                self.disconnect(user_id, ws)
        return delivered

# 實例化管理器 (全域單例)
manager = ConnectionManager()
