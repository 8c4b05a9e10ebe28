# app/repositories/order_repo.py

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql.expression import or_
from typing import List, Optional

from app.models.order import Order, OrderMessage, OrderDeliverable


class OrderRepository:
    """
    封裝對 'orders' 及其子資料表的操作。
    (注意) 這裡都不 commit，由 Service 決定交易邊界。
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    def add_order(self, order: Order) -> Order:
        self.db.add(order)
        return order

    async def get_order_by_id(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        """
        (R) 透過 ID 獲取單一訂單。
        for_update=True 時以 SELECT ... FOR UPDATE 鎖住該列，
        同一訂單的狀態轉移一次只會有一個請求在進行。
        """
        stmt = select(Order).where(Order.order_id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        # 強制以資料庫的最新值覆蓋 Session 中的物件 (含 messages / deliverables)
        stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_orders_by_user(self, user_id: str, limit: int = 50) -> List[Order]:
        """
        (R) 獲取某個使用者 (作為買家 或 作為工作者) 的所有訂單
        """
        stmt = (
            select(Order)
            .where(or_(Order.client_id == user_id, Order.freelancer_id == user_id))
            .order_by(Order.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return result.scalars().all()

    def add_message(self, order_id: str, sender_id: str, text: str) -> OrderMessage:
        message = OrderMessage(order_id=order_id, sender_id=sender_id, message=text)
        self.db.add(message)
        return message

    def add_deliverable(
        self,
        order_id: str,
        title: str,
        description: Optional[str],
        file_url: Optional[str]
    ) -> OrderDeliverable:
        deliverable = OrderDeliverable(
            order_id=order_id,
            title=title,
            description=description,
            file_url=file_url
        )
        self.db.add(deliverable)
        return deliverable
