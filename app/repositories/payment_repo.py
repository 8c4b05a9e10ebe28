# app/repositories/payment_repo.py

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql.expression import or_
from typing import List, Optional

from app.models.payment import Payment, PaymentStatus, ACTIVE_PAYMENT_STATUSES


class PaymentRepository:
    """
    封裝對 'payments' 資料表的操作 (不 commit)
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    def add_payment(self, payment: Payment) -> Payment:
        self.db.add(payment)
        return payment

    async def get_payment_by_id(self, payment_id: str, for_update: bool = False) -> Optional[Payment]:
        stmt = select(Payment).where(Payment.payment_id == payment_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return result.scalars().first()

    async def get_payment_by_idempotency_key(self, idempotency_key: str) -> Optional[Payment]:
        stmt = select(Payment).where(Payment.idempotency_key == idempotency_key)
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def _get_latest_for_order(self, order_id: str, statuses) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.order_id == order_id, Payment.status.in_(statuses))
            .order_by(Payment.created_at.desc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_active_payment_for_order(self, order_id: str) -> Optional[Payment]:
        """pending / processing 的付款 (同一訂單最多一筆)"""
        return await self._get_latest_for_order(order_id, ACTIVE_PAYMENT_STATUSES)

    async def get_captured_payment_for_order(self, order_id: str) -> Optional[Payment]:
        """已實際扣款 (託管中或已撥款) 的付款"""
        return await self._get_latest_for_order(
            order_id, (PaymentStatus.processing, PaymentStatus.completed)
        )

    async def list_payments_for_order(self, order_id: str) -> List[Payment]:
        stmt = select(Payment).where(Payment.order_id == order_id).order_by(Payment.created_at)
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def list_payments_by_user(
        self,
        user_id: str,
        status: Optional[PaymentStatus] = None,
        limit: int = 20,
        offset: int = 0
    ) -> List[Payment]:
        stmt = select(Payment).where(
            or_(Payment.client_id == user_id, Payment.freelancer_id == user_id)
        )
        if status is not None:
            stmt = stmt.where(Payment.status == status)
        stmt = stmt.order_by(Payment.created_at.desc()).offset(offset).limit(limit)
        result = await self.db.execute(stmt)
        return result.scalars().all()
