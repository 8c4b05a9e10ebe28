# app/repositories/gig_repo.py
# 服務目錄 (外部協作者) 在本服務中用到的三個介面
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
import logging

from app.models.gig import Gig
from app.utils.money import CENT

logger = logging.getLogger(__name__)

class GigRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_gig(self, gig_id: str, for_update: bool = False) -> Gig | None:
        stmt = select(Gig).where(Gig.gig_id == gig_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return result.scalars().first()

    async def increment_order_count(self, gig_id: str) -> None:
        """訂單數 +1 (不 commit，由 Service 統一提交)"""
        gig = await self.get_gig(gig_id, for_update=True)
        if gig is None:
            logger.warning(f"increment_order_count: Gig {gig_id} 不存在")
            return
        gig.order_count = (gig.order_count or 0) + 1

    async def update_aggregate_rating(self, gig_id: str, score: int) -> None:
        """
        以累進平均更新評價：newAvg = (oldAvg * oldCount + score) / (oldCount + 1)
        """
        gig = await self.get_gig(gig_id, for_update=True)
        if gig is None:
            logger.warning(f"update_aggregate_rating: Gig {gig_id} 不存在")
            return
        old_count = gig.rating_count or 0
        old_avg = Decimal(gig.rating_average or 0)
        new_avg = (old_avg * old_count + score) / (old_count + 1)
        gig.rating_average = new_avg.quantize(CENT)
        gig.rating_count = old_count + 1
