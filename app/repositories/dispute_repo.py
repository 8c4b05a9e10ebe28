# app/repositories/dispute_repo.py

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql.expression import or_
from typing import List, Optional

from app.models.dispute import (
    Dispute, DisputeEvidence, DisputeMessage, DisputeStatus, ACTIVE_DISPUTE_STATUSES
)


class DisputeRepository:
    """
    封裝對 'disputes' 及證據 / 訊息資料表的操作 (不 commit)
    """
    def __init__(self, db: AsyncSession):
        self.db = db

    def add_dispute(self, dispute: Dispute) -> Dispute:
        self.db.add(dispute)
        return dispute

    async def get_dispute_by_id(self, dispute_id: str, for_update: bool = False) -> Optional[Dispute]:
        stmt = select(Dispute).where(Dispute.dispute_id == dispute_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return result.scalars().first()

    async def get_active_dispute_for_order(self, order_id: str) -> Optional[Dispute]:
        stmt = select(Dispute).where(
            Dispute.order_id == order_id,
            Dispute.status.in_(ACTIVE_DISPUTE_STATUSES)
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def list_disputes_by_user(
        self,
        user_id: str,
        status: Optional[DisputeStatus] = None,
        limit: int = 20,
        offset: int = 0
    ) -> List[Dispute]:
        stmt = select(Dispute).where(
            or_(Dispute.initiator_id == user_id, Dispute.respondent_id == user_id)
        )
        if status is not None:
            stmt = stmt.where(Dispute.status == status)
        stmt = stmt.order_by(Dispute.created_at.desc()).offset(offset).limit(limit)
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def list_all_disputes(
        self,
        status: Optional[DisputeStatus] = None,
        limit: int = 20,
        offset: int = 0
    ) -> List[Dispute]:
        """(管理員) 所有爭議，依建立時間排序 (舊的先處理)"""
        stmt = select(Dispute)
        if status is not None:
            stmt = stmt.where(Dispute.status == status)
        stmt = stmt.order_by(Dispute.created_at.asc()).offset(offset).limit(limit)
        result = await self.db.execute(stmt)
        return result.scalars().all()

    def add_evidence(
        self,
        dispute_id: str,
        evidence_type,
        description: str,
        file_url: Optional[str],
        uploaded_by: str
    ) -> DisputeEvidence:
        evidence = DisputeEvidence(
            dispute_id=dispute_id,
            type=evidence_type,
            description=description,
            file_url=file_url,
            uploaded_by=uploaded_by
        )
        self.db.add(evidence)
        return evidence

    def add_message(self, dispute_id: str, sender_id: str, text: str, is_admin: bool) -> DisputeMessage:
        message = DisputeMessage(
            dispute_id=dispute_id,
            sender_id=sender_id,
            message=text,
            is_admin=is_admin
        )
        self.db.add(message)
        return message
