# app/services/dispute_service.py

from fastapi import UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
from decimal import Decimal
from typing import List, Optional, Tuple
import logging

from app.core.database import commit_or_rollback
from app.core.exceptions import (
    AlreadyTerminal, DisputeNotFound, DuplicateDispute, InvalidPartialAmount,
    InvalidResolution, InvalidTransition, NotAdmin, NotAuthorized, NotDisputeParty,
    NotOrderParty, OrderNotDisputable, OrderNotFound
)
from app.models.dispute import Dispute, DisputeResolution, DisputeStatus, DisputeType, EvidenceType
from app.models.order import Order, OrderStatus
from app.models.user import User
from app.repositories.dispute_repo import DisputeRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.payment_repo import PaymentRepository
from app.services.escrow_service import EscrowService
from app.services.evidence_storage import evidence_type_for, save_evidence_file
from app.services.notification_service import NotificationService
from app.services.order_service import OrderService, TransitionSource
from app.services.payment_processor import PaymentProcessor
from app.utils.money import to_money
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

# 可以提出爭議的訂單狀態
DISPUTABLE_ORDER_STATUSES = (OrderStatus.pending, OrderStatus.in_progress, OrderStatus.completed)

# 仲裁結果 -> 訂單的目標狀態
RESOLUTION_ORDER_STATUS = {
    DisputeResolution.refund_full: OrderStatus.cancelled,
    DisputeResolution.refund_partial: OrderStatus.in_progress,
    DisputeResolution.continue_work: OrderStatus.in_progress,
    DisputeResolution.revision: OrderStatus.in_progress,
    DisputeResolution.cancelled: OrderStatus.cancelled,
}


class DisputeService:
    def __init__(self, db: AsyncSession, processor: Optional[PaymentProcessor] = None):
        self.db = db
        self.dispute_repo = DisputeRepository(db)
        self.order_repo = OrderRepository(db)
        self.payment_repo = PaymentRepository(db)
        self.order_service = OrderService(db)
        self.escrow_service = EscrowService(db, processor)
        self.notification_service = NotificationService(db)

    # --- 輔助函式 ---
    async def _get_dispute(self, dispute_id: str, for_update: bool = False) -> Dispute:
        dispute = await self.dispute_repo.get_dispute_by_id(dispute_id, for_update=for_update)
        if not dispute:
            raise DisputeNotFound()
        return dispute

    async def _lock_dispute_and_order(self, dispute_id: str) -> Tuple[Dispute, Order]:
        """先鎖訂單、再鎖爭議 (與 EscrowService 相同的順序)"""
        dispute = await self._get_dispute(dispute_id)
        order = await self.order_repo.get_order_by_id(dispute.order_id, for_update=True)
        if not order:
            raise OrderNotFound()
        dispute = await self._get_dispute(dispute_id, for_update=True)
        return dispute, order

    async def _get_open_dispute_for_party(self, dispute_id: str, user: User) -> Dispute:
        dispute = await self._get_dispute(dispute_id, for_update=True)
        if not dispute.is_party(user.user_id):
            raise NotDisputeParty()
        if dispute.is_terminal:
            raise AlreadyTerminal()
        return dispute

    @staticmethod
    def _parse_resolution(resolution) -> DisputeResolution:
        try:
            return DisputeResolution(resolution)
        except ValueError:
            raise InvalidResolution(f"無效的爭議處理結果: {resolution}")

    async def _notify(self, kind: str, recipients, dispute_id: str, payload: dict) -> None:
        payload = {"dispute_id": dispute_id, **payload}
        for recipient_id in recipients:
            await self.notification_service.notify(
                kind, recipient_id, payload, link_url=f"/disputes/{dispute_id}"
            )

    # --- 1. 提出爭議 ---
    async def open_dispute(
        self,
        order_id: str,
        initiator: User,
        dispute_type: DisputeType,
        reason: str
    ) -> Dispute:
        order = await self.order_repo.get_order_by_id(order_id, for_update=True)
        if not order:
            raise OrderNotFound()
        if not order.is_party(initiator.user_id):
            raise NotOrderParty()
        if await self.dispute_repo.get_active_dispute_for_order(order.order_id):
            raise DuplicateDispute()
        if order.status not in DISPUTABLE_ORDER_STATUSES:
            raise OrderNotDisputable()

        respondent_id = order.other_party(initiator.user_id)
        dispute = Dispute(
            order_id=order.order_id,
            initiator_id=initiator.user_id,
            respondent_id=respondent_id,
            type=dispute_type,
            reason=reason,
            status=DisputeStatus.open
        )
        self.dispute_repo.add_dispute(dispute)
        # 爭議期間訂單流程暫停
        self.order_service.apply_transition(order, OrderStatus.disputed, TransitionSource.dispute)
        await commit_or_rollback(self.db)
        dispute_id = dispute.dispute_id
        logger.info(f"訂單 {order_id} 被提出爭議 {dispute_id} (initiator={initiator.user_id})")

        await self._notify(
            "dispute_opened", [respondent_id], dispute_id,
            {"order_id": order_id, "type": dispute.type.value}
        )
        return await self.dispute_repo.get_dispute_by_id(dispute_id)

    # --- 2. 管理員開始審查 ---
    async def start_review(self, dispute_id: str, admin: User) -> Dispute:
        if not admin.is_admin:
            raise NotAdmin()
        dispute = await self._get_dispute(dispute_id, for_update=True)
        if dispute.is_terminal:
            raise AlreadyTerminal()
        if dispute.status != DisputeStatus.open:
            raise InvalidTransition(dispute.status.value, DisputeStatus.under_review.value)

        dispute.status = DisputeStatus.under_review
        dispute.assigned_admin_id = admin.user_id
        recipients = [dispute.initiator_id, dispute.respondent_id]
        await commit_or_rollback(self.db)

        await self._notify("dispute_updated", recipients, dispute_id, {"status": DisputeStatus.under_review.value})
        return await self.dispute_repo.get_dispute_by_id(dispute_id)

    # --- 3. 證據 ---
    async def add_evidence(
        self,
        dispute_id: str,
        evidence_type: EvidenceType,
        description: str,
        file_url: Optional[str],
        uploader: User
    ) -> Dispute:
        dispute = await self._get_open_dispute_for_party(dispute_id, uploader)
        return await self._record_evidence(dispute, evidence_type, description, file_url, uploader)

    async def upload_evidence_file(
        self,
        dispute_id: str,
        file: UploadFile,
        description: str,
        uploader: User
    ) -> Dispute:
        # 先驗證再存檔，避免留下沒有對應紀錄的檔案
        dispute = await self._get_open_dispute_for_party(dispute_id, uploader)
        evidence_type = evidence_type_for(file.content_type)
        file_url = await save_evidence_file(file)
        return await self._record_evidence(dispute, evidence_type, description, file_url, uploader)

    async def _record_evidence(
        self,
        dispute: Dispute,
        evidence_type: EvidenceType,
        description: str,
        file_url: Optional[str],
        uploader: User
    ) -> Dispute:
        dispute_id = dispute.dispute_id
        self.dispute_repo.add_evidence(dispute_id, evidence_type, description, file_url, uploader.user_id)
        dispute.updated_at = utcnow()
        other_party = dispute.respondent_id if uploader.user_id == dispute.initiator_id else dispute.initiator_id
        await commit_or_rollback(self.db)

        await self._notify("dispute_updated", [other_party], dispute_id, {"evidence": evidence_type.value})
        return await self.dispute_repo.get_dispute_by_id(dispute_id)

    # --- 4. 爭議訊息 ---
    async def add_message(self, dispute_id: str, sender: User, text: str) -> Dispute:
        dispute = await self._get_dispute(dispute_id, for_update=True)
        if not dispute.is_party(sender.user_id) and not sender.is_admin:
            raise NotAuthorized()

        self.dispute_repo.add_message(dispute_id, sender.user_id, text, is_admin=sender.is_admin)
        dispute.updated_at = utcnow()
        recipients = [
            user_id for user_id in (dispute.initiator_id, dispute.respondent_id)
            if user_id != sender.user_id
        ]
        await commit_or_rollback(self.db)

        await self._notify("dispute_updated", recipients, dispute_id, {"preview": text[:30]})
        return await self.dispute_repo.get_dispute_by_id(dispute_id)

    # --- 5. 仲裁 ---
    async def resolve(
        self,
        dispute_id: str,
        resolution,
        admin_notes: Optional[str],
        actor: User,
        refund_amount: Optional[Decimal] = None
    ) -> Dispute:
        if not actor.is_admin:
            raise NotAdmin()
        dispute, order = await self._lock_dispute_and_order(dispute_id)
        if dispute.is_terminal:
            raise AlreadyTerminal()
        resolution = self._parse_resolution(resolution)

        # 所有驗證都在呼叫金流之前完成
        target_status = RESOLUTION_ORDER_STATUS[resolution]
        self.order_service.check_transition(order, target_status, TransitionSource.dispute)

        captured = None
        if resolution in (
            DisputeResolution.refund_full, DisputeResolution.refund_partial, DisputeResolution.cancelled
        ):
            captured = await self.payment_repo.get_captured_payment_for_order(order.order_id)

        partial_amount = None
        if resolution == DisputeResolution.refund_partial:
            if refund_amount is None:
                raise InvalidPartialAmount()
            partial_amount = to_money(refund_amount)
            if partial_amount <= 0 or partial_amount > order.amount:
                raise InvalidPartialAmount()
            if captured is None:
                raise InvalidResolution("部分退款需要已扣款的付款")

        refund_reason = f"dispute {dispute_id}: {resolution.value}"
        if resolution in (DisputeResolution.refund_full, DisputeResolution.cancelled):
            # 訂單取消時已扣款的款項一律退回，不留在託管中
            if captured is not None:
                await self.escrow_service.refund_captured(captured, refund_reason)
            else:
                # 尚未扣款：直接放棄付款意圖
                await self.escrow_service.abandon_pending_for_order(order.order_id)
        elif resolution == DisputeResolution.refund_partial:
            await self.escrow_service.refund_captured(captured, refund_reason, amount=partial_amount)
            dispute.refund_amount = partial_amount
        elif resolution == DisputeResolution.revision:
            self.order_service.count_revision_request(order)

        self.order_service.apply_transition(order, target_status, TransitionSource.dispute)

        dispute.status = DisputeStatus.resolved
        dispute.resolution = resolution
        dispute.admin_notes = admin_notes
        dispute.resolved_at = utcnow()
        if not dispute.assigned_admin_id:
            dispute.assigned_admin_id = actor.user_id

        recipients = [dispute.initiator_id, dispute.respondent_id]
        order_id = order.order_id
        await commit_or_rollback(self.db)
        logger.info(f"爭議 {dispute_id} 已仲裁: {resolution.value} (order={order_id} -> {target_status.value})")

        await self._notify(
            "dispute_resolved", recipients, dispute_id,
            {"order_id": order_id, "resolution": resolution.value}
        )
        return await self.dispute_repo.get_dispute_by_id(dispute_id)

    # --- 6. 結案 (不影響訂單與付款) ---
    async def close(self, dispute_id: str, actor: User) -> Dispute:
        if not actor.is_admin:
            raise NotAdmin()
        dispute = await self._get_dispute(dispute_id, for_update=True)
        if dispute.is_terminal:
            raise AlreadyTerminal()

        dispute.status = DisputeStatus.closed
        dispute.closed_at = utcnow()
        recipients = [dispute.initiator_id, dispute.respondent_id]
        await commit_or_rollback(self.db)
        logger.info(f"爭議 {dispute_id} 已結案")

        await self._notify("dispute_closed", recipients, dispute_id, {"status": DisputeStatus.closed.value})
        return await self.dispute_repo.get_dispute_by_id(dispute_id)

    # --- 查詢 ---
    async def get_dispute_details(self, dispute_id: str, user: User) -> Dispute:
        dispute = await self._get_dispute(dispute_id)
        if not dispute.is_party(user.user_id) and not user.is_admin:
            raise NotAuthorized()
        return dispute

    async def get_my_disputes(
        self,
        user: User,
        status: Optional[DisputeStatus] = None,
        limit: int = 20,
        offset: int = 0
    ) -> List[Dispute]:
        return await self.dispute_repo.list_disputes_by_user(user.user_id, status, limit, offset)

    async def list_all_disputes(
        self,
        admin: User,
        status: Optional[DisputeStatus] = None,
        limit: int = 20,
        offset: int = 0
    ) -> List[Dispute]:
        if not admin.is_admin:
            raise NotAdmin()
        return await self.dispute_repo.list_all_disputes(status, limit, offset)
