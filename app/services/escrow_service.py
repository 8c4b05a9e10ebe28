# app/services/escrow_service.py

from sqlalchemy.ext.asyncio import AsyncSession
from decimal import Decimal
from typing import List, Optional, Tuple
import asyncio
import logging
import uuid

from app.core.config import settings
from app.core.database import commit_or_rollback
from app.core.exceptions import (
    AlreadyPaid, InvalidTransition, NotAdmin, NotAuthorized, NotInEscrow,
    NotOrderOwner, NotRefundable, OrderNotFound, OrderNotPayable, PaymentDeclined,
    PaymentNotFound, PaymentNotPending, PaymentNotSucceeded, PaymentProcessorUnavailable
)
from app.models.order import Order, OrderStatus
from app.models.payment import Payment, PaymentStatus
from app.models.user import User
from app.repositories.order_repo import OrderRepository
from app.repositories.payment_repo import PaymentRepository
from app.schemas.payment_schema import EscrowIntentOut
from app.services.notification_service import NotificationService
from app.services.order_service import OrderService, TransitionSource
from app.services.payment_processor import (
    ChargeStatus, PaymentProcessor, ProcessorDeclinedError, ProcessorError,
    ProcessorTransientError, get_payment_processor
)
from app.utils.money import FeeSplit, calculate_fee_split, to_money
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

# 可以退款 (或被標記拒付) 的狀態：款項確實已經扣下
CAPTURED_STATUSES = (PaymentStatus.processing, PaymentStatus.completed)


class EscrowService:
    """
    託管帳本：Payment.status 只能由這裡修改。
    訂單狀態一律透過 OrderService.apply_transition 變更。
    """
    def __init__(self, db: AsyncSession, processor: Optional[PaymentProcessor] = None):
        self.db = db
        self.processor = processor or get_payment_processor()
        self.order_repo = OrderRepository(db)
        self.payment_repo = PaymentRepository(db)
        self.order_service = OrderService(db)
        self.notification_service = NotificationService(db)

    # --- 輔助函式 ---
    @staticmethod
    def estimate_fees(amount) -> FeeSplit:
        """前端試算，與建立託管走同一個計算函式"""
        return calculate_fee_split(amount)

    async def _call_processor(self, fn, *args, **kwargs):
        """
        呼叫金流並處理錯誤。
        暫時性錯誤以同一組參數 (含 idempotency key) 重試有限次數；
        最終失敗時 rollback，本地不留下任何狀態變更。
        """
        max_attempts = max(1, settings.PROCESSOR_MAX_RETRIES)
        for attempt in range(1, max_attempts + 1):
            try:
                return await fn(*args, **kwargs)
            except ProcessorTransientError as e:
                logger.warning(f"金流暫時性錯誤 ({attempt}/{max_attempts}): {e}")
                if attempt == max_attempts:
                    await self.db.rollback()
                    raise PaymentProcessorUnavailable()
                await asyncio.sleep(settings.PROCESSOR_RETRY_DELAY_SECONDS * attempt)
            except ProcessorDeclinedError as e:
                await self.db.rollback()
                raise PaymentDeclined(str(e) or None)
            except ProcessorError as e:
                logger.error(f"金流呼叫失敗: {e}", exc_info=True)
                await self.db.rollback()
                raise PaymentProcessorUnavailable()

    async def _lock_payment_and_order(self, payment_id: str) -> Tuple[Payment, Order]:
        """
        依固定順序上鎖：先訂單、後付款，
        與 initiate_escrow / DisputeService 的順序一致，避免互相等待。
        """
        payment = await self.payment_repo.get_payment_by_id(payment_id)
        if not payment:
            raise PaymentNotFound()
        order = await self.order_repo.get_order_by_id(payment.order_id, for_update=True)
        if not order:
            raise OrderNotFound()
        payment = await self.payment_repo.get_payment_by_id(payment_id, for_update=True)
        return payment, order

    @staticmethod
    def _ensure_client_or_admin(payment: Payment, actor: User) -> None:
        if payment.client_id != actor.user_id and not actor.is_admin:
            raise NotAuthorized()

    async def _notify_parties(self, kind: str, client_id: str, freelancer_id: str, payload: dict) -> None:
        link_url = f"/orders/{payload['order_id']}"
        for recipient_id in (client_id, freelancer_id):
            await self.notification_service.notify(kind, recipient_id, payload, link_url=link_url)

    # --- 1. 建立託管 ---
    async def initiate_escrow(
        self,
        order_id: str,
        client: User,
        request_id: Optional[str] = None
    ) -> EscrowIntentOut:
        order = await self.order_repo.get_order_by_id(order_id, for_update=True)
        if not order:
            raise OrderNotFound()
        if order.client_id != client.user_id:
            raise NotOrderOwner()

        idempotency_key = f"escrow:{order.order_id}:{request_id or uuid.uuid4()}"
        split = calculate_fee_split(order.amount)

        # 同一個請求重送：金流端會以同一個 key 回傳同一筆付款意圖
        existing = await self.payment_repo.get_payment_by_idempotency_key(idempotency_key)
        if existing and existing.status == PaymentStatus.failed:
            # 已放棄的請求不能沿用，前端需換一個新的 key
            raise PaymentNotPending()
        if existing and existing.status != PaymentStatus.pending:
            raise AlreadyPaid()
        if existing:
            charge = await self._call_processor(
                self.processor.create_charge,
                amount=split.total_charge,
                currency=settings.PAYMENT_CURRENCY,
                metadata=self._charge_metadata(order, existing.payment_id),
                idempotency_key=idempotency_key
            )
            return self._intent_out(existing.payment_id, charge.client_handle, split)

        if await self.payment_repo.get_active_payment_for_order(order.order_id):
            raise AlreadyPaid()
        if order.status != OrderStatus.pending:
            raise OrderNotPayable()

        payment = Payment(
            payment_id=str(uuid.uuid4()),
            order_id=order.order_id,
            client_id=order.client_id,
            freelancer_id=order.freelancer_id,
            amount=split.amount,
            platform_fee=split.platform_fee,
            freelancer_amount=split.freelancer_amount,
            status=PaymentStatus.pending,
            payment_method="stripe",
            idempotency_key=idempotency_key
        )
        self.payment_repo.add_payment(payment)

        # 買家實付 = 訂單金額 + 平台手續費
        charge = await self._call_processor(
            self.processor.create_charge,
            amount=split.total_charge,
            currency=settings.PAYMENT_CURRENCY,
            metadata=self._charge_metadata(order, payment.payment_id),
            idempotency_key=idempotency_key
        )
        payment.processor_intent_id = charge.charge_id
        payment_id = payment.payment_id
        await commit_or_rollback(self.db)
        logger.info(f"建立託管付款 {payment_id} (order={order_id}, total={split.total_charge})")

        return self._intent_out(payment_id, charge.client_handle, split)

    @staticmethod
    def _charge_metadata(order: Order, payment_id: str) -> dict:
        return {
            "order_id": order.order_id,
            "payment_id": payment_id,
            "client_id": order.client_id,
            "freelancer_id": order.freelancer_id,
        }

    @staticmethod
    def _intent_out(payment_id: str, client_handle: str, split: FeeSplit) -> EscrowIntentOut:
        return EscrowIntentOut(
            payment_id=payment_id,
            client_handle=client_handle,
            amount=split.amount,
            platform_fee=split.platform_fee,
            total_charge=split.total_charge
        )

    # --- 2. 確認付款 (款項進入託管) ---
    async def confirm_escrow(self, payment_id: str, processor_charge_id: str, actor: User) -> Payment:
        payment, order = await self._lock_payment_and_order(payment_id)
        self._ensure_client_or_admin(payment, actor)
        if processor_charge_id != payment.processor_intent_id:
            raise PaymentNotSucceeded("付款識別碼不符")

        # 已確認過：直接回傳，不重複轉移訂單狀態
        if payment.status != PaymentStatus.pending:
            if payment.status == PaymentStatus.failed:
                raise PaymentNotSucceeded()
            logger.info(f"付款 {payment_id} 已確認過 (status={payment.status.value})，略過")
            return payment

        charge = await self._call_processor(self.processor.retrieve_charge, processor_charge_id)

        if charge.status == ChargeStatus.failed:
            payment.status = PaymentStatus.failed
            await commit_or_rollback(self.db)
            logger.info(f"付款 {payment_id} 在金流端已失敗 / 取消")
            raise PaymentNotSucceeded()
        if charge.status != ChargeStatus.succeeded:
            raise PaymentNotSucceeded()

        payment.status = PaymentStatus.processing
        payment.processor_charge_id = charge.charge_reference
        if order.status == OrderStatus.pending:
            self.order_service.apply_transition(order, OrderStatus.in_progress, TransitionSource.escrow)
        else:
            # e.g. 付款期間被提出爭議：款項照樣託管，訂單交給仲裁處理
            logger.warning(f"確認付款時訂單 {order.order_id} 狀態為 {order.status.value}，不轉移訂單")

        payload = {"order_id": order.order_id, "payment_id": payment_id, "amount": str(payment.amount)}
        client_id, freelancer_id = payment.client_id, payment.freelancer_id
        await commit_or_rollback(self.db)

        await self._notify_parties("payment_held", client_id, freelancer_id, payload)
        return await self.payment_repo.get_payment_by_id(payment_id)

    # --- 3. 撥款給工作者 ---
    async def release_escrow(self, payment_id: str, actor: User) -> Payment:
        payment, order = await self._lock_payment_and_order(payment_id)
        self._ensure_client_or_admin(payment, actor)
        if payment.status != PaymentStatus.processing:
            raise NotInEscrow()

        # 訂單若已被雙方標記完成，就保留原本的完成時間
        if order.status != OrderStatus.completed:
            self.order_service.apply_transition(order, OrderStatus.completed, TransitionSource.escrow)

        payment.status = PaymentStatus.completed
        payment.completed_at = utcnow()

        payload = {"order_id": order.order_id, "payment_id": payment_id,
                   "freelancer_amount": str(payment.freelancer_amount)}
        client_id, freelancer_id = payment.client_id, payment.freelancer_id
        await commit_or_rollback(self.db)
        logger.info(f"付款 {payment_id} 已撥款 (order={order.order_id})")

        await self._notify_parties("payment_released", client_id, freelancer_id, payload)
        return await self.payment_repo.get_payment_by_id(payment_id)

    # --- 4. 退款 ---
    async def refund(self, payment_id: str, reason: str, actor: User) -> Payment:
        payment, order = await self._lock_payment_and_order(payment_id)
        self._ensure_client_or_admin(payment, actor)
        if payment.status not in CAPTURED_STATUSES:
            raise NotRefundable()
        # 先確認訂單可以取消，再向金流退款，避免錢退了訂單卻轉不過去
        self.order_service.check_transition(order, OrderStatus.cancelled, TransitionSource.escrow)

        await self.refund_captured(payment, reason)
        self.order_service.apply_transition(order, OrderStatus.cancelled, TransitionSource.escrow)

        payload = {"order_id": order.order_id, "payment_id": payment_id,
                   "refund_amount": str(payment.refund_amount)}
        client_id, freelancer_id = payment.client_id, payment.freelancer_id
        await commit_or_rollback(self.db)

        await self._notify_parties("payment_refunded", client_id, freelancer_id, payload)
        return await self.payment_repo.get_payment_by_id(payment_id)

    async def refund_captured(self, payment: Payment, reason: str, amount: Optional[Decimal] = None) -> Payment:
        """
        向金流退款並更新付款紀錄 (不 commit)。
        amount 為 None 時全額退款 (訂單金額 + 手續費)。
        供 refund() 與爭議仲裁共用。
        """
        if payment.status not in CAPTURED_STATUSES:
            raise NotRefundable()

        refund_id = await self._call_processor(
            self.processor.create_refund,
            charge_id=payment.processor_intent_id,
            reason=reason,
            idempotency_key=f"refund:{payment.payment_id}",
            amount=amount
        )
        payment.status = PaymentStatus.refunded
        payment.processor_refund_id = refund_id
        payment.refund_amount = to_money(amount) if amount is not None else payment.amount + payment.platform_fee
        payment.refund_reason = reason
        payment.refunded_at = utcnow()
        logger.info(f"付款 {payment.payment_id} 已退款 {payment.refund_amount} ({reason})")
        return payment

    # --- 5. 放棄未完成的付款 ---
    async def abandon_escrow(self, payment_id: str, actor: User) -> Payment:
        payment, _ = await self._lock_payment_and_order(payment_id)
        self._ensure_client_or_admin(payment, actor)
        if payment.status != PaymentStatus.pending:
            raise PaymentNotPending()

        self.mark_abandoned(payment)
        await commit_or_rollback(self.db)
        return await self.payment_repo.get_payment_by_id(payment_id)

    def mark_abandoned(self, payment: Payment) -> None:
        """付款前放棄：pending -> failed，款項未扣不需要補償 (不 commit)"""
        payment.status = PaymentStatus.failed
        logger.info(f"付款 {payment.payment_id} 已放棄")

    async def abandon_pending_for_order(self, order_id: str) -> Optional[Payment]:
        """訂單取消時，一併放棄尚未完成的付款 (不 commit)"""
        payment = await self.payment_repo.get_active_payment_for_order(order_id)
        if payment and payment.status == PaymentStatus.pending:
            self.mark_abandoned(payment)
            return payment
        return None

    # --- 6. 金流拒付 (管理員) ---
    async def flag_chargeback(self, payment_id: str, reason: str, actor: User) -> Payment:
        if not actor.is_admin:
            raise NotAdmin()
        payment, order = await self._lock_payment_and_order(payment_id)
        if payment.status not in CAPTURED_STATUSES:
            raise InvalidTransition(payment.status.value, PaymentStatus.disputed.value)

        payment.status = PaymentStatus.disputed
        payment.dispute_reason = reason
        payload = {"order_id": order.order_id, "payment_id": payment_id}
        client_id, freelancer_id = payment.client_id, payment.freelancer_id
        await commit_or_rollback(self.db)
        logger.info(f"付款 {payment_id} 被標記為拒付: {reason}")

        await self._notify_parties("payment_flagged", client_id, freelancer_id, payload)
        return await self.payment_repo.get_payment_by_id(payment_id)

    # --- 查詢 ---
    async def get_payment_details(self, payment_id: str, user: User) -> Payment:
        payment = await self.payment_repo.get_payment_by_id(payment_id)
        if not payment:
            raise PaymentNotFound()
        if user.user_id not in (payment.client_id, payment.freelancer_id) and not user.is_admin:
            raise NotAuthorized()
        return payment

    async def get_my_payments(
        self,
        user: User,
        status: Optional[PaymentStatus] = None,
        limit: int = 20,
        offset: int = 0
    ) -> List[Payment]:
        return await self.payment_repo.list_payments_by_user(user.user_id, status, limit, offset)
