# app/services/order_service.py

from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import enum
import logging

from app.core.database import commit_or_rollback
from app.core.exceptions import (
    AlreadyRated, GigUnavailable, InvalidDeliveryDate, InvalidTransition,
    NotAuthorized, NotCompleted, OrderNotFound, OrderNotInProgress,
    RevisionLimitReached, SelfOrderNotAllowed
)
from app.models.order import Order, OrderStatus
from app.models.user import User
from app.repositories.gig_repo import GigRepository
from app.repositories.order_repo import OrderRepository
from app.schemas.order_schema import OrderCreate, DeliverableCreate, OrderRatingCreate
from app.services.notification_service import NotificationService
from app.utils.time_utils import utcnow, to_naive_utc

logger = logging.getLogger(__name__)


class TransitionSource(str, enum.Enum):
    """誰在要求訂單狀態轉移"""
    party = "party"       # 訂單雙方 (transition_status)
    escrow = "escrow"     # 託管流程 (確認付款、撥款、退款)
    dispute = "dispute"   # 爭議流程 (提出爭議、仲裁結果)


# --- 訂單狀態機 ---
# (目前狀態, 目標狀態) -> 允許發起的來源
# 不在表中的組合一律是不合法的轉移
ORDER_TRANSITIONS = {
    # 1. 只有「確認付款」能讓訂單開始進行
    (OrderStatus.pending, OrderStatus.in_progress): {TransitionSource.escrow},
    # 2. 付款前取消
    (OrderStatus.pending, OrderStatus.cancelled): {TransitionSource.party},
    # 3. 完成：雙方標記完成，或買家撥款
    (OrderStatus.in_progress, OrderStatus.completed): {TransitionSource.party, TransitionSource.escrow},
    # 4. 提出爭議 (由爭議流程強制設定，暫停訂單本身的流程)
    (OrderStatus.pending, OrderStatus.disputed): {TransitionSource.dispute},
    (OrderStatus.in_progress, OrderStatus.disputed): {TransitionSource.dispute},
    (OrderStatus.completed, OrderStatus.disputed): {TransitionSource.dispute},
    # 5. 仲裁結果
    (OrderStatus.disputed, OrderStatus.in_progress): {TransitionSource.dispute},
    (OrderStatus.disputed, OrderStatus.cancelled): {TransitionSource.dispute},
    # 6. 退款後取消訂單 (補償操作)
    (OrderStatus.in_progress, OrderStatus.cancelled): {TransitionSource.escrow},
    (OrderStatus.completed, OrderStatus.cancelled): {TransitionSource.escrow},
}


class OrderService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.order_repo = OrderRepository(db)
        self.gig_repo = GigRepository(db)
        self.notification_service = NotificationService(db)

    # --- 狀態機 (供 EscrowService / DisputeService 共用) ---
    def check_transition(self, order: Order, new_status: OrderStatus, source: TransitionSource) -> None:
        """只驗證，不修改。表中沒有，或目前的流程不能發起此轉移 -> InvalidTransition"""
        allowed_sources = ORDER_TRANSITIONS.get((order.status, new_status), ())
        if source not in allowed_sources:
            raise InvalidTransition(OrderStatus(order.status).value, OrderStatus(new_status).value)

    def apply_transition(self, order: Order, new_status: OrderStatus, source: TransitionSource) -> OrderStatus:
        """
        修改訂單狀態的唯一入口 (不 commit)。
        轉為 completed 時寫入 completed_date，這也是唯一會設定它的地方。
        """
        self.check_transition(order, new_status, source)
        old_status = order.status
        order.status = new_status
        if new_status == OrderStatus.completed:
            order.completed_date = utcnow()
        logger.info(f"訂單 {order.order_id} 狀態: {old_status.value} -> {new_status.value} (source={source.value})")
        return old_status

    def count_revision_request(self, order: Order) -> None:
        """仲裁結果為 revision 時，計入一次修改要求 (不檢查上限)"""
        order.revisions_requested = (order.revisions_requested or 0) + 1

    # --- 查詢 ---
    async def get_order_for_party(
        self,
        order_id: str,
        user: User,
        for_update: bool = False,
        allow_admin: bool = False
    ) -> Order:
        order = await self.order_repo.get_order_by_id(order_id, for_update=for_update)
        if not order:
            raise OrderNotFound()
        if not order.is_party(user.user_id) and not (allow_admin and user.is_admin):
            raise NotAuthorized()
        return order

    async def get_order_details(self, order_id: str, user: User) -> Order:
        return await self.get_order_for_party(order_id, user, allow_admin=True)

    async def get_my_orders(self, user: User) -> List[Order]:
        return await self.order_repo.list_orders_by_user(user.user_id)

    # --- 下單 ---
    async def place_order(self, data: OrderCreate, client: User) -> Order:
        delivery_date = to_naive_utc(data.delivery_date)
        if delivery_date <= utcnow():
            raise InvalidDeliveryDate()

        gig = await self.gig_repo.get_gig(data.gig_id)
        if not gig or not gig.is_active:
            raise GigUnavailable()
        if gig.freelancer_id == client.user_id:
            raise SelfOrderNotAllowed()

        # 價格在這裡快照，之後服務改價不影響既有訂單
        new_order = Order(
            gig_id=gig.gig_id,
            client_id=client.user_id,
            freelancer_id=gig.freelancer_id,
            status=OrderStatus.pending,
            amount=gig.price,
            requirements=data.requirements,
            delivery_date=delivery_date,
            revisions_max_allowed=gig.revisions or 0
        )
        self.order_repo.add_order(new_order)
        await self.gig_repo.increment_order_count(gig.gig_id)
        await commit_or_rollback(self.db)
        order_id = new_order.order_id
        logger.info(f"建立訂單 {order_id} (gig={gig.gig_id}, client={client.user_id})")

        await self.notification_service.notify(
            "order_created",
            new_order.freelancer_id,
            {"order_id": new_order.order_id, "amount": str(new_order.amount)},
            link_url=f"/orders/{new_order.order_id}"
        )
        return await self.order_repo.get_order_by_id(order_id)

    # --- 狀態轉移 (雙方) ---
    async def transition_status(self, order_id: str, new_status: OrderStatus, actor: User) -> Order:
        order = await self.get_order_for_party(order_id, actor, for_update=True)
        old_status = self.apply_transition(order, new_status, TransitionSource.party)

        if new_status == OrderStatus.cancelled:
            # 付款前取消：未完成的付款意圖直接放棄，不需要補償
            from app.services.escrow_service import EscrowService
            await EscrowService(self.db).abandon_pending_for_order(order.order_id)

        await commit_or_rollback(self.db)

        await self.notification_service.notify(
            "order_status_changed",
            order.other_party(actor.user_id),
            {"order_id": order.order_id, "from": old_status.value, "to": new_status.value},
            link_url=f"/orders/{order.order_id}"
        )
        return await self.order_repo.get_order_by_id(order_id)

    # --- 訂單訊息 ---
    async def record_message(self, order_id: str, sender: User, text: str) -> Order:
        """
        雙方都可以留言，不限訂單狀態 (完成 / 取消後仍可以追蹤溝通)
        """
        order = await self.get_order_for_party(order_id, sender)
        self.order_repo.add_message(order.order_id, sender.user_id, text)
        await commit_or_rollback(self.db)

        await self.notification_service.notify(
            "order_message",
            order.other_party(sender.user_id),
            {"order_id": order.order_id, "preview": text[:30]},
            link_url=f"/orders/{order.order_id}"
        )
        return await self.order_repo.get_order_by_id(order_id)

    # --- 評價 ---
    async def rate(self, order_id: str, client: User, data: OrderRatingCreate) -> Order:
        order = await self.order_repo.get_order_by_id(order_id, for_update=True)
        if not order:
            raise OrderNotFound()
        if order.client_id != client.user_id:
            raise NotAuthorized("只有買家可以評價此訂單")
        if order.status != OrderStatus.completed:
            raise NotCompleted()
        if order.is_rated:
            raise AlreadyRated()

        order.rating_score = data.score
        order.rating_review = data.review
        order.rated_at = utcnow()
        await self.gig_repo.update_aggregate_rating(order.gig_id, data.score)
        await commit_or_rollback(self.db)

        await self.notification_service.notify(
            "order_rated",
            order.freelancer_id,
            {"order_id": order.order_id, "score": data.score},
            link_url=f"/orders/{order.order_id}"
        )
        return await self.order_repo.get_order_by_id(order_id)

    # --- 修改 / 交付 ---
    async def request_revision(self, order_id: str, client: User) -> Order:
        order = await self.order_repo.get_order_by_id(order_id, for_update=True)
        if not order:
            raise OrderNotFound()
        if order.client_id != client.user_id:
            raise NotAuthorized("只有買家可以要求修改")
        if order.status != OrderStatus.in_progress:
            raise OrderNotInProgress()
        if order.revisions_requested >= order.revisions_max_allowed:
            raise RevisionLimitReached()

        order.revisions_requested += 1
        await commit_or_rollback(self.db)

        await self.notification_service.notify(
            "order_revision_requested",
            order.freelancer_id,
            {"order_id": order.order_id, "requested": order.revisions_requested},
            link_url=f"/orders/{order.order_id}"
        )
        return await self.order_repo.get_order_by_id(order_id)

    async def add_deliverable(self, order_id: str, freelancer: User, data: DeliverableCreate) -> Order:
        order = await self.order_repo.get_order_by_id(order_id, for_update=True)
        if not order:
            raise OrderNotFound()
        if order.freelancer_id != freelancer.user_id:
            raise NotAuthorized("只有工作者可以提交交付物")
        if order.status != OrderStatus.in_progress:
            raise OrderNotInProgress()

        self.order_repo.add_deliverable(order.order_id, data.title, data.description, data.file_url)
        # 有待處理的修改要求時，這次交付視為完成一次修改
        if order.revisions_requested > order.revisions_completed:
            order.revisions_completed += 1
        # 只新增子紀錄時訂單本身沒有變更，手動更新時間讓版本號一起前進
        order.updated_at = utcnow()
        await commit_or_rollback(self.db)

        await self.notification_service.notify(
            "order_delivered",
            order.client_id,
            {"order_id": order.order_id, "title": data.title},
            link_url=f"/orders/{order.order_id}"
        )
        return await self.order_repo.get_order_by_id(order_id)
