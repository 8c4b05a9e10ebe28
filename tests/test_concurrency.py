import pytest

from app.core.database import commit_or_rollback
from app.core.exceptions import ConcurrentModification
from app.models.dispute import DisputeStatus, DisputeType
from app.models.order import OrderStatus
from app.models.payment import PaymentStatus
from app.repositories.dispute_repo import DisputeRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.payment_repo import PaymentRepository
from app.services.dispute_service import DisputeService
from app.services.escrow_service import EscrowService
from app.services.order_service import OrderService, TransitionSource


async def test_stale_order_write_is_rejected(db, session_factory, users, escrowed_order):
    order_id = escrowed_order["order_id"]
    stale = await OrderRepository(db).get_order_by_id(order_id)

    # 另一個請求先把訂單標記完成
    async with session_factory() as other:
        await OrderService(other).transition_status(order_id, OrderStatus.completed, users["freelancer"])

    OrderService(db).apply_transition(stale, OrderStatus.disputed, TransitionSource.dispute)
    with pytest.raises(ConcurrentModification) as exc_info:
        await commit_or_rollback(db)

    assert exc_info.value.status_code == 409
    order = await OrderRepository(db).get_order_by_id(order_id)
    assert order.status == OrderStatus.completed


async def test_stale_payment_write_is_rejected(db, session_factory, users, processor, escrowed_order):
    payment_id = escrowed_order["payment_id"]
    stale = await PaymentRepository(db).get_payment_by_id(payment_id)

    async with session_factory() as other:
        await EscrowService(other, processor).release_escrow(payment_id, users["client"])

    stale.status = PaymentStatus.refunded
    with pytest.raises(ConcurrentModification):
        await commit_or_rollback(db)

    payment = await PaymentRepository(db).get_payment_by_id(payment_id)
    assert payment.status == PaymentStatus.completed


async def test_resolve_and_close_cannot_both_win(db, session_factory, users, processor, escrowed_order):
    dispute = await DisputeService(db, processor).open_dispute(
        escrowed_order["order_id"], users["client"], DisputeType.quality, "The logo ignores the brief"
    )
    dispute_id = dispute.dispute_id
    stale = await DisputeRepository(db).get_dispute_by_id(dispute_id)

    async with session_factory() as other:
        await DisputeService(other, processor).close(dispute_id, users["admin"])

    stale.status = DisputeStatus.resolved
    with pytest.raises(ConcurrentModification):
        await commit_or_rollback(db)

    dispute = await DisputeRepository(db).get_dispute_by_id(dispute_id)
    assert dispute.status == DisputeStatus.closed
    assert dispute.resolution is None
