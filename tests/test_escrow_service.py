from decimal import Decimal

import pytest
import pytest_asyncio

from app.core.exceptions import (
    AlreadyPaid, InvalidTransition, NotAdmin, NotAuthorized, NotInEscrow,
    NotOrderOwner, NotRefundable, PaymentDeclined, PaymentNotPending,
    PaymentNotSucceeded, PaymentProcessorUnavailable
)
from app.models.order import OrderStatus
from app.models.payment import PaymentStatus
from app.repositories.order_repo import OrderRepository
from app.repositories.payment_repo import PaymentRepository
from app.services.dispute_service import DisputeService
from app.services.escrow_service import EscrowService
from app.services.order_service import OrderService
from app.services.payment_processor import ChargeStatus
from app.models.dispute import DisputeType


@pytest_asyncio.fixture
async def pending_order(db, users, order_data):
    order = await OrderService(db).place_order(order_data, users["client"])
    return order.order_id


async def _order_status(db, order_id):
    order = await OrderRepository(db).get_order_by_id(order_id)
    return order.status


async def test_initiate_and_confirm_escrow_for_500_gig(db, users, processor, pending_order):
    escrow = EscrowService(db, processor)

    intent = await escrow.initiate_escrow(pending_order, users["client"], request_id="req-1")
    assert intent.amount == Decimal("500.00")
    assert intent.platform_fee == Decimal("50.00")
    assert intent.total_charge == Decimal("550.00")
    assert intent.client_handle.endswith("_secret")
    # the buyer is charged amount + fee
    assert processor.create_calls[0]["amount"] == Decimal("550.00")

    payment = await escrow.payment_repo.get_payment_by_id(intent.payment_id)
    assert payment.status == PaymentStatus.pending
    assert payment.freelancer_amount == Decimal("450.00")
    assert payment.platform_fee + payment.freelancer_amount == payment.amount

    processor.settle(payment.processor_intent_id)
    payment = await escrow.confirm_escrow(intent.payment_id, payment.processor_intent_id, users["client"])

    assert payment.status == PaymentStatus.processing
    assert payment.processor_charge_id is not None
    assert await _order_status(db, pending_order) == OrderStatus.in_progress


async def test_only_order_client_can_pay(db, users, processor, pending_order):
    with pytest.raises(NotOrderOwner):
        await EscrowService(db, processor).initiate_escrow(pending_order, users["freelancer"])


async def test_second_escrow_while_processing_is_rejected(db, users, processor, escrowed_order):
    with pytest.raises(AlreadyPaid):
        await EscrowService(db, processor).initiate_escrow(escrowed_order["order_id"], users["client"])

    payments = await PaymentRepository(db).list_payments_for_order(escrowed_order["order_id"])
    assert len(payments) == 1


async def test_retried_request_reuses_payment(db, users, processor, pending_order):
    escrow = EscrowService(db, processor)

    first = await escrow.initiate_escrow(pending_order, users["client"], request_id="same")
    second = await escrow.initiate_escrow(pending_order, users["client"], request_id="same")

    assert first.payment_id == second.payment_id
    assert first.client_handle == second.client_handle
    assert len(await escrow.payment_repo.list_payments_for_order(pending_order)) == 1


async def test_new_request_while_pending_is_rejected(db, users, processor, pending_order):
    escrow = EscrowService(db, processor)
    await escrow.initiate_escrow(pending_order, users["client"], request_id="a")

    with pytest.raises(AlreadyPaid):
        await escrow.initiate_escrow(pending_order, users["client"], request_id="b")


async def test_confirm_twice_is_idempotent(db, users, processor, escrowed_order):
    escrow = EscrowService(db, processor)
    payment = await escrow.payment_repo.get_payment_by_id(escrowed_order["payment_id"])

    again = await escrow.confirm_escrow(payment.payment_id, payment.processor_intent_id, users["client"])

    assert again.status == PaymentStatus.processing
    assert await _order_status(db, escrowed_order["order_id"]) == OrderStatus.in_progress
    notifications = await escrow.notification_service.get_my_notifications(users["freelancer"])
    assert [n.kind for n in notifications].count("payment_held") == 1


async def test_confirm_before_charge_succeeds(db, users, processor, pending_order):
    escrow = EscrowService(db, processor)
    intent = await escrow.initiate_escrow(pending_order, users["client"])
    payment = await escrow.payment_repo.get_payment_by_id(intent.payment_id)

    with pytest.raises(PaymentNotSucceeded):
        await escrow.confirm_escrow(intent.payment_id, payment.processor_intent_id, users["client"])

    payment = await escrow.payment_repo.get_payment_by_id(intent.payment_id)
    assert payment.status == PaymentStatus.pending
    assert await _order_status(db, pending_order) == OrderStatus.pending


async def test_canceled_charge_fails_payment(db, users, processor, pending_order):
    escrow = EscrowService(db, processor)
    intent = await escrow.initiate_escrow(pending_order, users["client"])
    payment = await escrow.payment_repo.get_payment_by_id(intent.payment_id)
    processor.settle(payment.processor_intent_id, ChargeStatus.failed)

    with pytest.raises(PaymentNotSucceeded):
        await escrow.confirm_escrow(intent.payment_id, payment.processor_intent_id, users["client"])

    payment = await escrow.payment_repo.get_payment_by_id(intent.payment_id)
    assert payment.status == PaymentStatus.failed


async def test_confirm_with_wrong_charge_id(db, users, processor, pending_order):
    escrow = EscrowService(db, processor)
    intent = await escrow.initiate_escrow(pending_order, users["client"])

    with pytest.raises(PaymentNotSucceeded):
        await escrow.confirm_escrow(intent.payment_id, "pi_someone_else", users["client"])


async def test_transient_errors_are_retried(db, users, processor, pending_order):
    processor.transient_failures = 2

    intent = await EscrowService(db, processor).initiate_escrow(pending_order, users["client"], request_id="r")

    assert intent.payment_id
    assert len(processor.create_calls) == 3
    assert len({call["key"] for call in processor.create_calls}) == 1


async def test_processor_down_leaves_no_payment(db, users, processor, pending_order):
    processor.transient_failures = 10
    escrow = EscrowService(db, processor)

    with pytest.raises(PaymentProcessorUnavailable):
        await escrow.initiate_escrow(pending_order, users["client"])

    assert await escrow.payment_repo.list_payments_for_order(pending_order) == []


async def test_declined_card(db, users, processor, pending_order):
    processor.decline = True
    escrow = EscrowService(db, processor)

    with pytest.raises(PaymentDeclined):
        await escrow.initiate_escrow(pending_order, users["client"])

    assert await escrow.payment_repo.list_payments_for_order(pending_order) == []


async def test_release_completes_payment_and_order(db, users, processor, escrowed_order):
    escrow = EscrowService(db, processor)

    payment = await escrow.release_escrow(escrowed_order["payment_id"], users["client"])

    assert payment.status == PaymentStatus.completed
    assert payment.completed_at is not None
    order = await OrderRepository(db).get_order_by_id(escrowed_order["order_id"])
    assert order.status == OrderStatus.completed
    assert order.completed_date is not None


async def test_release_keeps_existing_completion(db, users, processor, escrowed_order):
    order = await OrderService(db).transition_status(
        escrowed_order["order_id"], OrderStatus.completed, users["freelancer"]
    )
    completed_date = order.completed_date

    await EscrowService(db, processor).release_escrow(escrowed_order["payment_id"], users["client"])

    order = await OrderRepository(db).get_order_by_id(escrowed_order["order_id"])
    assert order.completed_date == completed_date


async def test_freelancer_cannot_release(db, users, processor, escrowed_order):
    with pytest.raises(NotAuthorized):
        await EscrowService(db, processor).release_escrow(escrowed_order["payment_id"], users["freelancer"])


async def test_release_requires_funds_in_escrow(db, users, processor, pending_order):
    escrow = EscrowService(db, processor)
    intent = await escrow.initiate_escrow(pending_order, users["client"])

    with pytest.raises(NotInEscrow):
        await escrow.release_escrow(intent.payment_id, users["client"])


async def test_release_blocked_while_disputed(db, users, processor, escrowed_order):
    await DisputeService(db, processor).open_dispute(
        escrowed_order["order_id"], users["client"], DisputeType.quality, "Work does not match the brief"
    )

    with pytest.raises(InvalidTransition):
        await EscrowService(db, processor).release_escrow(escrowed_order["payment_id"], users["client"])

    payment = await PaymentRepository(db).get_payment_by_id(escrowed_order["payment_id"])
    assert payment.status == PaymentStatus.processing


async def test_refund_blocked_while_disputed(db, users, processor, escrowed_order):
    await DisputeService(db, processor).open_dispute(
        escrowed_order["order_id"], users["client"], DisputeType.quality, "Work does not match the brief"
    )

    with pytest.raises(InvalidTransition) as exc_info:
        await EscrowService(db, processor).refund(escrowed_order["payment_id"], "Want my money", users["client"])

    assert exc_info.value.status_code == 409
    assert exc_info.value.detail["current_status"] == "disputed"
    assert exc_info.value.detail["requested_status"] == "cancelled"
    assert processor.refunds == []
    payment = await PaymentRepository(db).get_payment_by_id(escrowed_order["payment_id"])
    assert payment.status == PaymentStatus.processing


async def test_refund_cancels_order(db, users, processor, escrowed_order):
    escrow = EscrowService(db, processor)

    payment = await escrow.refund(escrowed_order["payment_id"], "Freelancer never started", users["client"])

    assert payment.status == PaymentStatus.refunded
    assert payment.refund_amount == Decimal("550.00")
    assert payment.refunded_at is not None
    assert processor.refunds[0]["key"] == f"refund:{payment.payment_id}"
    assert await _order_status(db, escrowed_order["order_id"]) == OrderStatus.cancelled


async def test_refund_requires_captured_funds(db, users, processor, pending_order):
    escrow = EscrowService(db, processor)
    intent = await escrow.initiate_escrow(pending_order, users["client"])

    with pytest.raises(NotRefundable):
        await escrow.refund(intent.payment_id, "Changed my mind entirely", users["client"])
    assert processor.refunds == []


async def test_abandon_pending_payment_allows_new_attempt(db, users, processor, pending_order):
    escrow = EscrowService(db, processor)
    intent = await escrow.initiate_escrow(pending_order, users["client"], request_id="first")

    payment = await escrow.abandon_escrow(intent.payment_id, users["client"])
    assert payment.status == PaymentStatus.failed

    retry = await escrow.initiate_escrow(pending_order, users["client"], request_id="second")
    assert retry.payment_id != intent.payment_id


async def test_abandon_requires_pending(db, users, processor, escrowed_order):
    with pytest.raises(PaymentNotPending):
        await EscrowService(db, processor).abandon_escrow(escrowed_order["payment_id"], users["client"])


async def test_chargeback_is_admin_only(db, users, processor, escrowed_order):
    escrow = EscrowService(db, processor)

    with pytest.raises(NotAdmin):
        await escrow.flag_chargeback(escrowed_order["payment_id"], "bank dispute", users["client"])

    payment = await escrow.flag_chargeback(escrowed_order["payment_id"], "bank dispute", users["admin"])
    assert payment.status == PaymentStatus.disputed
    assert payment.dispute_reason == "bank dispute"


async def test_stranger_cannot_read_payment(db, users, processor, escrowed_order):
    escrow = EscrowService(db, processor)

    with pytest.raises(NotAuthorized):
        await escrow.get_payment_details(escrowed_order["payment_id"], users["stranger"])

    mine = await escrow.get_my_payments(users["freelancer"])
    assert [p.payment_id for p in mine] == [escrowed_order["payment_id"]]


def test_estimate_uses_escrow_split():
    split = EscrowService.estimate_fees(Decimal("500"))
    assert (split.platform_fee, split.total_charge) == (Decimal("50.00"), Decimal("550.00"))
