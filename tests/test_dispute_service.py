import io
from decimal import Decimal

import pytest
import pytest_asyncio
from fastapi import UploadFile
from starlette.datastructures import Headers

from app.core.exceptions import (
    AlreadyTerminal, DuplicateDispute, InvalidPartialAmount, InvalidResolution,
    InvalidTransition, NotAdmin, NotAuthorized, NotDisputeParty, NotOrderParty,
    OrderNotDisputable
)
from app.models.dispute import DisputeStatus, DisputeType, EvidenceType
from app.models.order import OrderStatus
from app.models.payment import PaymentStatus
from app.repositories.order_repo import OrderRepository
from app.repositories.payment_repo import PaymentRepository
from app.services import evidence_storage
from app.services.dispute_service import DisputeService
from app.services.escrow_service import EscrowService
from app.services.notification_service import NotificationService
from app.services.order_service import OrderService

REASON = "The delivered logo ignores the agreed brief"


@pytest_asyncio.fixture
async def open_dispute(db, users, processor, escrowed_order):
    dispute = await DisputeService(db, processor).open_dispute(
        escrowed_order["order_id"], users["client"], DisputeType.quality, REASON
    )
    return {**escrowed_order, "dispute_id": dispute.dispute_id}


async def _order(db, order_id):
    return await OrderRepository(db).get_order_by_id(order_id)


async def _payment(db, payment_id):
    return await PaymentRepository(db).get_payment_by_id(payment_id)


async def test_open_dispute_suspends_order(db, users, processor, escrowed_order):
    dispute = await DisputeService(db, processor).open_dispute(
        escrowed_order["order_id"], users["client"], DisputeType.quality, REASON
    )

    assert dispute.status == DisputeStatus.open
    assert dispute.respondent_id == users["freelancer"].user_id
    assert (await _order(db, escrowed_order["order_id"])).status == OrderStatus.disputed
    notifications = await NotificationService(db).get_my_notifications(users["freelancer"])
    assert "dispute_opened" in [n.kind for n in notifications]


async def test_only_parties_can_open(db, users, processor, escrowed_order):
    with pytest.raises(NotOrderParty):
        await DisputeService(db, processor).open_dispute(
            escrowed_order["order_id"], users["stranger"], DisputeType.other, REASON
        )


async def test_one_active_dispute_per_order(db, users, processor, open_dispute):
    with pytest.raises(DuplicateDispute):
        await DisputeService(db, processor).open_dispute(
            open_dispute["order_id"], users["freelancer"], DisputeType.payment, REASON
        )


async def test_cancelled_order_is_not_disputable(db, users, processor, order_data):
    order_service = OrderService(db)
    order = await order_service.place_order(order_data, users["client"])
    await order_service.transition_status(order.order_id, OrderStatus.cancelled, users["client"])

    with pytest.raises(OrderNotDisputable):
        await DisputeService(db, processor).open_dispute(
            order.order_id, users["client"], DisputeType.other, REASON
        )


async def test_full_refund_resolution(db, users, processor, open_dispute):
    dispute = await DisputeService(db, processor).resolve(
        open_dispute["dispute_id"], "refund_full", "Refund approved", users["admin"]
    )

    assert dispute.status == DisputeStatus.resolved
    assert dispute.resolved_at is not None
    assert dispute.assigned_admin_id == users["admin"].user_id
    payment = await _payment(db, open_dispute["payment_id"])
    assert payment.status == PaymentStatus.refunded
    assert len(processor.refunds) == 1
    assert processor.refunds[0]["amount"] is None
    assert (await _order(db, open_dispute["order_id"])).status == OrderStatus.cancelled


async def test_resolving_twice_is_rejected(db, users, processor, open_dispute):
    service = DisputeService(db, processor)
    await service.resolve(open_dispute["dispute_id"], "continue_work", None, users["admin"])

    with pytest.raises(AlreadyTerminal):
        await service.resolve(open_dispute["dispute_id"], "refund_full", None, users["admin"])
    assert processor.refunds == []


async def test_only_admin_resolves(db, users, processor, open_dispute):
    with pytest.raises(NotAdmin):
        await DisputeService(db, processor).resolve(
            open_dispute["dispute_id"], "refund_full", None, users["client"]
        )


async def test_unknown_resolution(db, users, processor, open_dispute):
    with pytest.raises(InvalidResolution):
        await DisputeService(db, processor).resolve(
            open_dispute["dispute_id"], "split_the_difference", None, users["admin"]
        )


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5"), Decimal("500.01"), None])
async def test_partial_refund_amount_bounds(db, users, processor, open_dispute, amount):
    with pytest.raises(InvalidPartialAmount):
        await DisputeService(db, processor).resolve(
            open_dispute["dispute_id"], "refund_partial", None, users["admin"], refund_amount=amount
        )
    assert processor.refunds == []


async def test_partial_refund_resumes_work(db, users, processor, open_dispute):
    dispute = await DisputeService(db, processor).resolve(
        open_dispute["dispute_id"], "refund_partial", "Half of the logo pack was missing",
        users["admin"], refund_amount=Decimal("100")
    )

    assert dispute.refund_amount == Decimal("100.00")
    payment = await _payment(db, open_dispute["payment_id"])
    assert payment.status == PaymentStatus.refunded
    assert payment.refund_amount == Decimal("100.00")
    assert processor.refunds[0]["amount"] == Decimal("100.00")
    assert (await _order(db, open_dispute["order_id"])).status == OrderStatus.in_progress


async def test_partial_refund_needs_captured_payment(db, users, processor, order_data):
    order = await OrderService(db).place_order(order_data, users["client"])
    service = DisputeService(db, processor)
    dispute = await service.open_dispute(order.order_id, users["freelancer"], DisputeType.payment, REASON)

    with pytest.raises(InvalidResolution):
        await service.resolve(dispute.dispute_id, "refund_partial", None, users["admin"], Decimal("10"))


async def test_revision_resolution_counts_revision(db, users, processor, open_dispute):
    await DisputeService(db, processor).resolve(
        open_dispute["dispute_id"], "revision", "Freelancer should fix the colours", users["admin"]
    )

    order = await _order(db, open_dispute["order_id"])
    assert order.status == OrderStatus.in_progress
    assert order.revisions_requested == 1


async def test_cancel_resolution_abandons_unpaid_order(db, users, processor, order_data):
    order = await OrderService(db).place_order(order_data, users["client"])
    intent = await EscrowService(db, processor).initiate_escrow(order.order_id, users["client"])
    service = DisputeService(db, processor)
    dispute = await service.open_dispute(order.order_id, users["client"], DisputeType.delivery, REASON)

    await service.resolve(dispute.dispute_id, "cancelled", None, users["admin"])

    assert (await _order(db, order.order_id)).status == OrderStatus.cancelled
    assert (await _payment(db, intent.payment_id)).status == PaymentStatus.failed
    assert processor.refunds == []


async def test_cancel_resolution_refunds_captured_payment(db, users, processor, open_dispute):
    await DisputeService(db, processor).resolve(
        open_dispute["dispute_id"], "cancelled", "Work never started", users["admin"]
    )

    assert (await _order(db, open_dispute["order_id"])).status == OrderStatus.cancelled
    payment = await _payment(db, open_dispute["payment_id"])
    assert payment.status == PaymentStatus.refunded
    assert payment.refund_amount == Decimal("550.00")
    assert processor.refunds[0]["amount"] is None


async def test_close_leaves_order_disputed(db, users, processor, open_dispute):
    service = DisputeService(db, processor)

    dispute = await service.close(open_dispute["dispute_id"], users["admin"])

    assert dispute.status == DisputeStatus.closed
    assert dispute.closed_at is not None
    assert (await _order(db, open_dispute["order_id"])).status == OrderStatus.disputed
    assert (await _payment(db, open_dispute["payment_id"])).status == PaymentStatus.processing
    with pytest.raises(AlreadyTerminal):
        await service.close(open_dispute["dispute_id"], users["admin"])


async def test_start_review_assigns_admin(db, users, processor, open_dispute):
    service = DisputeService(db, processor)

    dispute = await service.start_review(open_dispute["dispute_id"], users["admin"])
    assert dispute.status == DisputeStatus.under_review
    assert dispute.assigned_admin_id == users["admin"].user_id

    with pytest.raises(InvalidTransition):
        await service.start_review(open_dispute["dispute_id"], users["admin"])


async def test_evidence_rules(db, users, processor, open_dispute):
    service = DisputeService(db, processor)
    dispute_id = open_dispute["dispute_id"]

    dispute = await service.add_evidence(
        dispute_id, EvidenceType.message, "Chat log where the brief was agreed", None, users["client"]
    )
    assert [e.uploaded_by for e in dispute.evidence] == [users["client"].user_id]

    with pytest.raises(NotDisputeParty):
        await service.add_evidence(dispute_id, EvidenceType.other, "Not my business", None, users["stranger"])

    await service.resolve(dispute_id, "continue_work", None, users["admin"])
    with pytest.raises(AlreadyTerminal):
        await service.add_evidence(dispute_id, EvidenceType.other, "Too late", None, users["freelancer"])


async def test_upload_evidence_file(db, users, processor, open_dispute, tmp_path, monkeypatch):
    monkeypatch.setattr(evidence_storage, "UPLOAD_DIR", tmp_path)
    upload = UploadFile(
        file=io.BytesIO(b"\x89PNG fake image"),
        filename="proof.png",
        headers=Headers({"content-type": "image/png"}),
    )

    dispute = await DisputeService(db, processor).upload_evidence_file(
        open_dispute["dispute_id"], upload, "Screenshot of the brief", users["freelancer"]
    )

    evidence = dispute.evidence[0]
    assert evidence.type == EvidenceType.screenshot
    assert evidence.file_url.startswith(evidence_storage.UPLOAD_URL_PREFIX)
    assert len(list(tmp_path.iterdir())) == 1


async def test_dispute_messages(db, users, processor, open_dispute):
    service = DisputeService(db, processor)
    dispute_id = open_dispute["dispute_id"]

    await service.add_message(dispute_id, users["freelancer"], "I followed the brief exactly")
    dispute = await service.add_message(dispute_id, users["admin"], "Please both upload the brief")

    assert [m.is_admin for m in dispute.messages] == [False, True]
    with pytest.raises(NotAuthorized):
        await service.add_message(dispute_id, users["stranger"], "hello")


async def test_dispute_listings(db, users, processor, open_dispute):
    service = DisputeService(db, processor)

    mine = await service.get_my_disputes(users["freelancer"])
    assert [d.dispute_id for d in mine] == [open_dispute["dispute_id"]]
    assert await service.get_my_disputes(users["stranger"]) == []

    with pytest.raises(NotAdmin):
        await service.list_all_disputes(users["client"])
    everything = await service.list_all_disputes(users["admin"], status=DisputeStatus.open)
    assert len(everything) == 1
