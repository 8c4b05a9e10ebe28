import os
import sys
import uuid
from datetime import timedelta
from decimal import Decimal

# 設定必須在匯入 app 之前準備好
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("PROCESSOR_RETRY_DELAY_SECONDS", "0")

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.models.user import User, UserRoleEnum
from app.models.gig import Gig
from app.models import order, payment, dispute, notification  # noqa: F401 (註冊資料表)
from app.schemas.order_schema import OrderCreate
from app.services.payment_processor import (
    ChargeInfo, ChargeResult, ChargeStatus, PaymentProcessor,
    ProcessorDeclinedError, ProcessorTransientError
)
from app.utils.time_utils import utcnow


class FakePaymentProcessor(PaymentProcessor):
    """
    測試用金流：同一個 idempotency key 永遠回傳同一筆 charge，
    charge 預設為 pending，測試中用 settle() 模擬買家完成付款。
    """

    def __init__(self):
        self.charges = {}
        self.create_calls = []
        self.refunds = []
        self.transient_failures = 0
        self.decline = False

    async def create_charge(self, amount, currency, metadata, idempotency_key):
        self.create_calls.append({"amount": amount, "currency": currency, "key": idempotency_key})
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise ProcessorTransientError("connection reset")
        if self.decline:
            raise ProcessorDeclinedError("card declined")
        charge_id = f"pi_{uuid.uuid5(uuid.NAMESPACE_URL, idempotency_key).hex[:16]}"
        self.charges.setdefault(charge_id, {"amount": amount, "status": ChargeStatus.pending})
        return ChargeResult(charge_id=charge_id, client_handle=f"{charge_id}_secret")

    async def retrieve_charge(self, charge_id):
        charge = self.charges[charge_id]
        return ChargeInfo(charge_id=charge_id, status=charge["status"], charge_reference=f"ch_{charge_id[3:]}")

    async def create_refund(self, charge_id, reason, idempotency_key, amount=None):
        if self.transient_failures > 0:
            self.transient_failures -= 1
            raise ProcessorTransientError("timeout")
        self.refunds.append({"charge_id": charge_id, "amount": amount, "key": idempotency_key})
        return f"re_{len(self.refunds)}"

    def settle(self, charge_id, status=ChargeStatus.succeeded):
        self.charges[charge_id]["status"] = status


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def users(session_factory):
    """
    以獨立的 session 建立使用者後關閉，
    回傳的 User 與測試用的 session 無關，不會因為 rollback 而失效。
    """
    def make(role, name):
        return User(
            user_id=str(uuid.uuid4()),
            email=f"{name}@example.com",
            username=name,
            role=role,
            is_active=True,
        )

    created = {
        "client": make(UserRoleEnum.client, "client"),
        "freelancer": make(UserRoleEnum.freelancer, "freelancer"),
        "admin": make(UserRoleEnum.admin, "admin"),
        "stranger": make(UserRoleEnum.client, "stranger"),
    }
    async with session_factory() as session:
        session.add_all(created.values())
        await session.commit()
    return created


@pytest_asyncio.fixture
async def gig(session_factory, users):
    new_gig = Gig(
        gig_id=str(uuid.uuid4()),
        freelancer_id=users["freelancer"].user_id,
        title="Logo design",
        price=Decimal("500.00"),
        revisions=2,
        is_active=True,
    )
    async with session_factory() as session:
        session.add(new_gig)
        await session.commit()
    return new_gig


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def processor():
    return FakePaymentProcessor()


@pytest.fixture
def order_data(gig) -> OrderCreate:
    return OrderCreate(
        gig_id=gig.gig_id,
        requirements="Need a minimalist logo for a coffee shop",
        delivery_date=utcnow() + timedelta(days=7),
    )


@pytest_asyncio.fixture
async def escrowed_order(db, users, order_data, processor):
    """已付款、款項託管中的訂單 (order in-progress, payment processing)"""
    from app.services.escrow_service import EscrowService
    from app.services.order_service import OrderService

    new_order = await OrderService(db).place_order(order_data, users["client"])
    escrow = EscrowService(db, processor)
    intent = await escrow.initiate_escrow(new_order.order_id, users["client"], request_id="req-1")
    payment = await escrow.payment_repo.get_payment_by_id(intent.payment_id)
    processor.settle(payment.processor_intent_id)
    await escrow.confirm_escrow(intent.payment_id, payment.processor_intent_id, users["client"])
    return {"order_id": new_order.order_id, "payment_id": intent.payment_id}
