"""Pytest configuration and shared fixtures."""

from decimal import Decimal

import pytest

from cermin.gateway._mockpay import MockPay
from cermin.infra.sql import make_async_engine
from cermin.model.db import Base
from cermin.model.events import put_event
from cermin.model.orders import OrderStore, ParticipantInput
from cermin.notifier import Notifier
from cermin.reconcile import ReconciliationEngine

MOCK_SECRET = "test-secret"
EVENT_ID = "evt-cermin-fest"


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    async def send_ticket(self, order, participant, event, ticket, payment):
        self.sent.append((order, participant, event, ticket, payment))


class FailingNotifier(Notifier):
    def __init__(self):
        self.calls = 0

    async def send_ticket(self, order, participant, event, ticket, payment):
        self.calls += 1
        raise RuntimeError("smtp down")


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cermin-test.db'}"


@pytest.fixture
async def sql(database_url):
    engine, SessionAsync, gated = make_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with SessionAsync() as db:
        async with db.begin():
            await put_event(db, EVENT_ID, "Cermin Fest", Decimal("49000"),
                            location="Jakarta")
    yield SessionAsync, gated
    await engine.dispose()


@pytest.fixture
async def db(sql):
    SessionAsync, _ = sql
    async with SessionAsync() as session:
        yield session


@pytest.fixture
async def orders(sql):
    SessionAsync, gated = sql
    async with SessionAsync() as session:
        yield OrderStore(db=session, gated=gated)


@pytest.fixture
def mockpay() -> MockPay:
    return MockPay(secret=MOCK_SECRET)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
async def make_engine(sql, mockpay):
    """Build a reconciliation engine on a fresh session, one per delivery."""
    SessionAsync, gated = sql
    sessions = []

    def _make(notifier):
        session = SessionAsync()
        sessions.append(session)
        return ReconciliationEngine(db=session, gated=gated, adapter=mockpay,
                                    notifier=notifier)

    yield _make
    for session in sessions:
        await session.close()


@pytest.fixture
async def pending_order(orders):
    return await orders.create_order(
        EVENT_ID,
        ParticipantInput(name="Sari", email="Sari@Example.com",
                         phone="0812000111"),
    )


def signed(mockpay: MockPay, order_id: str, status: str, amount: int = 50000,
           fraud_status=None, transaction_id="mock_txn_1"):
    body = mockpay.build_notification(order_id, status, amount,
                                      transaction_id=transaction_id,
                                      fraud_status=fraud_status)
    return body, {"x-mockpay-signature": mockpay.sign(body)}
