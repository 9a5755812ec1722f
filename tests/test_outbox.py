import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from boletrics_payments.database import Base
from boletrics_payments.errors import GatewayError, ServerApiError
from boletrics_payments.models import Effect, OutboxEntry
from boletrics_payments.outbox import Outbox
from conftest import FakeGateway, FakeTickets

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_outbox.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def outbox():
    return Outbox(TestingSessionLocal)


def age_entry(entry_id, seconds):
    db = TestingSessionLocal()
    entry = db.get(OutboxEntry, entry_id)
    entry.created_at = datetime.now(timezone.utc) - timedelta(seconds=seconds)
    db.commit()
    db.close()


def test_record_and_list_pending(outbox):
    entry_id = outbox.record(
        Effect.GENERATE_TICKETS, "X", event_id="evt_1", error="Request failed: 500"
    )

    [entry] = outbox.pending()
    assert entry["id"] == entry_id
    assert entry["effect"] == "generate_tickets"
    assert entry["order_id"] == "X"
    assert entry["event_id"] == "evt_1"
    assert entry["status"] == "pending"
    assert entry["attempts"] == 0
    assert entry["last_error"] == "Request failed: 500"


def test_record_swallows_database_errors(mocker):
    broken = mocker.Mock()
    broken.return_value.commit.side_effect = OperationalError("INSERT", {}, Exception("disk full"))

    assert Outbox(broken).record(Effect.CANCEL_TICKETS, "X") is None
    broken.return_value.rollback.assert_called_once()
    broken.return_value.close.assert_called_once()


@pytest.mark.anyio
async def test_replay_reissues_effects_and_marks_them_done(outbox):
    outbox.record(Effect.UPDATE_ORDER, "X", payload={"status": "paid", "payment_method": "card"})
    outbox.record(Effect.GENERATE_TICKETS, "X")
    outbox.record(Effect.RELEASE_INVENTORY, "Y")
    outbox.record(Effect.CANCEL_TICKETS, "Z")
    tickets = FakeTickets()

    report = await outbox.replay(tickets)

    assert len(report.succeeded) == 4
    assert tickets.calls == [
        ("update_order", "X", {"status": "paid", "payment_method": "card"}),
        ("generate_tickets", "X"),
        ("release_inventory", "Y"),
        ("cancel_tickets", "Z"),
    ]
    assert outbox.pending() == []


@pytest.mark.anyio
async def test_failed_replay_keeps_entry_pending(outbox):
    entry_id = outbox.record(Effect.GENERATE_TICKETS, "X")
    tickets = FakeTickets(fail={"generate_tickets": ServerApiError("Request failed: 503", status=503)})

    report = await outbox.replay(tickets)

    assert report.failed == [entry_id]
    [entry] = outbox.pending()
    assert entry["attempts"] == 1
    assert entry["last_error"] == "Request failed: 503"


@pytest.mark.anyio
async def test_young_orphans_are_skipped(outbox):
    entry_id = outbox.record(Effect.EXPIRE_ORPHAN, "X", payload={"payment_order_id": None})
    tickets = FakeTickets()

    report = await outbox.replay(tickets, orphan_ttl=1800)

    assert report.skipped == [entry_id]
    assert tickets.calls == []


@pytest.mark.anyio
async def test_old_orphans_are_cancelled_on_both_sides(outbox):
    entry_id = outbox.record(Effect.EXPIRE_ORPHAN, "X", payload={"payment_order_id": "ord_conekta_1"})
    age_entry(entry_id, 3600)
    tickets = FakeTickets()
    gateway = FakeGateway()

    report = await outbox.replay(tickets, gateway, orphan_ttl=1800)

    assert report.succeeded == [entry_id]
    assert gateway.calls == [("cancel_order", "ord_conekta_1")]
    assert tickets.calls == [
        ("update_order", "X", {"status": "cancelled"}),
        ("release_inventory", "X"),
    ]


@pytest.mark.anyio
async def test_orphan_remote_cancel_failure_is_tolerated(outbox):
    entry_id = outbox.record(Effect.EXPIRE_ORPHAN, "X", payload={"payment_order_id": "ord_conekta_1"})
    age_entry(entry_id, 3600)
    tickets = FakeTickets()
    gateway = FakeGateway(fail={"cancel_order": GatewayError("Order already expired", status=422)})

    report = await outbox.replay(tickets, gateway, orphan_ttl=1800)

    assert report.succeeded == [entry_id]
    assert tickets.names() == ["update_order", "release_inventory"]


@pytest.mark.anyio
async def test_replay_keeps_session_work_off_the_event_loop():
    threads = []

    def session_factory():
        threads.append(threading.get_ident())
        return TestingSessionLocal()

    outbox = Outbox(session_factory)
    outbox.record(Effect.GENERATE_TICKETS, "X")
    threads.clear()

    report = await outbox.replay(FakeTickets())

    assert len(report.succeeded) == 1
    assert threads
    assert threading.get_ident() not in threads
    assert outbox.pending() == []
