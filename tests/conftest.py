import os

# must be set before boletrics_payments.database is imported
os.environ["DATABASE_URL"] = "sqlite:///./test_boletrics_payments.db"
os.environ.setdefault("CONEKTA_API_KEY", "key_test")

import pytest

from boletrics_payments.conekta import CheckoutSession, PaymentOrder
from boletrics_payments.config import Settings
from boletrics_payments.tickets import TicketOrder


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(monkeypatch):
    monkeypatch.setenv("CONEKTA_API_KEY", "key_test")
    monkeypatch.setenv("APP_URL", "https://boletrics.test")
    monkeypatch.setenv("CURRENCY", "MXN")
    monkeypatch.delenv("CONEKTA_WEBHOOK_KEY", raising=False)
    monkeypatch.delenv("CHECKOUT_INSTALLMENTS", raising=False)
    monkeypatch.delenv("WEBHOOK_TOLERANCE_SECONDS", raising=False)
    monkeypatch.setenv("JWT_SECRET", "jwt_test_secret")
    return Settings()


class FakeTickets:
    """In-memory stand-in for tickets-svc that records every call."""

    def __init__(self, fail=None):
        self.fail = fail or {}
        self.calls = []
        self.orders = {}
        self._counter = 0

    def _maybe_fail(self, name):
        if name in self.fail:
            raise self.fail[name]

    async def create_order(self, order_input):
        self.calls.append(("create_order", order_input))
        self._maybe_fail("create_order")
        self._counter += 1
        order = TicketOrder(
            id=f"tkt_order_{self._counter}",
            order_number=f"BOL-{self._counter:04d}",
            email=order_input.email,
            event_id=order_input.event_id,
            organization_id=order_input.organization_id,
            status="pending",
        )
        self.orders[order.id] = order.model_dump()
        return order

    async def update_order(self, order_id, **fields):
        self.calls.append(("update_order", order_id, fields))
        self._maybe_fail("update_order")
        self.orders.setdefault(order_id, {"id": order_id}).update(fields)
        return self.orders[order_id]

    async def generate_tickets(self, order_id):
        self.calls.append(("generate_tickets", order_id))
        self._maybe_fail("generate_tickets")
        return {}

    async def release_inventory(self, order_id):
        self.calls.append(("release_inventory", order_id))
        self._maybe_fail("release_inventory")
        return {}

    async def cancel_tickets(self, order_id):
        self.calls.append(("cancel_tickets", order_id))
        self._maybe_fail("cancel_tickets")
        return {}

    def names(self):
        return [call[0] for call in self.calls]


class FakeGateway:
    """In-memory stand-in for the Conekta client."""

    def __init__(self, fail=None, amount_override=None):
        self.fail = fail or {}
        self.amount_override = amount_override
        self.calls = []
        self.created = []

    def _maybe_fail(self, name):
        if name in self.fail:
            raise self.fail[name]

    async def create_order(self, request):
        self.calls.append(("create_order", request))
        self._maybe_fail("create_order")
        amount = sum(item.unit_price * item.quantity for item in request.line_items)
        order = PaymentOrder(
            id=f"ord_conekta_{len(self.created) + 1}",
            amount=self.amount_override if self.amount_override is not None else amount,
            currency=request.currency,
            payment_status="pending_payment",
            metadata=request.metadata,
            line_items=[item.model_dump() for item in request.line_items],
        )
        self.created.append(order)
        return order

    async def create_checkout(self, order_id, allowed_methods, success_url, failure_url,
                              installment_options=None, expires_at=None):
        self.calls.append(("create_checkout", order_id, success_url, failure_url, installment_options))
        self._maybe_fail("create_checkout")
        return CheckoutSession(
            id=f"checkout_{order_id}",
            url=f"https://pay.conekta.com/checkout/{order_id}",
            status="Issued",
        )

    async def get_order(self, order_id):
        self.calls.append(("get_order", order_id))
        self._maybe_fail("get_order")
        return PaymentOrder(id=order_id, payment_status="paid")

    async def refund_order(self, order_id, reason=None):
        self.calls.append(("refund_order", order_id, reason))
        self._maybe_fail("refund_order")
        return PaymentOrder(id=order_id, payment_status="refunded")

    async def cancel_order(self, order_id):
        self.calls.append(("cancel_order", order_id))
        self._maybe_fail("cancel_order")
        return PaymentOrder(id=order_id, payment_status="expired")

    def names(self):
        return [call[0] for call in self.calls]


class RecordingOutbox:
    def __init__(self):
        self.records = []

    def record(self, effect, order_id, event_id=None, payload=None, error=None):
        self.records.append(
            {"effect": effect, "order_id": order_id, "event_id": event_id, "payload": payload, "error": error}
        )
        return len(self.records)


@pytest.fixture
def fake_tickets():
    return FakeTickets()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def recording_outbox():
    return RecordingOutbox()


@pytest.fixture
def checkout_payload():
    return {
        "email": "a@b.com",
        "event_id": "ev1",
        "organization_id": "org1",
        "items": [
            {"ticket_type_id": "tt1", "ticket_type_name": "GA", "quantity": 2, "price": 500}
        ],
    }


def order_event(event_type, order_id="tkt_order_1", event_id="evt_1", charges=None, metadata=None):
    if metadata is None:
        metadata = {"boletrics_order_id": order_id, "boletrics_order_number": "BOL-0001"}
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created_at": 1700000000,
        "data": {
            "object": {
                "id": "ord_conekta_1",
                "object": "order",
                "payment_status": event_type.split(".", 1)[1],
                "metadata": metadata,
                "charges": {"object": "list", "data": charges or []},
            }
        },
    }
