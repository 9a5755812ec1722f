import json

import pytest

from boletrics_payments.errors import MalformedEventError
from boletrics_payments.webhooks import (
    EventType,
    compute_signature,
    parse_event,
    sign_payload,
    verify_signature,
)

SECRET = "whsec_test"
BODY = json.dumps({"id": "evt_1", "type": "order.paid", "data": {"object": {"id": "ord_1"}}})


def test_valid_signature_is_accepted():
    header = sign_payload(BODY, SECRET, timestamp=1700000000)
    assert verify_signature(BODY, header, SECRET)
    assert verify_signature(BODY.encode(), header, SECRET)


def test_tampered_body_is_rejected():
    header = sign_payload(BODY, SECRET, timestamp=1700000000)
    assert not verify_signature(BODY.replace("order.paid", "order.refunded"), header, SECRET)


def test_wrong_secret_is_rejected():
    header = sign_payload(BODY, "other_secret", timestamp=1700000000)
    assert not verify_signature(BODY, header, SECRET)


@pytest.mark.parametrize("header", [None, "", "garbage", "t=abc,v1=deadbeef", "t=1700000000", "v1=deadbeef"])
def test_missing_or_unparseable_header_is_rejected(header):
    assert not verify_signature(BODY, header, SECRET)


def test_any_matching_signature_is_enough():
    good = compute_signature(BODY, SECRET, 1700000000)
    header = f"t=1700000000,v1=0000,v1={good}"
    assert verify_signature(BODY, header, SECRET)


def test_no_secret_configured_accepts():
    assert verify_signature(BODY, None, None)
    assert verify_signature(BODY, "anything", "")


def test_tolerance_rejects_stale_timestamps():
    header = sign_payload(BODY, SECRET, timestamp=1700000000)
    assert verify_signature(BODY, header, SECRET, tolerance=300, now=1700000100)
    assert not verify_signature(BODY, header, SECRET, tolerance=300, now=1700000400)


def test_parse_event_returns_typed_envelope():
    event = parse_event(json.dumps({
        "id": "evt_123",
        "type": "order.paid",
        "created_at": 1700000000,
        "data": {"object": {"id": "ord_123"}},
    }))
    assert event.id == "evt_123"
    assert event.type == "order.paid"
    assert event.kind is EventType.ORDER_PAID
    assert event.object == {"id": "ord_123"}
    assert event.created_at == 1700000000


def test_parse_event_passes_unknown_types_through():
    event = parse_event(json.dumps({"id": "evt_1", "type": "webhook_ping", "data": {"object": {}}}))
    assert event.type == "webhook_ping"
    assert event.kind is EventType.UNKNOWN


@pytest.mark.parametrize("body", [
    "not json",
    "[]",
    json.dumps({"foo": "bar"}),
    json.dumps({"type": "order.paid", "data": {"object": {}}}),
    json.dumps({"id": "evt_1", "data": {"object": {}}}),
    json.dumps({"id": "evt_1", "type": "order.paid"}),
    json.dumps({"id": "evt_1", "type": "order.paid", "data": {}}),
])
def test_parse_event_rejects_malformed_bodies(body):
    with pytest.raises(MalformedEventError):
        parse_event(body)


def test_event_type_classification():
    assert EventType.classify("order.expired") is EventType.ORDER_EXPIRED
    assert EventType.classify("charge.paid") is EventType.CHARGE_PAID
    assert EventType.classify("subscription.paid") is EventType.UNKNOWN
    assert EventType.ORDER_REFUNDED.is_order_event
    assert not EventType.CHARGE_DECLINED.is_order_event
    assert not EventType.UNKNOWN.is_order_event
