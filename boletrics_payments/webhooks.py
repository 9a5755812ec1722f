"""Verification and parsing of Conekta webhook deliveries.

The signature header looks like ``t=1700000000,v1=<hex>``: an HMAC-SHA256,
keyed with the webhook secret, over ``"<t>.<raw body>"``.
"""
import hashlib
import hmac
import json
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, ConfigDict

from boletrics_payments.errors import MalformedEventError

log = structlog.get_logger(__name__)

SIGNATURE_SCHEME = "v1"


class EventType(str, Enum):
    ORDER_PAID = "order.paid"
    ORDER_PENDING_PAYMENT = "order.pending_payment"
    ORDER_DECLINED = "order.declined"
    ORDER_EXPIRED = "order.expired"
    ORDER_REFUNDED = "order.refunded"
    ORDER_PARTIALLY_REFUNDED = "order.partially_refunded"
    CHARGE_PAID = "charge.paid"
    CHARGE_DECLINED = "charge.declined"
    UNKNOWN = "unknown"

    @classmethod
    def classify(cls, raw_type: str) -> "EventType":
        try:
            member = cls(raw_type)
        except ValueError:
            return cls.UNKNOWN
        return member

    @property
    def is_order_event(self) -> bool:
        return self.value.startswith("order.")


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    created_at: Optional[int] = None
    data: Dict[str, Any]

    @property
    def kind(self) -> EventType:
        return EventType.classify(self.type)

    @property
    def object(self) -> Dict[str, Any]:
        return self.data["object"]


def _to_bytes(payload: Union[str, bytes]) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return payload


def compute_signature(raw_body: Union[str, bytes], secret: str, timestamp: int) -> str:
    signed = str(timestamp).encode("utf-8") + b"." + _to_bytes(raw_body)
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def sign_payload(raw_body: Union[str, bytes], secret: str, timestamp: Optional[int] = None) -> str:
    """Build a signature header value for ``raw_body``."""
    if timestamp is None:
        timestamp = int(time.time())
    signature = compute_signature(raw_body, secret, timestamp)
    return f"t={timestamp},{SIGNATURE_SCHEME}={signature}"


def _parse_header(header: str) -> Tuple[Optional[int], List[str]]:
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == SIGNATURE_SCHEME:
            signatures.append(value)
    return timestamp, signatures


def verify_signature(
    raw_body: Union[str, bytes],
    signature_header: Optional[str],
    secret: Optional[str],
    tolerance: Optional[int] = None,
    now: Optional[float] = None,
) -> bool:
    if not secret:
        log.warning("webhook.signature_unchecked", reason="CONEKTA_WEBHOOK_KEY not set")
        return True
    if not signature_header:
        return False

    timestamp, signatures = _parse_header(signature_header)
    if timestamp is None or not signatures:
        return False

    if tolerance is not None:
        current = time.time() if now is None else now
        if abs(current - timestamp) > tolerance:
            log.warning("webhook.signature_expired", timestamp=timestamp, tolerance=tolerance)
            return False

    expected = compute_signature(raw_body, secret, timestamp)
    return any(hmac.compare_digest(expected, candidate) for candidate in signatures)


def parse_event(raw_body: Union[str, bytes]) -> WebhookEvent:
    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError) as exc:
        raise MalformedEventError(f"Webhook body is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise MalformedEventError("Webhook body must be a JSON object")
    if not payload.get("id") or not payload.get("type"):
        raise MalformedEventError("Webhook event is missing id or type")
    data = payload.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
        raise MalformedEventError("Webhook event is missing data.object")

    return WebhookEvent(
        id=str(payload["id"]),
        type=str(payload["type"]),
        created_at=payload.get("created_at") if isinstance(payload.get("created_at"), int) else None,
        data=data,
    )
