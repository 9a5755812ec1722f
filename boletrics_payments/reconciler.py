"""Maps Conekta webhook events onto tickets-svc order transitions.

Every downstream call is attempted on its own and reported as an
``EffectResult``. Failures are logged and handed to the outbox, never raised:
the webhook endpoint must answer 200 for anything it managed to parse, or
Conekta keeps redelivering it.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError as SchemaError

from boletrics_payments.conekta import PaymentOrder, payment_method_label
from boletrics_payments.errors import PaymentsError
from boletrics_payments.models import Effect
from boletrics_payments.webhooks import EventType, WebhookEvent

log = structlog.get_logger(__name__)


@dataclass
class EffectResult:
    effect: Effect
    order_id: str
    ok: bool
    error: Optional[str] = None


@dataclass
class ReconcileOutcome:
    event_id: str
    event_type: EventType
    order_id: Optional[str] = None
    effects: List[EffectResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(result.ok for result in self.effects)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class WebhookReconciler:
    def __init__(self, tickets, outbox=None, clock=_now_iso):
        self.tickets = tickets
        self.outbox = outbox
        self.clock = clock
        self._handlers = {
            EventType.ORDER_PAID: self._order_paid,
            EventType.ORDER_PENDING_PAYMENT: self._order_pending,
            EventType.ORDER_DECLINED: self._order_failed,
            EventType.ORDER_EXPIRED: self._order_failed,
            EventType.ORDER_REFUNDED: self._order_refunded,
            EventType.ORDER_PARTIALLY_REFUNDED: self._order_refunded,
            EventType.CHARGE_PAID: self._charge_event,
            EventType.CHARGE_DECLINED: self._charge_event,
            EventType.UNKNOWN: self._unhandled,
        }

    @property
    def handled_types(self):
        return set(self._handlers)

    async def reconcile(self, event: WebhookEvent) -> ReconcileOutcome:
        kind = event.kind
        outcome = ReconcileOutcome(event_id=event.id, event_type=kind)
        bound = log.bind(webhook_event_id=event.id, webhook_type=event.type)
        bound.info("webhook.received")

        if kind.is_order_event:
            order = self._order_snapshot(event, bound)
            if order is None:
                return outcome
            outcome.order_id = order.boletrics_order_id
            if outcome.order_id is None:
                bound.error("webhook.missing_order_id", payment_order_id=order.id)
                return outcome
            await self._handlers[kind](event, order, outcome, bound.bind(order_id=outcome.order_id))
        else:
            await self._handlers[kind](event, None, outcome, bound)
        return outcome

    @staticmethod
    def _order_snapshot(event: WebhookEvent, bound) -> Optional[PaymentOrder]:
        try:
            return PaymentOrder.model_validate(event.object)
        except SchemaError as exc:
            bound.warning("webhook.order_snapshot_partial", error=str(exc))

        # routing only needs the id and metadata; charges just feed the label
        metadata = event.object.get("metadata")
        try:
            return PaymentOrder.model_validate({
                "id": event.object.get("id"),
                "metadata": metadata if isinstance(metadata, dict) else {},
            })
        except SchemaError as exc:
            bound.error("webhook.order_snapshot_invalid", error=str(exc))
            return None

    async def _order_paid(self, event, order: PaymentOrder, outcome, bound):
        await self._effect(
            outcome, event, bound, Effect.UPDATE_ORDER,
            {
                "status": "paid",
                "payment_intent_id": order.id,
                "payment_method": payment_method_label(order),
                "paid_at": self.clock(),
            },
        )
        await self._effect(outcome, event, bound, Effect.GENERATE_TICKETS)
        bound.info("webhook.order_paid", ok=outcome.ok)

    async def _order_pending(self, event, order, outcome, bound):
        # the local order is created pending
        bound.info("webhook.order_pending")

    async def _order_failed(self, event, order, outcome, bound):
        await self._effect(outcome, event, bound, Effect.UPDATE_ORDER, {"status": "cancelled"})
        await self._effect(outcome, event, bound, Effect.RELEASE_INVENTORY)
        bound.info("webhook.order_cancelled", ok=outcome.ok)

    async def _order_refunded(self, event, order, outcome, bound):
        await self._effect(outcome, event, bound, Effect.UPDATE_ORDER, {"status": "refunded"})
        await self._effect(outcome, event, bound, Effect.CANCEL_TICKETS)
        bound.info("webhook.order_refunded", ok=outcome.ok)

    async def _charge_event(self, event, order, outcome, bound):
        # order.* events are authoritative
        bound.info("webhook.charge_event")

    async def _unhandled(self, event, order, outcome, bound):
        bound.info("webhook.unhandled")

    async def _effect(
        self,
        outcome: ReconcileOutcome,
        event: WebhookEvent,
        bound,
        effect: Effect,
        payload: Optional[Dict[str, Any]] = None,
    ) -> EffectResult:
        order_id = outcome.order_id
        try:
            if effect == Effect.UPDATE_ORDER:
                await self.tickets.update_order(order_id, **payload)
            elif effect == Effect.GENERATE_TICKETS:
                await self.tickets.generate_tickets(order_id)
            elif effect == Effect.RELEASE_INVENTORY:
                await self.tickets.release_inventory(order_id)
            elif effect == Effect.CANCEL_TICKETS:
                await self.tickets.cancel_tickets(order_id)
            else:
                raise ValueError(f"unsupported webhook effect {effect!r}")
        except PaymentsError as exc:
            result = EffectResult(effect, order_id, ok=False, error=str(exc))
            bound.error("webhook.effect_failed", effect=effect.value, error=str(exc))
            if self.outbox is not None:
                await run_in_threadpool(
                    self.outbox.record, effect, order_id, event_id=event.id, payload=payload, error=str(exc)
                )
        else:
            result = EffectResult(effect, order_id, ok=True)
        outcome.effects.append(result)
        return result
