"""Checkout saga: local order, remote payment order, checkout session, link.

Steps run strictly in order since each needs the previous step's output.
Failures before the checkout URL exists abort the saga; the final link step
is best effort because webhooks can find the local order through
``metadata.boletrics_order_id`` anyway.
"""
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import structlog
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as SchemaError

from boletrics_payments.config import Settings
from boletrics_payments.conekta import (
    ChargeRequest,
    CreateOrderRequest,
    CustomerInfo,
    LineItem,
    PaymentMethodSpec,
)
from boletrics_payments.errors import (
    GatewayError,
    OrderCreationFailed,
    PaymentInitFailed,
    PaymentsError,
    ValidationError,
)
from boletrics_payments.models import Effect
from boletrics_payments.money import sum_major_units, to_minor_units
from boletrics_payments.tickets import CreateOrderInput, OrderItemInput, TicketOrder

log = structlog.get_logger(__name__)


class CheckoutItem(BaseModel):
    ticket_type_id: str = Field(min_length=1)
    ticket_type_name: Optional[str] = None
    quantity: int = Field(ge=1)
    price: float = Field(ge=0)


class CheckoutRequest(BaseModel):
    email: str = Field(min_length=1)
    name: Optional[str] = None
    phone: Optional[str] = None
    event_id: str = Field(min_length=1)
    organization_id: str = Field(min_length=1)
    items: List[CheckoutItem] = Field(min_length=1)

    @field_validator("email", "event_id", "organization_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @property
    def customer_name(self) -> str:
        return self.name or self.email.split("@")[0]


@dataclass
class CheckoutResult:
    order_id: str
    order_number: str
    checkout_url: str
    payment_order_id: str
    total: float

    def to_response(self) -> Dict[str, Any]:
        data = asdict(self)
        data["conekta_order_id"] = data.pop("payment_order_id")
        return data


def totals_agree(total: float, charged_cents: Optional[int], line_count: int) -> bool:
    """Displayed total vs. what Conekta computed; one cent of slack per line item."""
    if charged_cents is None:
        return True
    return abs(to_minor_units(total) - charged_cents) <= max(line_count, 1)


def validate_checkout_request(payload: Any) -> CheckoutRequest:
    if isinstance(payload, CheckoutRequest):
        return payload
    if not isinstance(payload, dict):
        raise ValidationError(errors=[{"msg": "request body must be a JSON object"}])
    try:
        return CheckoutRequest.model_validate(payload)
    except SchemaError as exc:
        raise ValidationError(
            errors=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()]
        ) from exc


class CheckoutOrchestrator:
    def __init__(self, tickets, gateway, settings: Settings, outbox=None):
        self.tickets = tickets
        self.gateway = gateway
        self.settings = settings
        self.outbox = outbox

    async def run(self, payload: Any) -> CheckoutResult:
        request = validate_checkout_request(payload)
        bound = log.bind(event_id=request.event_id, organization_id=request.organization_id)

        local_order = await self._create_local_order(request, bound)
        bound = bound.bind(order_id=local_order.id, order_number=local_order.order_number)

        try:
            payment_order = await self.gateway.create_order(self._payment_order_request(request, local_order))
        except (GatewayError, SchemaError) as exc:
            bound.error("checkout.payment_order_failed", error=str(exc), code=getattr(exc, "code", None))
            await self._record_orphan(local_order, None, exc)
            raise PaymentInitFailed(order_id=local_order.id) from exc

        bound = bound.bind(payment_order_id=payment_order.id)

        try:
            checkout = await self.gateway.create_checkout(
                payment_order.id,
                ["card"],
                self._redirect_url(self.settings.success_url_base, local_order),
                self._redirect_url(self.settings.failure_url_base, local_order),
                installment_options=self.settings.checkout_installments or None,
            )
        except (GatewayError, SchemaError) as exc:
            bound.error("checkout.session_failed", error=str(exc), code=getattr(exc, "code", None))
            await self._record_orphan(local_order, payment_order.id, exc)
            raise PaymentInitFailed(order_id=local_order.id) from exc

        try:
            await self.tickets.update_order(local_order.id, payment_intent_id=payment_order.id)
        except PaymentsError as exc:
            bound.warning("checkout.link_failed", error=str(exc))

        total = sum_major_units((item.price, item.quantity) for item in request.items)
        self._check_totals(total, payment_order.amount, len(request.items), bound)

        bound.info("checkout.created", total=total)
        return CheckoutResult(
            order_id=local_order.id,
            order_number=local_order.order_number,
            checkout_url=checkout.url,
            payment_order_id=payment_order.id,
            total=total,
        )

    async def _create_local_order(self, request: CheckoutRequest, bound) -> TicketOrder:
        order_input = CreateOrderInput(
            email=request.email,
            event_id=request.event_id,
            organization_id=request.organization_id,
            items=[
                OrderItemInput(ticket_type_id=item.ticket_type_id, quantity=item.quantity)
                for item in request.items
            ],
        )
        try:
            return await self.tickets.create_order(order_input)
        except (PaymentsError, SchemaError) as exc:
            bound.error("checkout.local_order_failed", error=str(exc))
            raise OrderCreationFailed() from exc

    def _payment_order_request(self, request: CheckoutRequest, local_order: TicketOrder) -> CreateOrderRequest:
        return CreateOrderRequest(
            currency=self.settings.currency,
            customer_info=CustomerInfo(
                name=request.customer_name, email=request.email, phone=request.phone
            ),
            line_items=[
                LineItem(
                    name=item.ticket_type_name or item.ticket_type_id,
                    unit_price=to_minor_units(item.price),
                    quantity=item.quantity,
                    metadata={"ticket_type_id": item.ticket_type_id},
                )
                for item in request.items
            ],
            charges=[ChargeRequest(payment_method=PaymentMethodSpec(type="card"))],
            metadata={
                "boletrics_order_id": local_order.id,
                "boletrics_order_number": local_order.order_number,
                "event_id": request.event_id,
                "organization_id": request.organization_id,
            },
        )

    @staticmethod
    def _redirect_url(base: str, local_order: TicketOrder) -> str:
        return f"{base}?{urlencode({'order': local_order.order_number})}"

    @staticmethod
    def _check_totals(total: float, charged_cents: Optional[int], line_count: int, bound):
        if not totals_agree(total, charged_cents, line_count):
            bound.warning(
                "checkout.total_mismatch",
                expected_cents=to_minor_units(total),
                charged_cents=charged_cents,
            )

    async def _record_orphan(self, local_order: TicketOrder, payment_order_id: Optional[str], exc: Exception):
        if self.outbox is None:
            return
        await run_in_threadpool(
            self.outbox.record,
            Effect.EXPIRE_ORPHAN,
            local_order.id,
            payload={
                "order_number": local_order.order_number,
                "payment_order_id": payment_order_id,
            },
            error=str(exc),
        )
