"""Async client for the Conekta REST API.

Only the order/checkout/refund/cancel endpoints the checkout saga needs are
covered. Amounts crossing this boundary are always in cents.
"""
from typing import Any, Dict, List, Literal, Optional

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError

from boletrics_payments.config import Settings
from boletrics_payments.errors import GatewayError

log = structlog.get_logger(__name__)

PaymentStatus = Literal[
    "pending_payment", "paid", "declined", "expired", "refunded", "partially_refunded"
]


def _unwrap_list(value: Any) -> Any:
    # Conekta wraps collections as {"object": "list", "data": [...]}
    if isinstance(value, dict) and "data" in value:
        return value.get("data") or []
    return value


# -----------------------------
# Request models
# -----------------------------
class CustomerInfo(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None


class LineItem(BaseModel):
    name: str
    unit_price: int = Field(gt=0)
    quantity: int = Field(ge=1)
    description: Optional[str] = None
    sku: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class PaymentMethodSpec(BaseModel):
    type: Literal["card", "cash", "bank_transfer"] = "card"
    token_id: Optional[str] = None
    expires_at: Optional[int] = None


class ChargeRequest(BaseModel):
    payment_method: PaymentMethodSpec = Field(default_factory=PaymentMethodSpec)


class CreateOrderRequest(BaseModel):
    currency: str = Field(min_length=3, max_length=3)
    customer_info: CustomerInfo
    line_items: List[LineItem] = Field(min_length=1)
    charges: List[ChargeRequest] = Field(min_length=1)
    metadata: Dict[str, str] = Field(default_factory=dict)


class CreateCheckoutRequest(BaseModel):
    allowed_payment_methods: List[Literal["card", "cash", "bank_transfer"]] = Field(min_length=1)
    success_url: str
    failure_url: str
    expires_at: Optional[int] = None
    monthly_installments_enabled: bool = False
    monthly_installments_options: Optional[List[int]] = None


# -----------------------------
# Response models
# -----------------------------
class ChargePaymentMethod(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    object: Optional[str] = None
    name: Optional[str] = None
    brand: Optional[str] = None
    last4: Optional[str] = None
    reference: Optional[str] = None


class Charge(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    order_id: Optional[str] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    payment_method: Optional[ChargePaymentMethod] = None


class OrderLineItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: Optional[str] = None
    unit_price: int = 0
    quantity: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PaymentOrder(BaseModel):
    """Conekta order. Webhook snapshots can be partial, so most fields are optional."""

    model_config = ConfigDict(extra="allow")

    id: str
    amount: Optional[int] = None
    amount_refunded: Optional[int] = None
    currency: Optional[str] = None
    customer_info: Optional[Dict[str, Any]] = None
    line_items: List[OrderLineItem] = Field(default_factory=list)
    charges: List[Charge] = Field(default_factory=list)
    payment_status: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @field_validator("line_items", "charges", mode="before")
    @classmethod
    def _unwrap(cls, value):
        return _unwrap_list(value) or []

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata(cls, value):
        return value or {}

    @property
    def boletrics_order_id(self) -> Optional[str]:
        value = self.metadata.get("boletrics_order_id")
        return str(value) if value else None


class CheckoutSession(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    url: str
    status: Optional[Literal["Issued", "Expired", "PaymentPending", "Paid"]] = None
    expires_at: Optional[int] = None


def is_payment_successful(order: PaymentOrder) -> bool:
    return order.payment_status == "paid"


def payment_method_label(order: PaymentOrder) -> str:
    """``"visa **** 4242"`` when the first charge has brand and last4, else its type."""
    if not order.charges or order.charges[0].payment_method is None:
        return "card"
    pm = order.charges[0].payment_method
    if pm.brand and pm.last4:
        return f"{pm.brand} **** {pm.last4}"
    return pm.type or "card"


def _error_from_response(response: httpx.Response) -> GatewayError:
    try:
        data = response.json()
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    message = None
    details = data.get("details")
    if isinstance(details, list) and details and isinstance(details[0], dict):
        message = details[0].get("message")
    message = message or data.get("message") or "Conekta API error"
    return GatewayError(message, status=response.status_code, code=data.get("type"))


class ConektaClient:
    """Thin typed wrapper over the Conekta orders API.

    Calls are single-attempt: ``create_order`` starts a real charge attempt
    upstream, so nothing here retries.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.conekta.io",
        api_version: str = "2.1.0",
        locale: str = "es",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise RuntimeError("CONEKTA_API_KEY is not set. Check your .env file.")
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Accept": f"application/vnd.conekta-v{api_version}+json",
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
                "Accept-Language": locale,
            },
        )

    @classmethod
    def from_settings(cls, settings: Settings, transport=None) -> "ConektaClient":
        return cls(
            settings.conekta_api_key,
            base_url=settings.conekta_api_base,
            api_version=settings.conekta_api_version,
            locale=settings.conekta_locale,
            timeout=settings.http_timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            log.error("conekta.request_failed", method=method, path=path, error=repr(exc))
            raise GatewayError(f"Conekta request failed: {exc!r}", code="network_error") from exc

        if response.is_error:
            error = _error_from_response(response)
            log.warning(
                "conekta.error_response",
                method=method,
                path=path,
                status=error.status,
                code=error.code,
                message=error.message,
            )
            raise error

        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(
                f"Non-JSON response (HTTP {response.status_code})",
                status=response.status_code,
            ) from exc

    @staticmethod
    def _parse(model, data: Any, path: str):
        try:
            return model.model_validate(data)
        except SchemaError as exc:
            log.error("conekta.invalid_response", path=path, model=model.__name__, error=str(exc))
            raise GatewayError(
                f"Unexpected {model.__name__} response from {path}", code="invalid_response"
            ) from exc

    async def create_order(self, request: CreateOrderRequest) -> PaymentOrder:
        data = await self._request("POST", "/orders", json=request.model_dump(exclude_none=True))
        return self._parse(PaymentOrder, data, "/orders")

    async def create_checkout(
        self,
        order_id: str,
        allowed_methods: List[str],
        success_url: str,
        failure_url: str,
        installment_options: Optional[List[int]] = None,
        expires_at: Optional[int] = None,
    ) -> CheckoutSession:
        request = CreateCheckoutRequest(
            allowed_payment_methods=allowed_methods,
            success_url=success_url,
            failure_url=failure_url,
            expires_at=expires_at,
            monthly_installments_enabled=bool(installment_options),
            monthly_installments_options=installment_options or None,
        )
        data = await self._request(
            "POST", f"/orders/{order_id}/checkout", json=request.model_dump(exclude_none=True)
        )
        return self._parse(CheckoutSession, data, f"/orders/{order_id}/checkout")

    async def get_order(self, order_id: str) -> PaymentOrder:
        data = await self._request("GET", f"/orders/{order_id}")
        return self._parse(PaymentOrder, data, f"/orders/{order_id}")

    async def refund_order(self, order_id: str, reason: Optional[str] = None) -> PaymentOrder:
        data = await self._request(
            "POST", f"/orders/{order_id}/refunds", json={"reason": reason or "requested_by_customer"}
        )
        return self._parse(PaymentOrder, data, f"/orders/{order_id}/refunds")

    async def cancel_order(self, order_id: str) -> PaymentOrder:
        data = await self._request("POST", f"/orders/{order_id}/cancel")
        return self._parse(PaymentOrder, data, f"/orders/{order_id}/cancel")
