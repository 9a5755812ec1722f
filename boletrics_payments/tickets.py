"""Async client for the tickets-svc REST API (the ticketing backend)."""
from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from boletrics_payments.config import Settings
from boletrics_payments.errors import ServerApiError

log = structlog.get_logger(__name__)


class OrderItemInput(BaseModel):
    ticket_type_id: str
    quantity: int


class CreateOrderInput(BaseModel):
    email: str
    event_id: str
    organization_id: str
    items: List[OrderItemInput]


class TicketOrder(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    order_number: str
    email: Optional[str] = None
    event_id: Optional[str] = None
    organization_id: Optional[str] = None
    status: str = "pending"
    payment_intent_id: Optional[str] = None
    payment_method: Optional[str] = None
    paid_at: Optional[str] = None
    items: List[Dict[str, Any]] = Field(default_factory=list)


def _error_message(status: int, body: Any) -> tuple:
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            first = errors[0]
            return first.get("message") or f"Request failed: {status}", first.get("code")
    return f"Request failed: {status}", None


class TicketsClient:
    """Bearer-authenticated calls against tickets-svc.

    Successful bodies shaped ``{"success": true, "result": X}`` are unwrapped
    to ``X``.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, transport=transport, headers=headers
        )

    @classmethod
    def from_settings(cls, settings: Settings, token: Optional[str] = None, transport=None):
        return cls(
            settings.tickets_svc_url,
            token=token or settings.tickets_svc_token,
            timeout=settings.http_timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def request(self, method: str, path: str, body: Any = None) -> Any:
        try:
            response = await self._client.request(method, path, json=body)
        except httpx.HTTPError as exc:
            log.error("tickets.request_failed", method=method, path=path, error=repr(exc))
            raise ServerApiError(f"Request failed: {exc!r}") from exc

        data = response.text
        if "application/json" in response.headers.get("content-type", ""):
            try:
                data = response.json()
            except ValueError as exc:
                # proxies answer with HTML under a JSON content-type
                log.error(
                    "tickets.invalid_json", method=method, path=path, status=response.status_code
                )
                raise ServerApiError(
                    f"Request failed: {response.status_code}",
                    status=response.status_code,
                    body=response.text,
                ) from exc

        if response.is_error:
            message, code = _error_message(response.status_code, data)
            raise ServerApiError(message, status=response.status_code, code=code, body=data)

        if isinstance(data, dict) and data.get("success") and "result" in data:
            return data["result"]
        return data

    async def create_order(self, order: CreateOrderInput) -> TicketOrder:
        data = await self.request("POST", "/orders", order.model_dump())
        return TicketOrder.model_validate(data)

    async def update_order(self, order_id: str, **fields) -> Any:
        return await self.request("PUT", f"/orders/{order_id}", fields)

    async def generate_tickets(self, order_id: str) -> Any:
        return await self.request("POST", f"/orders/{order_id}/generate-tickets", {})

    async def release_inventory(self, order_id: str) -> Any:
        return await self.request("POST", f"/orders/{order_id}/release-inventory", {})

    async def cancel_tickets(self, order_id: str) -> Any:
        return await self.request("POST", f"/orders/{order_id}/cancel-tickets", {})
