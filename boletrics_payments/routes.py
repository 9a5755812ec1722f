from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from boletrics_payments.auth import verify_token
from boletrics_payments.config import Settings, get_settings
from boletrics_payments.dependencies import (
    get_gateway,
    get_outbox,
    get_service_tickets_client,
    get_user_tickets_client,
)
from boletrics_payments.orchestrator import CheckoutOrchestrator

router = APIRouter(prefix="/api/payments")


class RefundRequest(BaseModel):
    reason: Optional[str] = None


@router.post("/create-order")
async def create_payment_order(
    payload: Dict[str, Any] = Body(...),
    tickets=Depends(get_user_tickets_client),
    gateway=Depends(get_gateway),
    outbox=Depends(get_outbox),
    settings: Settings = Depends(get_settings),
):
    orchestrator = CheckoutOrchestrator(tickets, gateway, settings, outbox=outbox)
    result = await orchestrator.run(payload)
    return result.to_response()


@router.get("/orders/{payment_order_id}")
async def get_payment_order(payment_order_id: str, auth=Depends(verify_token), gateway=Depends(get_gateway)):
    order = await gateway.get_order(payment_order_id)
    return order.model_dump()


@router.post("/orders/{payment_order_id}/refund")
async def refund_payment_order(
    payment_order_id: str,
    request: Optional[RefundRequest] = None,
    auth=Depends(verify_token),
    gateway=Depends(get_gateway),
):
    order = await gateway.refund_order(payment_order_id, request.reason if request else None)
    return {"id": order.id, "payment_status": order.payment_status}


@router.post("/orders/{payment_order_id}/cancel")
async def cancel_payment_order(payment_order_id: str, auth=Depends(verify_token), gateway=Depends(get_gateway)):
    order = await gateway.cancel_order(payment_order_id)
    return {"id": order.id, "payment_status": order.payment_status}


@router.get("/outbox")
def list_outbox(limit: int = 100, auth=Depends(verify_token), outbox=Depends(get_outbox)):
    return {"entries": outbox.pending(limit=limit)}


@router.post("/outbox/replay")
async def replay_outbox(
    auth=Depends(verify_token),
    outbox=Depends(get_outbox),
    tickets=Depends(get_service_tickets_client),
    gateway=Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    report = await outbox.replay(tickets, gateway, orphan_ttl=settings.orphan_ttl)
    return report.to_dict()
