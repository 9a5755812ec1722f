import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from boletrics_payments.config import Settings, get_settings
from boletrics_payments.database import Base, engine
from boletrics_payments.dependencies import get_outbox, get_service_tickets_client
from boletrics_payments.errors import (
    MalformedEventError,
    PaymentsError,
    SignatureError,
    ValidationError,
)
from boletrics_payments.logging_config import configure_logging
from boletrics_payments.reconciler import WebhookReconciler
from boletrics_payments.routes import router
from boletrics_payments.webhooks import parse_event, verify_signature

# importing the models registers their tables on Base
from boletrics_payments import models  # noqa: F401

_settings = get_settings()
configure_logging(_settings.log_level, _settings.log_json)
log = structlog.get_logger(__name__)

app = FastAPI(title="Boletrics Payments Service")

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(PaymentsError)
async def payments_error_handler(request: Request, exc: PaymentsError):
    if exc.status_code >= 500:
        # provider text never reaches the client
        return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})
    content = {"error": exc.message}
    if isinstance(exc, ValidationError) and exc.errors:
        content["details"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"error": ValidationError.public_message, "details": details},
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/payments/webhook")
async def conekta_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    tickets=Depends(get_service_tickets_client),
    outbox=Depends(get_outbox),
):
    payload = await request.body()
    signature = request.headers.get(settings.webhook_signature_header)

    if not verify_signature(payload, signature, settings.webhook_key, tolerance=settings.webhook_tolerance):
        log.error("webhook.invalid_signature", header=settings.webhook_signature_header)
        raise SignatureError()

    try:
        event = parse_event(payload)
    except MalformedEventError as exc:
        log.error("webhook.malformed_event", error=str(exc))
        raise MalformedEventError() from exc

    reconciler = WebhookReconciler(tickets, outbox=outbox)
    await reconciler.reconcile(event)

    return {"received": True}
