from typing import Any, Optional


class PaymentsError(Exception):
    """Base error. ``public_message`` is what an HTTP client gets to see."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ValidationError(PaymentsError):
    status_code = 400
    public_message = "Missing required fields"

    def __init__(self, message: Optional[str] = None, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


class OrderCreationFailed(PaymentsError):
    status_code = 502
    public_message = "Failed to create order"


class PaymentInitFailed(PaymentsError):
    status_code = 502
    public_message = "Payment initialization failed"

    def __init__(self, message: Optional[str] = None, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id


class MalformedEventError(PaymentsError):
    status_code = 400
    public_message = "Invalid event format"


class SignatureError(PaymentsError):
    status_code = 401
    public_message = "Invalid signature"


class GatewayError(PaymentsError):
    """Error response (or transport failure) from the payment processor."""

    status_code = 502
    public_message = "Payment provider error"

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.code = code
        if status == 404:
            self.status_code = 404

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class ServerApiError(PaymentsError):
    """Error response (or transport failure) from tickets-svc."""

    status_code = 502
    public_message = "Ticketing service error"

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[Any] = None,
        body: Any = None,
    ):
        super().__init__(message)
        self.status = status
        self.code = code
        self.body = body
