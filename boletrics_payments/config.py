import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

DEFAULT_CONEKTA_API_BASE = "https://api.conekta.io"
DEFAULT_CONEKTA_API_VERSION = "2.1.0"
DEFAULT_TICKETS_SVC_URL = "https://tickets-svc.boletrics.workers.dev"
DEFAULT_DATABASE_URL = "sqlite:///./boletrics_payments.db"


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _int_list_env(name: str, default: List[int]) -> List[int]:
    value = os.getenv(name)
    if value is None:
        return list(default)
    return [int(part) for part in value.split(",") if part.strip()]


class Settings:
    """Runtime configuration read from the environment.

    Values are read when the object is built, so tests can patch
    ``os.environ`` and construct a fresh instance.
    """

    def __init__(self):
        self.conekta_api_key: Optional[str] = os.getenv("CONEKTA_API_KEY")
        self.conekta_api_base = os.getenv("CONEKTA_API_BASE", DEFAULT_CONEKTA_API_BASE)
        self.conekta_api_version = os.getenv("CONEKTA_API_VERSION", DEFAULT_CONEKTA_API_VERSION)
        self.conekta_locale = os.getenv("CONEKTA_LOCALE", "es")

        self.webhook_key: Optional[str] = os.getenv("CONEKTA_WEBHOOK_KEY") or None
        self.webhook_signature_header = os.getenv("WEBHOOK_SIGNATURE_HEADER", "Digest")
        tolerance = _int_env("WEBHOOK_TOLERANCE_SECONDS", 0)
        self.webhook_tolerance: Optional[int] = tolerance or None

        self.tickets_svc_url = (
            os.getenv("TICKETS_SVC_URL")
            or os.getenv("NEXT_PUBLIC_TICKETS_SVC_URL")
            or DEFAULT_TICKETS_SVC_URL
        )
        self.tickets_svc_token: Optional[str] = os.getenv("TICKETS_SVC_TOKEN") or None

        self.app_url = os.getenv("APP_URL") or os.getenv("NEXT_PUBLIC_APP_URL") or "http://localhost:3000"
        self.currency = os.getenv("CURRENCY", "MXN")
        self.checkout_installments = _int_list_env("CHECKOUT_INSTALLMENTS", [3, 6, 9, 12])
        self.http_timeout = _float_env("HTTP_TIMEOUT_SECONDS", 15.0)
        self.orphan_ttl = _int_env("ORPHAN_TTL_SECONDS", 1800)

        self.database_url = os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL
        self.jwt_secret: Optional[str] = os.getenv("JWT_SECRET") or None

        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.log_json = _bool_env("LOG_JSON", True)

    @property
    def success_url_base(self) -> str:
        return f"{self.app_url.rstrip('/')}/checkout/success"

    @property
    def failure_url_base(self) -> str:
        return f"{self.app_url.rstrip('/')}/checkout/failure"


def get_settings() -> Settings:
    return Settings()
