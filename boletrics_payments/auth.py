from typing import Optional

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt

from boletrics_payments.config import Settings, get_settings


def _bearer(authorization: str) -> str:
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return token.strip()


def verify_token(
    authorization: str = Header(None),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Operator endpoints: a valid HS256 token signed with ``JWT_SECRET``."""
    if not authorization or not settings.jwt_secret:
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    token = _bearer(authorization)
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or missing token")


def optional_user_token(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> Optional[str]:
    """Shopper token to forward to tickets-svc, when the request carries one.

    Checked locally only when ``JWT_SECRET`` is configured; otherwise
    tickets-svc is left to judge it.
    """
    if not authorization:
        return None
    token = _bearer(authorization)
    if settings.jwt_secret:
        try:
            jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid or missing token")
    return token
