# clinic_billing/utils/jwt.py
from datetime import timedelta
from typing import Optional

from jose import jwt, JWTError

from clinic_billing.core.config import settings
from clinic_billing.utils.timezone import utcnow


def create_access_token(
    subject: str,
    *,
    role: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Tokens are issued by the auth service; this mirrors its claim layout
    (sub = user id) for tooling and tests.
    """
    now = utcnow()
    delta = expires_delta or timedelta(
        minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(subject),
        "iat": now,
        "exp": now + delta,
    }
    if role:
        payload["role"] = role
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_token(raw_token: str) -> Optional[dict]:
    try:
        return jwt.decode(raw_token,
                          settings.JWT_SECRET,
                          algorithms=[settings.JWT_ALG])
    except JWTError:
        return None
