# FILE: clinic_billing/api/deps.py
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from clinic_billing.core import rbac
from clinic_billing.db.session import get_db
from clinic_billing.models.user import User
from clinic_billing.utils.jwt import decode_token


# =========================================================
# AUTH HELPERS
# =========================================================
def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    raw = _extract_bearer(authorization)
    if not raw:
        raise HTTPException(status_code=401, detail="Missing token")

    payload = decode_token(raw)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid token")

    sub = payload.get("sub")
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user: Optional[User] = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="User inactive")
    return user


def billing_user(user: User = Depends(current_user)) -> User:
    rbac.require_any(user,
                     rbac.BILLING_ROLES,
                     message="Billing is not available for your role.")
    return user


def billing_staff(user: User = Depends(billing_user)) -> User:
    """Front-desk roles: admin / receptionist / superadmin (no dentists)."""
    rbac.require_any(user, {rbac.Role.ADMIN, rbac.Role.RECEPTIONIST})
    return user
