from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Optional

from fastapi import HTTPException, status


class Role(str, Enum):
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    RECEPTIONIST = "receptionist"
    DENTIST = "dentist"


# roles allowed to touch billing at all
BILLING_ROLES = {Role.ADMIN, Role.RECEPTIONIST, Role.DENTIST}

# roles that see every invoice (no ownership scoping)
UNSCOPED_ROLES = {Role.SUPERADMIN, Role.ADMIN, Role.RECEPTIONIST}


def _code(x: Any) -> str:
    """
    Normalize a role value safely.
    Supports:
      - Enum -> enum.value
      - str  -> str
      - object with .role -> str/Enum
    """
    if x is None:
        return ""

    if isinstance(x, Enum):
        return str(x.value)

    if isinstance(x, str):
        return x

    if hasattr(x, "role"):
        return _code(getattr(x, "role"))

    return str(x)


def role_of(user: Any) -> str:
    return _code(user).strip().lower()


def is_superadmin(user: Any) -> bool:
    return role_of(user) == Role.SUPERADMIN.value


def is_dentist(user: Any) -> bool:
    return role_of(user) == Role.DENTIST.value


def is_unscoped(user: Any) -> bool:
    return role_of(user) in {r.value for r in UNSCOPED_ROLES}


def require_any(user: Any,
                allowed: Iterable[Any],
                *,
                message: Optional[str] = None) -> None:
    """
    Raise 403 unless the user's role is one of 'allowed'.
    Superadmin always passes.
    """
    if is_superadmin(user):
        return

    allowed_set = {_code(x).strip().lower() for x in allowed if _code(x)}
    if role_of(user) in allowed_set:
        return

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=message or "You do not have permission to perform this action.",
    )
