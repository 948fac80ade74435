# backend/letlog/domain/roles.py
from __future__ import annotations

import enum
from typing import Any, Optional

from .errors import ErrorKind, PolicyError


class Role(str, enum.Enum):
    LANDLORD = "landlord"
    TENANT = "tenant"
    CONTRACTOR = "contractor"


ALL_ROLES = frozenset(Role)


def parse_role(value: Any, *, fallback: Optional[str] = None) -> Role:
    """
    The one place a stored role string becomes a Role.

    - A Role passes through.
    - Missing/blank values use `fallback` (settings.role_fallback), or are
      rejected when no fallback is configured.
    - Anything else that is not a known role is rejected; it is never coerced.
    """
    if isinstance(value, Role):
        return value

    raw = str(value).strip().lower() if value is not None else ""
    if not raw:
        if fallback:
            return parse_role(fallback)
        raise PolicyError(ErrorKind.UNAUTHORIZED, "profile has no role")

    try:
        return Role(raw)
    except ValueError:
        raise PolicyError(ErrorKind.UNAUTHORIZED, f"unknown role {raw!r}") from None
