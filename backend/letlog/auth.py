# backend/letlog/auth.py
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .domain.errors import PolicyError
from .domain.roles import Role
from .services.policy import Actor
from .services.repository import SqlPolicyRepository

# Authentication is delegated to the identity provider; this module only
# turns its verified user id into a Principal with a validated role.


@dataclass(frozen=True)
class Principal:
    user_id: int
    email: str
    role: Role
    display_name: str | None = None

    def actor(self) -> Actor:
        return Actor(user_id=self.user_id, role=self.role, email=self.email)


# -------------------------
# JWT helpers (HS256)
# -------------------------
def _b64(x: bytes) -> str:
    return base64.urlsafe_b64encode(x).decode().rstrip("=")


def _ub64(s: str) -> bytes:
    s2 = s + "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode(s2.encode())


def _jwt_sign(payload: dict[str, Any]) -> str:
    header = {"alg": "HS256", "typ": "JWT"}
    header_b = _b64(json.dumps(header, separators=(",", ":")).encode())
    payload_b = _b64(json.dumps(payload, separators=(",", ":")).encode())
    msg = f"{header_b}.{payload_b}".encode()
    sig = hmac.new(settings.jwt_secret.encode(), msg, hashlib.sha256).digest()
    return f"{header_b}.{payload_b}.{_b64(sig)}"


def _jwt_verify(token: str) -> dict[str, Any]:
    try:
        header_b, payload_b, sig_b = token.split(".", 2)
        msg = f"{header_b}.{payload_b}".encode()
        sig = _ub64(sig_b)
        expected = hmac.new(settings.jwt_secret.encode(), msg, hashlib.sha256).digest()
        if not hmac.compare_digest(sig, expected):
            raise HTTPException(status_code=401, detail="Invalid token signature")

        payload = json.loads(_ub64(payload_b).decode())
        exp = payload.get("exp")
        if exp is not None and int(exp) < int(time.time()):
            raise HTTPException(status_code=401, detail="Token expired")
        return dict(payload)
    except HTTPException:
        raise
    except (ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid token")


def _principal_for(db: Session, user_id: int) -> Principal:
    try:
        profile = SqlPolicyRepository(db).get_user(user_id)
    except PolicyError:
        # profile exists but its role is missing/invalid
        raise HTTPException(status_code=403, detail="Not authorized")
    if profile is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return Principal(
        user_id=profile.id,
        email=profile.email,
        role=profile.role,
        display_name=profile.display_name,
    )


def _user_id_from_request(request: Request, authorization: Optional[str]) -> Optional[int]:
    token = None
    if authorization and str(authorization).lower().startswith("bearer "):
        token = str(authorization).split(" ", 1)[1].strip()

    if token:
        sub = str(_jwt_verify(token).get("sub") or "")
        if not sub.isdigit():
            raise HTTPException(status_code=401, detail="Token missing sub")
        return int(sub)

    # Dev: trust an upstream-supplied user id header (never in prod)
    if settings.auth_mode == "dev" and settings.allow_local_auth_bypass:
        raw = (request.headers.get(settings.dev_header_user_id) or "").strip()
        if raw:
            if not raw.isdigit():
                raise HTTPException(status_code=401, detail=f"Invalid {settings.dev_header_user_id}")
            return int(raw)
    return None


def get_principal(
    request: Request,
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Principal:
    """
    Auth modes supported (in priority order):
      1) Authorization: Bearer <HS256 token>, sub = user id
      2) dev header X-User-Id (ONLY if settings.auth_mode == "dev")
    """
    user_id = _user_id_from_request(request, authorization)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return _principal_for(db, user_id)


def get_optional_principal(
    request: Request,
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Optional[Principal]:
    user_id = _user_id_from_request(request, authorization)
    if user_id is None:
        return None
    return _principal_for(db, user_id)
