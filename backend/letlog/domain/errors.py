# backend/letlog/domain/errors.py
from __future__ import annotations

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    DUPLICATE_PENDING_INVITATION = "duplicate_pending_invitation"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    UNAUTHORIZED = "unauthorized"  # role mismatch
    FORBIDDEN = "forbidden"  # ownership mismatch
    ALREADY_REVIEWED = "already_reviewed"


# Kinds whose reason may leak resource existence to the wrong actor.
SECURITY_SENSITIVE = frozenset({ErrorKind.UNAUTHORIZED, ErrorKind.FORBIDDEN})


class PolicyError(Exception):
    """
    Raised by the lifecycle engines when an action is not allowed.

    `kind` is stable and machine-readable; `reason` is for humans.
    `resource` names the record a NOT_FOUND refers to ("invitation", ...).
    Callers may add context with `with_context` but never change the kind.
    """

    def __init__(self, kind: ErrorKind, reason: str, *, resource: Optional[str] = None):
        super().__init__(reason)
        self.kind = kind
        self.reason = reason
        self.resource = resource

    def with_context(self, context: str) -> "PolicyError":
        return PolicyError(self.kind, f"{context}: {self.reason}", resource=self.resource)

    def __repr__(self) -> str:
        return f"PolicyError({self.kind.value!r}, {self.reason!r})"


def not_found(what: str, ident: Optional[object] = None) -> PolicyError:
    if ident is None:
        return PolicyError(ErrorKind.NOT_FOUND, f"{what} not found", resource=what)
    return PolicyError(ErrorKind.NOT_FOUND, f"{what} {ident} not found", resource=what)
