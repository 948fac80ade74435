# backend/letlog/http_errors.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .domain.errors import SECURITY_SENSITIVE, ErrorKind, PolicyError

log = logging.getLogger("letlog.http")

STATUS_FOR_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.EXPIRED: 410,
    ErrorKind.ALREADY_USED: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.DUPLICATE_PENDING_INVITATION: 409,
    ErrorKind.ALREADY_REVIEWED: 409,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.FORBIDDEN: 403,
}

GENERIC_DENIAL = "Not authorized"
NEW_INVITATION_HINT = "Ask your landlord to send a new invitation."


def _wants_new_invitation(exc: PolicyError) -> bool:
    if exc.kind in (ErrorKind.ALREADY_USED, ErrorKind.EXPIRED):
        return True
    # a dead or mistyped invite link; tenancy and job lookups get no hint
    return exc.kind == ErrorKind.NOT_FOUND and exc.resource == "invitation"


def policy_error_body(exc: PolicyError) -> tuple[int, dict]:
    status = STATUS_FOR_KIND.get(exc.kind, 400)
    if exc.kind in SECURITY_SENSITIVE:
        # the specific reason stays in the logs
        return status, {"detail": GENERIC_DENIAL, "kind": exc.kind.value}

    body = {"detail": exc.reason, "kind": exc.kind.value}
    if _wants_new_invitation(exc):
        body["hint"] = NEW_INVITATION_HINT
    return status, body


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PolicyError)
    async def handle_policy_error(request: Request, exc: PolicyError):
        status, body = policy_error_body(exc)
        log.info(
            "policy error %s at %s: %s",
            exc.kind.value,
            request.url.path,
            exc.reason,
            extra={"kind": exc.kind.value},
        )
        return JSONResponse(status_code=status, content=body)

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})
