# backend/letlog/middleware/request_id.py
from __future__ import annotations

import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# Client-supplied ids end up in every log line; keep them short and printable.
_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    return request_id_ctx.get()


def new_request_id(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex}"


def accept_request_id(raw: Optional[str]) -> str:
    """The caller's id when it is safe to log, otherwise a fresh one."""
    rid = (raw or "").strip()
    return rid if _SAFE_ID.match(rid) else new_request_id()


@contextmanager
def bind_request_id(rid: Optional[str] = None) -> Iterator[str]:
    """Scope a request id outside HTTP, e.g. one CLI sweep run."""
    rid = rid or new_request_id()
    token = request_id_ctx.set(rid)
    try:
        yield rid
    finally:
        request_id_ctx.reset(token)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tags each request with an id, echoed back in X-Request-ID.

    The id is kept on request.state as well as in the ContextVar, because the
    request logging middleware reads it after the ContextVar scope has closed.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = accept_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = rid

        with bind_request_id(rid):
            resp = await call_next(request)
        resp.headers[REQUEST_ID_HEADER] = rid
        return resp
