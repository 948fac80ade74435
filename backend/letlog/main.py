# backend/letlog/main.py
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .http_errors import install_error_handlers
from .logging_config import configure_logging

from .middleware.request_id import RequestIDMiddleware
from .middleware.structured_logging import StructuredLoggingMiddleware

from .routers.health import router as health_router
from .routers.access import router as access_router
from .routers.invitations import router as invitations_router
from .routers.tenancies import router as tenancies_router
from .routers.reviews import router as reviews_router

API_PREFIX = "/api"


def _cors_origins() -> list[str]:
    val = getattr(settings, "cors_allow_origins", ["*"])
    if isinstance(val, str):
        v = val.strip()
        return ["*"] if v == "*" else [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(val, list) and val:
        return val
    return ["*"]


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="LetLog Policy Engine",
        version=settings.policy_version,
    )

    # Starlette runs the last-added middleware first: RequestID wraps logging.
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    install_error_handlers(app)

    # Core
    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(access_router, prefix=API_PREFIX)

    # Lifecycles
    app.include_router(invitations_router, prefix=API_PREFIX)
    app.include_router(tenancies_router, prefix=API_PREFIX)
    app.include_router(reviews_router, prefix=API_PREFIX)

    return app


app = create_app()
