from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import APIRouter, FastAPI, Request

from edugate.apps.api.errors import install_exception_handlers
from edugate.apps.api.response import API_VERSION
from edugate.apps.api.routes.admin import router as admin_router
from edugate.apps.api.routes.health import router as health_router
from edugate.apps.api.routes.permissions import router as permissions_router
from edugate.apps.api.routes.subscriptions import router as subscriptions_router
from edugate.core.config import get_settings
from edugate.core.logging import configure_logging


logger = logging.getLogger(__name__)

_V1_ROUTERS: tuple[APIRouter, ...] = (
    health_router,
    subscriptions_router,
    permissions_router,
    admin_router,
)


async def _tag_request(request: Request, call_next):
    # Every response, including error envelopes, echoes the request id.
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    started = time.perf_counter()
    response = await call_next(request)
    logger.debug(
        "request_completed method=%s path=%s status=%s latency_ms=%.1f",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000.0,
    )
    response.headers.setdefault("X-Request-Id", request_id)
    return response


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=f"{get_settings().app_name} authorization API", version=API_VERSION)
    app.middleware("http")(_tag_request)
    install_exception_handlers(app)
    for router in _V1_ROUTERS:
        app.include_router(router, prefix=f"/{API_VERSION}")
    return app


app = create_app()
