# clientdesk/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import OperationalError
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from clientdesk.api.v1.router import api_router
from clientdesk.core.logging import configure_logging
from clientdesk.core.settings import settings

logger = logging.getLogger(__name__)


def _add_cors(app: FastAPI) -> None:
    origins = settings.CORS_ORIGINS
    if not origins:
        return
    # "*" no se puede combinar con credenciales
    wildcard = "*" in origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if wildcard else origins,
        allow_credentials=not wildcard,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Idempotent-Replay", "Retry-After"],
    )


def _inject_bearer_security(app: FastAPI) -> None:
    """
    bearerAuth global en OpenAPI (solo docs; la seguridad real la aplican
    las dependencias de cada endpoint).
    """
    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(
            title=settings.APP_NAME,
            version="1.0.0",
            description="Entregables por compra: versiones, aprobaciones y solicitudes de revisión",
            routes=app.routes,
        )
        schema.setdefault("components", {}).setdefault("securitySchemes", {})["bearerAuth"] = {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
        }
        schema["security"] = [{"bearerAuth": []}]
        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi


async def store_unavailable_handler(request: Request, exc: OperationalError):
    # caída/timeout del store: transitorio, el cliente puede reintentar
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(
        status_code=503,
        content={"detail": {"code": "store_unavailable", "message": "Database unavailable", "retryable": True}},
        headers={"Retry-After": "5"},
    )


def create_app() -> FastAPI:
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title=settings.APP_NAME)
    _add_cors(app)
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")
    _inject_bearer_security(app)
    app.add_exception_handler(OperationalError, store_unavailable_handler)

    @app.get("/", include_in_schema=False)
    def root():
        return RedirectResponse(url="/docs", status_code=302)

    app.include_router(api_router, prefix=settings.API_V1_STR)
    return app


app = create_app()
