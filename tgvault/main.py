import logging

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tgvault.api.v1.deps import enforce_rate_limit
from tgvault.api.v1.routers.admin import router as admin_router
from tgvault.api.v1.routers.objects import router as objects_router
from tgvault.app.services.bundle import ServiceBundle, get_service_bundle
from tgvault.common.config import get_settings
from tgvault.common.logging import setup_logging
from tgvault.domain.errors import VaultError
from tgvault.infra.observability.metrics import metrics_app
from tgvault.infra.observability.middleware import MetricsMiddleware

ERROR_CODE_BY_STATUS = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    413: "payload_too_large",
    415: "unsupported_media_type",
    429: "too_many_requests",
    500: "internal_error",
    502: "bad_gateway",
    503: "service_unavailable",
}


def _normalize_detail(detail):
    if isinstance(detail, dict):
        maybe_code = detail.get("error_code")
        cleaned = {k: v for k, v in detail.items() if k != "error_code"}
        if len(cleaned) == 1 and "message" in cleaned:
            cleaned = cleaned["message"]
        if not cleaned:
            cleaned = None
        return cleaned, maybe_code if isinstance(maybe_code, str) else None
    return detail, None


def _resolve_error_code(status_code: int, override: str | None = None) -> str:
    if override:
        return override
    if status_code == 422:
        return "validation_error"
    return ERROR_CODE_BY_STATUS.get(status_code, "unknown_error")


def _describe_transport(bundle: ServiceBundle) -> str:
    settings = bundle.settings
    return (
        f"api={settings.TELEGRAM_API_BASE_URL}, chat_id={settings.TELEGRAM_CHAT_ID}, "
        f"chunk_bytes={settings.TRANSPORT_CHUNK_SIZE_BYTES}, "
        f"max_attempts={settings.TRANSPORT_MAX_ATTEMPTS}"
    )


def create_app(bundle: ServiceBundle | None = None) -> FastAPI:
    if bundle is None:
        bundle = get_service_bundle()
    settings = bundle.settings
    setup_logging(settings.LOG_LEVEL)
    app = FastAPI(
        title="tgvault",
        version="1.0.0",
        description="Encrypted image storage on top of a Telegram chat",
    )
    app.state.bundle = bundle
    # Shared for the process lifetime; built here so every request sees one table.
    bundle.rate_limiter()

    # Optional CORS
    if settings.CORS_ENABLED:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Routers
    app.include_router(
        objects_router,
        prefix="/api/v1",
        tags=["objects"],
        dependencies=[Depends(enforce_rate_limit)],
    )
    app.include_router(
        admin_router,
        prefix="/api/v1",
        tags=["admin"],
    )

    # Metrics
    if settings.ENABLE_METRICS:
        app.add_middleware(MetricsMiddleware)
        app.mount("/metrics", metrics_app)

    @app.on_event("startup")
    def on_startup() -> None:
        startup_logger = logging.getLogger("tgvault.startup")
        transport_text = _describe_transport(bundle)
        try:
            bundle.objects()
        except ValueError as exc:
            startup_logger.error(
                "Object store configuration is invalid; refusing to start."
                " [event=object_store_config_invalid] (%s, error=%s)",
                transport_text,
                exc,
            )
            raise
        startup_logger.info(
            "Object store ready. [event=object_store_ready] (%s)", transport_text
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger = logging.getLogger("http")
        normalized_detail, code_override = _normalize_detail(exc.detail)
        logger.log(
            logging.WARNING if exc.status_code < 500 else logging.ERROR,
            "http_exception status=%s detail=%s method=%s route=%s request_id=%s",
            exc.status_code,
            normalized_detail,
            request.method,
            getattr(request.scope.get("route"), "path", request.url.path),
            request.headers.get("X-Request-Id"),
            extra={
                "extra": {
                    "status": exc.status_code,
                    "detail": normalized_detail,
                    "error_code": _resolve_error_code(exc.status_code, code_override),
                    "method": request.method,
                    "request_id": request.headers.get("X-Request-Id"),
                }
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            media_type="application/problem+json",
            headers=getattr(exc, "headers", None),
            content={
                "type": "about:blank",
                "title": "HTTP Error",
                "status": exc.status_code,
                "detail": normalized_detail,
                "error_code": _resolve_error_code(exc.status_code, code_override),
                "instance": str(request.url),
                "request_id": request.headers.get("X-Request-Id"),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        return JSONResponse(
            status_code=422,
            media_type="application/problem+json",
            content={
                "type": "about:blank",
                "title": "Validation Error",
                "status": 422,
                "detail": jsonable_encoder(exc.errors()),
                "error_code": _resolve_error_code(422),
                "instance": str(request.url),
                "request_id": request.headers.get("X-Request-Id"),
            },
        )

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": app.version}

    @app.get("/ready")
    def ready():
        try:
            bundle.objects().ping()
        except VaultError as exc:
            return {"status": "not_ready", "detail": {"transport": str(exc)}}
        except ValueError as exc:
            return {"status": "not_ready", "detail": {"config": str(exc)}}
        return {"status": "ready"}

    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run("tgvault.main:app", host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
