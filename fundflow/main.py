from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fundflow import db
from fundflow.config import AppInfo, get_settings
from fundflow.core.logging import get_logger, setup_logging
import fundflow.models  # registers the tables
from fundflow.routers import get_api_router
from fundflow.utils.errors import error_response

logger = get_logger(__name__)
ALLOWED_CREATE_ENV = {"dev", "local", "test"}


def _current_settings():
    return get_settings()


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    """Configure middleware using a fresh snapshot of the settings."""

    runtime_settings = _current_settings()
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Stripe-Signature", "X-Webhook-Signature", "X-Webhook-Timestamp"],
    )

    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware, app_name="fundflow")
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _assert_webhook_secrets(settings: Any) -> None:
    """Fail fast when payment webhook secrets are missing outside dev."""

    env_lower = settings.app_env.lower()
    missing: list[str] = []
    if not (settings.mobile_money_webhook_secret or settings.mobile_money_webhook_secret_next):
        missing.append("MOBILE_MONEY_WEBHOOK_SECRET")
    if settings.STRIPE_ENABLED and not settings.STRIPE_WEBHOOK_SECRET:
        missing.append("STRIPE_WEBHOOK_SECRET")

    if missing and env_lower != "dev":
        logger.error(
            "Payment webhook secrets are missing; configure them before startup.",
            extra={"env": settings.app_env, "missing": missing},
        )
        raise RuntimeError("Missing payment webhook secrets in non-dev environment.")
    if missing:
        logger.warning(
            "Payment webhook secrets are not configured; allowed in dev only.",
            extra={"env": settings.app_env, "missing": missing},
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = _current_settings()
    setup_logging(settings.LOG_LEVEL, env=settings.app_env)
    logger.info("Application startup", extra={"env": settings.app_env})
    _assert_webhook_secrets(settings)

    if settings.mobile_money_webhook_secret is None and settings.mobile_money_webhook_secret_next:
        logger.warning(
            "Primary mobile money webhook secret unset; relying on MOBILE_MONEY_WEBHOOK_SECRET_NEXT only.",
            extra={"env": settings.app_env},
        )
    db.init_engine()
    if settings.ALLOW_DB_CREATE_ALL and settings.app_env.lower() in ALLOWED_CREATE_ENV:
        logger.warning(
            "Running Base.metadata.create_all() because APP_ENV=%s and ALLOW_DB_CREATE_ALL=True",
            settings.app_env,
        )
        db.create_all()
    else:
        logger.info(
            "Skipping create_all(); use Alembic migrations. APP_ENV=%s, ALLOW_DB_CREATE_ALL=%s",
            settings.app_env,
            settings.ALLOW_DB_CREATE_ALL,
        )
    try:
        yield
    finally:
        db.close_engine()
        logger.info("Application shutdown", extra={"env": settings.app_env})


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
app.include_router(get_api_router())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    payload = error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.")
    return JSONResponse(status_code=500, content=payload)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content: dict[str, Any] = detail
    else:
        content = error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    payload = error_response(
        "INVALID_PAYLOAD",
        "Request payload failed validation.",
        {"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(status_code=422, content=payload)


__all__ = ["app"]
