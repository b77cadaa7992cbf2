from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from hiring_notifications.api.router import api_router
from hiring_notifications.core.config import get_settings
from hiring_notifications.core.telemetry import TelemetryRuntime, setup_api_telemetry, shutdown_api_telemetry
from hiring_notifications.services.notifications import get_notification_service
from hiring_notifications.services.repository import RepositoryError, get_repository

settings = get_settings()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    repository = get_repository()
    if repository.database_url:
        try:
            await repository.get_career_name_column()
        except RepositoryError as exc:
            logger.warning("career catalog not resolved at startup: %s", exc)
    try:
        yield
    finally:
        if _telemetry_runtime is not None:
            shutdown_api_telemetry(app, _telemetry_runtime)
        await repository.close()
        get_notification_service.cache_clear()
        get_repository.cache_clear()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_api_telemetry(app, settings)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
