from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from notary.api.router import api_router
from notary.core.config import get_settings
from notary.core.telemetry import TelemetryRuntime, configure_logging, setup_telemetry, shutdown_telemetry
from notary.services.repository import get_repository
from notary.services.runtime import build_runtime, close_runtime

settings = get_settings()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # Bad key material or an unreachable ledger aborts startup here.
    app.state.runtime = await build_runtime(settings)
    try:
        yield
    finally:
        await close_runtime(app.state.runtime)
        app.state.runtime = None
        if _telemetry_runtime is not None:
            shutdown_telemetry(app, _telemetry_runtime)
        get_repository.cache_clear()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_telemetry(app, settings)


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
