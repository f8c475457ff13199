from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from fleetcrm.api.routes import router as api_router
from fleetcrm.core.config import get_settings
from fleetcrm.logging import configure_logging
from fleetcrm.middleware.correlation_id import CorrelationIdMiddleware
from fleetcrm.middleware.request_logging import RequestLoggingMiddleware
from fleetcrm.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("fleetcrm.lifecycle")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("system.started", extra={"service": settings.app_name, "environment": settings.app_env})
    yield
    logger.info("system.stopped")


app = FastAPI(title="Fleet CRM API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

settings = get_settings()
if settings.otel_enabled:
    setup_otel("fleetcrm", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
