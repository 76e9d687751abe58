import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

# Import after dotenv is loaded
from opsight.api import health, insights
from opsight.core.config import settings, validate_config
from opsight.core.database import create_all_tables
from opsight.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from opsight.core.logging import configure_logging
from opsight.core.middleware.metrics import MetricsMiddleware
from opsight.core.middleware.request_id import RequestIdMiddleware
from opsight.core.middleware.tracing import TracingMiddleware
from opsight.core.tracing import setup_tracing
from opsight.features.insights.gateway import InMemoryInsightStore, get_store

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))
setup_tracing(enabled=settings.OTEL_ENABLED)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("opsight")
    logger.info("Starting opsight insight service...")
    app.state.startup_time = time.time()
    if not isinstance(get_store(), InMemoryInsightStore):
        create_all_tables()
    try:
        yield
    finally:
        logging.getLogger("opsight").info("Stopping opsight insight service...")


app = FastAPI(title="opsight - Insight Engine", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(TracingMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(insights.router, tags=["insights"])
app.include_router(health.root_router, tags=["health"])
