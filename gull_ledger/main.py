"""
GULL Ledger: FastAPI application.

This is the entry point for the application.
All routers are registered here.
"""

from fastapi import FastAPI

from gull_ledger.config import get_settings
from gull_ledger.logging_setup import configure_logging, get_logger
from gull_ledger.api.health import router as health_router
from gull_ledger.api.accounts import router as accounts_router
from gull_ledger.api.entries import router as entries_router
from gull_ledger.api.filters import router as filters_router
from gull_ledger.api.history import router as history_router
from gull_ledger.api.limits import router as limits_router

settings = get_settings()

configure_logging(settings.LOG_LEVEL)
logger = get_logger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Stake ledger with per-user balances and undo/redo",
)

# Register routers
app.include_router(health_router)
app.include_router(accounts_router)
app.include_router(entries_router)
app.include_router(filters_router)
app.include_router(history_router)
app.include_router(limits_router)

logger.info("%s %s started (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
