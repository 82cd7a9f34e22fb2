"""
Health check endpoint.

Used by load balancers, monitoring systems, and humans
to verify the application is running and responsive.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gull_ledger.api.dependencies import pending_writes
from gull_ledger.logging_setup import get_logger
from gull_ledger.models.base import get_db

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(db: Session = Depends(get_db)):
    """
    Return application health including database connectivity.

    pending_writes counts entries accepted while the database was
    unreachable and not yet written.
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except SQLAlchemyError as e:
        logger.warning("Database health check failed: %s", e)
        db_status = "unhealthy"

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "service": "gull-ledger",
        "database": db_status,
        "pending_writes": len(pending_writes),
    }
