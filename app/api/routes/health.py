"""Health check endpoints."""
import time
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, text
from sqlalchemy.orm import Session

from app.config.celery import celery_app
from app.config.database import get_db
from app.config.redis import get_redis_client
from app.models.database import Invoice, RemittanceLineItem
from app.models.enums import InvoiceStatus, MatchStatus
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)

API_VERSION = "1.0.0"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic liveness check.

    Use `/api/v1/health/detailed` for database, Redis and Celery status.
    """
    return HealthResponse(status="healthy", version=API_VERSION)


def _timed(check) -> dict:
    start = time.time()
    check()
    return {"status": "healthy", "response_time_ms": round((time.time() - start) * 1000, 2)}


@router.get("/health/detailed")
async def detailed_health_check(db: Session = Depends(get_db)):
    """
    Detailed health check including all dependencies.

    Also reports the reconciliation backlog: unmatched remittance lines,
    lines waiting for review and overdue invoices.
    """
    health_status = {
        "status": "healthy",
        "version": API_VERSION,
        "timestamp": datetime.utcnow().isoformat(),
        "components": {},
    }

    try:
        health_status["components"]["database"] = _timed(lambda: db.execute(text("SELECT 1")))
    except Exception as e:
        health_status["status"] = "degraded"
        health_status["components"]["database"] = {"status": "unhealthy", "error": str(e)}
        logger.error("Database health check failed", error=str(e))

    try:
        health_status["components"]["redis"] = _timed(lambda: get_redis_client().ping())
    except Exception as e:
        health_status["status"] = "degraded"
        health_status["components"]["redis"] = {"status": "unhealthy", "error": str(e)}
        logger.error("Redis health check failed", error=str(e))

    try:
        active_workers = celery_app.control.inspect().active()
        if active_workers:
            health_status["components"]["celery"] = {
                "status": "healthy",
                "active_workers": len(active_workers),
                "worker_names": list(active_workers.keys()),
            }
        else:
            health_status["status"] = "degraded"
            health_status["components"]["celery"] = {"status": "unhealthy", "error": "No active workers found"}
            logger.warning("Celery health check: No active workers")
    except Exception as e:
        health_status["status"] = "degraded"
        health_status["components"]["celery"] = {"status": "unhealthy", "error": str(e)}
        logger.error("Celery health check failed", error=str(e))

    try:
        unmatched = (
            db.query(func.count(RemittanceLineItem.id))
            .filter(RemittanceLineItem.match_status == MatchStatus.UNMATCHED)
            .filter(RemittanceLineItem.posted.is_(False))
            .scalar()
        )
        needs_review = (
            db.query(func.count(RemittanceLineItem.id))
            .filter(RemittanceLineItem.needs_review.is_(True))
            .scalar()
        )
        overdue = db.query(func.count(Invoice.id)).filter(Invoice.status == InvoiceStatus.OVERDUE).scalar()
        health_status["backlog"] = {
            "unmatched_remittance_lines": unmatched or 0,
            "lines_needing_review": needs_review or 0,
            "overdue_invoices": overdue or 0,
        }
    except Exception as e:
        logger.warning("Backlog summary failed", error=str(e))

    return health_status
