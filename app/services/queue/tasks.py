"""
Celery task definitions for background billing work.

Tasks:
- auto_post_batch: post every matched line of a remittance batch
- mark_overdue_invoices: daily sweep flagging past-due invoices (beat schedule)
"""
from celery import Task
from sqlalchemy.orm import Session

from app.config.celery import celery_app
from app.config.database import SessionLocal
from app.config.sentry import add_breadcrumb, capture_exception
from app.services.billing.invoices import InvoiceService
from app.services.commands import AutoPost
from app.utils.errors import AppError
from app.utils.logger import get_logger

logger = get_logger(__name__)


@celery_app.task(bind=True, name="auto_post_batch")
def auto_post_batch(self: Task, batch_id: int):
    """
    Auto-post a remittance batch.

    Domain errors (unknown batch, error batch) are logged and returned, not
    retried. Anything else is reported to Sentry and re-raised so Celery
    records the failure.
    """
    logger.info("Auto-post task started", batch_id=batch_id, task_id=self.request.id)
    add_breadcrumb(
        message="Auto-post task started",
        category="celery",
        level="info",
        data={"batch_id": batch_id, "task_id": self.request.id},
    )

    db: Session = SessionLocal()
    try:
        report = AutoPost(batch_id=batch_id).execute(db)
        return report.to_dict()
    except AppError as e:
        db.rollback()
        logger.warning("Auto-post task rejected", batch_id=batch_id, error=e.message, code=e.code)
        return {"batch_id": batch_id, "error": e.code, "message": e.message}
    except Exception as e:
        db.rollback()
        logger.error("Auto-post task failed", batch_id=batch_id, error=str(e), exc_info=True)
        capture_exception(
            e,
            level="error",
            context={"task": {"name": "auto_post_batch", "task_id": self.request.id, "batch_id": batch_id}},
            tags={"component": "celery", "task": "auto_post_batch"},
        )
        raise
    finally:
        db.close()


@celery_app.task(bind=True, name="mark_overdue_invoices")
def mark_overdue_invoices(self: Task):
    """Flag open invoices past their due date that still carry a balance."""
    db: Session = SessionLocal()
    try:
        count = InvoiceService(db).mark_overdue()
        logger.info("Overdue sweep finished", marked=count, task_id=self.request.id)
        return {"marked_overdue": count}
    except Exception as e:
        db.rollback()
        logger.error("Overdue sweep failed", error=str(e), exc_info=True)
        capture_exception(e, level="error", tags={"component": "celery", "task": "mark_overdue_invoices"})
        raise
    finally:
        db.close()
