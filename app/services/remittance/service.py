"""Remittance service: batch queries and the import/match/post/cancel actions."""
from datetime import date, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from app.config.billing import BillingSettings, get_billing_settings
from app.models.database import RemittanceBatch, RemittanceLineItem
from app.models.enums import MatchStatus, RemittanceBatchStatus
from app.services.remittance.importer import RemittanceImporter
from app.services.remittance.matcher import MatchingEngine
from app.services.remittance.posting import AutoPostingEngine, PostingReport
from app.utils.cache import invalidate_batch, invalidate_claim, invalidate_invoice
from app.utils.errors import ConflictError, NotFoundError
from app.utils.logger import get_logger

logger = get_logger(__name__)


class RemittanceService:
    """Entry point for remittance batches and their line items."""

    def __init__(self, db: Session, settings: Optional[BillingSettings] = None):
        self.db = db
        self.settings = settings or get_billing_settings()

    def import_file(self, filename: str, content: bytes) -> RemittanceBatch:
        batch = RemittanceImporter(self.db, self.settings).import_file(filename, content)
        invalidate_batch(batch.id)
        return batch

    def list_batches(
        self,
        skip: int = 0,
        limit: int = 100,
        status: Optional[RemittanceBatchStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Tuple[List[RemittanceBatch], int]:
        query = self.db.query(RemittanceBatch)
        if status is not None:
            query = query.filter(RemittanceBatch.status == status)
        if start_date is not None:
            query = query.filter(RemittanceBatch.import_date >= start_date)
        if end_date is not None:
            query = query.filter(RemittanceBatch.import_date < end_date + timedelta(days=1))
        total = query.count()
        batches = query.order_by(RemittanceBatch.id.desc()).offset(skip).limit(limit).all()
        return batches, total

    def get_batch(self, batch_id: int) -> RemittanceBatch:
        batch = (
            self.db.query(RemittanceBatch)
            .options(selectinload(RemittanceBatch.line_items))
            .filter(RemittanceBatch.id == batch_id)
            .first()
        )
        if batch is None:
            raise NotFoundError("RemittanceBatch", str(batch_id))
        return batch

    def list_items(
        self,
        batch_id: int,
        match_status: Optional[MatchStatus] = None,
        needs_review: Optional[bool] = None,
    ) -> List[RemittanceLineItem]:
        self.get_batch(batch_id)
        query = self.db.query(RemittanceLineItem).filter(RemittanceLineItem.batch_id == batch_id)
        if match_status is not None:
            query = query.filter(RemittanceLineItem.match_status == match_status)
        if needs_review is not None:
            query = query.filter(RemittanceLineItem.needs_review.is_(needs_review))
        return query.order_by(RemittanceLineItem.line_number).all()

    def get_item(self, item_id: int) -> RemittanceLineItem:
        item = self.db.get(RemittanceLineItem, item_id)
        if item is None:
            raise NotFoundError("RemittanceLineItem", str(item_id))
        return item

    def list_unmatched(
        self,
        skip: int = 0,
        limit: int = 100,
        search: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Tuple[List[RemittanceLineItem], int]:
        """Unmatched, unposted lines across batches, searchable by patient or reference."""
        query = (
            self.db.query(RemittanceLineItem)
            .filter(RemittanceLineItem.match_status == MatchStatus.UNMATCHED)
            .filter(RemittanceLineItem.posted.is_(False))
        )
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                RemittanceLineItem.patient_name.ilike(pattern),
                RemittanceLineItem.claim_reference.ilike(pattern),
                RemittanceLineItem.invoice_reference.ilike(pattern),
            ))
        if start_date is not None:
            query = query.filter(RemittanceLineItem.payment_date >= start_date)
        if end_date is not None:
            query = query.filter(RemittanceLineItem.payment_date <= end_date)
        total = query.count()
        items = query.order_by(RemittanceLineItem.id).offset(skip).limit(limit).all()
        return items, total

    def match_item(
        self,
        item_id: int,
        claim_id: Optional[int] = None,
        invoice_id: Optional[int] = None,
    ) -> RemittanceLineItem:
        item = self.get_item(item_id)
        MatchingEngine(self.db, self.settings).manual_match(item, claim_id=claim_id, invoice_id=invoice_id)
        item.batch.settle_status()
        self.db.commit()
        self.db.refresh(item)
        invalidate_batch(item.batch_id)
        return item

    def unmatch_item(self, item_id: int) -> RemittanceLineItem:
        item = self.get_item(item_id)
        MatchingEngine(self.db, self.settings).unmatch(item)
        item.batch.settle_status()
        self.db.commit()
        self.db.refresh(item)
        invalidate_batch(item.batch_id)
        logger.info("Remittance line unmatched", line_item_id=item.id)
        return item

    def rematch_batch(self, batch_id: int) -> RemittanceBatch:
        batch = self.get_batch(batch_id)
        MatchingEngine(self.db, self.settings).match_batch(batch)
        batch.settle_status()
        self.db.commit()
        invalidate_batch(batch.id)
        return batch

    def auto_post(self, batch_id: int) -> PostingReport:
        batch = self.get_batch(batch_id)
        report = AutoPostingEngine(self.db, self.settings).post_batch(batch)
        invalidate_batch(batch.id)
        for item in batch.line_items:
            if item.matched_claim_id:
                invalidate_claim(item.matched_claim_id)
            target = item.matched_invoice or (item.matched_claim.invoice if item.matched_claim else None)
            if target is not None:
                invalidate_invoice(target.id, target.patient_id)
        return report

    def cancel_batch(self, batch_id: int) -> RemittanceBatch:
        """
        Request cancellation of posting for a batch.

        Posting stops before the next unprocessed line; lines already posted
        stay posted (reverse them by voiding their payments). The request holds
        until a posting run stops on it, after which auto-post may run again.
        """
        batch = self.get_batch(batch_id)
        if batch.status == RemittanceBatchStatus.PROCESSED:
            raise ConflictError(
                "Batch is fully posted; void individual payments instead",
                details={"batch_id": batch.id},
            )
        batch.cancel_requested = True
        self.db.commit()
        self.db.refresh(batch)
        invalidate_batch(batch.id)
        logger.info("Batch cancellation requested", batch_id=batch.id, posted_count=batch.posted_count)
        return batch

