"""Auto-posting engine.

Turns matched remittance lines into insurance payments. Each line item is
posted in its own transaction: the Payment, the recomputed claim and invoice
balances, the claim status change and the `posted` flag commit together or
not at all. Version conflicts roll the unit back and retry with exponential
backoff; other failures are recorded and never stop the rest of the batch.
"""
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.config.billing import BillingSettings, get_billing_settings
from app.models.database import Claim, Invoice, Payment, RemittanceBatch, RemittanceLineItem
from app.models.enums import (
    ClaimStatus,
    MatchStatus,
    PaymentMethod,
    PaymentSource,
    RemittanceBatchStatus,
)
from app.services.billing.ledger import BalanceLedger
from app.services.claims.state_machine import OPEN_STATUSES, state_machine
from app.services.remittance.matcher import OPEN_INVOICE_STATUSES
from app.utils.decimal_utils import ZERO, money_str, to_money
from app.utils.errors import ConflictError, NotFoundError
from app.utils.logger import bind_log_context, clear_log_context, get_logger

logger = get_logger(__name__)

POSTED = "posted"
SKIPPED = "skipped"
FLAGGED = "flagged"


@dataclass
class PostingReport:
    batch_id: int
    posted: int = 0
    skipped: int = 0
    flagged: List[int] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)
    cancelled: bool = False
    status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "posted": self.posted,
            "skipped": self.skipped,
            "flagged": self.flagged,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "status": self.status,
        }


class AutoPostingEngine:
    """Post matched remittance lines of a batch."""

    def __init__(self, db: Session, settings: Optional[BillingSettings] = None):
        self.db = db
        self.settings = settings or get_billing_settings()
        self.ledger = BalanceLedger(db)

    def post_batch(self, batch: RemittanceBatch) -> PostingReport:
        """
        Post every matched, unposted line of `batch`.

        Safe to run repeatedly: posted lines are skipped, so a second run
        creates no payments. The batch's `cancel_requested` flag is re-read
        before each line; once set, remaining lines are left untouched and
        the flag is consumed, so a later run picks up where this one stopped.
        The batch status is settled even when a line fails unexpectedly.

        Raises:
            ConflictError: If the batch failed to import
        """
        if batch.status == RemittanceBatchStatus.ERROR:
            raise ConflictError(
                "Batches that failed to import cannot be posted",
                details={"batch_id": batch.id},
            )

        report = PostingReport(batch_id=batch.id)
        bind_log_context(batch_id=batch.id)
        try:
            batch.status = RemittanceBatchStatus.PROCESSING
            self.db.commit()

            item_ids = [item.id for item in batch.line_items]
            logger.info("Auto-posting started", item_count=len(item_ids))

            for item_id in item_ids:
                self.db.refresh(batch, attribute_names=["cancel_requested"])
                if batch.cancel_requested:
                    report.cancelled = True
                    logger.info("Auto-posting cancelled", remaining=len(item_ids) - report.posted - report.skipped)
                    break
                self._post_with_retry(item_id, report)
        finally:
            self._settle(batch, report)
            clear_log_context("batch_id")

        logger.info(
            "Auto-posting finished",
            batch_id=batch.id,
            posted=report.posted,
            skipped=report.skipped,
            flagged=len(report.flagged),
            failed=len(report.failed),
            cancelled=report.cancelled,
            status=report.status,
        )
        return report

    def _settle(self, batch: RemittanceBatch, report: PostingReport) -> None:
        # Anything left uncommitted belongs to a line that did not finish
        self.db.rollback()
        if report.cancelled:
            batch.cancel_requested = False
        batch.refresh_counts()
        batch.settle_status()
        self.db.commit()
        report.status = batch.status.value

    def _post_with_retry(self, item_id: int, report: PostingReport) -> None:
        attempts = max(self.settings.posting_max_attempts, 1)
        for attempt in range(attempts):
            item = self.db.get(RemittanceLineItem, item_id)
            if item is None:
                report.failed.append({"line_item_id": item_id, "reason": "Line item not found", "retriable": False})
                return
            try:
                outcome = self.post_line_item(item)
                self.db.commit()
            except StaleDataError:
                self.db.rollback()
                if attempt + 1 >= attempts:
                    logger.warning("Posting gave up after version conflicts", line_item_id=item_id, attempts=attempts)
                    report.failed.append({
                        "line_item_id": item_id,
                        "reason": "Concurrent update; retry later",
                        "retriable": True,
                    })
                    return
                delay = self.settings.posting_backoff_seconds * (2 ** attempt)
                logger.info("Version conflict while posting, retrying", line_item_id=item_id, attempt=attempt + 1, delay=delay)
                time.sleep(delay)
                continue
            except (ConflictError, NotFoundError) as e:
                self.db.rollback()
                self._flag(item_id, e.message)
                report.failed.append({"line_item_id": item_id, "reason": e.message, "retriable": False})
                return
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("Posting failed on database error", line_item_id=item_id, error=str(e), exc_info=True)
                report.failed.append({
                    "line_item_id": item_id,
                    "reason": f"Database error: {type(e).__name__}",
                    "retriable": True,
                })
                return

            if outcome == POSTED:
                report.posted += 1
            elif outcome == FLAGGED:
                report.flagged.append(item_id)
            else:
                report.skipped += 1
            return

    def post_line_item(self, item: RemittanceLineItem, today: Optional[date] = None) -> str:
        """
        Apply one line item without committing.

        Returns:
            "posted", "skipped" (already posted or not matched) or "flagged"
            (needs manual review)

        Raises:
            ConflictError: The target cannot take a payment in its current status
        """
        if item.posted or item.match_status != MatchStatus.MATCHED:
            return SKIPPED

        amount = to_money(item.amount)
        if amount < ZERO:
            return self._mark_review(item, f"Negative remittance amount {amount} requires manual posting")

        if item.matched_claim_id is not None:
            claim = item.matched_claim
            if claim is None:
                raise NotFoundError("Claim", str(item.matched_claim_id))
            return self._post_to_claim(item, claim, amount, today)

        invoice = item.matched_invoice
        if invoice is None:
            raise NotFoundError("Invoice", str(item.matched_invoice_id))
        return self._post_to_invoice(item, invoice, amount, today)

    def _post_to_claim(self, item: RemittanceLineItem, claim: Claim, amount, today: Optional[date]) -> str:
        if claim.status not in OPEN_STATUSES:
            raise ConflictError(
                f"Claim {claim.claim_number} is {claim.status.value} and cannot take a payment",
                details={"claim_id": claim.id, "line_item_id": item.id, "status": claim.status.value},
            )

        if amount == ZERO:
            if not item.denial_reason:
                return self._mark_review(item, "Zero-amount remittance without a denial reason")
            state_machine.transition(claim, ClaimStatus.DENIED, note=item.denial_reason)
            self._mark_posted(item)
            logger.info("Claim denied by remittance", line_item_id=item.id, claim_id=claim.id)
            return POSTED

        payment = self._new_payment(item, amount, claim.invoice, today)
        payment.claim = claim
        if payment.invoice is None:
            payment.patient_id = claim.patient_id

        paid = self.ledger.recompute_claim_paid(claim)
        if claim.invoice is not None:
            self.ledger.recompute_invoice(claim.invoice, today)

        target = ClaimStatus.PAID if paid >= claim.expected_insurance_amount else ClaimStatus.PARTIAL
        if claim.status != target:
            state_machine.transition(
                claim,
                target,
                note=f"Remittance {self._reference(item)}: paid {money_str(amount)}",
            )

        self._mark_posted(item)
        logger.info(
            "Remittance posted to claim",
            line_item_id=item.id,
            claim_id=claim.id,
            amount=money_str(amount),
            paid_amount=money_str(paid),
            claim_status=claim.status.value,
        )
        return POSTED

    def _post_to_invoice(self, item: RemittanceLineItem, invoice: Invoice, amount, today: Optional[date]) -> str:
        if invoice.status not in OPEN_INVOICE_STATUSES:
            raise ConflictError(
                f"Invoice {invoice.invoice_number} is {invoice.status.value} and cannot take a payment",
                details={"invoice_id": invoice.id, "line_item_id": item.id, "status": invoice.status.value},
            )
        if amount == ZERO:
            return self._mark_review(item, "Zero-amount remittance matched to an invoice")

        self._new_payment(item, amount, invoice, today)
        self.ledger.recompute_invoice(invoice, today)
        self._mark_posted(item)
        logger.info(
            "Remittance posted to invoice",
            line_item_id=item.id,
            invoice_id=invoice.id,
            amount=money_str(amount),
            balance_due=money_str(invoice.balance_due),
        )
        return POSTED

    def _new_payment(self, item: RemittanceLineItem, amount, invoice: Optional[Invoice], today: Optional[date]) -> Payment:
        payment = Payment(
            amount=amount,
            payment_method=item.payment_method or PaymentMethod.BANK_TRANSFER,
            payment_source=PaymentSource.INSURANCE,
            payment_date=item.payment_date or today or date.today(),
            reference_number=self._reference(item),
            notes=f"Auto-posted from remittance batch {item.batch_id}",
            patient_id=invoice.patient_id if invoice is not None else None,
            processor_fee=ZERO,
            is_active=True,
        )
        payment.invoice = invoice
        payment.remittance_line_item = item
        self.db.add(payment)
        return payment

    @staticmethod
    def _reference(item: RemittanceLineItem) -> str:
        return f"{item.batch_id}-{item.id}"

    @staticmethod
    def _mark_posted(item: RemittanceLineItem) -> None:
        item.posted = True
        item.posted_at = datetime.utcnow()
        item.needs_review = False
        item.review_reason = None

    @staticmethod
    def _mark_review(item: RemittanceLineItem, reason: str) -> str:
        item.needs_review = True
        item.review_reason = reason
        logger.info("Remittance line flagged for review", line_item_id=item.id, reason=reason)
        return FLAGGED

    def _flag(self, item_id: int, reason: str) -> None:
        item = self.db.get(RemittanceLineItem, item_id)
        if item is None:
            return
        self._mark_review(item, reason)
        self.db.commit()
