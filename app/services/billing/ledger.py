"""Balance ledger.

Derives invoice totals, balances and statuses from line items and active
payments, and rolls them up per patient. Nothing here commits; callers
recompute inside the same transaction as the payment change that triggered
it so a balance can never drift from its payments.
"""
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from app.models.database import Claim, Invoice
from app.models.enums import InvoiceStatus
from app.utils.decimal_utils import ZERO, sum_money
from app.utils.logger import get_logger

logger = get_logger(__name__)

# Statuses the ledger never rewrites
FROZEN_INVOICE_STATUSES = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED})

OVERDUE_ELIGIBLE = frozenset({InvoiceStatus.PENDING, InvoiceStatus.SENT, InvoiceStatus.PARTIAL})


class BalanceLedger:
    """Recompute invoice and claim money fields from their payments."""

    def __init__(self, db: Session):
        self.db = db

    def recompute_invoice(self, invoice: Invoice, today: Optional[date] = None) -> Invoice:
        """
        Refresh line totals, total_amount, balance_due and (for open invoices) status.

        balance_due = max(total_amount - sum(active payments), 0). Overpayment
        is not stored on the invoice; it surfaces as account credit in
        `patient_balance`.
        """
        for item in invoice.line_items:
            item.total = item.compute_total()

        total = sum_money(item.total for item in invoice.line_items)
        applied = self.applied_amount(invoice)
        invoice.total_amount = total
        invoice.balance_due = max(total - applied, ZERO)

        if invoice.status not in FROZEN_INVOICE_STATUSES:
            invoice.status = self._derive_status(invoice, applied, today or date.today())

        logger.debug(
            "Invoice balance recomputed",
            invoice_id=invoice.id,
            total=str(total),
            applied=str(applied),
            balance_due=str(invoice.balance_due),
            status=invoice.status.value,
        )
        return invoice

    def recompute_claim_paid(self, claim: Claim) -> Decimal:
        """Set claim.paid_amount to the sum of its active insurance payments."""
        claim.paid_amount = sum_money(p.amount for p in claim.payments if p.is_active)
        return claim.paid_amount

    @staticmethod
    def applied_amount(invoice: Invoice) -> Decimal:
        return sum_money(p.amount for p in invoice.active_payments)

    def patient_balance(self, patient_id: str) -> Dict[str, Decimal]:
        """
        Roll up a patient's billing position.

        Cancelled invoices are excluded. Each invoice contributes its unpaid
        remainder to `outstanding` or its overpayment to `account_credit`,
        never both, so credit on one invoice does not hide a debt on another.
        """
        invoices: List[Invoice] = (
            self.db.query(Invoice)
            .options(selectinload(Invoice.payments))
            .filter(Invoice.patient_id == patient_id)
            .filter(Invoice.status != InvoiceStatus.CANCELLED)
            .all()
        )

        total_billed = ZERO
        total_paid = ZERO
        outstanding = ZERO
        account_credit = ZERO
        for invoice in invoices:
            billed = sum_money([invoice.total_amount])
            applied = self.applied_amount(invoice)
            total_billed += billed
            total_paid += applied
            if applied >= billed:
                account_credit += applied - billed
            else:
                outstanding += billed - applied

        return {
            "patient_id": patient_id,
            "invoice_count": len(invoices),
            "total_billed": total_billed,
            "total_paid": total_paid,
            "outstanding": outstanding,
            "account_credit": account_credit,
        }

    def mark_overdue_invoices(self, today: Optional[date] = None) -> List[Invoice]:
        """Flag open invoices past their due date that still carry a balance."""
        today = today or date.today()
        invoices = (
            self.db.query(Invoice)
            .filter(Invoice.status.in_(list(OVERDUE_ELIGIBLE)))
            .filter(Invoice.due_date.isnot(None))
            .filter(Invoice.due_date < today)
            .filter(Invoice.balance_due > 0)
            .all()
        )
        for invoice in invoices:
            invoice.status = InvoiceStatus.OVERDUE
        if invoices:
            logger.info("Invoices marked overdue", count=len(invoices))
        return invoices

    @staticmethod
    def _derive_status(invoice: Invoice, applied: Decimal, today: date) -> InvoiceStatus:
        if applied > ZERO and invoice.balance_due == ZERO:
            return InvoiceStatus.PAID
        if applied > ZERO:
            return InvoiceStatus.PARTIAL
        # Nothing applied (e.g. after a void): fall back to an unpaid state
        if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.PARTIAL):
            if invoice.due_date and invoice.due_date < today:
                return InvoiceStatus.OVERDUE
            return InvoiceStatus.PENDING
        return invoice.status
