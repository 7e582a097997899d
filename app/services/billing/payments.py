"""Payment service: manual payments and voids."""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.models.database import Payment
from app.models.enums import InvoiceStatus, PaymentMethod, PaymentSource
from app.services.billing.invoices import InvoiceService
from app.services.billing.ledger import BalanceLedger
from app.utils.cache import invalidate_claim, invalidate_invoice
from app.utils.decimal_utils import money_str, parse_financial_amount, to_money
from app.utils.errors import ConflictError, NotFoundError, ValidationError
from app.utils.logger import get_logger

logger = get_logger(__name__)

MIN_PAYMENT = Decimal("0.01")
MAX_PAYMENT = Decimal("1000000.00")
MAX_REFERENCE_LENGTH = 50
MAX_NOTES_LENGTH = 500


class PaymentService:
    """Record, list and void payments; balances follow through the ledger."""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = BalanceLedger(db)
        self.invoices = InvoiceService(db)

    def list_payments(
        self,
        skip: int = 0,
        limit: int = 100,
        patient_id: Optional[str] = None,
        invoice_id: Optional[int] = None,
        payment_source: Optional[PaymentSource] = None,
        include_voided: bool = True,
    ) -> Tuple[List[Payment], int]:
        query = self.db.query(Payment)
        if patient_id:
            query = query.filter(Payment.patient_id == patient_id)
        if invoice_id is not None:
            query = query.filter(Payment.invoice_id == invoice_id)
        if payment_source is not None:
            query = query.filter(Payment.payment_source == payment_source)
        if not include_voided:
            query = query.filter(Payment.is_active.is_(True))

        total = query.count()
        payments = (
            query.order_by(Payment.payment_date.desc(), Payment.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return payments, total

    def get_payment(self, payment_id: int) -> Payment:
        payment = self.db.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError("Payment", str(payment_id))
        return payment

    def create_payment(self, data: Dict[str, Any]) -> Payment:
        """
        Record a manual payment against an invoice.

        Raises:
            ValidationError: Amount, method, reference or notes out of range,
                or the invoice belongs to another patient
            ConflictError: The invoice is draft or cancelled
        """
        amount = parse_financial_amount(data.get("amount"))
        if amount is None or not MIN_PAYMENT <= amount <= MAX_PAYMENT:
            raise ValidationError(
                f"Amount must be between {MIN_PAYMENT} and {MAX_PAYMENT}",
                details={"amount": data.get("amount")},
            )
        try:
            method = PaymentMethod(data.get("payment_method"))
        except ValueError:
            raise ValidationError(
                "Unknown payment method",
                details={"payment_method": data.get("payment_method"), "allowed": [m.value for m in PaymentMethod]},
            ) from None
        reference = data.get("reference_number")
        if reference and len(reference) > MAX_REFERENCE_LENGTH:
            raise ValidationError(f"Reference number is limited to {MAX_REFERENCE_LENGTH} characters")
        notes = data.get("notes")
        if notes and len(notes) > MAX_NOTES_LENGTH:
            raise ValidationError(f"Notes are limited to {MAX_NOTES_LENGTH} characters")

        invoice = self.invoices.get_invoice(int(data["invoice_id"]))
        patient_id = data.get("patient_id") or invoice.patient_id
        if patient_id != invoice.patient_id:
            raise ValidationError(
                "Invoice belongs to a different patient",
                details={"invoice_id": invoice.id, "patient_id": patient_id},
            )
        if invoice.status in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED):
            raise ConflictError(
                f"Cannot apply a payment to a {invoice.status.value} invoice",
                details={"invoice_id": invoice.id},
            )

        payment = Payment(
            amount=amount,
            payment_method=method,
            payment_source=PaymentSource(data.get("payment_source") or PaymentSource.PATIENT),
            payment_date=data.get("payment_date") or date.today(),
            reference_number=reference,
            processor_fee=to_money(data.get("processor_fee")),
            notes=notes,
            patient_id=patient_id,
            is_active=True,
        )
        payment.invoice = invoice
        self.db.add(payment)
        self.ledger.recompute_invoice(invoice)
        self.db.commit()
        self.db.refresh(payment)
        invalidate_invoice(invoice.id, invoice.patient_id)

        logger.info(
            "Payment recorded",
            payment_id=payment.id,
            invoice_id=invoice.id,
            amount=money_str(amount),
            method=method.value,
            balance_due=money_str(invoice.balance_due),
        )
        return payment

    def void_payment(self, payment_id: int, reason: str) -> Payment:
        """
        Void a payment and recompute the invoice (and claim) it was applied to.

        Voiding is the only way to reverse a posted remittance; the claim's
        status history is not rewritten.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ConflictError("A void reason is required", details={"payment_id": payment_id})

        payment = self.get_payment(payment_id)
        if not payment.is_active:
            raise ConflictError("Payment is already voided", details={"payment_id": payment.id})

        payment.is_active = False
        payment.voided_at = datetime.utcnow()
        payment.void_reason = reason[:MAX_NOTES_LENGTH]

        if payment.invoice is not None:
            self.ledger.recompute_invoice(payment.invoice)
        if payment.claim is not None:
            self.ledger.recompute_claim_paid(payment.claim)
        self.db.commit()
        self.db.refresh(payment)

        if payment.invoice_id:
            invalidate_invoice(payment.invoice_id, payment.patient_id)
        if payment.claim_id:
            invalidate_claim(payment.claim_id)
        logger.info("Payment voided", payment_id=payment.id, amount=money_str(payment.amount), reason=reason)
        return payment
