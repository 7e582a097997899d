"""Invoice service."""
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from app.models.database import Invoice, InvoiceLineItem
from app.models.enums import ClaimStatus, InvoiceStatus
from app.services.billing.ledger import BalanceLedger
from app.utils.cache import invalidate_invoice
from app.utils.decimal_utils import ZERO, to_money
from app.utils.errors import ConflictError, NotFoundError, ValidationError
from app.utils.logger import get_logger

logger = get_logger(__name__)

MIN_QUANTITY = 1
MAX_QUANTITY = 100
DEFAULT_PAYMENT_TERMS_DAYS = 30

EDITABLE_FIELDS = ("patient_name", "provider_id", "insurance_company_id", "due_date", "notes", "status")

# Status values a user may set directly; paid/partial/overdue are derived
USER_STATUSES = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.PENDING, InvoiceStatus.SENT, InvoiceStatus.CANCELLED})


class InvoiceService:
    """Invoice queries, creation and line item maintenance."""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = BalanceLedger(db)

    def list_invoices(
        self,
        skip: int = 0,
        limit: int = 100,
        search: Optional[str] = None,
        status: Optional[InvoiceStatus] = None,
        patient_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Tuple[List[Invoice], int]:
        query = self.db.query(Invoice)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                Invoice.invoice_number.ilike(pattern),
                Invoice.patient_name.ilike(pattern),
                Invoice.patient_id.ilike(pattern),
            ))
        if status is not None:
            query = query.filter(Invoice.status == status)
        if patient_id:
            query = query.filter(Invoice.patient_id == patient_id)
        if start_date is not None:
            query = query.filter(Invoice.issue_date >= start_date)
        if end_date is not None:
            query = query.filter(Invoice.issue_date <= end_date)

        total = query.count()
        invoices = query.order_by(Invoice.id.desc()).offset(skip).limit(limit).all()
        return invoices, total

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = (
            self.db.query(Invoice)
            .options(selectinload(Invoice.line_items), selectinload(Invoice.payments))
            .filter(Invoice.id == invoice_id)
            .first()
        )
        if invoice is None:
            raise NotFoundError("Invoice", str(invoice_id))
        return invoice

    def create_from_appointment(self, appointment_id: str, data: Dict[str, Any]) -> Invoice:
        """
        Bill a completed appointment.

        `data` carries the patient, provider and payer of the appointment plus
        its service lines; appointments themselves live in the scheduling
        system. An appointment is billed at most once.
        """
        existing = (
            self.db.query(Invoice)
            .filter(Invoice.appointment_id == appointment_id)
            .filter(Invoice.status != InvoiceStatus.CANCELLED)
            .first()
        )
        if existing is not None:
            raise ConflictError(
                "Appointment has already been invoiced",
                details={"appointment_id": appointment_id, "invoice_id": existing.id},
            )

        issue_date = data.get("issue_date") or date.today()
        invoice = Invoice(
            invoice_number=self._next_invoice_number(issue_date),
            patient_id=data["patient_id"],
            patient_name=data.get("patient_name"),
            provider_id=data.get("provider_id"),
            appointment_id=appointment_id,
            insurance_company_id=data.get("insurance_company_id"),
            issue_date=issue_date,
            due_date=data.get("due_date") or issue_date + timedelta(days=DEFAULT_PAYMENT_TERMS_DAYS),
            notes=data.get("notes"),
            status=InvoiceStatus.PENDING if data.get("finalize", True) else InvoiceStatus.DRAFT,
            total_amount=ZERO,
            balance_due=ZERO,
        )
        for line in data.get("line_items") or []:
            invoice.line_items.append(self._build_line_item(line))

        self.ledger.recompute_invoice(invoice)
        self.db.add(invoice)
        self.db.commit()
        self.db.refresh(invoice)
        logger.info(
            "Invoice created from appointment",
            invoice_id=invoice.id,
            appointment_id=appointment_id,
            total=str(invoice.total_amount),
        )
        return invoice

    def update_invoice(self, invoice_id: int, changes: Dict[str, Any]) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED:
            raise ConflictError("Cancelled invoices cannot be edited", details={"invoice_id": invoice.id})
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError("Unknown or read-only invoice fields", details={"fields": unknown})

        if "status" in changes:
            new_status = InvoiceStatus(changes.pop("status"))
            if new_status not in USER_STATUSES:
                raise ConflictError(
                    f"Invoice status {new_status.value} is derived from payments",
                    details={"invoice_id": invoice.id},
                )
            if new_status == InvoiceStatus.CANCELLED and invoice.active_payments:
                raise ConflictError(
                    "Void the invoice's payments before cancelling it",
                    details={"invoice_id": invoice.id},
                )
            invoice.status = new_status

        for name, value in changes.items():
            setattr(invoice, name, value)
        self.ledger.recompute_invoice(invoice)
        return self._commit(invoice)

    def add_line_item(self, invoice_id: int, data: Dict[str, Any]) -> Invoice:
        invoice = self._editable(invoice_id)
        invoice.line_items.append(self._build_line_item(data))
        self.ledger.recompute_invoice(invoice)
        return self._commit(invoice)

    def remove_line_item(self, invoice_id: int, line_item_id: int) -> Invoice:
        invoice = self._editable(invoice_id)
        item = next((i for i in invoice.line_items if i.id == line_item_id), None)
        if item is None:
            raise NotFoundError("InvoiceLineItem", str(line_item_id))
        invoice.line_items.remove(item)
        self.ledger.recompute_invoice(invoice)
        return self._commit(invoice)

    def patient_balance(self, patient_id: str) -> Dict[str, Any]:
        return self.ledger.patient_balance(patient_id)

    def mark_overdue(self, today: Optional[date] = None) -> int:
        invoices = self.ledger.mark_overdue_invoices(today)
        self.db.commit()
        for invoice in invoices:
            invalidate_invoice(invoice.id, invoice.patient_id)
        return len(invoices)

    def _editable(self, invoice_id: int) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        if invoice.status in (InvoiceStatus.CANCELLED, InvoiceStatus.PAID):
            raise ConflictError(
                f"Line items of a {invoice.status.value} invoice cannot change",
                details={"invoice_id": invoice.id},
            )
        billed = [c for c in invoice.claims if c.status not in (ClaimStatus.DRAFT, ClaimStatus.CANCELLED)]
        if billed:
            raise ConflictError(
                "Line items cannot change once a claim has been submitted for the invoice",
                details={"invoice_id": invoice.id, "claim_id": billed[0].id},
            )
        return invoice

    @staticmethod
    def _build_line_item(data: Dict[str, Any]) -> InvoiceLineItem:
        quantity = int(data.get("quantity", 1))
        unit_price = to_money(data.get("unit_price"))
        discount = to_money(data.get("discount"))
        if not MIN_QUANTITY <= quantity <= MAX_QUANTITY:
            raise ValidationError(
                f"Quantity must be between {MIN_QUANTITY} and {MAX_QUANTITY}",
                details={"quantity": quantity},
            )
        if unit_price < ZERO or discount < ZERO:
            raise ValidationError(
                "Unit price and discount cannot be negative",
                details={"unit_price": str(unit_price), "discount": str(discount)},
            )
        if discount > unit_price * Decimal(quantity):
            raise ValidationError(
                "Discount cannot exceed the line amount",
                details={"discount": str(discount)},
            )
        if not str(data.get("description") or "").strip():
            raise ValidationError("Line item description is required")

        item = InvoiceLineItem(
            description=data["description"].strip(),
            service_code=data.get("service_code"),
            quantity=quantity,
            unit_price=unit_price,
            discount=discount,
        )
        item.total = item.compute_total()
        return item

    def _commit(self, invoice: Invoice) -> Invoice:
        self.db.commit()
        self.db.refresh(invoice)
        invalidate_invoice(invoice.id, invoice.patient_id)
        return invoice

    @staticmethod
    def _next_invoice_number(issue_date: date) -> str:
        return f"INV-{issue_date:%Y%m%d}-{uuid4().hex[:6].upper()}"
