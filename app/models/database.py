"""
SQLAlchemy models for invoices, claims, payments and remittance batches.

Reference entities (Provider, InsuranceCompany) live in app.models.core and
enums in app.models.enums.

Claims & invoices:
- Invoice / InvoiceLineItem: patient bill and its service lines
- Claim: insurance claim created from an invoice
- ClaimStatusEntry: append-only status history of a claim
- ClaimDocument: metadata for supporting documents (storage is external)

Money:
- Payment: patient or insurance payment applied to an invoice (and claim)

Remittance:
- RemittanceBatch: one imported ERA/EOB file
- RemittanceLineItem: one canonical record from that file

Money columns are Numeric(12, 2) and read back as Decimal. Claims, invoices
and remittance line items are versioned (`version_id_col`) so concurrent
writers fail with StaleDataError instead of overwriting each other.
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from app.config.database import Base, TimestampMixin
from app.models.enums import (
    ClaimStatus,
    InsuranceType,
    InvoiceStatus,
    MatchMethod,
    MatchStatus,
    PaymentMethod,
    PaymentSource,
    RemittanceBatchStatus,
    RemittanceFormat,
)
from app.utils.decimal_utils import ZERO, sum_money, to_money

Money = Numeric(12, 2, asdecimal=True)


class Invoice(Base, TimestampMixin):
    """
    Patient invoice.

    `total_amount` is the sum of line item totals and `balance_due` is
    max(total - active payments, 0). Both are derived by the balance ledger
    (app/services/billing/ledger.py) and never edited directly.
    """

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(50), unique=True, nullable=False, index=True)
    patient_id = Column(String(50), nullable=False, index=True)
    patient_name = Column(String(255))
    provider_id = Column(Integer, ForeignKey("providers.id"), index=True)
    appointment_id = Column(String(50), index=True)
    insurance_company_id = Column(Integer, ForeignKey("insurance_companies.id"), index=True)

    total_amount = Column(Money, default=ZERO, nullable=False)
    balance_due = Column(Money, default=ZERO, nullable=False)
    status = Column(SQLEnum(InvoiceStatus), default=InvoiceStatus.DRAFT, nullable=False, index=True)
    issue_date = Column(Date)
    due_date = Column(Date, index=True)
    notes = Column(String(1000))

    version = Column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    provider = relationship("Provider", back_populates="invoices")
    insurance_company = relationship("InsuranceCompany")
    line_items = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.id",
    )
    payments = relationship("Payment", back_populates="invoice", order_by="Payment.id")
    claims = relationship("Claim", back_populates="invoice")

    @property
    def active_payments(self):
        return [p for p in self.payments if p.is_active]


class InvoiceLineItem(Base, TimestampMixin):
    """Billable service line. total = quantity * unit_price - discount."""

    __tablename__ = "invoice_line_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    description = Column(String(255), nullable=False)
    service_code = Column(String(20))
    quantity = Column(Integer, default=1, nullable=False)
    unit_price = Column(Money, default=ZERO, nullable=False)
    discount = Column(Money, default=ZERO, nullable=False)
    total = Column(Money, default=ZERO, nullable=False)

    invoice = relationship("Invoice", back_populates="line_items")

    def compute_total(self) -> Decimal:
        return to_money(Decimal(self.quantity or 0) * to_money(self.unit_price) - to_money(self.discount))


class Claim(Base, TimestampMixin):
    """
    Insurance claim.

    `status` is a cached projection of the last ClaimStatusEntry; only the
    claim state machine (app/services/claims/state_machine.py) writes either.

    Attributes:
        claim_number: Claim control number sent to the payer and echoed on remittances
        submitted_amount: Billed amount (equals the invoice total at creation)
        paid_amount: Sum of active insurance payments linked to the claim
        patient_responsibility: Portion the payer will not cover
        diagnosis_codes / procedure_codes: ICD-10 and CPT/HCPCS codes
        patient_info: Demographics (first_name, last_name, date_of_birth, ...)
        insurance_info: Policy data (policy_number, group_number, subscriber, ...)
        insurance_type: primary, or secondary for coordination of benefits
        appeal_count: Number of appeals filed after denials
    """

    __tablename__ = "claims"

    id = Column(Integer, primary_key=True, index=True)
    claim_number = Column(String(50), unique=True, nullable=False, index=True)
    patient_id = Column(String(50), nullable=False, index=True)
    patient_name = Column(String(255), index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), index=True)
    insurance_company_id = Column(Integer, ForeignKey("insurance_companies.id"), index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), index=True)

    status = Column(SQLEnum(ClaimStatus), default=ClaimStatus.DRAFT, nullable=False, index=True)

    submitted_amount = Column(Money, default=ZERO, nullable=False)
    paid_amount = Column(Money, default=ZERO, nullable=False)
    patient_responsibility = Column(Money, default=ZERO, nullable=False)

    service_date = Column(Date, index=True)
    submission_date = Column(DateTime, index=True)
    paid_date = Column(DateTime)
    denied_date = Column(DateTime)
    denial_reason = Column(Text)
    appeal_count = Column(Integer, default=0, nullable=False)

    diagnosis_codes = Column(JSON)
    procedure_codes = Column(JSON)
    patient_info = Column(JSON)
    insurance_info = Column(JSON)

    insurance_type = Column(SQLEnum(InsuranceType), default=InsuranceType.PRIMARY, nullable=False, index=True)
    primary_insurance_company_id = Column(Integer, ForeignKey("insurance_companies.id"))
    external_reference = Column(String(100))

    version = Column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    provider = relationship("Provider", back_populates="claims")
    insurance_company = relationship(
        "InsuranceCompany",
        back_populates="claims",
        foreign_keys=[insurance_company_id],
    )
    primary_insurance_company = relationship(
        "InsuranceCompany",
        foreign_keys=[primary_insurance_company_id],
    )
    invoice = relationship("Invoice", back_populates="claims")
    status_history = relationship(
        "ClaimStatusEntry",
        back_populates="claim",
        cascade="all, delete-orphan",
        order_by="ClaimStatusEntry.id",
    )
    documents = relationship(
        "ClaimDocument",
        back_populates="claim",
        cascade="all, delete-orphan",
        order_by="ClaimDocument.id",
    )
    payments = relationship("Payment", back_populates="claim", order_by="Payment.id")

    @property
    def expected_insurance_amount(self) -> Decimal:
        """What the payer is expected to pay: submitted minus patient responsibility."""
        return to_money(self.submitted_amount) - to_money(self.patient_responsibility)

    @property
    def outstanding_insurance_amount(self) -> Decimal:
        return max(self.expected_insurance_amount - to_money(self.paid_amount), ZERO)


class ClaimStatusEntry(Base):
    """One immutable entry in a claim's status history."""

    __tablename__ = "claim_status_history"

    id = Column(Integer, primary_key=True, index=True)
    claim_id = Column(Integer, ForeignKey("claims.id"), nullable=False, index=True)
    status = Column(SQLEnum(ClaimStatus), nullable=False)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    note = Column(Text)

    claim = relationship("Claim", back_populates="status_history")


class ClaimDocument(Base, TimestampMixin):
    """Supporting document reference; the file itself lives in external storage."""

    __tablename__ = "claim_documents"

    id = Column(Integer, primary_key=True, index=True)
    claim_id = Column(Integer, ForeignKey("claims.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    file_name = Column(String(255))
    content_type = Column(String(100))
    document_type = Column(String(50))
    storage_ref = Column(String(500), nullable=False)

    claim = relationship("Claim", back_populates="documents")


class Payment(Base, TimestampMixin):
    """
    Payment applied to an invoice.

    Payments are immutable apart from voiding. Insurance payments created by
    auto-posting carry the claim and the remittance line they came from; the
    unique remittance_line_item_id guards against posting a line twice.
    """

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), index=True)
    claim_id = Column(Integer, ForeignKey("claims.id"), index=True)
    remittance_line_item_id = Column(
        Integer, ForeignKey("remittance_line_items.id"), unique=True, index=True
    )
    patient_id = Column(String(50), index=True)
    amount = Column(Money, nullable=False)
    payment_method = Column(SQLEnum(PaymentMethod), nullable=False)
    payment_source = Column(SQLEnum(PaymentSource), nullable=False, index=True)
    payment_date = Column(Date, nullable=False, index=True)
    reference_number = Column(String(50), index=True)
    processor_fee = Column(Money, default=ZERO, nullable=False)
    notes = Column(String(500))

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    voided_at = Column(DateTime)
    void_reason = Column(String(500))

    invoice = relationship("Invoice", back_populates="payments")
    claim = relationship("Claim", back_populates="payments")
    remittance_line_item = relationship("RemittanceLineItem", back_populates="payment")


class RemittanceBatch(Base, TimestampMixin):
    """
    One imported remittance file.

    Counters are always derived from the batch's line items via
    `refresh_counts()`; `matched_count + unmatched_count == total_records`.
    """

    __tablename__ = "remittance_batches"

    id = Column(Integer, primary_key=True, index=True)
    file_name = Column(String(255), nullable=False)
    file_format = Column(SQLEnum(RemittanceFormat))
    import_date = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    payer_name = Column(String(255))
    check_number = Column(String(50))

    total_records = Column(Integer, default=0, nullable=False)
    matched_count = Column(Integer, default=0, nullable=False)
    unmatched_count = Column(Integer, default=0, nullable=False)
    posted_count = Column(Integer, default=0, nullable=False)
    parse_error_count = Column(Integer, default=0, nullable=False)
    total_amount = Column(Money, default=ZERO, nullable=False)

    status = Column(
        SQLEnum(RemittanceBatchStatus),
        default=RemittanceBatchStatus.IMPORTED,
        nullable=False,
        index=True,
    )
    error_message = Column(Text)
    parse_errors = Column(JSON)
    cancel_requested = Column(Boolean, default=False, nullable=False)

    line_items = relationship(
        "RemittanceLineItem",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="RemittanceLineItem.line_number",
    )

    def refresh_counts(self) -> None:
        """Recompute every counter from the line items."""
        items = list(self.line_items)
        self.total_records = len(items)
        self.matched_count = sum(1 for item in items if item.match_status == MatchStatus.MATCHED)
        self.unmatched_count = self.total_records - self.matched_count
        self.posted_count = sum(1 for item in items if item.posted)
        self.total_amount = sum_money(item.amount for item in items)

    def settle_status(self) -> RemittanceBatchStatus:
        """
        Derive the resting status from the counters.

        `error` is sticky. An empty batch is an error, a fully posted batch is
        processed, a fully matched clean batch awaiting posting is imported and
        anything in between is partial.
        """
        if self.status == RemittanceBatchStatus.ERROR:
            return self.status
        if self.total_records == 0:
            self.status = RemittanceBatchStatus.ERROR
        elif self.posted_count == self.total_records:
            self.status = RemittanceBatchStatus.PROCESSED
        elif self.unmatched_count == 0 and self.posted_count == 0 and not self.parse_error_count:
            self.status = RemittanceBatchStatus.IMPORTED
        else:
            self.status = RemittanceBatchStatus.PARTIAL
        return self.status


class RemittanceLineItem(Base, TimestampMixin):
    """
    Canonical remittance record.

    Created at import, then touched only by the matching engine (match
    fields) and the auto-posting engine (posting fields). At most one of
    matched_claim_id / matched_invoice_id is set and `posted` never reverts.
    """

    __tablename__ = "remittance_line_items"

    id = Column(Integer, primary_key=True, index=True)
    batch_id = Column(Integer, ForeignKey("remittance_batches.id"), nullable=False, index=True)
    line_number = Column(Integer, nullable=False)

    patient_name = Column(String(255), index=True)
    claim_reference = Column(String(50), index=True)
    invoice_reference = Column(String(50), index=True)
    amount = Column(Money, default=ZERO, nullable=False)
    billed_amount = Column(Money)
    patient_responsibility = Column(Money)
    payment_date = Column(Date, index=True)
    payer_name = Column(String(255))
    payment_method = Column(SQLEnum(PaymentMethod))
    check_number = Column(String(50))
    denial_reason = Column(Text)
    adjustment_codes = Column(JSON)
    raw_record = Column(JSON)

    match_status = Column(SQLEnum(MatchStatus), default=MatchStatus.UNMATCHED, nullable=False, index=True)
    match_method = Column(SQLEnum(MatchMethod))
    match_score = Column(Float)
    matched_claim_id = Column(Integer, ForeignKey("claims.id"), index=True)
    matched_invoice_id = Column(Integer, ForeignKey("invoices.id"), index=True)

    posted = Column(Boolean, default=False, nullable=False, index=True)
    posted_at = Column(DateTime)
    needs_review = Column(Boolean, default=False, nullable=False, index=True)
    review_reason = Column(Text)

    version = Column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    batch = relationship("RemittanceBatch", back_populates="line_items")
    matched_claim = relationship("Claim")
    matched_invoice = relationship("Invoice")
    payment = relationship("Payment", back_populates="remittance_line_item", uselist=False)

    def clear_match(self) -> None:
        self.match_status = MatchStatus.UNMATCHED
        self.match_method = None
        self.match_score = None
        self.matched_claim = None
        self.matched_claim_id = None
        self.matched_invoice = None
        self.matched_invoice_id = None
