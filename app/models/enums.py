"""
Status and type enumerations for billing models.

Enums are string enums so they serialize to JSON as their value and store
cleanly in SQLAlchemy `Enum` columns.
"""
import enum


class ClaimStatus(str, enum.Enum):
    """Claim lifecycle state."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    PENDING = "pending"
    ACCEPTED = "accepted"
    PAID = "paid"
    PARTIAL = "partial"
    DENIED = "denied"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class InvoiceStatus(str, enum.Enum):
    """Invoice state."""

    DRAFT = "draft"
    PENDING = "pending"
    SENT = "sent"
    PAID = "paid"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class InsuranceType(str, enum.Enum):
    """Whether a claim bills the primary or a secondary (COB) payer."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    CHECK = "check"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


class PaymentSource(str, enum.Enum):
    PATIENT = "patient"
    INSURANCE = "insurance"


class RemittanceBatchStatus(str, enum.Enum):
    """Remittance batch processing state."""

    IMPORTED = "imported"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"
    PARTIAL = "partial"


class RemittanceFormat(str, enum.Enum):
    X12_835 = "x12_835"
    CSV = "csv"
    DELIMITED = "delimited"


class MatchStatus(str, enum.Enum):
    MATCHED = "matched"
    UNMATCHED = "unmatched"


class MatchMethod(str, enum.Enum):
    """How a remittance line found its target."""

    EXACT_CLAIM = "exact_claim"
    EXACT_INVOICE = "exact_invoice"
    SCORED = "scored"
    MANUAL = "manual"


class ResubmissionWorkflow(str, enum.Enum):
    """Denial sub-workflow chosen for a resubmission."""

    CORRECTION = "correction"
    APPEAL = "appeal"


class AcknowledgmentStatus(str, enum.Enum):
    """Outcome reported by the clearinghouse for a submitted claim."""

    ACCEPTED = "accepted"
    PENDING = "pending"
    REJECTED = "rejected"
