"""
Database models package.

    from app.models import Claim, RemittanceBatch
    from app.models.enums import ClaimStatus
"""

from app.models.enums import (
    AcknowledgmentStatus,
    ClaimStatus,
    InsuranceType,
    InvoiceStatus,
    MatchMethod,
    MatchStatus,
    PaymentMethod,
    PaymentSource,
    RemittanceBatchStatus,
    RemittanceFormat,
    ResubmissionWorkflow,
)

from app.models.core import InsuranceCompany, Provider

from app.models.database import (
    Claim,
    ClaimDocument,
    ClaimStatusEntry,
    Invoice,
    InvoiceLineItem,
    Payment,
    RemittanceBatch,
    RemittanceLineItem,
)

__all__ = [
    # Enums
    "AcknowledgmentStatus",
    "ClaimStatus",
    "InsuranceType",
    "InvoiceStatus",
    "MatchMethod",
    "MatchStatus",
    "PaymentMethod",
    "PaymentSource",
    "RemittanceBatchStatus",
    "RemittanceFormat",
    "ResubmissionWorkflow",
    # Reference data
    "InsuranceCompany",
    "Provider",
    # Billing
    "Invoice",
    "InvoiceLineItem",
    "Claim",
    "ClaimStatusEntry",
    "ClaimDocument",
    "Payment",
    "RemittanceBatch",
    "RemittanceLineItem",
]
