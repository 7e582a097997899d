"""Test data factories using factory-boy."""
from datetime import date, datetime, timedelta
from decimal import Decimal

import factory

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
from app.models.enums import (
    ClaimStatus,
    InsuranceType,
    InvoiceStatus,
    MatchStatus,
    PaymentMethod,
    PaymentSource,
    RemittanceBatchStatus,
    RemittanceFormat,
)
from app.utils.decimal_utils import ZERO


def _claim_history(claim_status: ClaimStatus):
    """Plausible history ending in `claim_status`."""
    path = [ClaimStatus.DRAFT]
    if claim_status not in (ClaimStatus.DRAFT, ClaimStatus.SUBMITTED):
        path.append(ClaimStatus.SUBMITTED)
    if claim_status != ClaimStatus.DRAFT:
        path.append(claim_status)

    notes = {
        ClaimStatus.DENIED: "CO-50: Non-covered service",
        ClaimStatus.REJECTED: "Invalid subscriber id",
    }
    return [ClaimStatusEntry(status=s, note=notes.get(s, "Factory history")) for s in path]


class ProviderFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Factory for Provider model."""

    class Meta:
        model = Provider
        sqlalchemy_session_persistence = "commit"

    npi = factory.Sequence(lambda n: f"{n:010d}")
    name = factory.Faker("name")
    specialty = factory.Iterator(["Internal Medicine", "Cardiology", "Family Practice"])


class InsuranceCompanyFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Factory for InsuranceCompany model."""

    class Meta:
        model = InsuranceCompany
        sqlalchemy_session_persistence = "commit"

    payer_code = factory.Sequence(lambda n: f"PAYER{n:03d}")
    name = factory.Sequence(lambda n: f"Test Insurance {n}")
    is_active = True


class InvoiceFactory(factory.alchemy.SQLAlchemyModelFactory):
    """
    Factory for Invoice model.

    Pass `amount` to size the invoice; it gets a single line item of that
    amount and no payments.
    """

    class Meta:
        model = Invoice
        sqlalchemy_session_persistence = "commit"

    class Params:
        amount = Decimal("200.00")

    invoice_number = factory.Sequence(lambda n: f"INV-TEST-{n:05d}")
    patient_id = factory.Sequence(lambda n: f"P-{n:05d}")
    patient_name = factory.Faker("name")
    provider = factory.SubFactory(ProviderFactory)
    insurance_company = factory.SubFactory(InsuranceCompanyFactory)
    status = InvoiceStatus.PENDING
    issue_date = factory.LazyFunction(lambda: date.today() - timedelta(days=10))
    due_date = factory.LazyAttribute(lambda o: o.issue_date + timedelta(days=30))
    total_amount = factory.SelfAttribute("amount")
    balance_due = factory.SelfAttribute("amount")
    line_items = factory.LazyAttribute(lambda o: [
        InvoiceLineItem(
            description="Office visit",
            service_code="99213",
            quantity=1,
            unit_price=o.amount,
            discount=ZERO,
            total=o.amount,
        )
    ] if o.amount else [])


class ClaimFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Factory for Claim model; defaults to a submitted primary claim billing its whole invoice."""

    class Meta:
        model = Claim
        sqlalchemy_session_persistence = "commit"

    claim_number = factory.Sequence(lambda n: f"CLM-TEST-{n:05d}")
    invoice = factory.SubFactory(InvoiceFactory)
    patient_id = factory.SelfAttribute("invoice.patient_id")
    patient_name = factory.SelfAttribute("invoice.patient_name")
    provider = factory.SelfAttribute("invoice.provider")
    insurance_company = factory.SelfAttribute("invoice.insurance_company")
    status = ClaimStatus.SUBMITTED
    submitted_amount = factory.SelfAttribute("invoice.total_amount")
    paid_amount = ZERO
    patient_responsibility = ZERO
    service_date = factory.SelfAttribute("invoice.issue_date")
    submission_date = factory.LazyAttribute(
        lambda o: None if o.status == ClaimStatus.DRAFT else datetime.utcnow()
    )
    denial_reason = factory.LazyAttribute(
        lambda o: "CO-50: Non-covered service" if o.status == ClaimStatus.DENIED else None
    )
    diagnosis_codes = factory.LazyFunction(lambda: ["E11.9"])
    procedure_codes = factory.LazyFunction(lambda: ["99213"])
    patient_info = factory.LazyAttribute(lambda o: {
        "first_name": o.patient_name.split()[0],
        "last_name": o.patient_name.split()[-1],
        "date_of_birth": "1980-04-12",
    })
    insurance_info = factory.LazyFunction(lambda: {"policy_number": "POL123456", "group_number": "GRP100"})
    insurance_type = InsuranceType.PRIMARY
    appeal_count = 0
    status_history = factory.LazyAttribute(lambda o: _claim_history(o.status))


class ClaimDocumentFactory(factory.alchemy.SQLAlchemyModelFactory):
    class Meta:
        model = ClaimDocument
        sqlalchemy_session_persistence = "commit"

    claim = factory.SubFactory(ClaimFactory)
    name = "Medical records"
    file_name = "records.pdf"
    content_type = "application/pdf"
    document_type = "medical_record"
    storage_ref = factory.Sequence(lambda n: f"s3://claims-docs/{n}.pdf")


class PaymentFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Factory for Payment model (active patient cash payment)."""

    class Meta:
        model = Payment
        sqlalchemy_session_persistence = "commit"

    invoice = factory.SubFactory(InvoiceFactory)
    patient_id = factory.SelfAttribute("invoice.patient_id")
    amount = Decimal("50.00")
    payment_method = PaymentMethod.CASH
    payment_source = PaymentSource.PATIENT
    payment_date = factory.LazyFunction(date.today)
    processor_fee = ZERO
    is_active = True


class RemittanceBatchFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Factory for RemittanceBatch model."""

    class Meta:
        model = RemittanceBatch
        sqlalchemy_session_persistence = "commit"

    file_name = factory.Sequence(lambda n: f"remit_{n}.csv")
    file_format = RemittanceFormat.CSV
    payer_name = "Acme Health"
    status = RemittanceBatchStatus.IMPORTED
    cancel_requested = False


class RemittanceLineItemFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Factory for RemittanceLineItem model (unmatched, unposted)."""

    class Meta:
        model = RemittanceLineItem
        sqlalchemy_session_persistence = "commit"

    batch = factory.SubFactory(RemittanceBatchFactory)
    line_number = factory.Sequence(lambda n: n + 1)
    patient_name = "Maria Garcia"
    amount = Decimal("150.00")
    payment_date = factory.LazyFunction(date.today)
    payer_name = factory.SelfAttribute("batch.payer_name")
    match_status = MatchStatus.UNMATCHED
    posted = False
    needs_review = False


ALL_FACTORIES = (
    ProviderFactory,
    InsuranceCompanyFactory,
    InvoiceFactory,
    ClaimFactory,
    ClaimDocumentFactory,
    PaymentFactory,
    RemittanceBatchFactory,
    RemittanceLineItemFactory,
)
