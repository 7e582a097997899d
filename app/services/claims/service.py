"""Claim service: persistence-facing claim operations used by routes and commands."""
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from app.config.billing import BillingSettings, get_billing_settings
from app.models.database import Claim, ClaimDocument, ClaimStatusEntry, Invoice
from app.models.enums import (
    AcknowledgmentStatus,
    ClaimStatus,
    InsuranceType,
    InvoiceStatus,
    ResubmissionWorkflow,
)
from app.services.claims.denials import DenialWorkflowManager
from app.services.claims.state_machine import EDITABLE_STATUSES, is_terminal, state_machine
from app.services.claims.validator import ClaimValidator, ValidationResult
from app.services.integrations.clearinghouse import ClaimSubmissionGateway, get_submission_gateway
from app.utils.cache import invalidate_claim, invalidate_invoice
from app.utils.decimal_utils import ZERO, sum_money, to_money
from app.utils.errors import ConflictError, NotFoundError, ValidationError
from app.utils.logger import get_logger

logger = get_logger(__name__)

EDITABLE_FIELDS = (
    "patient_name",
    "diagnosis_codes",
    "procedure_codes",
    "patient_info",
    "insurance_info",
    "patient_responsibility",
    "service_date",
    "provider_id",
    "insurance_company_id",
    "insurance_type",
    "primary_insurance_company_id",
)

ACKNOWLEDGMENT_TARGETS = {
    AcknowledgmentStatus.ACCEPTED: ClaimStatus.ACCEPTED,
    AcknowledgmentStatus.PENDING: ClaimStatus.PENDING,
    AcknowledgmentStatus.REJECTED: ClaimStatus.REJECTED,
}


class ClaimService:
    """Claim queries, creation, submission and lifecycle actions."""

    def __init__(
        self,
        db: Session,
        settings: Optional[BillingSettings] = None,
        gateway: Optional[ClaimSubmissionGateway] = None,
    ):
        self.db = db
        self.settings = settings or get_billing_settings()
        self.gateway = gateway
        self.validator = ClaimValidator(self.settings)

    # Queries

    def list_claims(
        self,
        skip: int = 0,
        limit: int = 100,
        search: Optional[str] = None,
        status: Optional[ClaimStatus] = None,
        patient_id: Optional[str] = None,
        invoice_id: Optional[int] = None,
        insurance_company_id: Optional[int] = None,
        insurance_type: Optional[InsuranceType] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        denied_only: bool = False,
    ) -> Tuple[List[Claim], int]:
        query = self.db.query(Claim)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                Claim.claim_number.ilike(pattern),
                Claim.patient_name.ilike(pattern),
                Claim.patient_id.ilike(pattern),
            ))
        if status is not None:
            query = query.filter(Claim.status == status)
        if denied_only:
            query = query.filter(Claim.status == ClaimStatus.DENIED)
        if patient_id:
            query = query.filter(Claim.patient_id == patient_id)
        if invoice_id is not None:
            query = query.filter(Claim.invoice_id == invoice_id)
        if insurance_company_id is not None:
            query = query.filter(Claim.insurance_company_id == insurance_company_id)
        if insurance_type is not None:
            query = query.filter(Claim.insurance_type == insurance_type)
        if start_date is not None:
            query = query.filter(Claim.service_date >= start_date)
        if end_date is not None:
            query = query.filter(Claim.service_date <= end_date)

        total = query.count()
        claims = query.order_by(Claim.id.desc()).offset(skip).limit(limit).all()
        return claims, total

    def get_claim(self, claim_id: int) -> Claim:
        claim = (
            self.db.query(Claim)
            .options(selectinload(Claim.status_history), selectinload(Claim.documents))
            .filter(Claim.id == claim_id)
            .first()
        )
        if claim is None:
            raise NotFoundError("Claim", str(claim_id))
        return claim

    def status_history(self, claim_id: int) -> List[ClaimStatusEntry]:
        return list(self.get_claim(claim_id).status_history)

    # Creation and edits

    def create_from_invoice(self, invoice_id: int, data: Optional[Dict[str, Any]] = None) -> Claim:
        """
        Create a draft claim billing the full invoice.

        Raises:
            NotFoundError: Unknown invoice
            ConflictError: Invoice is draft/cancelled, has no insurance
                company, or already has a live claim of the same insurance type
        """
        data = dict(data or {})
        invoice = self.db.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", str(invoice_id))
        if invoice.status in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED):
            raise ConflictError(
                f"Cannot bill a {invoice.status.value} invoice",
                details={"invoice_id": invoice.id, "status": invoice.status.value},
            )

        insurance_type = InsuranceType(data.pop("insurance_type", None) or InsuranceType.PRIMARY)
        insurance_company_id = data.pop("insurance_company_id", None) or invoice.insurance_company_id
        if not insurance_company_id:
            raise ConflictError(
                "Invoice has no insurance company to bill",
                details={"invoice_id": invoice.id},
            )

        live = [
            c for c in invoice.claims
            if c.status != ClaimStatus.CANCELLED and c.insurance_type == insurance_type
        ]
        if live:
            raise ConflictError(
                f"Invoice already has a {insurance_type.value} claim",
                details={"invoice_id": invoice.id, "claim_id": live[0].id},
            )

        primary_insurance_company_id = data.pop("primary_insurance_company_id", None)
        if insurance_type == InsuranceType.SECONDARY and not primary_insurance_company_id:
            primary = next((c for c in invoice.claims if c.insurance_type == InsuranceType.PRIMARY), None)
            primary_insurance_company_id = primary.insurance_company_id if primary else None

        submitted = sum_money(item.total for item in invoice.line_items)
        claim = Claim(
            claim_number=self._next_claim_number(invoice),
            patient_id=invoice.patient_id,
            patient_name=invoice.patient_name,
            provider_id=data.pop("provider_id", None) or invoice.provider_id,
            insurance_company_id=insurance_company_id,
            invoice=invoice,
            submitted_amount=submitted,
            paid_amount=ZERO,
            patient_responsibility=to_money(data.pop("patient_responsibility", None)),
            service_date=data.pop("service_date", None) or invoice.issue_date,
            diagnosis_codes=data.pop("diagnosis_codes", None) or [],
            procedure_codes=data.pop("procedure_codes", None)
            or [item.service_code for item in invoice.line_items if item.service_code],
            patient_info=data.pop("patient_info", None) or {},
            insurance_info=data.pop("insurance_info", None) or {},
            insurance_type=insurance_type,
            primary_insurance_company_id=primary_insurance_company_id,
            appeal_count=0,
        )
        state_machine.start(claim, note=f"Created from invoice {invoice.invoice_number}")
        self.db.add(claim)
        self.db.commit()
        self.db.refresh(claim)
        invalidate_claim(claim.id)
        logger.info("Claim created", claim_id=claim.id, invoice_id=invoice.id, insurance_type=insurance_type.value)
        return claim

    def update_claim(self, claim_id: int, changes: Dict[str, Any]) -> Claim:
        """Edit claim data while it is draft, denied or rejected."""
        claim = self.get_claim(claim_id)
        if claim.status not in EDITABLE_STATUSES:
            raise ConflictError(
                f"Claims in {claim.status.value} status cannot be edited",
                details={"claim_id": claim.id, "status": claim.status.value},
            )
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError("Unknown or read-only claim fields", details={"fields": unknown})

        for name, value in changes.items():
            if name == "patient_responsibility":
                value = to_money(value)
            setattr(claim, name, value)
        self.db.commit()
        self.db.refresh(claim)
        invalidate_claim(claim.id)
        logger.info("Claim updated", claim_id=claim.id, fields=sorted(changes))
        return claim

    # Lifecycle

    def validate_claim(self, claim_id: int) -> ValidationResult:
        return self.validator.validate(self.get_claim(claim_id))

    def submit_claim(self, claim_id: int) -> Claim:
        """
        Submit a draft claim.

        Raises:
            ConflictError: Claim is not a draft
            ValidationError: Validation errors (listed in details); state unchanged
            ExternalSubmissionFailure: Gateway refused; state unchanged
        """
        claim = self.get_claim(claim_id)
        if claim.status != ClaimStatus.DRAFT:
            raise ConflictError(
                f"Only draft claims can be submitted (claim is {claim.status.value})",
                details={"claim_id": claim.id, "status": claim.status.value},
            )

        result = self.validator.validate(claim)
        if not result.is_valid:
            raise ValidationError(
                "Claim failed validation",
                details={"claim_id": claim.id, **result.to_dict()},
            )

        receipt = (self.gateway or get_submission_gateway()).submit(claim)
        claim.external_reference = receipt.reference
        state_machine.transition(claim, ClaimStatus.SUBMITTED, note=f"Submitted ({receipt.reference})")
        self._commit(claim)
        return claim

    def resubmit_claim(
        self,
        claim_id: int,
        workflow: ResubmissionWorkflow,
        correction_notes: Optional[str] = None,
        appeal_reason: Optional[str] = None,
        corrected_fields: Optional[Dict[str, Any]] = None,
    ) -> Claim:
        claim = self.get_claim(claim_id)
        manager = DenialWorkflowManager(self.settings, self.validator, self.gateway)
        manager.resubmit(
            claim,
            workflow,
            correction_notes=correction_notes,
            appeal_reason=appeal_reason,
            corrected_fields=corrected_fields,
        )
        self._commit(claim)
        return claim

    def record_acknowledgment(
        self,
        claim_id: int,
        acknowledgment: AcknowledgmentStatus,
        note: Optional[str] = None,
    ) -> Claim:
        """Apply a clearinghouse/payer acknowledgment (accepted, pending or rejected)."""
        claim = self.get_claim(claim_id)
        target = ACKNOWLEDGMENT_TARGETS[acknowledgment]
        if not note and target != ClaimStatus.REJECTED:
            note = f"Acknowledgment: {acknowledgment.value}"
        state_machine.transition(claim, target, note=note)
        self._commit(claim)
        return claim

    def cancel_claim(self, claim_id: int, reason: Optional[str] = None) -> Claim:
        claim = self.get_claim(claim_id)
        if is_terminal(claim.status):
            raise ConflictError(
                f"Claim is already {claim.status.value}",
                details={"claim_id": claim.id, "status": claim.status.value},
            )
        state_machine.transition(claim, ClaimStatus.CANCELLED, note=reason or "Cancelled")
        self._commit(claim)
        return claim

    # Documents

    def add_document(self, claim_id: int, data: Dict[str, Any]) -> ClaimDocument:
        claim = self.get_claim(claim_id)
        if claim.status == ClaimStatus.CANCELLED:
            raise ConflictError("Cannot attach documents to a cancelled claim", details={"claim_id": claim.id})
        document = ClaimDocument(
            name=data["name"],
            file_name=data.get("file_name"),
            content_type=data.get("content_type"),
            document_type=data.get("document_type"),
            storage_ref=data["storage_ref"],
        )
        claim.documents.append(document)
        self.db.commit()
        self.db.refresh(document)
        invalidate_claim(claim.id)
        logger.info("Claim document attached", claim_id=claim.id, document_id=document.id)
        return document

    def list_documents(self, claim_id: int) -> List[ClaimDocument]:
        return list(self.get_claim(claim_id).documents)

    def remove_document(self, claim_id: int, document_id: int) -> None:
        claim = self.get_claim(claim_id)
        document = next((d for d in claim.documents if d.id == document_id), None)
        if document is None:
            raise NotFoundError("ClaimDocument", str(document_id))
        claim.documents.remove(document)
        self.db.commit()
        invalidate_claim(claim.id)
        logger.info("Claim document removed", claim_id=claim.id, document_id=document_id)

    def _commit(self, claim: Claim) -> None:
        self.db.commit()
        self.db.refresh(claim)
        invalidate_claim(claim.id)
        if claim.invoice_id:
            invalidate_invoice(claim.invoice_id, claim.patient_id)

    def _next_claim_number(self, invoice: Invoice) -> str:
        count = (
            self.db.query(func.count(Claim.id))
            .filter(Claim.invoice_id == invoice.id)
            .scalar()
        ) or 0
        return f"CLM-{datetime.utcnow():%Y%m%d}-{invoice.id:06d}-{count + 1}"
