"""
Claim endpoints.

Claims are created from invoices, validated, submitted to the clearinghouse
and moved through their lifecycle by acknowledgments, remittance posting and
the denial workflow (correction or appeal). Status changes always go through
the claim state machine; every endpoint that changes a claim returns the
updated claim with its status history.
"""
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.serializers import claim_summary, claim_to_dict, document_to_dict, status_entry_to_dict
from app.config.cache_ttl import get_claim_ttl
from app.config.database import get_db
from app.models.enums import AcknowledgmentStatus, ClaimStatus, InsuranceType, ResubmissionWorkflow
from app.services.claims.service import ClaimService
from app.services.commands import ResubmitClaim, SubmitClaim, ValidateClaim
from app.utils.cache import cache, claim_cache_key
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


class ClaimCreateRequest(BaseModel):
    insurance_type: InsuranceType = InsuranceType.PRIMARY
    insurance_company_id: Optional[int] = None
    primary_insurance_company_id: Optional[int] = None
    provider_id: Optional[int] = None
    service_date: Optional[date] = None
    patient_responsibility: Optional[str] = None
    diagnosis_codes: Optional[List[str]] = None
    procedure_codes: Optional[List[str]] = None
    patient_info: Optional[Dict[str, Any]] = None
    insurance_info: Optional[Dict[str, Any]] = None


class ClaimUpdateRequest(BaseModel):
    patient_name: Optional[str] = Field(default=None, max_length=255)
    diagnosis_codes: Optional[List[str]] = None
    procedure_codes: Optional[List[str]] = None
    patient_info: Optional[Dict[str, Any]] = None
    insurance_info: Optional[Dict[str, Any]] = None
    patient_responsibility: Optional[str] = None
    service_date: Optional[date] = None
    provider_id: Optional[int] = None
    insurance_company_id: Optional[int] = None
    insurance_type: Optional[InsuranceType] = None
    primary_insurance_company_id: Optional[int] = None


class CorrectedFields(BaseModel):
    """Fields a correction may change; `other` is free text kept in the history note."""

    diagnosis_codes: Optional[List[str]] = None
    procedure_codes: Optional[List[str]] = None
    patient_info: Optional[Dict[str, Any]] = None
    insurance_info: Optional[Dict[str, Any]] = None
    patient_responsibility: Optional[str] = None
    service_date: Optional[date] = None
    provider_id: Optional[int] = None
    insurance_company_id: Optional[int] = None
    other: Optional[str] = Field(default=None, max_length=1000)

    class Config:
        extra = "forbid"


class ResubmitRequest(BaseModel):
    workflow: ResubmissionWorkflow
    correction_notes: Optional[str] = None
    appeal_reason: Optional[str] = None
    corrected_fields: CorrectedFields = Field(default_factory=CorrectedFields)


class AcknowledgmentRequest(BaseModel):
    status: AcknowledgmentStatus
    note: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class DocumentRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    storage_ref: str = Field(..., min_length=1, max_length=500)
    file_name: Optional[str] = Field(default=None, max_length=255)
    content_type: Optional[str] = Field(default=None, max_length=100)
    document_type: Optional[str] = Field(default=None, max_length=50)


def _claim_response(claim) -> Dict[str, Any]:
    result = claim_to_dict(claim)
    cache.set(claim_cache_key(claim.id), result, ttl_seconds=get_claim_ttl())
    return result


@router.get("/claims")
async def list_claims(
    skip: int = Query(default=0, ge=0, description="Number of records to skip"),
    limit: int = Query(default=100, ge=1, le=1000, description="Maximum number of records to return"),
    search: Optional[str] = Query(default=None, description="Claim number, patient name or patient id"),
    status: Optional[ClaimStatus] = None,
    patient_id: Optional[str] = None,
    invoice_id: Optional[int] = None,
    insurance_company_id: Optional[int] = None,
    insurance_type: Optional[InsuranceType] = None,
    start_date: Optional[date] = Query(default=None, description="Service date on or after"),
    end_date: Optional[date] = Query(default=None, description="Service date on or before"),
    denied_only: bool = False,
    db: Session = Depends(get_db),
):
    """List claims with filters."""
    filters = dict(
        search=search,
        status=status,
        patient_id=patient_id,
        invoice_id=invoice_id,
        insurance_company_id=insurance_company_id,
        insurance_type=insurance_type,
        start_date=start_date,
        end_date=end_date,
        denied_only=denied_only,
    )
    claims, total = ClaimService(db).list_claims(skip=skip, limit=limit, **filters)

    return {
        "claims": [claim_summary(c) for c in claims],
        "total": total,
        "skip": skip,
        "limit": limit,
    }


@router.get("/claims/{claim_id}")
async def get_claim(claim_id: int, db: Session = Depends(get_db)):
    """Get claim by ID (cached)."""
    cached_result = cache.get(claim_cache_key(claim_id))
    if cached_result is not None:
        return cached_result
    return _claim_response(ClaimService(db).get_claim(claim_id))


@router.post("/claims/from-invoice/{invoice_id}", status_code=201)
async def create_claim_from_invoice(
    invoice_id: int,
    request: Optional[ClaimCreateRequest] = None,
    db: Session = Depends(get_db),
):
    """Create a draft claim billing an invoice (primary, or secondary for COB)."""
    data = request.model_dump(exclude_none=True) if request else {}
    claim = ClaimService(db).create_from_invoice(invoice_id, data)
    return _claim_response(claim)


@router.patch("/claims/{claim_id}")
async def update_claim(claim_id: int, request: ClaimUpdateRequest, db: Session = Depends(get_db)):
    """Edit a draft, denied or rejected claim."""
    claim = ClaimService(db).update_claim(claim_id, request.model_dump(exclude_unset=True))
    return _claim_response(claim)


@router.post("/claims/{claim_id}/validate")
async def validate_claim(claim_id: int, db: Session = Depends(get_db)):
    """Run validation without changing the claim."""
    result = ValidateClaim(claim_id=claim_id).execute(db)
    return {"claim_id": claim_id, **result.to_dict()}


@router.post("/claims/{claim_id}/submit")
async def submit_claim(claim_id: int, db: Session = Depends(get_db)):
    """
    Submit a draft claim.

    Fails with 400 and the validation error list when the claim has errors,
    and with 502 when the clearinghouse refuses it; the claim stays a draft
    in both cases.
    """
    claim = SubmitClaim(claim_id=claim_id).execute(db)
    return _claim_response(claim)


@router.post("/claims/{claim_id}/resubmit")
async def resubmit_claim(claim_id: int, request: ResubmitRequest, db: Session = Depends(get_db)):
    """Resubmit a denied or rejected claim by correction or appeal."""
    claim = ResubmitClaim(
        claim_id=claim_id,
        workflow=request.workflow,
        correction_notes=request.correction_notes,
        appeal_reason=request.appeal_reason,
        corrected_fields=request.corrected_fields.model_dump(exclude_unset=True),
    ).execute(db)
    return _claim_response(claim)


@router.get("/claims/{claim_id}/status-history")
async def get_status_history(claim_id: int, db: Session = Depends(get_db)):
    history = ClaimService(db).status_history(claim_id)
    return {"claim_id": claim_id, "history": [status_entry_to_dict(e) for e in history]}


@router.post("/claims/{claim_id}/acknowledgment")
async def record_acknowledgment(claim_id: int, request: AcknowledgmentRequest, db: Session = Depends(get_db)):
    """Apply a clearinghouse acknowledgment; rejections require a note."""
    claim = ClaimService(db).record_acknowledgment(claim_id, request.status, request.note)
    return _claim_response(claim)


@router.post("/claims/{claim_id}/cancel")
async def cancel_claim(claim_id: int, request: Optional[CancelRequest] = None, db: Session = Depends(get_db)):
    claim = ClaimService(db).cancel_claim(claim_id, request.reason if request else None)
    return _claim_response(claim)


@router.post("/claims/{claim_id}/documents", status_code=201)
async def add_document(claim_id: int, request: DocumentRequest, db: Session = Depends(get_db)):
    """Attach a reference to a document held in external storage."""
    document = ClaimService(db).add_document(claim_id, request.model_dump())
    return document_to_dict(document)


@router.get("/claims/{claim_id}/documents")
async def list_documents(claim_id: int, db: Session = Depends(get_db)):
    documents = ClaimService(db).list_documents(claim_id)
    return {"claim_id": claim_id, "documents": [document_to_dict(d) for d in documents]}


@router.delete("/claims/{claim_id}/documents/{document_id}")
async def remove_document(claim_id: int, document_id: int, db: Session = Depends(get_db)):
    ClaimService(db).remove_document(claim_id, document_id)
    return {"message": "Document removed", "claim_id": claim_id, "document_id": document_id}
