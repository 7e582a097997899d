"""Plain-dict renderings of models for API responses and the cache.

Money is rendered as fixed two-place strings so JSON never carries floats.
"""
from typing import Any, Dict, Optional

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
from app.utils.decimal_utils import money_str


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _enum(value) -> Optional[str]:
    return value.value if value is not None else None


def status_entry_to_dict(entry: ClaimStatusEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "status": entry.status.value,
        "timestamp": _iso(entry.timestamp),
        "note": entry.note,
    }


def document_to_dict(document: ClaimDocument) -> Dict[str, Any]:
    return {
        "id": document.id,
        "claim_id": document.claim_id,
        "name": document.name,
        "file_name": document.file_name,
        "content_type": document.content_type,
        "document_type": document.document_type,
        "storage_ref": document.storage_ref,
        "created_at": _iso(document.created_at),
    }


def claim_summary(claim: Claim) -> Dict[str, Any]:
    return {
        "id": claim.id,
        "claim_number": claim.claim_number,
        "patient_id": claim.patient_id,
        "patient_name": claim.patient_name,
        "invoice_id": claim.invoice_id,
        "insurance_company_id": claim.insurance_company_id,
        "insurance_type": _enum(claim.insurance_type),
        "status": claim.status.value,
        "submitted_amount": money_str(claim.submitted_amount),
        "paid_amount": money_str(claim.paid_amount),
        "service_date": _iso(claim.service_date),
        "submission_date": _iso(claim.submission_date),
    }


def claim_to_dict(claim: Claim) -> Dict[str, Any]:
    """Full claim detail including history and documents."""
    return {
        **claim_summary(claim),
        "provider_id": claim.provider_id,
        "primary_insurance_company_id": claim.primary_insurance_company_id,
        "patient_responsibility": money_str(claim.patient_responsibility),
        "outstanding_insurance_amount": money_str(claim.outstanding_insurance_amount),
        "paid_date": _iso(claim.paid_date),
        "denied_date": _iso(claim.denied_date),
        "denial_reason": claim.denial_reason,
        "appeal_count": claim.appeal_count,
        "diagnosis_codes": claim.diagnosis_codes or [],
        "procedure_codes": claim.procedure_codes or [],
        "patient_info": claim.patient_info or {},
        "insurance_info": claim.insurance_info or {},
        "external_reference": claim.external_reference,
        "status_history": [status_entry_to_dict(e) for e in claim.status_history],
        "documents": [document_to_dict(d) for d in claim.documents],
        "created_at": _iso(claim.created_at),
        "updated_at": _iso(claim.updated_at),
    }


def line_item_to_dict(item: InvoiceLineItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "description": item.description,
        "service_code": item.service_code,
        "quantity": item.quantity,
        "unit_price": money_str(item.unit_price),
        "discount": money_str(item.discount),
        "total": money_str(item.total),
    }


def invoice_summary(invoice: Invoice) -> Dict[str, Any]:
    return {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "patient_id": invoice.patient_id,
        "patient_name": invoice.patient_name,
        "status": invoice.status.value,
        "total_amount": money_str(invoice.total_amount),
        "balance_due": money_str(invoice.balance_due),
        "issue_date": _iso(invoice.issue_date),
        "due_date": _iso(invoice.due_date),
    }


def invoice_to_dict(invoice: Invoice) -> Dict[str, Any]:
    return {
        **invoice_summary(invoice),
        "provider_id": invoice.provider_id,
        "appointment_id": invoice.appointment_id,
        "insurance_company_id": invoice.insurance_company_id,
        "notes": invoice.notes,
        "line_items": [line_item_to_dict(i) for i in invoice.line_items],
        "payments": [payment_to_dict(p) for p in invoice.payments],
        "claim_ids": [c.id for c in invoice.claims],
        "created_at": _iso(invoice.created_at),
        "updated_at": _iso(invoice.updated_at),
    }


def payment_to_dict(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "invoice_id": payment.invoice_id,
        "claim_id": payment.claim_id,
        "remittance_line_item_id": payment.remittance_line_item_id,
        "patient_id": payment.patient_id,
        "amount": money_str(payment.amount),
        "payment_method": payment.payment_method.value,
        "payment_source": payment.payment_source.value,
        "payment_date": _iso(payment.payment_date),
        "reference_number": payment.reference_number,
        "processor_fee": money_str(payment.processor_fee),
        "notes": payment.notes,
        "is_active": payment.is_active,
        "voided_at": _iso(payment.voided_at),
        "void_reason": payment.void_reason,
    }


def remittance_item_to_dict(item: RemittanceLineItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "batch_id": item.batch_id,
        "line_number": item.line_number,
        "patient_name": item.patient_name,
        "claim_reference": item.claim_reference,
        "invoice_reference": item.invoice_reference,
        "amount": money_str(item.amount),
        "billed_amount": money_str(item.billed_amount),
        "payment_date": _iso(item.payment_date),
        "payer_name": item.payer_name,
        "denial_reason": item.denial_reason,
        "adjustment_codes": item.adjustment_codes or [],
        "match_status": item.match_status.value,
        "match_method": _enum(item.match_method),
        "match_score": item.match_score,
        "matched_claim_id": item.matched_claim_id,
        "matched_invoice_id": item.matched_invoice_id,
        "posted": item.posted,
        "posted_at": _iso(item.posted_at),
        "payment_id": item.payment.id if item.payment is not None else None,
        "needs_review": item.needs_review,
        "review_reason": item.review_reason,
    }


def batch_summary(batch: RemittanceBatch) -> Dict[str, Any]:
    return {
        "id": batch.id,
        "file_name": batch.file_name,
        "file_format": _enum(batch.file_format),
        "import_date": _iso(batch.import_date),
        "payer_name": batch.payer_name,
        "check_number": batch.check_number,
        "total_records": batch.total_records,
        "matched_count": batch.matched_count,
        "unmatched_count": batch.unmatched_count,
        "posted_count": batch.posted_count,
        "parse_error_count": batch.parse_error_count,
        "total_amount": money_str(batch.total_amount),
        "status": batch.status.value,
        "cancel_requested": batch.cancel_requested,
    }


def batch_to_dict(batch: RemittanceBatch) -> Dict[str, Any]:
    return {
        **batch_summary(batch),
        "error_message": batch.error_message,
        "parse_errors": batch.parse_errors or [],
        "line_items": [remittance_item_to_dict(i) for i in batch.line_items],
    }
