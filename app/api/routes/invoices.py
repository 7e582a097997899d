"""Invoice endpoints."""
from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.serializers import invoice_summary, invoice_to_dict
from app.config.cache_ttl import get_invoice_ttl, get_patient_balance_ttl
from app.config.database import get_db
from app.models.enums import InvoiceStatus
from app.services.billing.invoices import MAX_QUANTITY, MIN_QUANTITY, InvoiceService
from app.utils.cache import cache, invoice_cache_key, patient_balance_cache_key
from app.utils.decimal_utils import money_str
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


class LineItemRequest(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    service_code: Optional[str] = Field(default=None, max_length=20)
    quantity: int = Field(default=1, ge=MIN_QUANTITY, le=MAX_QUANTITY)
    unit_price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    discount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)


class InvoiceFromAppointmentRequest(BaseModel):
    patient_id: str = Field(..., min_length=1, max_length=50)
    patient_name: Optional[str] = Field(default=None, max_length=255)
    provider_id: Optional[int] = None
    insurance_company_id: Optional[int] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    finalize: bool = True
    line_items: List[LineItemRequest] = Field(default_factory=list)


class InvoiceUpdateRequest(BaseModel):
    patient_name: Optional[str] = Field(default=None, max_length=255)
    provider_id: Optional[int] = None
    insurance_company_id: Optional[int] = None
    due_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    status: Optional[InvoiceStatus] = None


def _invoice_response(invoice):
    result = invoice_to_dict(invoice)
    cache.set(invoice_cache_key(invoice.id), result, ttl_seconds=get_invoice_ttl())
    return result


@router.get("/invoices")
async def list_invoices(
    skip: int = Query(default=0, ge=0, description="Number of records to skip"),
    limit: int = Query(default=100, ge=1, le=1000, description="Maximum number of records to return"),
    search: Optional[str] = Query(default=None, description="Invoice number, patient name or patient id"),
    status: Optional[InvoiceStatus] = None,
    patient_id: Optional[str] = None,
    start_date: Optional[date] = Query(default=None, description="Issued on or after"),
    end_date: Optional[date] = Query(default=None, description="Issued on or before"),
    db: Session = Depends(get_db),
):
    invoices, total = InvoiceService(db).list_invoices(
        skip=skip,
        limit=limit,
        search=search,
        status=status,
        patient_id=patient_id,
        start_date=start_date,
        end_date=end_date,
    )
    return {"invoices": [invoice_summary(i) for i in invoices], "total": total, "skip": skip, "limit": limit}


@router.get("/invoices/patient/{patient_id}/balance")
async def get_patient_balance(patient_id: str, db: Session = Depends(get_db)):
    """Outstanding balance and account credit across the patient's invoices (cached)."""
    cache_key = patient_balance_cache_key(patient_id)
    cached_result = cache.get(cache_key)
    if cached_result is not None:
        return cached_result

    balance = InvoiceService(db).patient_balance(patient_id)
    result = {
        key: money_str(value) if isinstance(value, Decimal) else value
        for key, value in balance.items()
    }
    cache.set(cache_key, result, ttl_seconds=get_patient_balance_ttl())
    return result


@router.get("/invoices/{invoice_id}")
async def get_invoice(invoice_id: int, db: Session = Depends(get_db)):
    """Get invoice by ID (cached)."""
    cached_result = cache.get(invoice_cache_key(invoice_id))
    if cached_result is not None:
        return cached_result
    return _invoice_response(InvoiceService(db).get_invoice(invoice_id))


@router.post("/invoices/from-appointment/{appointment_id}", status_code=201)
async def create_invoice_from_appointment(
    appointment_id: str,
    request: InvoiceFromAppointmentRequest,
    db: Session = Depends(get_db),
):
    """Bill a completed appointment; each appointment is invoiced once."""
    invoice = InvoiceService(db).create_from_appointment(appointment_id, request.model_dump())
    return _invoice_response(invoice)


@router.patch("/invoices/{invoice_id}")
async def update_invoice(invoice_id: int, request: InvoiceUpdateRequest, db: Session = Depends(get_db)):
    invoice = InvoiceService(db).update_invoice(invoice_id, request.model_dump(exclude_unset=True))
    return _invoice_response(invoice)


@router.post("/invoices/{invoice_id}/line-items", status_code=201)
async def add_line_item(invoice_id: int, request: LineItemRequest, db: Session = Depends(get_db)):
    invoice = InvoiceService(db).add_line_item(invoice_id, request.model_dump())
    return _invoice_response(invoice)


@router.delete("/invoices/{invoice_id}/line-items/{line_item_id}")
async def remove_line_item(invoice_id: int, line_item_id: int, db: Session = Depends(get_db)):
    invoice = InvoiceService(db).remove_line_item(invoice_id, line_item_id)
    return _invoice_response(invoice)
