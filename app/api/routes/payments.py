"""Payment endpoints."""
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.serializers import payment_to_dict
from app.config.database import get_db
from app.models.enums import PaymentMethod, PaymentSource
from app.services.billing.payments import (
    MAX_NOTES_LENGTH,
    MAX_PAYMENT,
    MAX_REFERENCE_LENGTH,
    MIN_PAYMENT,
    PaymentService,
)
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


class PaymentCreateRequest(BaseModel):
    invoice_id: int
    patient_id: Optional[str] = None
    amount: Decimal = Field(..., ge=MIN_PAYMENT, le=MAX_PAYMENT, max_digits=12, decimal_places=2)
    payment_method: PaymentMethod
    payment_source: PaymentSource = PaymentSource.PATIENT
    payment_date: Optional[date] = None
    reference_number: Optional[str] = Field(default=None, max_length=MAX_REFERENCE_LENGTH)
    processor_fee: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    notes: Optional[str] = Field(default=None, max_length=MAX_NOTES_LENGTH)


class VoidRequest(BaseModel):
    reason: str = Field(..., max_length=MAX_NOTES_LENGTH)


def _page(payments, total, skip, limit):
    return {"payments": [payment_to_dict(p) for p in payments], "total": total, "skip": skip, "limit": limit}


@router.get("/payments")
async def list_payments(
    skip: int = Query(default=0, ge=0, description="Number of records to skip"),
    limit: int = Query(default=100, ge=1, le=1000, description="Maximum number of records to return"),
    payment_source: Optional[PaymentSource] = None,
    include_voided: bool = True,
    db: Session = Depends(get_db),
):
    payments, total = PaymentService(db).list_payments(
        skip=skip, limit=limit, payment_source=payment_source, include_voided=include_voided
    )
    return _page(payments, total, skip, limit)


@router.get("/payments/patient/{patient_id}")
async def list_patient_payments(
    patient_id: str,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    payments, total = PaymentService(db).list_payments(skip=skip, limit=limit, patient_id=patient_id)
    return _page(payments, total, skip, limit)


@router.get("/payments/invoice/{invoice_id}")
async def list_invoice_payments(
    invoice_id: int,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    payments, total = PaymentService(db).list_payments(skip=skip, limit=limit, invoice_id=invoice_id)
    return _page(payments, total, skip, limit)


@router.get("/payments/{payment_id}")
async def get_payment(payment_id: int, db: Session = Depends(get_db)):
    return payment_to_dict(PaymentService(db).get_payment(payment_id))


@router.post("/payments", status_code=201)
async def create_payment(request: PaymentCreateRequest, db: Session = Depends(get_db)):
    """Record a manual payment and recompute the invoice balance."""
    payment = PaymentService(db).create_payment(request.model_dump())
    return payment_to_dict(payment)


@router.post("/payments/{payment_id}/void")
async def void_payment(payment_id: int, request: VoidRequest, db: Session = Depends(get_db)):
    """Void a payment; balances (and claim paid amounts) are recomputed."""
    payment = PaymentService(db).void_payment(payment_id, request.reason)
    return payment_to_dict(payment)
