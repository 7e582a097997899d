"""Tests for InvoiceService and PaymentService."""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.models.enums import ClaimStatus, InvoiceStatus, PaymentSource
from app.services.billing.invoices import InvoiceService
from app.services.billing.payments import PaymentService
from app.utils.errors import ConflictError, NotFoundError, ValidationError
from tests.factories import ClaimFactory, InvoiceFactory, PaymentFactory


def _appointment(**overrides):
    data = {
        "patient_id": "P-2001",
        "patient_name": "James Wilson",
        "line_items": [
            {"description": "Office visit", "service_code": "99213", "quantity": 1, "unit_price": "150.00"},
            {"description": "Lab panel", "service_code": "80053", "quantity": 2, "unit_price": "30.00", "discount": "10.00"},
        ],
    }
    data.update(overrides)
    return data


@pytest.mark.unit
class TestInvoiceService:
    def test_create_from_appointment(self, db_session, payer):
        invoice = InvoiceService(db_session).create_from_appointment(
            "APT-1", _appointment(insurance_company_id=payer.id)
        )

        assert invoice.invoice_number.startswith("INV-")
        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.total_amount == Decimal("200.00")
        assert invoice.balance_due == Decimal("200.00")
        assert invoice.due_date == invoice.issue_date + timedelta(days=30)
        assert [item.total for item in invoice.line_items] == [Decimal("150.00"), Decimal("50.00")]

    def test_appointment_is_billed_once(self, db_session):
        service = InvoiceService(db_session)
        service.create_from_appointment("APT-2", _appointment())

        with pytest.raises(ConflictError):
            service.create_from_appointment("APT-2", _appointment())

    @pytest.mark.parametrize("line", [
        {"description": "Visit", "quantity": 0, "unit_price": "10.00"},
        {"description": "Visit", "quantity": 101, "unit_price": "10.00"},
        {"description": "Visit", "quantity": 1, "unit_price": "-1.00"},
        {"description": "Visit", "quantity": 1, "unit_price": "10.00", "discount": "11.00"},
        {"description": "  ", "quantity": 1, "unit_price": "10.00"},
    ])
    def test_invalid_line_items(self, db_session, line):
        with pytest.raises(ValidationError):
            InvoiceService(db_session).create_from_appointment("APT-3", _appointment(line_items=[line]))

    def test_add_and_remove_line_items(self, db_session, invoice):
        service = InvoiceService(db_session)

        updated = service.add_line_item(invoice.id, {"description": "Injection", "unit_price": "25.00"})
        assert updated.total_amount == Decimal("225.00")
        assert updated.balance_due == Decimal("225.00")

        added = updated.line_items[-1]
        updated = service.remove_line_item(invoice.id, added.id)
        assert updated.total_amount == Decimal("200.00")

        with pytest.raises(NotFoundError):
            service.remove_line_item(invoice.id, added.id)

    def test_lines_lock_once_a_claim_is_submitted(self, db_session, submitted_claim):
        with pytest.raises(ConflictError):
            InvoiceService(db_session).add_line_item(
                submitted_claim.invoice_id, {"description": "Injection", "unit_price": "25.00"}
            )

    def test_draft_claim_does_not_lock_lines(self, db_session, invoice):
        ClaimFactory(invoice=invoice, status=ClaimStatus.DRAFT)
        updated = InvoiceService(db_session).add_line_item(invoice.id, {"description": "Injection", "unit_price": "5.00"})
        assert updated.total_amount == Decimal("205.00")

    def test_derived_statuses_cannot_be_set(self, db_session, invoice):
        with pytest.raises(ConflictError):
            InvoiceService(db_session).update_invoice(invoice.id, {"status": "paid"})

    def test_cancel_requires_voided_payments(self, db_session, invoice):
        PaymentFactory(invoice=invoice)
        with pytest.raises(ConflictError):
            InvoiceService(db_session).update_invoice(invoice.id, {"status": "cancelled"})

    def test_update_rejects_unknown_fields(self, db_session, invoice):
        with pytest.raises(ValidationError):
            InvoiceService(db_session).update_invoice(invoice.id, {"balance_due": "0.00"})

    def test_list_and_search(self, db_session, invoice):
        InvoiceFactory(patient_name="Linda Chen", patient_id="P-3003")
        service = InvoiceService(db_session)

        invoices, total = service.list_invoices(search="P-1001")
        assert total == 1
        assert invoices[0].id == invoice.id

        _, total = service.list_invoices(patient_id="P-3003")
        assert total == 1

    def test_mark_overdue(self, db_session):
        InvoiceFactory(issue_date=date.today() - timedelta(days=45))
        assert InvoiceService(db_session).mark_overdue() == 1


@pytest.mark.unit
class TestPaymentService:
    def test_record_payment(self, db_session, invoice):
        payment = PaymentService(db_session).create_payment({
            "invoice_id": invoice.id,
            "amount": "75.50",
            "payment_method": "credit_card",
        })

        assert payment.patient_id == invoice.patient_id
        assert payment.payment_source == PaymentSource.PATIENT
        assert invoice.balance_due == Decimal("124.50")
        assert invoice.status == InvoiceStatus.PARTIAL

    @pytest.mark.parametrize("amount", ["0", "-5", "1000000.01", "abc"])
    def test_amount_bounds(self, db_session, invoice, amount):
        with pytest.raises(ValidationError):
            PaymentService(db_session).create_payment({
                "invoice_id": invoice.id,
                "amount": amount,
                "payment_method": "cash",
            })

    def test_unknown_method(self, db_session, invoice):
        with pytest.raises(ValidationError) as exc_info:
            PaymentService(db_session).create_payment({
                "invoice_id": invoice.id,
                "amount": "10.00",
                "payment_method": "barter",
            })
        assert "cash" in exc_info.value.details["allowed"]

    def test_patient_must_own_invoice(self, db_session, invoice):
        with pytest.raises(ValidationError):
            PaymentService(db_session).create_payment({
                "invoice_id": invoice.id,
                "patient_id": "P-9999",
                "amount": "10.00",
                "payment_method": "cash",
            })

    def test_cancelled_invoice_refuses_payment(self, db_session):
        invoice = InvoiceFactory(status=InvoiceStatus.CANCELLED)
        with pytest.raises(ConflictError):
            PaymentService(db_session).create_payment({
                "invoice_id": invoice.id,
                "amount": "10.00",
                "payment_method": "cash",
            })

    def test_void_reverts_invoice(self, db_session, invoice):
        service = PaymentService(db_session)
        payment = service.create_payment({"invoice_id": invoice.id, "amount": "200.00", "payment_method": "cash"})
        assert invoice.status == InvoiceStatus.PAID

        voided = service.void_payment(payment.id, "Bounced")

        assert voided.is_active is False
        assert voided.void_reason == "Bounced"
        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.balance_due == Decimal("200.00")

    def test_void_insurance_payment_reverts_claim_paid_amount(self, db_session, submitted_claim):
        payment = PaymentFactory(
            invoice=submitted_claim.invoice,
            claim=submitted_claim,
            amount=Decimal("150.00"),
            payment_source=PaymentSource.INSURANCE,
        )
        submitted_claim.paid_amount = Decimal("150.00")
        db_session.commit()

        PaymentService(db_session).void_payment(payment.id, "Posted to wrong claim")

        assert submitted_claim.paid_amount == Decimal("0.00")

    def test_void_twice(self, db_session, invoice):
        payment = PaymentFactory(invoice=invoice)
        service = PaymentService(db_session)
        service.void_payment(payment.id, "Duplicate")

        with pytest.raises(ConflictError):
            service.void_payment(payment.id, "Duplicate")

    def test_void_needs_reason(self, db_session, invoice):
        payment = PaymentFactory(invoice=invoice)
        with pytest.raises(ConflictError):
            PaymentService(db_session).void_payment(payment.id, "  ")

    def test_list_excluding_voided(self, db_session, invoice):
        PaymentFactory(invoice=invoice)
        PaymentFactory(invoice=invoice, is_active=False)

        _, total = PaymentService(db_session).list_payments(patient_id=invoice.patient_id, include_voided=False)

        assert total == 1
