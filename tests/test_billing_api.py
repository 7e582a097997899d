"""Tests for invoice and payment API endpoints."""
from decimal import Decimal

import pytest

from app.models.enums import InvoiceStatus
from tests.factories import InvoiceFactory, PaymentFactory


@pytest.mark.api
class TestInvoicesAPI:
    def test_create_from_appointment(self, client, db_session, payer, provider):
        response = client.post(
            "/api/v1/invoices/from-appointment/APT-77",
            json={
                "patient_id": "P-77",
                "patient_name": "Linda Chen",
                "provider_id": provider.id,
                "insurance_company_id": payer.id,
                "line_items": [
                    {"description": "Office visit", "service_code": "99213", "unit_price": "120.00"},
                ],
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["total_amount"] == "120.00"
        assert data["appointment_id"] == "APT-77"
        assert data["line_items"][0]["total"] == "120.00"

    def test_appointment_billed_once(self, client, db_session):
        payload = {"patient_id": "P-78", "line_items": [{"description": "Visit", "unit_price": "50.00"}]}
        assert client.post("/api/v1/invoices/from-appointment/APT-78", json=payload).status_code == 201
        assert client.post("/api/v1/invoices/from-appointment/APT-78", json=payload).status_code == 409

    def test_line_item_bounds_are_checked_by_schema(self, client, db_session):
        response = client.post(
            "/api/v1/invoices/from-appointment/APT-79",
            json={"patient_id": "P-79", "line_items": [{"description": "Visit", "unit_price": "50.00", "quantity": 0}]},
        )
        assert response.status_code == 422

    def test_get_invoice(self, client, invoice):
        response = client.get(f"/api/v1/invoices/{invoice.id}")

        assert response.status_code == 200
        data = response.json()
        assert data["invoice_number"] == invoice.invoice_number
        assert data["balance_due"] == "200.00"

    def test_list_invoices(self, client, invoice):
        InvoiceFactory(status=InvoiceStatus.PAID)

        response = client.get("/api/v1/invoices", params={"status": "pending"})

        assert response.status_code == 200
        assert response.json()["total"] == 1

    def test_add_and_remove_line_item(self, client, invoice):
        response = client.post(
            f"/api/v1/invoices/{invoice.id}/line-items",
            json={"description": "Flu shot", "service_code": "90686", "unit_price": "35.00"},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["total_amount"] == "235.00"

        line_id = data["line_items"][-1]["id"]
        response = client.delete(f"/api/v1/invoices/{invoice.id}/line-items/{line_id}")
        assert response.status_code == 200
        assert response.json()["total_amount"] == "200.00"

    def test_line_items_locked_after_claim_submission(self, client, submitted_claim):
        response = client.post(
            f"/api/v1/invoices/{submitted_claim.invoice_id}/line-items",
            json={"description": "Flu shot", "unit_price": "35.00"},
        )
        assert response.status_code == 409

    def test_update_invoice(self, client, invoice):
        response = client.patch(f"/api/v1/invoices/{invoice.id}", json={"notes": "Called patient"})
        assert response.status_code == 200
        assert response.json()["notes"] == "Called patient"

    def test_patient_balance(self, client, db_session):
        first = InvoiceFactory(patient_id="P-55", amount=Decimal("100.00"))
        second = InvoiceFactory(patient_id="P-55", amount=Decimal("50.00"))
        PaymentFactory(invoice=first, amount=Decimal("100.00"))
        PaymentFactory(invoice=second, amount=Decimal("70.00"))

        response = client.get("/api/v1/invoices/patient/P-55/balance")

        assert response.status_code == 200
        data = response.json()
        assert data["outstanding"] == "0.00"
        assert data["account_credit"] == "20.00"
        assert data["invoice_count"] == 2

    def test_invoice_not_found(self, client, db_session):
        assert client.get("/api/v1/invoices/999").status_code == 404


@pytest.mark.api
class TestPaymentsAPI:
    def test_record_and_void(self, client, invoice):
        response = client.post(
            "/api/v1/payments",
            json={"invoice_id": invoice.id, "amount": "200.00", "payment_method": "check", "reference_number": "CHK-1"},
        )
        assert response.status_code == 201
        payment = response.json()
        assert payment["amount"] == "200.00"
        assert client.get(f"/api/v1/invoices/{invoice.id}").json()["status"] == "paid"

        response = client.post(f"/api/v1/payments/{payment['id']}/void", json={"reason": "Check bounced"})
        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert client.get(f"/api/v1/invoices/{invoice.id}").json()["status"] == "pending"

    def test_amount_out_of_range(self, client, invoice):
        response = client.post(
            "/api/v1/payments",
            json={"invoice_id": invoice.id, "amount": "0.00", "payment_method": "cash"},
        )
        assert response.status_code == 422

    def test_unknown_invoice(self, client, db_session):
        response = client.post(
            "/api/v1/payments",
            json={"invoice_id": 999, "amount": "10.00", "payment_method": "cash"},
        )
        assert response.status_code == 404

    def test_void_twice(self, client, invoice):
        payment = PaymentFactory(invoice=invoice)
        client.post(f"/api/v1/payments/{payment.id}/void", json={"reason": "Duplicate"})

        response = client.post(f"/api/v1/payments/{payment.id}/void", json={"reason": "Duplicate"})

        assert response.status_code == 409

    def test_list_by_patient_and_invoice(self, client, invoice):
        PaymentFactory(invoice=invoice)
        PaymentFactory()

        by_patient = client.get(f"/api/v1/payments/patient/{invoice.patient_id}").json()
        by_invoice = client.get(f"/api/v1/payments/invoice/{invoice.id}").json()
        everything = client.get("/api/v1/payments").json()

        assert by_patient["total"] == 1
        assert by_invoice["total"] == 1
        assert everything["total"] == 2

    def test_get_payment(self, client, invoice):
        payment = PaymentFactory(invoice=invoice)
        response = client.get(f"/api/v1/payments/{payment.id}")
        assert response.status_code == 200
        assert response.json()["payment_source"] == "patient"
