"""Tests for the balance ledger."""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.models.enums import InvoiceStatus
from app.services.billing.ledger import BalanceLedger
from tests.factories import InvoiceFactory, PaymentFactory


@pytest.mark.unit
class TestRecomputeInvoice:
    def test_partial_payment(self, db_session, invoice):
        PaymentFactory(invoice=invoice, amount=Decimal("75.00"))
        db_session.refresh(invoice)

        BalanceLedger(db_session).recompute_invoice(invoice)

        assert invoice.total_amount == Decimal("200.00")
        assert invoice.balance_due == Decimal("125.00")
        assert invoice.status == InvoiceStatus.PARTIAL

    def test_overpayment_floors_balance_at_zero(self, db_session, invoice):
        PaymentFactory(invoice=invoice, amount=Decimal("250.00"))
        db_session.refresh(invoice)

        BalanceLedger(db_session).recompute_invoice(invoice)

        assert invoice.balance_due == Decimal("0.00")
        assert invoice.status == InvoiceStatus.PAID

    def test_voided_payments_do_not_count(self, db_session, invoice):
        PaymentFactory(invoice=invoice, amount=Decimal("200.00"), is_active=False)
        db_session.refresh(invoice)

        BalanceLedger(db_session).recompute_invoice(invoice)

        assert invoice.balance_due == Decimal("200.00")
        assert invoice.status == InvoiceStatus.PENDING

    def test_unpaid_past_due_falls_back_to_overdue(self, db_session):
        invoice = InvoiceFactory(status=InvoiceStatus.PAID, issue_date=date.today() - timedelta(days=60))

        BalanceLedger(db_session).recompute_invoice(invoice)

        assert invoice.status == InvoiceStatus.OVERDUE

    def test_cancelled_status_is_frozen(self, db_session, invoice):
        invoice.status = InvoiceStatus.CANCELLED
        PaymentFactory(invoice=invoice, amount=Decimal("10.00"))
        db_session.refresh(invoice, attribute_names=["payments"])

        BalanceLedger(db_session).recompute_invoice(invoice)

        assert invoice.status == InvoiceStatus.CANCELLED


@pytest.mark.unit
class TestPatientBalance:
    def test_credit_on_one_invoice_does_not_hide_debt_on_another(self, db_session):
        unpaid = InvoiceFactory(patient_id="P-42", amount=Decimal("100.00"))
        overpaid = InvoiceFactory(patient_id="P-42", amount=Decimal("50.00"))
        PaymentFactory(invoice=overpaid, amount=Decimal("70.00"))

        balance = BalanceLedger(db_session).patient_balance("P-42")

        assert balance["invoice_count"] == 2
        assert balance["total_billed"] == Decimal("150.00")
        assert balance["total_paid"] == Decimal("70.00")
        assert balance["outstanding"] == Decimal("100.00")
        assert balance["account_credit"] == Decimal("20.00")
        assert unpaid.patient_id == "P-42"

    def test_fully_paid_with_credit(self, db_session):
        first = InvoiceFactory(patient_id="P-43", amount=Decimal("100.00"))
        second = InvoiceFactory(patient_id="P-43", amount=Decimal("50.00"))
        PaymentFactory(invoice=first, amount=Decimal("100.00"))
        PaymentFactory(invoice=second, amount=Decimal("70.00"))

        balance = BalanceLedger(db_session).patient_balance("P-43")

        assert balance["outstanding"] == Decimal("0.00")
        assert balance["account_credit"] == Decimal("20.00")

    def test_cancelled_invoices_are_excluded(self, db_session):
        InvoiceFactory(patient_id="P-44", amount=Decimal("100.00"))
        InvoiceFactory(patient_id="P-44", amount=Decimal("500.00"), status=InvoiceStatus.CANCELLED)

        balance = BalanceLedger(db_session).patient_balance("P-44")

        assert balance["invoice_count"] == 1
        assert balance["outstanding"] == Decimal("100.00")

    def test_unknown_patient(self, db_session):
        balance = BalanceLedger(db_session).patient_balance("P-NONE")
        assert balance["invoice_count"] == 0
        assert balance["outstanding"] == Decimal("0")


@pytest.mark.unit
class TestMarkOverdue:
    def test_marks_only_open_past_due_invoices(self, db_session):
        today = date.today()
        past_due = InvoiceFactory(issue_date=today - timedelta(days=60))
        current = InvoiceFactory(issue_date=today)
        paid = InvoiceFactory(issue_date=today - timedelta(days=60), status=InvoiceStatus.PAID)
        paid.balance_due = Decimal("0.00")
        db_session.commit()

        marked = BalanceLedger(db_session).mark_overdue_invoices(today)

        assert marked == [past_due]
        assert past_due.status == InvoiceStatus.OVERDUE
        assert current.status == InvoiceStatus.PENDING
        assert paid.status == InvoiceStatus.PAID
