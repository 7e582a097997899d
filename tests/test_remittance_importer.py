"""Tests for remittance import and the remittance service."""
from decimal import Decimal
from pathlib import Path

import pytest

from app.config.billing import BillingSettings
from app.models.database import RemittanceBatch
from app.models.enums import ClaimStatus, MatchStatus, RemittanceBatchStatus
from app.services.remittance.importer import RemittanceImporter
from app.services.remittance.service import RemittanceService
from app.utils.errors import ConflictError, ImportParseError, NotFoundError, ValidationError
from tests.factories import InvoiceFactory, RemittanceBatchFactory, RemittanceLineItemFactory

SAMPLES = Path(__file__).resolve().parent.parent / "samples"


def _remittance_csv(claim_number, invoice_number):
    return (
        "patient_name,claim_number,invoice_number,paid_amount,payer\n"
        f"Maria Garcia,{claim_number},,150.00,Acme Health\n"
        f"James Wilson,,{invoice_number},80.00,Acme Health\n"
        "Robert Unknown,,,45.00,Acme Health\n"
    ).encode()


@pytest.fixture
def unbilled_invoice(db_session, payer):
    return InvoiceFactory(patient_name="James Wilson", insurance_company=payer, amount=Decimal("80.00"))


@pytest.mark.unit
class TestValidateUpload:
    @pytest.mark.parametrize("filename,size", [
        (None, 10),
        ("remit.pdf", 10),
        ("remit", 10),
        ("remit.csv", 0),
    ])
    def test_rejected(self, db_session, settings, filename, size):
        with pytest.raises(ValidationError):
            RemittanceImporter(db_session, settings).validate_upload(filename, size)

    def test_too_large(self, db_session):
        importer = RemittanceImporter(db_session, BillingSettings(max_upload_bytes=100))
        with pytest.raises(ValidationError) as exc_info:
            importer.validate_upload("remit.835", 101)
        assert exc_info.value.details["max_bytes"] == 100

    def test_extension_is_case_insensitive(self, db_session, settings):
        RemittanceImporter(db_session, settings).validate_upload("REMIT.CSV", 10)


@pytest.mark.unit
class TestImportFile:
    def test_import_and_match(self, db_session, settings, submitted_claim, unbilled_invoice):
        content = _remittance_csv(submitted_claim.claim_number, unbilled_invoice.invoice_number)

        batch = RemittanceImporter(db_session, settings).import_file("remit.csv", content)

        assert batch.total_records == 3
        assert batch.matched_count == 2
        assert batch.unmatched_count == 1
        assert batch.posted_count == 0
        assert batch.total_amount == Decimal("275.00")
        assert batch.status == RemittanceBatchStatus.PARTIAL
        assert batch.payer_name == "Acme Health"

        by_line = {item.line_number: item for item in batch.line_items}
        assert by_line[1].matched_claim_id == submitted_claim.id
        assert by_line[2].matched_invoice_id == unbilled_invoice.id
        assert by_line[3].match_status == MatchStatus.UNMATCHED
        assert by_line[1].raw_record["patient_name"] == "Maria Garcia"

    def test_fully_matched_batch_is_imported(self, db_session, settings, submitted_claim):
        content = f"claim_number,paid_amount\n{submitted_claim.claim_number},150.00\n".encode()

        batch = RemittanceImporter(db_session, settings).import_file("remit.csv", content)

        assert batch.status == RemittanceBatchStatus.IMPORTED

    def test_parse_errors_are_kept_on_the_batch(self, db_session, settings):
        content = b"patient,amount\nMaria Garcia,abc\nJames Wilson,20.00\n"

        batch = RemittanceImporter(db_session, settings).import_file("remit.csv", content)

        assert batch.total_records == 1
        assert batch.parse_error_count == 1
        assert batch.parse_errors[0]["line"] == 1
        assert batch.status == RemittanceBatchStatus.PARTIAL

    def test_out_of_range_amount_keeps_the_good_lines(self, db_session, settings):
        content = b"patient,amount\nMaria Garcia,100.00\nJames Wilson,1e30\n"

        batch = RemittanceImporter(db_session, settings).import_file("remit.csv", content)

        assert batch.total_records == 1
        assert batch.parse_error_count == 1
        assert batch.total_amount == Decimal("100.00")

    def test_unparseable_file_is_recorded_as_error_batch(self, db_session, settings):
        with pytest.raises(ImportParseError) as exc_info:
            RemittanceImporter(db_session, settings).import_file("remit.txt", b"just some words")

        batch = db_session.get(RemittanceBatch, exc_info.value.details["batch_id"])
        assert batch.status == RemittanceBatchStatus.ERROR
        assert batch.error_message
        assert batch.total_records == 0

    def test_import_835(self, db_session, settings):
        content = (SAMPLES / "sample_835.txt").read_bytes()

        batch = RemittanceImporter(db_session, settings).import_file("sample_835.txt", content)

        assert batch.total_records == 3
        assert batch.check_number
        # no Blue Cross claims exist, so nothing matches
        assert batch.unmatched_count == 3


@pytest.mark.unit
class TestRemittanceService:
    def test_import_then_auto_post(self, db_session, settings, submitted_claim, unbilled_invoice):
        service = RemittanceService(db_session, settings)
        batch = service.import_file(
            "remit.csv", _remittance_csv(submitted_claim.claim_number, unbilled_invoice.invoice_number)
        )

        report = service.auto_post(batch.id)

        assert report.posted == 2
        assert report.skipped == 1
        assert submitted_claim.status == ClaimStatus.PAID
        assert unbilled_invoice.balance_due == Decimal("0.00")
        assert service.get_batch(batch.id).status == RemittanceBatchStatus.PARTIAL

    def test_manual_match_then_post(self, db_session, settings, submitted_claim):
        item = RemittanceLineItemFactory(patient_name="M. Garcia", amount=Decimal("150.00"))
        service = RemittanceService(db_session, settings)

        matched = service.match_item(item.id, claim_id=submitted_claim.id)
        assert matched.match_status == MatchStatus.MATCHED
        assert matched.batch.status == RemittanceBatchStatus.IMPORTED

        report = service.auto_post(item.batch_id)
        assert report.posted == 1
        assert service.get_batch(item.batch_id).status == RemittanceBatchStatus.PROCESSED

    def test_unmatch_item(self, db_session, settings, submitted_claim):
        item = RemittanceLineItemFactory(claim_reference=submitted_claim.claim_number)
        service = RemittanceService(db_session, settings)
        service.rematch_batch(item.batch_id)

        unmatched = service.unmatch_item(item.id)

        assert unmatched.match_status == MatchStatus.UNMATCHED
        assert unmatched.batch.status == RemittanceBatchStatus.PARTIAL

    def test_list_unmatched(self, db_session, settings):
        RemittanceLineItemFactory(patient_name="Robert Unknown")
        RemittanceLineItemFactory(patient_name="Robert Unknown", posted=True)
        RemittanceLineItemFactory(patient_name="Linda Chen")

        items, total = RemittanceService(db_session, settings).list_unmatched(search="robert")

        assert total == 1
        assert items[0].patient_name == "Robert Unknown"

    def test_list_items_filters(self, db_session, settings):
        batch = RemittanceBatchFactory()
        RemittanceLineItemFactory(batch=batch, needs_review=True)
        RemittanceLineItemFactory(batch=batch)

        items = RemittanceService(db_session, settings).list_items(batch.id, needs_review=True)

        assert len(items) == 1

    def test_cancel_batch(self, db_session, settings):
        batch = RemittanceBatchFactory()
        cancelled = RemittanceService(db_session, settings).cancel_batch(batch.id)
        assert cancelled.cancel_requested is True

    def test_cancel_processed_batch(self, db_session, settings):
        batch = RemittanceBatchFactory(status=RemittanceBatchStatus.PROCESSED)
        with pytest.raises(ConflictError):
            RemittanceService(db_session, settings).cancel_batch(batch.id)

    def test_list_batches_by_status(self, db_session, settings):
        RemittanceBatchFactory(status=RemittanceBatchStatus.ERROR)
        RemittanceBatchFactory()

        batches, total = RemittanceService(db_session, settings).list_batches(status=RemittanceBatchStatus.ERROR)

        assert total == 1
        assert batches[0].status == RemittanceBatchStatus.ERROR

    def test_unknown_batch(self, db_session, settings):
        with pytest.raises(NotFoundError):
            RemittanceService(db_session, settings).get_batch(404)
