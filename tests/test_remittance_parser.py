"""Tests for the remittance (835 / delimited) parser."""
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from app.models.enums import PaymentMethod, RemittanceFormat
from app.services.remittance.parser import (
    RemittanceParser,
    describe_adjustments,
    detect_format,
    parse_date,
)
from app.utils.errors import ImportParseError

SAMPLES = Path(__file__).resolve().parent.parent / "samples"

SAMPLE_835 = (
    "ST*835*0001~"
    "BPR*I*230.00*C*CHK************20261001~"
    "TRN*1*CHK10045*1512345678~"
    "N1*PR*Acme Health~"
    "LX*1~"
    "CLP*CLM-0001*1*200.00*150.00*50.00*12*PCN1~"
    "NM1*QC*1*GARCIA*MARIA~"
    "REF*EA*INV-0001~"
    "CAS*PR*2*50.00~"
    "CLP*CLM-0002*4*120.00*0.00*0.00*12*PCN2~"
    "NM1*QC*1*CHEN*LINDA~"
    "CAS*CO*50*120.00~"
    "CLP**1*10.00*10.00~"
    "SE*12*0001~"
)

SAMPLE_CSV = (
    "Patient Name,Claim Number,Invoice Number,Paid Amount,Payment Date,Payer,Denial Reason\n"
    "Maria Garcia,CLM-0001,,150.00,2026-10-01,Acme Health,\n"
    "James Wilson,,INV-0002,\"$1,080.00\",10/01/2026,Acme Health,\n"
    "Linda Chen,,,0.00,2026-10-01,Acme Health,Not medically necessary\n"
)


@pytest.mark.unit
class TestDetectFormat:
    def test_835_with_isa(self):
        assert detect_format("ISA*00*...~GS*HP~") == RemittanceFormat.X12_835

    def test_835_without_envelope(self):
        assert detect_format(SAMPLE_835) == RemittanceFormat.X12_835

    def test_csv(self):
        assert detect_format(SAMPLE_CSV) == RemittanceFormat.CSV

    def test_pipe_delimited(self):
        assert detect_format("patient|amount\nA|1.00\n") == RemittanceFormat.DELIMITED

    def test_unrecognized(self):
        with pytest.raises(ImportParseError):
            detect_format("just some words")


@pytest.mark.unit
class TestHelpers:
    @pytest.mark.parametrize("value,expected", [
        ("2026-10-01", date(2026, 10, 1)),
        ("10/01/2026", date(2026, 10, 1)),
        ("20261001", date(2026, 10, 1)),
        ("", None),
        (None, None),
    ])
    def test_parse_date(self, value, expected):
        assert parse_date(value) == expected

    def test_parse_date_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_date("first of october")

    def test_describe_adjustments_skips_patient_responsibility(self):
        assert describe_adjustments(["PR-2"]) is None
        assert describe_adjustments(["PR-2", "CO-50"]) == "CO-50: Non-covered service: not deemed a medical necessity"


@pytest.mark.unit
class TestParse835:
    def test_records(self):
        parsed = RemittanceParser().parse(SAMPLE_835, "era.835")

        assert parsed.file_format == RemittanceFormat.X12_835
        assert parsed.payer_name == "Acme Health"
        assert parsed.check_number == "CHK10045"
        assert parsed.payment_date == date(2026, 10, 1)
        assert parsed.total_payment_amount == Decimal("230.00")
        assert len(parsed.records) == 2

        paid, denied = parsed.records
        assert paid.claim_reference == "CLM-0001"
        assert paid.invoice_reference == "INV-0001"
        assert paid.patient_name == "MARIA GARCIA"
        assert paid.amount == Decimal("150.00")
        assert paid.billed_amount == Decimal("200.00")
        assert paid.patient_responsibility == Decimal("50.00")
        assert paid.payment_method == PaymentMethod.CHECK
        assert paid.payer_name == "Acme Health"
        assert paid.denial_reason is None
        assert paid.adjustment_codes == ["PR-2"]

        assert denied.amount == Decimal("0.00")
        assert denied.is_denial
        assert denied.denial_reason.startswith("CO-50")

    def test_malformed_claim_loop_is_counted_not_fatal(self):
        parsed = RemittanceParser().parse(SAMPLE_835, "era.835")

        assert len(parsed.errors) == 1
        assert parsed.errors[0]["line"] == 3
        assert "CLP01" in parsed.errors[0]["error"]

    def test_sample_file(self):
        content = (SAMPLES / "sample_835.txt").read_text()

        parsed = RemittanceParser().parse(content, "sample_835.txt")

        assert len(parsed.records) == 3
        assert parsed.payer_name == "Blue Cross Blue Shield"
        assert parsed.records[0].payment_method == PaymentMethod.BANK_TRANSFER
        assert parsed.records[1].adjustment_codes == ["CO-45", "PR-2"]
        assert parsed.records[2].denial_reason.startswith("CO-50")

    def test_no_claims(self):
        with pytest.raises(ImportParseError):
            RemittanceParser().parse("ST*835*0001~BPR*I*0*C*NON~SE*2*0001~", "empty.835")


@pytest.mark.unit
class TestParseDelimited:
    def test_csv_with_header_aliases(self):
        parsed = RemittanceParser().parse(SAMPLE_CSV, "remit.csv")

        assert parsed.file_format == RemittanceFormat.CSV
        assert parsed.payer_name == "Acme Health"
        assert [r.line_number for r in parsed.records] == [1, 2, 3]

        first, second, third = parsed.records
        assert first.claim_reference == "CLM-0001"
        assert first.amount == Decimal("150.00")
        assert second.invoice_reference == "INV-0002"
        assert second.amount == Decimal("1080.00")
        assert second.payment_date == date(2026, 10, 1)
        assert third.is_denial
        assert third.denial_reason == "Not medically necessary"

    def test_bad_rows_are_skipped_and_reported(self):
        content = (
            "patient,amount,date\n"
            "Maria Garcia,abc,2026-10-01\n"
            ",10.00,2026-10-01\n"
            "James Wilson,25.00,2026-13-45\n"
            "Linda Chen,30.00,2026-10-01\n"
        )

        parsed = RemittanceParser().parse(content, "remit.csv")

        assert len(parsed.records) == 1
        assert parsed.records[0].patient_name == "Linda Chen"
        assert [e["line"] for e in parsed.errors] == [1, 2, 3]

    def test_blank_lines_are_ignored(self):
        content = "patient,amount\nMaria Garcia,10.00\n,\nJames Wilson,20.00\n"
        parsed = RemittanceParser().parse(content, "remit.csv")
        assert len(parsed.records) == 2
        assert parsed.errors == []

    @pytest.mark.parametrize("amount", ["1e30", "12345678901.00"])
    def test_amount_out_of_range_is_a_row_error(self, amount):
        content = f"patient,amount\nMaria Garcia,100.00\nJames Wilson,{amount}\n"

        parsed = RemittanceParser().parse(content, "remit.csv")

        assert [r.amount for r in parsed.records] == [Decimal("100.00")]
        assert parsed.errors[0]["line"] == 2

    def test_oversized_field_is_a_row_error(self):
        long_name = "x" * 200_000
        content = f"patient,amount\n{long_name},10.00\nLinda Chen,30.00\n"

        parsed = RemittanceParser().parse(content, "remit.csv")

        assert [r.patient_name for r in parsed.records] == ["Linda Chen"]
        assert parsed.errors[0]["line"] == 1

    def test_pipe_delimited(self):
        content = "member|claim_no|payment\nMaria Garcia|CLM-0001|150.00\n"

        parsed = RemittanceParser().parse(content, "remit.txt")

        assert parsed.file_format == RemittanceFormat.DELIMITED
        assert parsed.records[0].claim_reference == "CLM-0001"

    def test_payment_method_aliases(self):
        content = "patient,amount,method\nA B,1.00,EFT\nC D,2.00,check\nE F,3.00,barter\n"
        methods = [r.payment_method for r in RemittanceParser().parse(content, "m.csv").records]
        assert methods == [PaymentMethod.BANK_TRANSFER, PaymentMethod.CHECK, PaymentMethod.OTHER]

    def test_missing_amount_column(self):
        with pytest.raises(ImportParseError) as exc_info:
            RemittanceParser().parse("patient,claim\nA,B\n", "remit.csv")
        assert exc_info.value.status_code == 422

    def test_all_rows_invalid(self):
        with pytest.raises(ImportParseError) as exc_info:
            RemittanceParser().parse("patient,amount\nA,x\n", "remit.csv")
        assert exc_info.value.details["errors"][0]["line"] == 1

    def test_empty_content(self):
        with pytest.raises(ImportParseError):
            RemittanceParser().parse("   \n", "remit.csv")

    def test_sample_csv(self):
        content = (SAMPLES / "sample_remittance.csv").read_text()

        parsed = RemittanceParser().parse(content, "sample_remittance.csv")

        assert len(parsed.records) == 4
        assert parsed.records[1].adjustment_codes == ["CO-45"]
        assert parsed.records[2].is_denial
