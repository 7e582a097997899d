"""Remittance (ERA/EOB) parser.

Turns an uploaded remittance file into a list of canonical
`RemittanceRecord`s. Two families of input are understood:

- X12 835 electronic remittance advice (one record per CLP claim loop)
- Delimited text exports (comma, pipe or tab separated, with a header row)

Parsing is tolerant: a malformed record is logged, counted in
`ParsedRemittance.errors` and skipped. Only a file that yields no records at
all raises ImportParseError. No matching happens here.
"""
import csv
import io
import re
from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.models.enums import PaymentMethod, RemittanceFormat
from app.utils.decimal_utils import ZERO, parse_financial_amount
from app.utils.errors import ImportParseError
from app.utils.logger import get_logger

logger = get_logger(__name__)

# CLP02 claim status code for "denied"
CLP_STATUS_DENIED = "4"

# BPR04 payment method codes
BPR_PAYMENT_METHODS = {
    "CHK": PaymentMethod.CHECK,
    "ACH": PaymentMethod.BANK_TRANSFER,
    "BOP": PaymentMethod.BANK_TRANSFER,
    "FWT": PaymentMethod.BANK_TRANSFER,
    "NON": PaymentMethod.OTHER,
}

# Common claim adjustment reason codes (CARC) used to phrase denial reasons
ADJUSTMENT_REASONS = {
    "1": "Deductible amount",
    "2": "Coinsurance amount",
    "3": "Co-payment amount",
    "4": "Procedure code inconsistent with modifier",
    "11": "Diagnosis inconsistent with procedure",
    "16": "Claim lacks information needed for adjudication",
    "18": "Duplicate claim/service",
    "22": "Care may be covered by another payer (coordination of benefits)",
    "27": "Expenses incurred after coverage terminated",
    "29": "Time limit for filing has expired",
    "31": "Patient cannot be identified as our insured",
    "45": "Charge exceeds fee schedule/maximum allowable",
    "50": "Non-covered service: not deemed a medical necessity",
    "96": "Non-covered charge(s)",
    "97": "Payment included in allowance for another service",
    "109": "Claim not covered by this payer/contractor",
    "197": "Precertification/authorization absent",
    "204": "Service not covered under the patient's current benefit plan",
}

# Contractual/patient-responsibility reasons that do not explain a denial on their own
NON_DENIAL_REASONS = {"1", "2", "3", "45"}

# Header aliases for delimited files, normalized to lower_snake_case
COLUMN_ALIASES = {
    "patient_name": ("patient_name", "patient", "member_name", "member", "patient_full_name"),
    "claim_reference": ("claim_number", "claim_reference", "claim_ref", "claim", "claim_id", "claim_no"),
    "invoice_reference": ("invoice_number", "invoice_reference", "invoice", "invoice_id", "invoice_no", "account_number"),
    "amount": ("amount", "paid_amount", "payment_amount", "paid", "payment", "amount_paid"),
    "billed_amount": ("billed_amount", "charge_amount", "billed", "charges", "total_charge"),
    "patient_responsibility": ("patient_responsibility", "patient_resp", "patient_portion"),
    "payment_date": ("payment_date", "paid_date", "date", "check_date", "service_date"),
    "payer_name": ("payer_name", "payer", "insurance", "insurance_company", "carrier"),
    "denial_reason": ("denial_reason", "denial", "reason", "remark", "remarks"),
    "check_number": ("check_number", "check", "check_no", "trace_number", "eft_number"),
    "adjustment_codes": ("adjustment_codes", "carc", "adjustments", "reason_codes"),
    "payment_method": ("payment_method", "method"),
}

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y%m%d", "%m-%d-%Y", "%m/%d/%y")


@dataclass
class RemittanceRecord:
    """One remittance line in canonical form, independent of file format."""

    line_number: int
    amount: Decimal
    patient_name: Optional[str] = None
    claim_reference: Optional[str] = None
    invoice_reference: Optional[str] = None
    payment_date: Optional[date] = None
    payer_name: Optional[str] = None
    denial_reason: Optional[str] = None
    adjustment_codes: List[str] = field(default_factory=list)
    billed_amount: Optional[Decimal] = None
    patient_responsibility: Optional[Decimal] = None
    payment_method: Optional[PaymentMethod] = None
    check_number: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_denial(self) -> bool:
        return self.amount == ZERO and bool(self.denial_reason)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ParsedRemittance:
    file_format: RemittanceFormat
    records: List[RemittanceRecord] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    payer_name: Optional[str] = None
    check_number: Optional[str] = None
    payment_date: Optional[date] = None
    total_payment_amount: Optional[Decimal] = None


def detect_format(content: str) -> RemittanceFormat:
    """Classify remittance content by its leading structure."""
    head = content.lstrip("﻿ \r\n\t")[:4096]
    if head.startswith("ISA") or re.search(r"(^|~)\s*CLP[*|]", head) or head.startswith("ST*835"):
        return RemittanceFormat.X12_835

    first_line = head.splitlines()[0] if head else ""
    if first_line.count(",") >= max(first_line.count("|"), first_line.count("\t"), 1):
        return RemittanceFormat.CSV
    if "|" in first_line or "\t" in first_line:
        return RemittanceFormat.DELIMITED
    raise ImportParseError(
        "Unrecognized remittance format",
        details={"hint": "Expected an X12 835 file or a delimited file with a header row"},
    )


def parse_date(value: Any) -> Optional[date]:
    """Parse the date layouts seen in remittance files; None if blank."""
    if value is None:
        return None
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognized date: {text}")


def describe_adjustments(codes: List[str]) -> Optional[str]:
    """Build a readable denial reason from CAS group/reason pairs like 'CO-50'."""
    parts = []
    for code in codes:
        reason = code.split("-", 1)[-1]
        if reason in NON_DENIAL_REASONS:
            continue
        parts.append(f"{code}: {ADJUSTMENT_REASONS.get(reason, 'Adjustment')}")
    return "; ".join(parts) or None


class RemittanceParser:
    """Parse a remittance file into canonical records."""

    def parse(self, content: str, filename: str) -> ParsedRemittance:
        """
        Parse remittance content.

        Raises:
            ImportParseError: If the format is unrecognized or no record parses
        """
        if not content or not content.strip():
            raise ImportParseError("Remittance file is empty", details={"filename": filename})

        file_format = detect_format(content)
        logger.info("Parsing remittance file", filename=filename, format=file_format.value)

        if file_format == RemittanceFormat.X12_835:
            parsed = self._parse_835(content)
        else:
            parsed = self._parse_delimited(content, file_format)

        if not parsed.records:
            raise ImportParseError(
                "No remittance records could be parsed",
                details={"filename": filename, "errors": parsed.errors[:50]},
            )

        logger.info(
            "Remittance file parsed",
            filename=filename,
            format=file_format.value,
            records=len(parsed.records),
            errors=len(parsed.errors),
        )
        return parsed

    # X12 835

    def _split_segments(self, content: str) -> List[List[str]]:
        content = content.lstrip("﻿").strip()
        element_sep, segment_sep = "*", "~"
        # ISA is fixed width: element separator at index 3, segment terminator at 105
        if content.startswith("ISA") and len(content) > 105:
            element_sep = content[3]
            if not content[105].isalnum():
                segment_sep = content[105]

        if segment_sep != "\n":
            content = content.replace("\r", "").replace("\n", "")

        segments = []
        for raw in content.split(segment_sep):
            raw = raw.strip()
            if raw:
                segments.append(raw.split(element_sep))
        return segments

    def _parse_835(self, content: str) -> ParsedRemittance:
        segments = self._split_segments(content)
        parsed = ParsedRemittance(file_format=RemittanceFormat.X12_835)

        payment_method = None
        for seg in segments:
            seg_id = seg[0]
            if seg_id == "BPR":
                parsed.total_payment_amount = parse_financial_amount(_element(seg, 2))
                payment_method = BPR_PAYMENT_METHODS.get((_element(seg, 4) or "").upper())
                try:
                    parsed.payment_date = parse_date(_element(seg, 16))
                except ValueError:
                    parsed.errors.append({"line": None, "error": "Invalid BPR16 payment date"})
            elif seg_id == "TRN" and not parsed.check_number:
                parsed.check_number = _element(seg, 2)
            elif seg_id == "DTM" and _element(seg, 1) == "405" and not parsed.payment_date:
                try:
                    parsed.payment_date = parse_date(_element(seg, 2))
                except ValueError:
                    pass
            elif seg_id == "N1" and _element(seg, 1) == "PR" and not parsed.payer_name:
                parsed.payer_name = _element(seg, 2)
            elif seg_id == "CLP":
                break

        for index, block in enumerate(self._claim_blocks(segments), start=1):
            try:
                record = self._parse_claim_block(index, block, parsed, payment_method)
            except (ValueError, IndexError) as e:
                logger.warning("Skipping malformed CLP loop", line_number=index, error=str(e))
                parsed.errors.append({"line": index, "error": str(e)})
                continue
            parsed.records.append(record)

        if not any(seg[0] == "CLP" for seg in segments):
            parsed.errors.append({"line": None, "error": "No CLP claim payment segments found"})
        return parsed

    @staticmethod
    def _claim_blocks(segments: List[List[str]]) -> List[List[List[str]]]:
        """Group segments into CLP loops; a loop ends at the next CLP, LX or trailer."""
        blocks: List[List[List[str]]] = []
        current: Optional[List[List[str]]] = None
        for seg in segments:
            seg_id = seg[0]
            if seg_id == "CLP":
                current = [seg]
                blocks.append(current)
            elif seg_id in ("LX", "SE", "GE", "IEA", "PLB"):
                current = None
            elif current is not None:
                current.append(seg)
        return blocks

    def _parse_claim_block(
        self,
        index: int,
        block: List[List[str]],
        parsed: ParsedRemittance,
        payment_method: Optional[PaymentMethod],
    ) -> RemittanceRecord:
        clp = block[0]
        claim_reference = _element(clp, 1)
        if not claim_reference:
            raise ValueError("CLP01 claim reference is missing")

        amount = parse_financial_amount(_element(clp, 4))
        if amount is None:
            raise ValueError(f"CLP04 payment amount is not a number: {_element(clp, 4)!r}")

        status_code = _element(clp, 2)
        record = RemittanceRecord(
            line_number=index,
            amount=amount,
            claim_reference=claim_reference.strip(),
            billed_amount=parse_financial_amount(_element(clp, 3)),
            patient_responsibility=parse_financial_amount(_element(clp, 5)),
            payer_name=parsed.payer_name,
            payment_date=parsed.payment_date,
            payment_method=payment_method,
            check_number=parsed.check_number,
            raw={"segments": ["*".join(seg) for seg in block]},
        )

        for seg in block[1:]:
            seg_id = seg[0]
            if seg_id == "NM1" and _element(seg, 1) == "QC":
                last, first = _element(seg, 3), _element(seg, 4)
                record.patient_name = " ".join(p for p in (first, last) if p) or None
            elif seg_id == "REF" and _element(seg, 1) == "EA" and not record.invoice_reference:
                record.invoice_reference = _element(seg, 2)
            elif seg_id == "CAS":
                record.adjustment_codes.extend(_cas_codes(seg))
            elif seg_id == "DTM" and _element(seg, 1) in ("232", "050") and not record.payment_date:
                record.payment_date = parse_date(_element(seg, 2))

        if status_code == CLP_STATUS_DENIED or amount == ZERO:
            reason = describe_adjustments(record.adjustment_codes)
            if status_code == CLP_STATUS_DENIED:
                record.denial_reason = reason or "Claim denied by payer"
            else:
                record.denial_reason = reason
        return record

    # Delimited text

    def _parse_delimited(self, content: str, file_format: RemittanceFormat) -> ParsedRemittance:
        parsed = ParsedRemittance(file_format=file_format)
        text = content.lstrip("﻿")
        first_line = text.splitlines()[0]
        delimiter = ","
        if file_format == RemittanceFormat.DELIMITED:
            delimiter = "|" if first_line.count("|") >= first_line.count("\t") else "\t"

        reader = csv.DictReader(io.StringIO(text), delimiter=delimiter)
        try:
            fieldnames = reader.fieldnames or []
        except csv.Error as e:
            raise ImportParseError(
                "Remittance header row could not be read",
                details={"error": str(e)},
            ) from None
        columns = _resolve_columns(fieldnames)
        if "amount" not in columns:
            raise ImportParseError(
                "Remittance file has no amount column",
                details={"columns": fieldnames},
            )

        index = 0
        while True:
            index += 1
            try:
                row = next(reader)
            except StopIteration:
                break
            except csv.Error as e:
                # the reader resumes at the next physical line
                logger.warning("Skipping unreadable remittance row", line_number=index, error=str(e))
                parsed.errors.append({"line": index, "error": str(e)})
                continue
            if not any((value or "").strip() for value in row.values() if isinstance(value, str)):
                continue
            try:
                record = self._parse_row(index, row, columns)
            except ValueError as e:
                logger.warning("Skipping malformed remittance row", line_number=index, error=str(e))
                parsed.errors.append({"line": index, "error": str(e)})
                continue
            parsed.records.append(record)

        payers = {r.payer_name for r in parsed.records if r.payer_name}
        if len(payers) == 1:
            parsed.payer_name = payers.pop()
        return parsed

    def _parse_row(self, index: int, row: Dict[str, str], columns: Dict[str, str]) -> RemittanceRecord:
        def value(key: str) -> Optional[str]:
            column = columns.get(key)
            raw = row.get(column) if column else None
            raw = (raw or "").strip()
            return raw or None

        amount = parse_financial_amount(value("amount"))
        if amount is None:
            raise ValueError(f"Amount is missing or not a number: {value('amount')!r}")

        patient_name = value("patient_name")
        claim_reference = value("claim_reference")
        invoice_reference = value("invoice_reference")
        if not (patient_name or claim_reference or invoice_reference):
            raise ValueError("Row has no patient name, claim or invoice reference")

        method_raw = (value("payment_method") or "").lower().replace(" ", "_")
        codes_raw = value("adjustment_codes") or ""
        return RemittanceRecord(
            line_number=index,
            amount=amount,
            patient_name=patient_name,
            claim_reference=claim_reference,
            invoice_reference=invoice_reference,
            payment_date=parse_date(value("payment_date")),
            payer_name=value("payer_name"),
            denial_reason=value("denial_reason"),
            adjustment_codes=[c for c in re.split(r"[;,\s]+", codes_raw) if c],
            billed_amount=parse_financial_amount(value("billed_amount")),
            patient_responsibility=parse_financial_amount(value("patient_responsibility")),
            payment_method=_payment_method(method_raw),
            check_number=value("check_number"),
            raw={k: v for k, v in row.items() if k is not None},
        )


def _element(segment: List[str], index: int) -> Optional[str]:
    if len(segment) > index:
        return segment[index].strip() or None
    return None


def _cas_codes(segment: List[str]) -> List[str]:
    """CAS*group*reason*amount[*qty*reason*amount...] -> ['CO-45', ...]"""
    group = _element(segment, 1) or ""
    codes = []
    for position in range(2, len(segment), 3):
        reason = _element(segment, position)
        if reason:
            codes.append(f"{group}-{reason}" if group else reason)
    return codes


def _normalize_header(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", (name or "").strip().lower()).strip("_")


def _resolve_columns(fieldnames: List[str]) -> Dict[str, str]:
    """Map canonical field -> actual header for the headers present."""
    normalized: Dict[str, str] = {}
    for name in fieldnames:
        normalized.setdefault(_normalize_header(name), name)

    columns = {}
    for canonical, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in normalized:
                columns[canonical] = normalized[alias]
                break
    return columns


def _payment_method(value: str) -> Optional[PaymentMethod]:
    if not value:
        return None
    aliases: Dict[str, PaymentMethod] = {"eft": PaymentMethod.BANK_TRANSFER, "ach": PaymentMethod.BANK_TRANSFER}
    if value in aliases:
        return aliases[value]
    try:
        return PaymentMethod(value)
    except ValueError:
        return PaymentMethod.OTHER

