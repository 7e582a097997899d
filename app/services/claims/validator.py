"""Claim validation engine.

Checks a claim for everything a payer will reject outright: missing
demographics and policy data, malformed diagnosis/procedure codes and
amounts that do not reconcile with the invoice. Validation is read-only;
`submit` and `resubmit` refuse to proceed unless `errors` is empty.
"""
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.config.billing import BillingSettings, get_billing_settings
from app.models.database import Claim
from app.services.claims.state_machine import EDITABLE_STATUSES
from app.utils.decimal_utils import ZERO, sum_money, to_money
from app.utils.errors import ConflictError
from app.utils.logger import get_logger

logger = get_logger(__name__)

# ICD-10-CM: letter (U reserved), digit, alphanumeric, optional dot and up to 4 more
ICD10_PATTERN = re.compile(r"^[A-TV-Z]\d[0-9A-Z](\.[0-9A-Z]{1,4})?$")
# CPT (5 digits, or 4 digits + F/T/U category suffix) and HCPCS Level II (letter + 4 digits)
CPT_PATTERN = re.compile(r"^\d{4}[0-9FTU]$")
HCPCS_PATTERN = re.compile(r"^[A-V]\d{4}$")

MAX_DIAGNOSIS_CODES = 12


@dataclass
class ValidationIssue:
    field: str
    message: str
    description: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message, "description": self.description}


@dataclass
class ValidationResult:
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def summary(self) -> str:
        if self.is_valid and not self.warnings:
            return "Claim is ready for submission"
        if self.is_valid:
            return f"Claim is ready for submission with {len(self.warnings)} warning(s)"
        return f"Claim has {len(self.errors)} error(s) and {len(self.warnings)} warning(s)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "summary": self.summary,
        }


def normalize_code(code: Any) -> str:
    return str(code or "").strip().upper()


def is_valid_diagnosis_code(code: Any) -> bool:
    return bool(ICD10_PATTERN.match(normalize_code(code)))


def is_valid_procedure_code(code: Any) -> bool:
    value = normalize_code(code)
    return bool(CPT_PATTERN.match(value) or HCPCS_PATTERN.match(value))


class ClaimValidator:
    """Evaluate a claim's readiness for submission."""

    def __init__(self, settings: Optional[BillingSettings] = None, today: Optional[date] = None):
        self.settings = settings or get_billing_settings()
        self.today = today

    def validate(self, claim: Claim, for_resubmission: bool = False) -> ValidationResult:
        """
        Validate a claim in draft, denied or rejected status.

        Raises:
            ConflictError: If the claim is in any other status
        """
        if claim.status not in EDITABLE_STATUSES:
            raise ConflictError(
                f"Claims in {claim.status.value} status cannot be validated",
                details={"claim_id": claim.id, "status": claim.status.value},
            )

        result = ValidationResult()
        self._check_codes(claim, result)
        self._check_patient(claim, result)
        self._check_insurance(claim, result)
        self._check_references(claim, result)
        self._check_amounts(claim, result)
        self._check_dates(claim, result)

        if for_resubmission and not claim.documents:
            result.warnings.append(ValidationIssue(
                "documents",
                "No supporting documents attached",
                "Resubmissions are more likely to succeed with supporting documentation",
            ))

        logger.info(
            "Claim validated",
            claim_id=claim.id,
            error_count=len(result.errors),
            warning_count=len(result.warnings),
        )
        return result

    def _check_codes(self, claim: Claim, result: ValidationResult) -> None:
        diagnosis_codes = claim.diagnosis_codes or []
        if not diagnosis_codes:
            result.errors.append(ValidationIssue(
                "diagnosis_codes", "At least one diagnosis code is required",
                "Add the ICD-10 codes supporting medical necessity",
            ))
        for code in diagnosis_codes:
            if not is_valid_diagnosis_code(code):
                result.errors.append(ValidationIssue(
                    "diagnosis_codes", f"Invalid ICD-10 code: {code}",
                    "Expected a letter, two characters and an optional dot-suffix (e.g. E11.9)",
                ))
        if len(diagnosis_codes) > MAX_DIAGNOSIS_CODES:
            result.warnings.append(ValidationIssue(
                "diagnosis_codes",
                f"Unusually high number of diagnosis codes: {len(diagnosis_codes)}",
                f"Only the first {MAX_DIAGNOSIS_CODES} are reported on a professional claim",
            ))

        procedure_codes = claim.procedure_codes or []
        if not procedure_codes:
            result.errors.append(ValidationIssue(
                "procedure_codes", "At least one procedure code is required",
                "Add the CPT or HCPCS codes for the services rendered",
            ))
        for code in procedure_codes:
            if not is_valid_procedure_code(code):
                result.errors.append(ValidationIssue(
                    "procedure_codes", f"Invalid CPT/HCPCS code: {code}",
                    "Expected five digits (e.g. 99213) or a letter and four digits (e.g. J1100)",
                ))

    def _check_patient(self, claim: Claim, result: ValidationResult) -> None:
        info = claim.patient_info or {}
        for key, label in (("first_name", "first name"), ("last_name", "last name")):
            if not str(info.get(key) or "").strip():
                result.errors.append(ValidationIssue(
                    f"patient_info.{key}", f"Patient {label} is required",
                ))

        dob_raw = info.get("date_of_birth")
        if not dob_raw:
            result.errors.append(ValidationIssue(
                "patient_info.date_of_birth", "Patient date of birth is required",
            ))
            return
        dob = _coerce_date(dob_raw)
        if dob is None:
            result.errors.append(ValidationIssue(
                "patient_info.date_of_birth", f"Invalid date of birth: {dob_raw}",
                "Use ISO format YYYY-MM-DD",
            ))
        elif dob > self._today():
            result.errors.append(ValidationIssue(
                "patient_info.date_of_birth", "Date of birth is in the future",
            ))

    def _check_insurance(self, claim: Claim, result: ValidationResult) -> None:
        info = claim.insurance_info or {}
        if not str(info.get("policy_number") or "").strip():
            result.errors.append(ValidationIssue(
                "insurance_info.policy_number", "Insurance policy number is required",
            ))
        if not str(info.get("group_number") or "").strip():
            result.warnings.append(ValidationIssue(
                "insurance_info.group_number", "Group number is missing",
                "Most commercial payers require a group number",
            ))

    def _check_references(self, claim: Claim, result: ValidationResult) -> None:
        if not claim.insurance_company_id:
            result.errors.append(ValidationIssue("insurance_company_id", "Insurance company is required"))
        if not claim.provider_id:
            result.errors.append(ValidationIssue("provider_id", "Rendering provider is required"))
        if not claim.invoice_id:
            result.errors.append(ValidationIssue("invoice_id", "Claim must reference an invoice"))

    def _check_amounts(self, claim: Claim, result: ValidationResult) -> None:
        submitted = to_money(claim.submitted_amount)
        responsibility = to_money(claim.patient_responsibility)
        tolerance = Decimal(self.settings.amount_tolerance)

        if submitted <= ZERO:
            result.errors.append(ValidationIssue(
                "submitted_amount", "Submitted amount must be greater than zero",
            ))

        if claim.invoice is not None and claim.invoice.line_items:
            line_total = sum_money(item.total for item in claim.invoice.line_items)
            if abs(line_total - submitted) > tolerance:
                result.errors.append(ValidationIssue(
                    "submitted_amount",
                    f"Submitted amount {submitted} does not match invoice line items {line_total}",
                    "The claim must bill exactly the services on the invoice",
                ))

        if responsibility < ZERO or responsibility > submitted:
            result.errors.append(ValidationIssue(
                "patient_responsibility",
                f"Patient responsibility {responsibility} must be between 0 and {submitted}",
            ))

    def _check_dates(self, claim: Claim, result: ValidationResult) -> None:
        if not claim.service_date:
            return
        age_days = (self._today() - claim.service_date).days
        if age_days > self.settings.timely_filing_days:
            result.warnings.append(ValidationIssue(
                "service_date",
                f"Service date is {age_days} days old",
                f"Many payers deny claims filed more than {self.settings.timely_filing_days} days after service",
            ))

    def _today(self) -> date:
        return self.today or date.today()


def _coerce_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None
