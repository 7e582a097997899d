"""Denial workflow manager.

Moves denied and rejected claims back to `submitted` through one of two
workflows:

- correction: apply corrected fields, re-validate, resubmit with notes
- appeal (denied claims only): resubmit unchanged with an appeal rationale

Every failure path leaves the claim exactly as it was.
"""
from datetime import date
from typing import Any, Dict, Optional

from app.config.billing import BillingSettings, get_billing_settings
from app.models.database import Claim
from app.models.enums import ClaimStatus, ResubmissionWorkflow
from app.services.claims.state_machine import RESUBMITTABLE, state_machine
from app.services.claims.validator import ClaimValidator
from app.services.integrations.clearinghouse import ClaimSubmissionGateway, get_submission_gateway
from app.utils.decimal_utils import parse_financial_amount, to_money
from app.utils.errors import ConflictError, ExternalSubmissionFailure, ValidationError
from app.utils.logger import get_logger

logger = get_logger(__name__)

CORRECTABLE_FIELDS = (
    "diagnosis_codes",
    "procedure_codes",
    "patient_info",
    "insurance_info",
    "patient_responsibility",
    "service_date",
    "provider_id",
    "insurance_company_id",
)

CODE_LIST_FIELDS = ("diagnosis_codes", "procedure_codes")
INFO_FIELDS = ("patient_info", "insurance_info")
ID_FIELDS = ("provider_id", "insurance_company_id")


class DenialWorkflowManager:
    """Resubmit denied or rejected claims by correction or appeal."""

    def __init__(
        self,
        settings: Optional[BillingSettings] = None,
        validator: Optional[ClaimValidator] = None,
        gateway: Optional[ClaimSubmissionGateway] = None,
    ):
        self.settings = settings or get_billing_settings()
        self.validator = validator or ClaimValidator(self.settings)
        self.gateway = gateway

    def resubmit(
        self,
        claim: Claim,
        workflow: ResubmissionWorkflow,
        correction_notes: Optional[str] = None,
        appeal_reason: Optional[str] = None,
        corrected_fields: Optional[Dict[str, Any]] = None,
    ) -> Claim:
        """
        Resubmit a claim. Does not commit.

        Raises:
            ConflictError: Claim is not denied/rejected, required text is empty,
                an appeal targets a rejected claim, the appeal cap is reached
                or an unknown field is corrected
            ValidationError: The corrected claim still fails validation
            ExternalSubmissionFailure: The gateway refused the claim
        """
        if claim.status not in RESUBMITTABLE:
            raise ConflictError(
                f"Only denied or rejected claims can be resubmitted (claim is {claim.status.value})",
                details={"claim_id": claim.id, "status": claim.status.value},
            )

        if workflow == ResubmissionWorkflow.CORRECTION:
            note = self._require_text(claim, correction_notes, "correction_notes")
            return self._correct(claim, note, corrected_fields or {})
        note = self._require_text(claim, appeal_reason, "appeal_reason")
        return self._appeal(claim, note)

    def _correct(self, claim: Claim, notes: str, corrected_fields: Dict[str, Any]) -> Claim:
        corrections = dict(corrected_fields)
        other = corrections.pop("other", None)
        unknown = sorted(set(corrections) - set(CORRECTABLE_FIELDS))
        if unknown:
            raise ConflictError(
                "These fields cannot be corrected on a claim",
                details={"claim_id": claim.id, "fields": unknown},
            )

        _check_correction_types(claim, corrections, other)
        if "patient_responsibility" in corrections:
            corrections["patient_responsibility"] = to_money(corrections["patient_responsibility"])
        if isinstance(corrections.get("service_date"), str):
            corrections["service_date"] = _parse_service_date(claim, corrections["service_date"])

        snapshot = {name: getattr(claim, name) for name in corrections}
        for name, value in corrections.items():
            setattr(claim, name, value)

        result = self.validator.validate(claim, for_resubmission=True)
        if not result.is_valid:
            self._restore(claim, snapshot)
            raise ValidationError(
                "Corrected claim failed validation",
                details={"claim_id": claim.id, **result.to_dict()},
            )

        self._transmit(claim, snapshot)
        changed = ", ".join(sorted(corrections)) or "no field changes"
        note = f"Correction ({changed}): {notes}"
        if other and other.strip():
            note += f" | Other: {other.strip()}"
        state_machine.transition(
            claim,
            ClaimStatus.SUBMITTED,
            note=note,
            resubmission=True,
        )
        logger.info("Claim resubmitted with corrections", claim_id=claim.id, fields=sorted(corrections))
        return claim

    def _appeal(self, claim: Claim, reason: str) -> Claim:
        if claim.status != ClaimStatus.DENIED:
            raise ConflictError(
                "Only denied claims can be appealed; correct and resubmit rejected claims",
                details={"claim_id": claim.id, "status": claim.status.value},
            )
        limit = self.settings.max_appeals_per_claim
        if (claim.appeal_count or 0) >= limit:
            raise ConflictError(
                f"Appeal limit of {limit} reached for this claim",
                details={"claim_id": claim.id, "appeal_count": claim.appeal_count},
            )

        self._transmit(claim, {})
        claim.appeal_count = (claim.appeal_count or 0) + 1
        state_machine.transition(
            claim,
            ClaimStatus.SUBMITTED,
            note=f"Appeal #{claim.appeal_count}: {reason}",
            resubmission=True,
        )
        logger.info("Claim appealed", claim_id=claim.id, appeal_count=claim.appeal_count)
        return claim

    def _transmit(self, claim: Claim, snapshot: Dict[str, Any]) -> None:
        gateway = self.gateway or get_submission_gateway()
        try:
            receipt = gateway.submit(claim, resubmission=True)
        except ExternalSubmissionFailure:
            self._restore(claim, snapshot)
            logger.warning("Resubmission transmit failed", claim_id=claim.id)
            raise
        claim.external_reference = receipt.reference

    @staticmethod
    def _require_text(claim: Claim, value: Optional[str], field_name: str) -> str:
        text = (value or "").strip()
        if not text:
            raise ConflictError(
                f"{field_name} must not be empty",
                details={"claim_id": claim.id, "field": field_name},
            )
        return text

    @staticmethod
    def _restore(claim: Claim, snapshot: Dict[str, Any]) -> None:
        for name, value in snapshot.items():
            setattr(claim, name, value)


def _parse_service_date(claim: Claim, value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(
            f"Invalid service date: {value}",
            details={"claim_id": claim.id, "field": "service_date"},
        ) from None


def _check_correction_types(claim: Claim, corrections: Dict[str, Any], other: Any) -> None:
    """Reject corrected values of the wrong shape before they touch the claim."""
    wrong = []
    for name, value in corrections.items():
        if name in CODE_LIST_FIELDS:
            ok = isinstance(value, list) and all(isinstance(code, str) for code in value)
        elif name in INFO_FIELDS:
            ok = isinstance(value, dict)
        elif name in ID_FIELDS:
            ok = isinstance(value, int) and not isinstance(value, bool)
        elif name == "patient_responsibility":
            ok = parse_financial_amount(value) is not None
        elif name == "service_date":
            ok = isinstance(value, (str, date))
        else:
            ok = value is not None
        if not ok:
            wrong.append(name)
    if other is not None and not isinstance(other, str):
        wrong.append("other")
    if wrong:
        raise ValidationError(
            "Corrected fields have the wrong type",
            details={"claim_id": claim.id, "fields": sorted(wrong)},
        )
