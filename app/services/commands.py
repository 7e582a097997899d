"""Workflow commands.

Each billing workflow step is a small command object: build it with the ids
and inputs of the step, then `execute(db)`. Routes and Celery tasks go
through these instead of wiring services together themselves.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.models.database import Claim, RemittanceBatch, RemittanceLineItem
from app.models.enums import ResubmissionWorkflow
from app.services.claims.service import ClaimService
from app.services.claims.validator import ValidationResult
from app.services.remittance.posting import PostingReport
from app.services.remittance.service import RemittanceService
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ValidateClaim:
    claim_id: int

    def execute(self, db: Session) -> ValidationResult:
        return ClaimService(db).validate_claim(self.claim_id)


@dataclass
class SubmitClaim:
    claim_id: int

    def execute(self, db: Session) -> Claim:
        return ClaimService(db).submit_claim(self.claim_id)


@dataclass
class ResubmitClaim:
    """Correction or appeal of a denied/rejected claim."""

    claim_id: int
    workflow: ResubmissionWorkflow
    correction_notes: Optional[str] = None
    appeal_reason: Optional[str] = None
    corrected_fields: Dict[str, Any] = field(default_factory=dict)

    def execute(self, db: Session) -> Claim:
        return ClaimService(db).resubmit_claim(
            self.claim_id,
            self.workflow,
            correction_notes=self.correction_notes,
            appeal_reason=self.appeal_reason,
            corrected_fields=self.corrected_fields,
        )


@dataclass
class MatchItem:
    """Manually link a remittance line to exactly one claim or invoice."""

    line_item_id: int
    claim_id: Optional[int] = None
    invoice_id: Optional[int] = None

    def execute(self, db: Session) -> RemittanceLineItem:
        return RemittanceService(db).match_item(
            self.line_item_id, claim_id=self.claim_id, invoice_id=self.invoice_id
        )


@dataclass
class AutoPost:
    batch_id: int

    def execute(self, db: Session) -> PostingReport:
        return RemittanceService(db).auto_post(self.batch_id)


@dataclass
class ImportRemittance:
    filename: str
    content: bytes

    def execute(self, db: Session) -> RemittanceBatch:
        return RemittanceService(db).import_file(self.filename, self.content)


@dataclass
class CancelBatch:
    batch_id: int

    def execute(self, db: Session) -> RemittanceBatch:
        return RemittanceService(db).cancel_batch(self.batch_id)
