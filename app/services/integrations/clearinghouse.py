"""Outbound claim submission gateway."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from app.models.database import Claim
from app.utils.errors import ExternalSubmissionFailure
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class SubmissionReceipt:
    """Clearinghouse acknowledgment of a transmitted claim."""

    reference: str
    accepted_at: datetime = field(default_factory=datetime.utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)


class ClaimSubmissionGateway(ABC):
    """
    Interface to a clearinghouse or payer portal.

    Implementations transmit a claim and return a receipt, or raise
    ExternalSubmissionFailure. Callers only change claim state after a
    receipt comes back, so a failed transmission leaves the claim untouched.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}

    @abstractmethod
    def submit(self, claim: Claim, resubmission: bool = False) -> SubmissionReceipt:
        """
        Transmit a claim.

        Args:
            claim: Claim to send
            resubmission: True for corrected claims and appeals

        Raises:
            ExternalSubmissionFailure: If the clearinghouse refuses or is unreachable
        """

    def test_connection(self) -> bool:
        return True


class LoggingClearinghouseGateway(ClaimSubmissionGateway):
    """Gateway that records submissions in the log and accepts every claim."""

    def submit(self, claim: Claim, resubmission: bool = False) -> SubmissionReceipt:
        if not claim.claim_number:
            raise ExternalSubmissionFailure(
                "Claim has no claim number to transmit",
                details={"claim_id": claim.id},
            )
        receipt = SubmissionReceipt(reference=f"CH-{uuid4().hex[:12].upper()}")
        logger.info(
            "Claim transmitted to clearinghouse",
            claim_id=claim.id,
            claim_number=claim.claim_number,
            resubmission=resubmission,
            reference=receipt.reference,
        )
        return receipt


_gateway: Optional[ClaimSubmissionGateway] = None


def get_submission_gateway() -> ClaimSubmissionGateway:
    """Return the configured gateway (LoggingClearinghouseGateway by default)."""
    global _gateway
    if _gateway is None:
        _gateway = LoggingClearinghouseGateway()
    return _gateway


def set_submission_gateway(gateway: Optional[ClaimSubmissionGateway]) -> None:
    """Install a gateway for the process; None restores the default."""
    global _gateway
    _gateway = gateway
