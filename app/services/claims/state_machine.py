"""Claim lifecycle state machine.

The transition table below is the only authority on which status changes are
legal. Every accepted transition appends one immutable ClaimStatusEntry and
updates `Claim.status` in the same step; nothing else writes either. The
machine never commits: callers own the transaction so a transition lands
together with the payment or correction that caused it.
"""
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from app.models.database import Claim, ClaimStatusEntry
from app.models.enums import ClaimStatus
from app.utils.errors import ConflictError
from app.utils.logger import get_logger

logger = get_logger(__name__)

S = ClaimStatus

TRANSITIONS: Dict[ClaimStatus, FrozenSet[ClaimStatus]] = {
    S.DRAFT: frozenset({S.SUBMITTED, S.CANCELLED}),
    S.SUBMITTED: frozenset({S.PENDING, S.ACCEPTED, S.REJECTED, S.PAID, S.PARTIAL, S.DENIED, S.CANCELLED}),
    S.PENDING: frozenset({S.ACCEPTED, S.REJECTED, S.PAID, S.PARTIAL, S.DENIED, S.CANCELLED}),
    S.ACCEPTED: frozenset({S.PAID, S.PARTIAL, S.DENIED, S.CANCELLED}),
    S.PARTIAL: frozenset({S.PAID, S.CANCELLED}),
    S.DENIED: frozenset({S.SUBMITTED, S.CANCELLED}),
    S.REJECTED: frozenset({S.SUBMITTED, S.CANCELLED}),
    S.PAID: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({S.PAID, S.CANCELLED})

# Statuses a remittance can still pay against
OPEN_STATUSES = frozenset({S.SUBMITTED, S.PENDING, S.ACCEPTED, S.PARTIAL})

# Statuses the validation engine and claim edits accept
EDITABLE_STATUSES = frozenset({S.DRAFT, S.DENIED, S.REJECTED})

NOTE_REQUIRED = frozenset({S.DENIED, S.REJECTED})
RESUBMITTABLE = frozenset({S.DENIED, S.REJECTED})


def is_terminal(status: ClaimStatus) -> bool:
    return status in TERMINAL_STATUSES


class ClaimStateMachine:
    """Applies transitions from TRANSITIONS to claims and records history."""

    def can_transition(self, claim: Claim, new_status: ClaimStatus) -> bool:
        return new_status in TRANSITIONS.get(claim.status, frozenset())

    def start(self, claim: Claim, note: Optional[str] = None) -> ClaimStatusEntry:
        """Record the initial draft entry for a newly created claim."""
        if claim.status_history:
            raise ConflictError(
                "Claim history already started",
                details={"claim_number": claim.claim_number},
            )
        return self._append_history(claim, S.DRAFT, note or "Claim created")

    def transition(
        self,
        claim: Claim,
        new_status: ClaimStatus,
        note: Optional[str] = None,
        resubmission: bool = False,
        at: Optional[datetime] = None,
    ) -> ClaimStatusEntry:
        """
        Move a claim to `new_status`.

        Args:
            claim: Claim to transition (must be attached to a session)
            new_status: Target status
            note: History note; required into denied/rejected and for resubmissions
            resubmission: True only when called by the denial workflow manager
            at: Timestamp for the entry and date side effects (defaults to now)

        Returns:
            The appended history entry

        Raises:
            ConflictError: If the transition is not in the table, a required
                note is missing, or a denied/rejected claim is resubmitted
                outside the denial workflow. Claim state is unchanged.
        """
        current = claim.status
        if new_status not in TRANSITIONS.get(current, frozenset()):
            logger.warning(
                "Illegal claim transition",
                claim_id=claim.id,
                from_status=current.value,
                to_status=new_status.value,
            )
            raise ConflictError(
                f"Cannot move claim from {current.value} to {new_status.value}",
                details={
                    "claim_id": claim.id,
                    "from_status": current.value,
                    "to_status": new_status.value,
                    "allowed": sorted(s.value for s in TRANSITIONS.get(current, ())),
                },
            )

        is_resubmit = current in RESUBMITTABLE and new_status == S.SUBMITTED
        if is_resubmit and not resubmission:
            raise ConflictError(
                "Denied or rejected claims are resubmitted through the correction or appeal workflow",
                details={"claim_id": claim.id, "from_status": current.value},
            )

        note = (note or "").strip() or None
        if (new_status in NOTE_REQUIRED or is_resubmit) and not note:
            raise ConflictError(
                f"A note is required to move a claim to {new_status.value}",
                details={"claim_id": claim.id, "to_status": new_status.value},
            )

        at = at or datetime.utcnow()
        if new_status == S.SUBMITTED:
            claim.submission_date = at
        elif new_status == S.PAID:
            claim.paid_date = at
        elif new_status == S.DENIED:
            claim.denied_date = at
            claim.denial_reason = note

        entry = self._append_history(claim, new_status, note, at)
        logger.info(
            "Claim status changed",
            claim_id=claim.id,
            claim_number=claim.claim_number,
            from_status=current.value,
            to_status=new_status.value,
        )
        return entry

    def _append_history(
        self,
        claim: Claim,
        status: ClaimStatus,
        note: Optional[str],
        at: Optional[datetime] = None,
    ) -> ClaimStatusEntry:
        entry = ClaimStatusEntry(status=status, note=note, timestamp=at or datetime.utcnow())
        claim.status_history.append(entry)
        claim.status = status
        return entry


state_machine = ClaimStateMachine()
