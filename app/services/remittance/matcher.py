"""Remittance matching engine.

Links each unposted remittance line item to exactly one open claim or open
invoice.

1. Exact identifiers: claim number against open claims, then invoice number
   against open invoices.
2. Scoring: open claims and invoices of the same payer are scored 0-100 on
   patient name similarity (50), amount proximity (35) and date proximity
   (15). The best candidate is accepted at or above the acceptance threshold
   unless another candidate scores within the tie margin, in which case the
   line stays unmatched and is flagged for review.

Matching only touches match fields and batch counters; it never posts.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from difflib import SequenceMatcher
from typing import Dict, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config.billing import BillingSettings, get_billing_settings
from app.models.core import InsuranceCompany
from app.models.database import Claim, Invoice, RemittanceBatch, RemittanceLineItem
from app.models.enums import ClaimStatus, InvoiceStatus, MatchMethod, MatchStatus
from app.services.claims.state_machine import OPEN_STATUSES as OPEN_CLAIM_STATUSES
from app.utils.decimal_utils import ZERO, to_money
from app.utils.errors import ConflictError, MatchAmbiguityError, NotFoundError
from app.utils.logger import get_logger

logger = get_logger(__name__)

OPEN_INVOICE_STATUSES = frozenset({
    InvoiceStatus.PENDING,
    InvoiceStatus.SENT,
    InvoiceStatus.PARTIAL,
    InvoiceStatus.OVERDUE,
})

NAME_WEIGHT = 50.0
DATE_POINTS = ((30, 15.0), (60, 10.0), (90, 5.0))


@dataclass
class MatchCandidate:
    target: Union[Claim, Invoice]
    score: float
    breakdown: Dict[str, float] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        return "claim" if isinstance(self.target, Claim) else "invoice"

    def describe(self) -> Dict[str, object]:
        return {"type": self.kind, "id": self.target.id, "score": round(self.score, 2), **self.breakdown}


def normalize_name(name: Optional[str]) -> str:
    """Lower-case, order-insensitive token form: 'DOE, JANE' == 'Jane Doe'."""
    if not name:
        return ""
    tokens = name.replace(",", " ").replace(".", " ").lower().split()
    return " ".join(sorted(tokens))


def name_similarity(a: Optional[str], b: Optional[str]) -> float:
    left, right = normalize_name(a), normalize_name(b)
    if not left or not right:
        return 0.0
    return SequenceMatcher(None, left, right).ratio()


def amount_points(amount: Decimal, expected: Decimal) -> float:
    """35 exact, 25 within 1%, 15 within 5%, 5 for any underpayment, else 0."""
    amount, expected = to_money(amount), to_money(expected)
    if expected <= ZERO:
        return 0.0
    difference = abs(amount - expected)
    if difference <= Decimal("0.01"):
        return 35.0
    ratio = difference / expected
    if ratio <= Decimal("0.01"):
        return 25.0
    if ratio <= Decimal("0.05"):
        return 15.0
    if ZERO < amount < expected:
        return 5.0
    return 0.0


def date_points(payment_date: Optional[date], reference_date: Optional[date]) -> float:
    if not payment_date or not reference_date:
        return 0.0
    days = abs((payment_date - reference_date).days)
    for limit, points in DATE_POINTS:
        if days <= limit:
            return points
    return 0.0


class MatchingEngine:
    """Match remittance line items to open claims or invoices."""

    def __init__(self, db: Session, settings: Optional[BillingSettings] = None):
        self.db = db
        self.settings = settings or get_billing_settings()
        self._payer_cache: Dict[str, Optional[InsuranceCompany]] = {}

    def match_batch(self, batch: RemittanceBatch) -> Dict[str, int]:
        """Run matching over every unmatched, unposted line and refresh batch counts."""
        stats = {"matched": 0, "unmatched": 0, "ambiguous": 0}
        for item in batch.line_items:
            if item.posted or item.match_status == MatchStatus.MATCHED:
                continue
            outcome = self.match_line_item(item)
            stats[outcome] += 1

        batch.refresh_counts()
        logger.info("Batch matched", batch_id=batch.id, **stats)
        return stats

    def match_line_item(self, item: RemittanceLineItem) -> str:
        """
        Try to match a single line item.

        Returns:
            "matched", "unmatched" or "ambiguous"
        """
        claim = self._exact_claim(item)
        if claim is not None:
            self._apply(item, claim, MatchMethod.EXACT_CLAIM, 100.0)
            return "matched"

        invoice = self._exact_invoice(item)
        if invoice is not None:
            self._apply(item, invoice, MatchMethod.EXACT_INVOICE, 100.0)
            return "matched"

        try:
            candidate = self.best_candidate(item)
        except MatchAmbiguityError as e:
            item.needs_review = True
            item.review_reason = e.message
            logger.info(
                "Ambiguous remittance match",
                line_item_id=item.id,
                candidates=e.details.get("candidates"),
            )
            return "ambiguous"

        if candidate is None:
            if not item.review_reason:
                item.review_reason = "No open claim or invoice matched this remittance line"
            return "unmatched"

        self._apply(item, candidate.target, MatchMethod.SCORED, candidate.score)
        return "matched"

    def best_candidate(self, item: RemittanceLineItem) -> Optional[MatchCandidate]:
        """
        Score candidates of the line's payer and pick the winner.

        Raises:
            MatchAmbiguityError: If two or more candidates clear the threshold
                within the tie margin of each other
        """
        payer = self._resolve_payer(item.payer_name)
        if payer is None:
            item.review_reason = (
                f"Unknown payer '{item.payer_name}'" if item.payer_name else "Remittance line has no payer"
            )
            return None

        candidates = [self.score_claim(item, c) for c in self._open_claims(payer.id)]
        candidates += [self.score_invoice(item, i) for i in self._open_invoices(payer.id)]
        threshold = self.settings.match_acceptance_threshold
        qualified = sorted(
            (c for c in candidates if c.score >= threshold),
            key=lambda c: c.score,
            reverse=True,
        )
        if not qualified:
            return None

        best = qualified[0]
        contenders = [c for c in qualified if best.score - c.score <= self.settings.match_tie_margin]
        if len(contenders) > 1:
            raise MatchAmbiguityError(
                f"{len(contenders)} candidates scored within {self.settings.match_tie_margin} points",
                candidates=[c.describe() for c in contenders],
            )
        return best

    def score_claim(self, item: RemittanceLineItem, claim: Claim) -> MatchCandidate:
        name = name_similarity(item.patient_name, claim.patient_name) * NAME_WEIGHT
        outstanding = claim.outstanding_insurance_amount
        amount = max(
            amount_points(item.amount, outstanding),
            amount_points(item.amount, to_money(claim.submitted_amount)),
        )
        reference = claim.service_date or (claim.submission_date.date() if claim.submission_date else None)
        when = date_points(item.payment_date, reference)
        return MatchCandidate(claim, name + amount + when, {"name": round(name, 2), "amount": amount, "date": when})

    def score_invoice(self, item: RemittanceLineItem, invoice: Invoice) -> MatchCandidate:
        name = name_similarity(item.patient_name, invoice.patient_name) * NAME_WEIGHT
        amount = amount_points(item.amount, to_money(invoice.balance_due))
        when = date_points(item.payment_date, invoice.due_date or invoice.issue_date)
        return MatchCandidate(invoice, name + amount + when, {"name": round(name, 2), "amount": amount, "date": when})

    def manual_match(
        self,
        item: RemittanceLineItem,
        claim_id: Optional[int] = None,
        invoice_id: Optional[int] = None,
    ) -> RemittanceLineItem:
        """
        Link a line item to exactly one target chosen by a user.

        Raises:
            ConflictError: Both or neither target given, or the item is posted
            NotFoundError: The target does not exist
        """
        if (claim_id is None) == (invoice_id is None):
            raise ConflictError(
                "Provide exactly one of claim_id or invoice_id",
                details={"claim_id": claim_id, "invoice_id": invoice_id},
            )
        if item.posted:
            raise ConflictError(
                "Posted remittance lines cannot be re-matched",
                details={"line_item_id": item.id},
            )

        if claim_id is not None:
            target = self.db.get(Claim, claim_id)
            if target is None:
                raise NotFoundError("Claim", str(claim_id))
        else:
            target = self.db.get(Invoice, invoice_id)
            if target is None:
                raise NotFoundError("Invoice", str(invoice_id))

        self._apply(item, target, MatchMethod.MANUAL, None)
        item.batch.refresh_counts()
        return item

    def unmatch(self, item: RemittanceLineItem) -> RemittanceLineItem:
        if item.posted:
            raise ConflictError(
                "Posted remittance lines cannot be unmatched; void the payment instead",
                details={"line_item_id": item.id},
            )
        item.clear_match()
        item.batch.refresh_counts()
        return item

    def _apply(
        self,
        item: RemittanceLineItem,
        target: Union[Claim, Invoice],
        method: MatchMethod,
        score: Optional[float],
    ) -> None:
        item.clear_match()
        if isinstance(target, Claim):
            item.matched_claim = target
            item.matched_claim_id = target.id
        else:
            item.matched_invoice = target
            item.matched_invoice_id = target.id
        item.match_status = MatchStatus.MATCHED
        item.match_method = method
        item.match_score = round(score, 2) if score is not None else None
        item.needs_review = False
        item.review_reason = None
        logger.info(
            "Remittance line matched",
            line_item_id=item.id,
            target_type="claim" if isinstance(target, Claim) else "invoice",
            target_id=target.id,
            method=method.value,
            score=item.match_score,
        )

    def _exact_claim(self, item: RemittanceLineItem) -> Optional[Claim]:
        if not item.claim_reference:
            return None
        claim = self.db.query(Claim).filter(Claim.claim_number == item.claim_reference.strip()).first()
        if claim is None:
            return None
        if claim.status not in OPEN_CLAIM_STATUSES:
            item.review_reason = f"Claim {claim.claim_number} is {claim.status.value}"
            return None
        return claim

    def _exact_invoice(self, item: RemittanceLineItem) -> Optional[Invoice]:
        if not item.invoice_reference:
            return None
        invoice = (
            self.db.query(Invoice)
            .filter(Invoice.invoice_number == item.invoice_reference.strip())
            .first()
        )
        if invoice is None:
            return None
        if invoice.status not in OPEN_INVOICE_STATUSES:
            item.review_reason = f"Invoice {invoice.invoice_number} is {invoice.status.value}"
            return None
        return invoice

    def _resolve_payer(self, payer_name: Optional[str]) -> Optional[InsuranceCompany]:
        if not payer_name:
            return None
        key = payer_name.strip().lower()
        if key not in self._payer_cache:
            self._payer_cache[key] = (
                self.db.query(InsuranceCompany)
                .filter(func.lower(InsuranceCompany.name) == key)
                .first()
            )
        return self._payer_cache[key]

    def _open_claims(self, insurance_company_id: int) -> List[Claim]:
        return (
            self.db.query(Claim)
            .filter(Claim.insurance_company_id == insurance_company_id)
            .filter(Claim.status.in_(list(OPEN_CLAIM_STATUSES)))
            .all()
        )

    def _open_invoices(self, insurance_company_id: int) -> List[Invoice]:
        # Invoices billed through a live claim are reached via that claim
        return (
            self.db.query(Invoice)
            .filter(Invoice.insurance_company_id == insurance_company_id)
            .filter(Invoice.status.in_(list(OPEN_INVOICE_STATUSES)))
            .filter(~Invoice.claims.any(Claim.status != ClaimStatus.CANCELLED))
            .all()
        )
