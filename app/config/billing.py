"""Billing engine configuration.

Tunables for remittance import, matching, posting and the denial workflow.
Every field can be overridden through the environment (or `.env`) using the
alias shown next to it.
"""
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class BillingSettings(BaseSettings):
    """Billing engine settings."""

    # Remittance import
    max_upload_bytes: int = Field(10 * 1024 * 1024, alias="REMITTANCE_MAX_UPLOAD_BYTES")
    allowed_extensions: str = Field(".835,.txt,.edi,.csv", alias="REMITTANCE_ALLOWED_EXTENSIONS")
    auto_post_on_import: bool = Field(False, alias="REMITTANCE_AUTO_POST_ON_IMPORT")

    # Matching
    match_acceptance_threshold: float = Field(75.0, alias="MATCH_ACCEPTANCE_THRESHOLD")
    match_tie_margin: float = Field(5.0, alias="MATCH_TIE_MARGIN")

    # Posting
    posting_max_attempts: int = Field(3, alias="POSTING_MAX_ATTEMPTS")
    posting_backoff_seconds: float = Field(0.1, alias="POSTING_BACKOFF_SECONDS")

    # Claims
    max_appeals_per_claim: int = Field(3, alias="MAX_APPEALS_PER_CLAIM")
    timely_filing_days: int = Field(365, alias="TIMELY_FILING_DAYS")
    amount_tolerance: str = Field("0.01", alias="CLAIM_AMOUNT_TOLERANCE")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True

    @property
    def extensions(self) -> List[str]:
        """Allowed upload extensions, lower-cased with a leading dot."""
        result = []
        for ext in self.allowed_extensions.split(","):
            ext = ext.strip().lower()
            if not ext:
                continue
            result.append(ext if ext.startswith(".") else f".{ext}")
        return result


billing_settings = BillingSettings()


def get_billing_settings() -> BillingSettings:
    """Return the process-wide billing settings."""
    return billing_settings
