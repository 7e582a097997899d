"""Remittance import.

Validates an uploaded file, parses it into canonical records, stores one
RemittanceBatch with its line items and runs the matching engine over them.
A file that cannot be parsed at all is still recorded as a batch with
status `error` so the failure is visible in the batch list.
"""
from pathlib import Path
from typing import Optional

from sqlalchemy.orm import Session

from app.config.billing import BillingSettings, get_billing_settings
from app.models.database import RemittanceBatch, RemittanceLineItem
from app.models.enums import MatchStatus, RemittanceBatchStatus
from app.services.remittance.matcher import MatchingEngine
from app.services.remittance.parser import ParsedRemittance, RemittanceParser
from app.utils.errors import ImportParseError, ValidationError
from app.utils.logger import get_logger

logger = get_logger(__name__)


class RemittanceImporter:
    """Import remittance files into batches."""

    def __init__(
        self,
        db: Session,
        settings: Optional[BillingSettings] = None,
        parser: Optional[RemittanceParser] = None,
        matcher: Optional[MatchingEngine] = None,
    ):
        self.db = db
        self.settings = settings or get_billing_settings()
        self.parser = parser or RemittanceParser()
        self.matcher = matcher or MatchingEngine(db, self.settings)

    def validate_upload(self, filename: Optional[str], size: int) -> None:
        """
        Raises:
            ValidationError: Missing name, disallowed extension, empty or oversized file
        """
        if not filename:
            raise ValidationError("Uploaded file has no name")

        suffix = Path(filename).suffix.lower()
        if suffix not in self.settings.extensions:
            raise ValidationError(
                f"File type {suffix or '(none)'} is not allowed",
                details={"filename": filename, "allowed": self.settings.extensions},
            )
        if size == 0:
            raise ValidationError("Uploaded file is empty", details={"filename": filename})
        if size > self.settings.max_upload_bytes:
            raise ValidationError(
                "Uploaded file is too large",
                details={"filename": filename, "size": size, "max_bytes": self.settings.max_upload_bytes},
            )

    def import_file(self, filename: str, content: bytes) -> RemittanceBatch:
        """
        Import one remittance file and match its lines.

        Returns:
            The committed batch

        Raises:
            ValidationError: If the upload is rejected before parsing
            ImportParseError: If nothing could be parsed; the batch is still
                stored with status `error` and its id is in `details`
        """
        self.validate_upload(filename, len(content))
        text = content.decode("utf-8", errors="replace")

        try:
            parsed = self.parser.parse(text, filename)
        except ImportParseError as e:
            batch = self._record_failure(filename, e)
            e.details = {**(e.details or {}), "batch_id": batch.id}
            raise

        batch = self._create_batch(filename, parsed)
        stats = self.matcher.match_batch(batch)
        batch.settle_status()
        self.db.commit()
        self.db.refresh(batch)

        logger.info(
            "Remittance imported",
            batch_id=batch.id,
            filename=filename,
            format=batch.file_format.value,
            total_records=batch.total_records,
            parse_errors=batch.parse_error_count,
            status=batch.status.value,
            **stats,
        )
        return batch

    def _create_batch(self, filename: str, parsed: ParsedRemittance) -> RemittanceBatch:
        batch = RemittanceBatch(
            file_name=filename,
            file_format=parsed.file_format,
            payer_name=parsed.payer_name,
            check_number=parsed.check_number,
            status=RemittanceBatchStatus.IMPORTED,
            parse_error_count=len(parsed.errors),
            parse_errors=parsed.errors or None,
        )
        for record in parsed.records:
            batch.line_items.append(RemittanceLineItem(
                line_number=record.line_number,
                patient_name=record.patient_name,
                claim_reference=record.claim_reference,
                invoice_reference=record.invoice_reference,
                amount=record.amount,
                billed_amount=record.billed_amount,
                patient_responsibility=record.patient_responsibility,
                payment_date=record.payment_date,
                payer_name=record.payer_name or parsed.payer_name,
                payment_method=record.payment_method,
                check_number=record.check_number or parsed.check_number,
                denial_reason=record.denial_reason,
                adjustment_codes=record.adjustment_codes or None,
                raw_record=_json_safe(record.raw),
                match_status=MatchStatus.UNMATCHED,
                posted=False,
                needs_review=False,
            ))
        self.db.add(batch)
        self.db.flush()
        batch.refresh_counts()
        return batch

    def _record_failure(self, filename: str, error: ImportParseError) -> RemittanceBatch:
        errors = (error.details or {}).get("errors") or []
        batch = RemittanceBatch(
            file_name=filename,
            status=RemittanceBatchStatus.ERROR,
            error_message=error.message,
            parse_errors=errors or None,
            parse_error_count=len(errors),
        )
        self.db.add(batch)
        self.db.commit()
        logger.warning("Remittance import failed", batch_id=batch.id, filename=filename, error=error.message)
        return batch


def _json_safe(raw: dict) -> dict:
    return {str(key): value if isinstance(value, (str, int, float, list, type(None))) else str(value)
            for key, value in (raw or {}).items()}
