"""
Remittance (ERA/EOB) endpoints.

Files are imported synchronously: parsing and matching finish before the
response, so the returned batch already carries its matched/unmatched
counts. Posting runs either inline (`POST /era/{id}/auto-post`) or on a
Celery worker when the import is asked to auto-post.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.serializers import batch_summary, batch_to_dict, remittance_item_to_dict
from app.config.billing import get_billing_settings
from app.config.cache_ttl import get_remittance_batch_ttl
from app.config.database import get_db
from app.models.enums import MatchStatus, RemittanceBatchStatus
from app.services.commands import AutoPost, CancelBatch, ImportRemittance, MatchItem
from app.services.queue.tasks import auto_post_batch
from app.services.remittance.service import RemittanceService
from app.utils.cache import cache, remittance_batch_cache_key
from app.utils.errors import ValidationError
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024


class MatchRequest(BaseModel):
    claim_id: Optional[int] = None
    invoice_id: Optional[int] = None


@router.post("/era/import", status_code=201)
async def import_remittance(
    file: UploadFile = File(...),
    auto_post: bool = Query(default=False, description="Queue auto-posting after matching"),
    db: Session = Depends(get_db),
):
    """
    Import an 835 or delimited remittance file.

    **Validation:** `.835`, `.txt`, `.edi` or `.csv`, at most 10 MB by default
    (see `BillingSettings`). Rejected uploads answer 400 without creating a
    batch. Files that parse to nothing answer 422; the failed batch is still
    recorded and its id is in `details.batch_id`.
    """
    settings = get_billing_settings()
    filename = file.filename or "unknown"
    logger.info("Received remittance upload", filename=filename)

    # Stop reading as soon as the limit is crossed
    content = bytearray()
    while True:
        chunk = await file.read(CHUNK_SIZE)
        if not chunk:
            break
        content.extend(chunk)
        if len(content) > settings.max_upload_bytes:
            raise ValidationError(
                "Uploaded file is too large",
                details={"filename": filename, "max_bytes": settings.max_upload_bytes},
            )

    batch = ImportRemittance(filename=filename, content=bytes(content)).execute(db)

    task_id = None
    if auto_post or settings.auto_post_on_import:
        task = auto_post_batch.delay(batch.id)
        task_id = task.id
        logger.info("Auto-posting queued", batch_id=batch.id, task_id=task_id)

    return {**batch_summary(batch), "task_id": task_id}


@router.get("/era")
async def list_batches(
    skip: int = Query(default=0, ge=0, description="Number of records to skip"),
    limit: int = Query(default=100, ge=1, le=1000, description="Maximum number of records to return"),
    status: Optional[RemittanceBatchStatus] = None,
    start_date: Optional[date] = Query(default=None, description="Imported on or after"),
    end_date: Optional[date] = Query(default=None, description="Imported on or before"),
    db: Session = Depends(get_db),
):
    batches, total = RemittanceService(db).list_batches(
        skip=skip, limit=limit, status=status, start_date=start_date, end_date=end_date
    )
    return {"batches": [batch_summary(b) for b in batches], "total": total, "skip": skip, "limit": limit}


@router.get("/era/unmatched")
async def list_unmatched_items(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    search: Optional[str] = Query(default=None, description="Patient name, claim or invoice reference"),
    start_date: Optional[date] = Query(default=None, description="Payment date on or after"),
    end_date: Optional[date] = Query(default=None, description="Payment date on or before"),
    db: Session = Depends(get_db),
):
    """Unmatched, unposted remittance lines across all batches."""
    items, total = RemittanceService(db).list_unmatched(
        skip=skip, limit=limit, search=search, start_date=start_date, end_date=end_date
    )
    return {"items": [remittance_item_to_dict(i) for i in items], "total": total, "skip": skip, "limit": limit}


@router.get("/era/{batch_id}")
async def get_batch(batch_id: int, db: Session = Depends(get_db)):
    """Get a batch with its line items (cached)."""
    cache_key = remittance_batch_cache_key(batch_id)
    cached_result = cache.get(cache_key)
    if cached_result is not None:
        return cached_result

    result = batch_to_dict(RemittanceService(db).get_batch(batch_id))
    cache.set(cache_key, result, ttl_seconds=get_remittance_batch_ttl())
    return result


@router.get("/era/{batch_id}/items")
async def list_batch_items(
    batch_id: int,
    match_status: Optional[MatchStatus] = None,
    needs_review: Optional[bool] = None,
    db: Session = Depends(get_db),
):
    items = RemittanceService(db).list_items(batch_id, match_status=match_status, needs_review=needs_review)
    return {"batch_id": batch_id, "items": [remittance_item_to_dict(i) for i in items], "total": len(items)}


@router.post("/era/{batch_id}/auto-post")
async def auto_post(batch_id: int, db: Session = Depends(get_db)):
    """Post every matched line now; safe to repeat."""
    report = AutoPost(batch_id=batch_id).execute(db)
    return report.to_dict()


@router.post("/era/{batch_id}/cancel")
async def cancel_batch(batch_id: int, db: Session = Depends(get_db)):
    """Stop further posting for a batch; posted lines are kept."""
    batch = CancelBatch(batch_id=batch_id).execute(db)
    return batch_summary(batch)


@router.post("/era/items/{item_id}/match")
async def match_item(item_id: int, request: MatchRequest, db: Session = Depends(get_db)):
    """Link a line to exactly one claim or invoice."""
    item = MatchItem(line_item_id=item_id, claim_id=request.claim_id, invoice_id=request.invoice_id).execute(db)
    return remittance_item_to_dict(item)


@router.post("/era/items/{item_id}/unmatch")
async def unmatch_item(item_id: int, db: Session = Depends(get_db)):
    item = RemittanceService(db).unmatch_item(item_id)
    return remittance_item_to_dict(item)
