# subscription_activation/routers/activations.py

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from subscription_activation.dependencies import get_record_store
from subscription_activation.models.activation_record import ActivationFilters, ActivationStatus
from subscription_activation.services.code_generator import normalize_code
from subscription_activation.services.errors import PersistenceFailed
from subscription_activation.services.record_store import DEFAULT_PAGE_SIZE, RecordStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/activations", tags=["activations"])


def parse_date_bound(value: str, end_of_day: bool = False) -> Optional[datetime]:
    """Parse an ISO date or datetime; a bare date used as an upper bound covers the whole day."""
    value = (value or "").strip()
    if not value:
        return None
    if value[-1:] in ("Z", "z"):
        # fromisoformat only takes a "Z" suffix from Python 3.11 on.
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if end_of_day and len(value) == 10:
        parsed = parsed + timedelta(days=1) - timedelta(microseconds=1)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@router.get("")
async def list_activations(
    q: str = "",
    status: str = "",
    issued_from: str = Query("", alias="issuedFrom"),
    issued_to: str = Query("", alias="issuedTo"),
    used_from: str = Query("", alias="usedFrom"),
    used_to: str = Query("", alias="usedTo"),
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
    store: RecordStore = Depends(get_record_store),
):
    status = status.strip().lower()
    try:
        filters = ActivationFilters(
            q=q.strip().lower(),
            status=ActivationStatus(status) if status in ("used", "unused") else None,
            issued_from=parse_date_bound(issued_from),
            issued_to=parse_date_bound(issued_to, end_of_day=True),
            used_from=parse_date_bound(used_from),
            used_to=parse_date_bound(used_to, end_of_day=True),
        )
    except ValueError as e:
        return JSONResponse(status_code=400, content={"ok": False, "error": f"Invalid date: {e}"})

    try:
        page = await store.list_records(filters, limit=limit, offset=offset)
    except PersistenceFailed as e:
        logger.error("activations API error: %s", e)
        return JSONResponse(status_code=500, content={"ok": False, "error": "Server error"})

    return {
        "ok": True,
        "items": [record.to_summary() for record in page.items],
        "totals": page.totals.to_dict(),
        "meta": page.meta(),
    }


@router.get("/{code}")
async def get_activation(code: str, store: RecordStore = Depends(get_record_store)):
    code = normalize_code(code)
    if not code:
        return JSONResponse(status_code=400, content={"ok": False, "error": "Missing code"})

    try:
        record = await store.get_by_code(code)
    except PersistenceFailed as e:
        logger.error("detail API error: %s", e)
        return JSONResponse(status_code=500, content={"ok": False, "error": "Server error"})

    if record is None:
        return JSONResponse(status_code=404, content={"ok": False, "error": "Not found"})
    return {"ok": True, "item": record.to_detail()}
