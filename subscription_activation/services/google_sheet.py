# subscription_activation/services/google_sheet.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional

import gspread
from gspread.exceptions import GSpreadException

from subscription_activation.core.config import Settings
from subscription_activation.models.activation_record import (
    ActivationFilters,
    ActivationPage,
    ActivationRecord,
    ActivationStatus,
    CompareAndSetResult,
    utcnow,
)
from subscription_activation.services.errors import CodeConflict, ConfigurationError, PersistenceFailed
from subscription_activation.services.record_store import DEFAULT_PAGE_SIZE, RecordStore, paginate

logger = logging.getLogger(__name__)

HEADERS = [
    "Code",
    "Subscription ID",
    "Status",
    "Issued At",
    "Used At",
    "Customer Email",
    "Order ID",
    "Activate URL",
    "QR URL",
    "Paused",
]
LAST_COLUMN = "J"


def _to_row(record: ActivationRecord) -> List[str]:
    return [
        record.code,
        record.subscription_id,
        record.status.value,
        record.issued_at.isoformat(),
        record.used_at.isoformat() if record.used_at else "",
        record.customer_email or "",
        record.order_id or "",
        record.activate_url or "",
        record.qr_url or "",
        "yes" if record.paused else "no",
    ]


def _from_row(values: List[Any]) -> ActivationRecord:
    # Sheets drops trailing empty cells.
    values = [str(value) for value in values] + [""] * (len(HEADERS) - len(values))
    code, subscription_id, status, issued_at, used_at, email, order_id, activate_url, qr_url, paused = values[: len(HEADERS)]
    return ActivationRecord(
        code=code,
        subscription_id=subscription_id,
        status=ActivationStatus(status or ActivationStatus.UNUSED.value),
        issued_at=datetime.fromisoformat(issued_at),
        used_at=datetime.fromisoformat(used_at) if used_at else None,
        customer_email=email,
        order_id=order_id,
        activate_url=activate_url,
        qr_url=qr_url,
        paused=paused == "yes",
    )


class GoogleSheetRecordStore(RecordStore):
    """Activation records kept as rows of a Google Sheets worksheet.

    The Sheets API has no conditional write, so compare-and-set re-reads the
    row right before writing and writers are serialized by a process-local
    lock. That is only a single-winner guarantee when one process owns the
    sheet; multi-instance deployments should use the SQL or Redis store.
    """

    backend = "sheets"

    def __init__(self, worksheet):
        self._worksheet = worksheet
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "GoogleSheetRecordStore":
        if not settings.google_credentials_path:
            raise ConfigurationError("GOOGLE_SHEETS_CREDENTIALS_PATH is not set. Please check .env file.")
        if not settings.google_sheet_id:
            raise ConfigurationError("GOOGLE_SHEET_ID is not set. Please check .env file.")
        client = gspread.service_account(filename=settings.google_credentials_path)
        worksheet = client.open_by_key(settings.google_sheet_id).worksheet(settings.google_sheet_name_for_codes)
        if not worksheet.row_values(1):
            worksheet.append_row(HEADERS)
        return cls(worksheet)

    async def _run(self, action: str, func: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except GSpreadException as exc:
            raise PersistenceFailed(f"Google Sheets could not {action}: {exc}") from exc

    async def _find_row(self, code: str) -> Optional[int]:
        codes = await self._run("read codes", self._worksheet.col_values, 1)
        for row_num, value in enumerate(codes, start=1):
            if row_num > 1 and value == code:  # row 1 is the header
                return row_num
        return None

    async def _write_row(self, row_num: int, record: ActivationRecord) -> None:
        await self._run(
            "update row",
            self._worksheet.update,
            range_name=f"A{row_num}:{LAST_COLUMN}{row_num}",
            values=[_to_row(record)],
            value_input_option="RAW",
        )

    async def upsert(self, record: ActivationRecord, *, replace: bool = True) -> bool:
        async with self._lock:
            row_num = await self._find_row(record.code)
            if row_num is None:
                await self._run(
                    "append row", self._worksheet.append_row, _to_row(record), value_input_option="RAW"
                )
                logger.info("Appended activation code %s to Google Sheets", record.code)
                return False
            if not replace:
                raise CodeConflict(record.code)
            await self._write_row(row_num, record)
            return True

    async def upsert_many(self, records: Iterable[ActivationRecord]) -> int:
        # One read of column A, then one batched update and one append.
        async with self._lock:
            codes = await self._run("read codes", self._worksheet.col_values, 1)
            rows = {value: row_num for row_num, value in enumerate(codes, start=1) if row_num > 1 and value}
            updates, appends, written = [], {}, 0
            for record in records:
                written += 1
                row_num = rows.get(record.code)
                if row_num is None:
                    appends[record.code] = _to_row(record)
                else:
                    updates.append({"range": f"A{row_num}:{LAST_COLUMN}{row_num}", "values": [_to_row(record)]})
            if updates:
                await self._run("update rows", self._worksheet.batch_update, updates, value_input_option="RAW")
            if appends:
                await self._run(
                    "append rows", self._worksheet.append_rows, list(appends.values()), value_input_option="RAW"
                )
        logger.info("Wrote %d activation codes to Google Sheets (%d new)", written, len(appends))
        return written

    async def get_by_code(self, code: str) -> Optional[ActivationRecord]:
        row_num = await self._find_row(code)
        if row_num is None:
            return None
        values = await self._run("read row", self._worksheet.row_values, row_num)
        return _from_row(values)

    async def compare_and_set_used(
        self,
        code: str,
        expected_subscription_id: str,
        *,
        used_at: Optional[datetime] = None,
    ) -> CompareAndSetResult:
        async with self._lock:
            row_num = await self._find_row(code)
            if row_num is None:
                return CompareAndSetResult.NOT_FOUND
            # Confirm the row is still unused right before claiming it.
            record = _from_row(await self._run("read row", self._worksheet.row_values, row_num))
            if record.subscription_id != expected_subscription_id:
                return CompareAndSetResult.NOT_FOUND
            if record.is_used:
                return CompareAndSetResult.ALREADY_USED
            await self._write_row(row_num, record.mark_used(used_at or utcnow()))
            return CompareAndSetResult.SUCCESS

    async def list_records(
        self,
        filters: Optional[ActivationFilters] = None,
        limit: Optional[int] = DEFAULT_PAGE_SIZE,
        offset: Optional[int] = 0,
    ) -> ActivationPage:
        rows = await self._run("read sheet", self._worksheet.get_all_values)
        records = [_from_row(row) for row in rows[1:] if row and row[0]]
        return paginate(records, filters, limit, offset)
