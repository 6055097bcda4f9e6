# subscription_activation/services/memory_store.py

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, Optional

from subscription_activation.models.activation_record import (
    ActivationFilters,
    ActivationPage,
    ActivationRecord,
    CompareAndSetResult,
    utcnow,
)
from subscription_activation.services.errors import CodeConflict
from subscription_activation.services.record_store import DEFAULT_PAGE_SIZE, RecordStore, paginate


class InMemoryRecordStore(RecordStore):
    """Process-local store for tests and local runs. Not shared between workers."""

    backend = "memory"

    def __init__(self):
        self._records: Dict[str, ActivationRecord] = {}
        self._lock = asyncio.Lock()

    async def upsert(self, record: ActivationRecord, *, replace: bool = True) -> bool:
        async with self._lock:
            existed = record.code in self._records
            if existed and not replace:
                raise CodeConflict(record.code)
            self._records[record.code] = record
            return existed

    async def get_by_code(self, code: str) -> Optional[ActivationRecord]:
        return self._records.get(code)

    async def compare_and_set_used(
        self,
        code: str,
        expected_subscription_id: str,
        *,
        used_at: Optional[datetime] = None,
    ) -> CompareAndSetResult:
        async with self._lock:
            record = self._records.get(code)
            if record is None or record.subscription_id != expected_subscription_id:
                return CompareAndSetResult.NOT_FOUND
            if record.is_used:
                return CompareAndSetResult.ALREADY_USED
            self._records[code] = record.mark_used(used_at or utcnow())
            return CompareAndSetResult.SUCCESS

    async def list_records(
        self,
        filters: Optional[ActivationFilters] = None,
        limit: Optional[int] = DEFAULT_PAGE_SIZE,
        offset: Optional[int] = 0,
    ) -> ActivationPage:
        return paginate(list(self._records.values()), filters, limit, offset)
