# subscription_activation/services/record_store.py

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional, Tuple

from subscription_activation.core.config import Settings
from subscription_activation.models.activation_record import (
    ActivationFilters,
    ActivationPage,
    ActivationRecord,
    ActivationStatus,
    ActivationTotals,
    CompareAndSetResult,
)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 2000


def clamp_page(limit: Optional[int], offset: Optional[int]) -> Tuple[int, int]:
    limit = DEFAULT_PAGE_SIZE if limit is None else limit
    return min(max(int(limit), 1), MAX_PAGE_SIZE), max(int(offset or 0), 0)


class RecordStore(ABC):
    """Durable keyed storage for activation records.

    ``compare_and_set_used`` is the only place the one-time-use guarantee is
    enforced: implementations must check and flip the status in one atomic
    step of the backend, never as a read followed by a separate write.
    """

    backend = "abstract"

    @abstractmethod
    async def upsert(self, record: ActivationRecord, *, replace: bool = True) -> bool:
        """Store ``record`` keyed by its code.

        With ``replace`` an existing record for the code is overwritten in full
        and True is returned. Without it an existing code raises
        ``CodeConflict``. Returns False when a new record was created.
        """

    async def upsert_many(self, records: Iterable[ActivationRecord]) -> int:
        """Store every record with replace semantics; returns how many were written."""
        written = 0
        for record in records:
            await self.upsert(record, replace=True)
            written += 1
        return written

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[ActivationRecord]:
        ...

    @abstractmethod
    async def compare_and_set_used(
        self,
        code: str,
        expected_subscription_id: str,
        *,
        used_at: Optional[datetime] = None,
    ) -> CompareAndSetResult:
        """Flip an unused record owned by ``expected_subscription_id`` to used.

        A record bound to another subscription reports NOT_FOUND.
        """

    @abstractmethod
    async def list_records(
        self,
        filters: Optional[ActivationFilters] = None,
        limit: Optional[int] = DEFAULT_PAGE_SIZE,
        offset: Optional[int] = 0,
    ) -> ActivationPage:
        ...

    async def close(self) -> None:
        pass


def paginate(
    records: Iterable[ActivationRecord],
    filters: Optional[ActivationFilters],
    limit: Optional[int],
    offset: Optional[int],
) -> ActivationPage:
    """Filter, order newest first and slice records held in process."""
    limit, offset = clamp_page(limit, offset)
    filters = filters or ActivationFilters()
    matched = sorted(
        (record for record in records if filters.matches(record)),
        key=lambda record: record.issued_at,
        reverse=True,
    )
    used = sum(1 for record in matched if record.status is ActivationStatus.USED)
    return ActivationPage(
        items=matched[offset:offset + limit],
        totals=ActivationTotals(total=len(matched), used=used),
        limit=limit,
        offset=offset,
    )


async def iter_records(
    store: RecordStore,
    filters: Optional[ActivationFilters] = None,
    page_size: int = 500,
) -> AsyncIterator[ActivationRecord]:
    # Pages are re-queried on every step; a record that changes status while
    # iterating with a status filter may be skipped until the next run.
    offset = 0
    while True:
        page = await store.list_records(filters, limit=page_size, offset=offset)
        for record in page.items:
            yield record
        if len(page.items) < page.limit:
            return
        offset += page.limit


def build_record_store(settings: Settings) -> RecordStore:
    backend = settings.record_store
    if backend in ("sql", "postgres"):
        from subscription_activation.services.database import create_engine, create_session_factory
        from subscription_activation.services.sql_store import SqlRecordStore

        engine = create_engine(settings.database_url)
        return SqlRecordStore(create_session_factory(engine), engine=engine)
    if backend == "redis":
        from subscription_activation.services.redis_store import RedisRecordStore

        return RedisRecordStore.from_url(settings.redis_url)
    if backend == "sheets":
        from subscription_activation.services.google_sheet import GoogleSheetRecordStore

        return GoogleSheetRecordStore.from_settings(settings)
    if backend == "memory":
        from subscription_activation.services.memory_store import InMemoryRecordStore

        return InMemoryRecordStore()
    raise ValueError(f"Unknown record store backend: {backend}")
