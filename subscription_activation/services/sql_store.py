# subscription_activation/services/sql_store.py

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from subscription_activation.models.activation_code import ActivationCode
from subscription_activation.models.activation_record import (
    ActivationFilters,
    ActivationPage,
    ActivationRecord,
    ActivationStatus,
    ActivationTotals,
    CompareAndSetResult,
    utcnow,
)
from subscription_activation.services.errors import CodeConflict, ConfigurationError, PersistenceFailed
from subscription_activation.services.record_store import DEFAULT_PAGE_SIZE, RecordStore, clamp_page


INSERT_BY_DIALECT = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; every stored value is UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _like_pattern(q: str) -> str:
    escaped = q.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _row_values(record: ActivationRecord) -> Dict[str, Any]:
    return {
        "code": record.code,
        "subscription_id": record.subscription_id,
        "status": record.status.value,
        "issued_at": record.issued_at,
        "used_at": record.used_at,
        "customer_email": record.customer_email or None,
        "order_id": record.order_id or None,
        "activate_url": record.activate_url or None,
        "qr_url": record.qr_url or None,
        "paused": record.paused,
    }


def _to_record(row: ActivationCode) -> ActivationRecord:
    return ActivationRecord(
        code=row.code,
        subscription_id=row.subscription_id,
        status=ActivationStatus(row.status),
        issued_at=_aware(row.issued_at),
        used_at=_aware(row.used_at),
        customer_email=row.customer_email or "",
        order_id=row.order_id or "",
        activate_url=row.activate_url or "",
        qr_url=row.qr_url or "",
        paused=bool(row.paused),
    )


def _filter_conditions(filters: ActivationFilters) -> List[Any]:
    conditions: List[Any] = []
    if filters.q:
        pattern = _like_pattern(filters.q)
        conditions.append(
            or_(
                func.lower(ActivationCode.code).like(pattern, escape="\\"),
                func.lower(ActivationCode.subscription_id).like(pattern, escape="\\"),
                func.lower(func.coalesce(ActivationCode.customer_email, "")).like(pattern, escape="\\"),
            )
        )
    if filters.status is not None:
        conditions.append(ActivationCode.status == filters.status.value)
    if filters.issued_from:
        conditions.append(ActivationCode.issued_at >= filters.issued_from)
    if filters.issued_to:
        conditions.append(ActivationCode.issued_at <= filters.issued_to)
    if filters.used_from:
        conditions.append(ActivationCode.used_at.is_not(None))
        conditions.append(ActivationCode.used_at >= filters.used_from)
    if filters.used_to:
        conditions.append(ActivationCode.used_at.is_not(None))
        conditions.append(ActivationCode.used_at <= filters.used_to)
    return conditions


class SqlRecordStore(RecordStore):
    """Activation records in the ``activation_codes`` table (PostgreSQL or SQLite)."""

    backend = "sql"

    def __init__(self, session_factory: async_sessionmaker, engine: Optional[AsyncEngine] = None):
        self._session_factory = session_factory
        self._engine = engine

    async def upsert(self, record: ActivationRecord, *, replace: bool = True) -> bool:
        values = _row_values(record)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    insert = self._insert_for(session)
                    existing = await session.scalar(
                        select(ActivationCode.id).where(ActivationCode.code == record.code)
                    )
                    statement = insert(ActivationCode).values(**values)
                    if replace:
                        # Re-issuing a code resets it to a fresh record for the new owner.
                        statement = statement.on_conflict_do_update(
                            index_elements=[ActivationCode.code],
                            set_={key: value for key, value in values.items() if key != "code"},
                        )
                    else:
                        statement = statement.on_conflict_do_nothing(index_elements=[ActivationCode.code])
                    result = await session.execute(statement)
                    if not replace and result.rowcount == 0:
                        raise CodeConflict(record.code)
        except SQLAlchemyError as exc:
            raise PersistenceFailed(f"Could not store activation code {record.code}: {exc}") from exc
        return existing is not None

    async def get_by_code(self, code: str) -> Optional[ActivationRecord]:
        try:
            async with self._session_factory() as session:
                row = await session.scalar(select(ActivationCode).where(ActivationCode.code == code))
        except SQLAlchemyError as exc:
            raise PersistenceFailed(f"Could not read activation code {code}: {exc}") from exc
        return _to_record(row) if row is not None else None

    async def compare_and_set_used(
        self,
        code: str,
        expected_subscription_id: str,
        *,
        used_at: Optional[datetime] = None,
    ) -> CompareAndSetResult:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    # The WHERE clause is the compare; the row lock taken by the
                    # UPDATE makes concurrent callers see a single winner.
                    result = await session.execute(
                        update(ActivationCode)
                        .where(
                            ActivationCode.code == code,
                            ActivationCode.subscription_id == expected_subscription_id,
                            ActivationCode.status == ActivationStatus.UNUSED.value,
                        )
                        .values(status=ActivationStatus.USED.value, used_at=used_at or utcnow())
                    )
                    if result.rowcount == 1:
                        return CompareAndSetResult.SUCCESS
                    current = await session.scalar(
                        select(ActivationCode.subscription_id).where(ActivationCode.code == code)
                    )
        except SQLAlchemyError as exc:
            raise PersistenceFailed(f"Could not mark activation code {code} used: {exc}") from exc

        if current is None or current != expected_subscription_id:
            return CompareAndSetResult.NOT_FOUND
        return CompareAndSetResult.ALREADY_USED

    async def list_records(
        self,
        filters: Optional[ActivationFilters] = None,
        limit: Optional[int] = DEFAULT_PAGE_SIZE,
        offset: Optional[int] = 0,
    ) -> ActivationPage:
        limit, offset = clamp_page(limit, offset)
        conditions = _filter_conditions(filters or ActivationFilters())

        totals_query = select(
            func.count(ActivationCode.id),
            func.sum(case((ActivationCode.status == ActivationStatus.USED.value, 1), else_=0)),
        )
        items_query = (
            select(ActivationCode)
            .order_by(ActivationCode.issued_at.desc(), ActivationCode.id.desc())
            .limit(limit)
            .offset(offset)
        )
        if conditions:
            totals_query = totals_query.where(*conditions)
            items_query = items_query.where(*conditions)

        try:
            async with self._session_factory() as session:
                total, used = (await session.execute(totals_query)).one()
                rows = (await session.execute(items_query)).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceFailed(f"Could not list activation codes: {exc}") from exc

        return ActivationPage(
            items=[_to_record(row) for row in rows],
            totals=ActivationTotals(total=total or 0, used=used or 0),
            limit=limit,
            offset=offset,
        )

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    @staticmethod
    def _insert_for(session: AsyncSession):
        dialect = session.get_bind().dialect.name
        try:
            return INSERT_BY_DIALECT[dialect]
        except KeyError:
            raise ConfigurationError(f"Unsupported database dialect for activation codes: {dialect}") from None
