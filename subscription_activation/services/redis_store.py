# subscription_activation/services/redis_store.py

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from subscription_activation.models.activation_record import (
    ActivationFilters,
    ActivationPage,
    ActivationRecord,
    ActivationStatus,
    CompareAndSetResult,
    utcnow,
)
from subscription_activation.services.errors import CodeConflict, PersistenceFailed
from subscription_activation.services.record_store import DEFAULT_PAGE_SIZE, RecordStore, paginate

logger = logging.getLogger(__name__)

MAX_WATCH_RETRIES = 10


def _encode(record: ActivationRecord) -> Dict[str, str]:
    return {
        "code": record.code,
        "subscription_id": record.subscription_id,
        "status": record.status.value,
        "issued_at": record.issued_at.isoformat(),
        "used_at": record.used_at.isoformat() if record.used_at else "",
        "customer_email": record.customer_email or "",
        "order_id": record.order_id or "",
        "activate_url": record.activate_url or "",
        "qr_url": record.qr_url or "",
        "paused": "1" if record.paused else "0",
    }


def _decode(data: Dict[str, str]) -> ActivationRecord:
    return ActivationRecord(
        code=data["code"],
        subscription_id=data["subscription_id"],
        status=ActivationStatus(data["status"]),
        issued_at=datetime.fromisoformat(data["issued_at"]),
        used_at=datetime.fromisoformat(data["used_at"]) if data.get("used_at") else None,
        customer_email=data.get("customer_email", ""),
        order_id=data.get("order_id", ""),
        activate_url=data.get("activate_url", ""),
        qr_url=data.get("qr_url", ""),
        paused=data.get("paused") == "1",
    )


class RedisRecordStore(RecordStore):
    """One hash per code plus a sorted set of codes scored by issue time.

    Writes run as WATCH/MULTI transactions, so a concurrent writer to the same
    code aborts ours and we re-read before deciding again.
    """

    backend = "redis"

    def __init__(self, client: redis.Redis, prefix: str = "activation"):
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "activation") -> "RedisRecordStore":
        return cls(redis.from_url(url, encoding="utf-8", decode_responses=True), prefix=prefix)

    def _key(self, code: str) -> str:
        return f"{self._prefix}:code:{code}"

    @property
    def _index(self) -> str:
        return f"{self._prefix}:issued"

    async def upsert(self, record: ActivationRecord, *, replace: bool = True) -> bool:
        key = self._key(record.code)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for _ in range(MAX_WATCH_RETRIES):
                    try:
                        await pipe.watch(key)
                        existed = bool(await pipe.exists(key))
                        if existed and not replace:
                            raise CodeConflict(record.code)
                        pipe.multi()
                        pipe.delete(key)
                        pipe.hset(key, mapping=_encode(record))
                        pipe.zadd(self._index, {record.code: record.issued_at.timestamp()})
                        await pipe.execute()
                        return existed
                    except WatchError:
                        logger.debug("Concurrent write to %s, retrying upsert", key)
        except RedisError as exc:
            raise PersistenceFailed(f"Could not store activation code {record.code}: {exc}") from exc
        raise PersistenceFailed(f"Could not store activation code {record.code}: too much contention")

    async def get_by_code(self, code: str) -> Optional[ActivationRecord]:
        try:
            data = await self._redis.hgetall(self._key(code))
        except RedisError as exc:
            raise PersistenceFailed(f"Could not read activation code {code}: {exc}") from exc
        return _decode(data) if data else None

    async def compare_and_set_used(
        self,
        code: str,
        expected_subscription_id: str,
        *,
        used_at: Optional[datetime] = None,
    ) -> CompareAndSetResult:
        key = self._key(code)
        used_at = used_at or utcnow()
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for _ in range(MAX_WATCH_RETRIES):
                    try:
                        await pipe.watch(key)
                        data = await pipe.hgetall(key)
                        if not data or data.get("subscription_id") != expected_subscription_id:
                            return CompareAndSetResult.NOT_FOUND
                        if data.get("status") != ActivationStatus.UNUSED.value:
                            return CompareAndSetResult.ALREADY_USED
                        pipe.multi()
                        pipe.hset(
                            key,
                            mapping={"status": ActivationStatus.USED.value, "used_at": used_at.isoformat()},
                        )
                        await pipe.execute()
                        return CompareAndSetResult.SUCCESS
                    except WatchError:
                        logger.debug("Concurrent write to %s, re-checking status", key)
        except RedisError as exc:
            raise PersistenceFailed(f"Could not mark activation code {code} used: {exc}") from exc
        raise PersistenceFailed(f"Could not mark activation code {code} used: too much contention")

    async def list_records(
        self,
        filters: Optional[ActivationFilters] = None,
        limit: Optional[int] = DEFAULT_PAGE_SIZE,
        offset: Optional[int] = 0,
    ) -> ActivationPage:
        try:
            codes = await self._redis.zrange(self._index, 0, -1)
            async with self._redis.pipeline(transaction=False) as pipe:
                for code in codes:
                    pipe.hgetall(self._key(code))
                rows = await pipe.execute()
        except RedisError as exc:
            raise PersistenceFailed(f"Could not list activation codes: {exc}") from exc
        return paginate([_decode(row) for row in rows if row], filters, limit, offset)

    async def close(self) -> None:
        await self._redis.aclose()
