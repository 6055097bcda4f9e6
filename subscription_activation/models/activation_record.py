# subscription_activation/models/activation_record.py

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivationStatus(str, enum.Enum):
    UNUSED = "unused"
    USED = "used"


class CompareAndSetResult(str, enum.Enum):
    """Outcome of the single-winner unused -> used transition."""

    SUCCESS = "success"
    ALREADY_USED = "already_used"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ActivationRecord:
    """A single-use code tied to one subscription.

    ``used_at`` is set if and only if the status is ``used``. Everything after
    ``customer_email`` is descriptive and never consulted during redemption,
    except ``paused`` which the reconciliation job reads.
    """

    code: str
    subscription_id: str
    status: ActivationStatus = ActivationStatus.UNUSED
    issued_at: datetime = field(default_factory=utcnow)
    used_at: Optional[datetime] = None
    customer_email: str = ""
    order_id: str = ""
    activate_url: str = ""
    qr_url: str = ""
    paused: bool = False

    def __post_init__(self) -> None:
        status = ActivationStatus(self.status)
        object.__setattr__(self, "status", status)
        if (status is ActivationStatus.USED) != (self.used_at is not None):
            raise ValueError(
                f"Activation record {self.code}: used_at must be set exactly when status is used"
            )

    @property
    def is_used(self) -> bool:
        return self.status is ActivationStatus.USED

    def mark_used(self, used_at: Optional[datetime] = None) -> "ActivationRecord":
        if self.is_used:
            raise ValueError(f"Activation record {self.code} is already used")
        return replace(self, status=ActivationStatus.USED, used_at=used_at or utcnow())

    def to_summary(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "subscriptionId": self.subscription_id,
            "status": self.status.value,
            "issuedAt": _isoformat(self.issued_at),
            "usedAt": _isoformat(self.used_at),
            "customerEmail": self.customer_email or "",
        }

    def to_detail(self) -> Dict[str, Any]:
        detail = self.to_summary()
        detail.update(
            orderId=self.order_id or "",
            qrUrl=self.qr_url or "",
            activateUrl=self.activate_url or "",
            paused=self.paused,
        )
        return detail


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class ActivationFilters:
    q: str = ""
    status: Optional[ActivationStatus] = None
    issued_from: Optional[datetime] = None
    issued_to: Optional[datetime] = None
    used_from: Optional[datetime] = None
    used_to: Optional[datetime] = None

    def matches(self, record: ActivationRecord) -> bool:
        """In-process equivalent of the SQL filter, for stores without a query engine."""
        if self.q:
            needle = self.q.lower()
            haystack = (record.code, record.subscription_id, record.customer_email or "")
            if not any(needle in value.lower() for value in haystack):
                return False
        if self.status is not None and record.status is not self.status:
            return False
        if self.issued_from and record.issued_at < self.issued_from:
            return False
        if self.issued_to and record.issued_at > self.issued_to:
            return False
        if self.used_from and (record.used_at is None or record.used_at < self.used_from):
            return False
        if self.used_to and (record.used_at is None or record.used_at > self.used_to):
            return False
        return True


@dataclass(frozen=True)
class ActivationTotals:
    total: int = 0
    used: int = 0

    @property
    def unused(self) -> int:
        return self.total - self.used

    def to_dict(self) -> Dict[str, int]:
        return {"total": self.total, "used": self.used, "unused": self.unused}


@dataclass(frozen=True)
class ActivationPage:
    items: List[ActivationRecord]
    totals: ActivationTotals
    limit: int
    offset: int

    def meta(self) -> Dict[str, int]:
        return {
            "returned": len(self.items),
            "limit": self.limit,
            "offset": self.offset,
            "page": self.offset // self.limit + 1,
            "totalPages": max(math.ceil(self.totals.total / self.limit), 1),
        }
