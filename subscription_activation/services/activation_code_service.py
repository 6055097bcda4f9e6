# subscription_activation/services/activation_code_service.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from subscription_activation.models.activation_record import (
    ActivationRecord,
    ActivationStatus,
    CompareAndSetResult,
    utcnow,
)
from subscription_activation.services.code_generator import (
    DEFAULT_CODE_LENGTH,
    build_activation_url,
    make_code,
    normalize_code,
)
from subscription_activation.services.errors import (
    AlreadyUsed,
    CodeConflict,
    ConfigurationError,
    MarkUsedFailed,
    Mismatch,
    NotFound,
    PersistenceFailed,
    UpstreamCallFailed,
)
from subscription_activation.services.payload import SubscriptionEvent
from subscription_activation.services.qr_code import qr_preview, render_qr_data_url
from subscription_activation.services.record_store import RecordStore
from subscription_activation.services.subscription_control import SubscriptionControl

logger = logging.getLogger(__name__)

# Attempts at finding a code the store does not already hold.
MAX_CODE_ATTEMPTS = 5


@dataclass(frozen=True)
class IssuedActivation:
    subscription_id: str
    order_id: str
    customer_email: str
    code: str
    activate_url: str
    qr_data_url: str
    paused: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subscriptionId": self.subscription_id,
            "orderId": self.order_id,
            "customerEmail": self.customer_email,
            "code": self.code,
            "activateUrl": self.activate_url,
            "qrDataUrl": self.qr_data_url,
            "paused": self.paused,
        }


async def pause_subscription(control: SubscriptionControl, subscription_id: str) -> bool:
    """Pause the subscription, returning False instead of raising on failure.

    Issuance goes ahead when the pause fails: an operator may still need the
    code, and the failure is logged for follow-up.
    """
    try:
        await control.pause(subscription_id)
    except UpstreamCallFailed as exc:
        logger.error("Seal pause failed for subscription %s, issuing code anyway: %s", subscription_id, exc)
        return False
    logger.info("Paused subscription %s", subscription_id)
    return True


async def issue_activation_code(
    event: SubscriptionEvent,
    *,
    store: RecordStore,
    control: SubscriptionControl,
    app_url: str,
    code_length: int = DEFAULT_CODE_LENGTH,
    render_qr: Callable[[str], str] = render_qr_data_url,
) -> IssuedActivation:
    """Pause the subscription and store a fresh unused code for it.

    Raises ``PersistenceFailed`` when the code could not be stored; such a
    code must never reach the customer.
    """
    if not app_url:
        raise ConfigurationError("APP_URL not set")

    logger.info(
        "Seal webhook received: subscription=%s order=%s email=%s status=%s",
        event.subscription_id, event.order_id, event.customer_email, event.status,
    )
    paused = await pause_subscription(control, event.subscription_id)

    for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
        code = make_code(code_length)
        activate_url = build_activation_url(app_url, code, event.subscription_id)
        qr_data_url = render_qr(activate_url)
        record = ActivationRecord(
            code=code,
            subscription_id=event.subscription_id,
            status=ActivationStatus.UNUSED,
            issued_at=utcnow(),
            customer_email=event.customer_email,
            order_id=event.order_id,
            activate_url=activate_url,
            qr_url=qr_data_url,
            paused=paused,
        )
        try:
            await store.upsert(record, replace=False)
        except CodeConflict:
            logger.warning("Activation code collision on attempt %d, generating another", attempt)
            continue

        logger.info(
            "Generated activation: subscription=%s code=%s url=%s qr=%s",
            event.subscription_id, code, activate_url, qr_preview(qr_data_url),
        )
        return IssuedActivation(
            subscription_id=event.subscription_id,
            order_id=event.order_id,
            customer_email=event.customer_email,
            code=code,
            activate_url=activate_url,
            qr_data_url=qr_data_url,
            paused=paused,
        )

    raise PersistenceFailed(f"No unique activation code after {MAX_CODE_ATTEMPTS} attempts")


async def redeem_activation_code(
    code: str,
    subscription_id: str,
    *,
    store: RecordStore,
    control: SubscriptionControl,
    now: Optional[datetime] = None,
) -> ActivationRecord:
    """Resume the subscription behind ``code`` and consume the code.

    Checks run in a fixed order (exists, belongs to ``subscription_id``,
    unused) so the rejection raised for a given record is deterministic.
    The code is only marked used after Seal confirmed the resume; if the
    resume fails the code stays redeemable.
    """
    code = normalize_code(code)
    subscription_id = str(subscription_id or "").strip()

    record = await store.get_by_code(code)
    if record is None:
        raise NotFound(code, subscription_id)
    if record.subscription_id != subscription_id:
        raise Mismatch(code, subscription_id)
    if record.is_used:
        raise AlreadyUsed(code, subscription_id)

    try:
        await control.resume(subscription_id)
    except UpstreamCallFailed as exc:
        logger.error("Seal resume failed for subscription %s, code %s left unused: %s", subscription_id, code, exc)
        raise

    used_at = now or utcnow()
    try:
        outcome = await store.compare_and_set_used(code, subscription_id, used_at=used_at)
    except PersistenceFailed as exc:
        logger.error(
            "Subscription %s resumed but code %s is still unused, reconciliation required: %s",
            subscription_id, code, exc,
        )
        raise MarkUsedFailed(str(exc), code=code, subscription_id=subscription_id) from exc

    if outcome is CompareAndSetResult.ALREADY_USED:
        # Another request redeemed the same code between our read and the swap.
        raise AlreadyUsed(code, subscription_id)
    if outcome is CompareAndSetResult.NOT_FOUND:
        raise NotFound(code, subscription_id)

    logger.info("Activated subscription %s with code %s", subscription_id, code)
    return record.mark_used(used_at)
