# subscription_activation/services/payload.py

from dataclasses import dataclass
from typing import Any, Iterable, Tuple

from subscription_activation.services.errors import InvalidPayload

# Seal has sent the same values under several shapes; the first non-empty wins.
SUBSCRIPTION_ID_PATHS = (
    ("id",),
    ("subscription_id",),
    ("subscriptionId",),
    ("subscription", "id"),
    ("data", "id"),
)
ORDER_ID_PATHS = (
    ("order_id",),
    ("orderId",),
    ("subscription", "order_id"),
    ("data", "order_id"),
)
EMAIL_PATHS = (
    ("email",),
    ("customerEmail",),
    ("customer", "email"),
    ("data", "email"),
)
STATUS_PATHS = (
    ("status",),
    ("subscription", "status"),
    ("data", "status"),
)


@dataclass(frozen=True)
class SubscriptionEvent:
    subscription_id: str
    order_id: str = ""
    customer_email: str = ""
    status: str = ""


def _probe(body: dict, paths: Iterable[Tuple[str, ...]]) -> str:
    for path in paths:
        value: Any = body
        for key in path:
            if not isinstance(value, dict):
                value = None
                break
            value = value.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def normalize_subscription_event(body: Any) -> SubscriptionEvent:
    if not isinstance(body, dict):
        raise InvalidPayload("Subscription event must be a JSON object")

    subscription_id = _probe(body, SUBSCRIPTION_ID_PATHS)
    if not subscription_id:
        raise InvalidPayload("Missing subscriptionId in payload")

    return SubscriptionEvent(
        subscription_id=subscription_id,
        order_id=_probe(body, ORDER_ID_PATHS),
        customer_email=_probe(body, EMAIL_PATHS),
        status=_probe(body, STATUS_PATHS),
    )
