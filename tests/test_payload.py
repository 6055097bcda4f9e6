import pytest

from subscription_activation.services.errors import InvalidPayload
from subscription_activation.services.payload import SubscriptionEvent, normalize_subscription_event


@pytest.mark.parametrize(
    "body",
    [
        {"id": 4242, "order_id": "1001", "email": "ann@example.com"},
        {"subscription_id": "4242", "order_id": 1001, "customer": {"email": "ann@example.com"}},
        {"subscription": {"id": 4242, "order_id": "1001"}, "email": "ann@example.com"},
        {"data": {"id": "4242", "order_id": "1001", "email": "ann@example.com"}},
        {"subscriptionId": " 4242 ", "orderId": "1001", "customerEmail": "ann@example.com"},
    ],
)
def test_known_shapes_normalize_to_the_same_event(body) -> None:
    event = normalize_subscription_event(body)

    assert event == SubscriptionEvent(
        subscription_id="4242", order_id="1001", customer_email="ann@example.com"
    )


def test_first_non_empty_path_wins() -> None:
    event = normalize_subscription_event({"id": "", "subscription": {"id": "77", "status": "ACTIVE"}})

    assert event.subscription_id == "77"
    assert event.status == "ACTIVE"
    assert event.order_id == ""


@pytest.mark.parametrize("body", [{}, {"order_id": "1"}, {"subscription": {"id": None}}, [], "4242"])
def test_missing_subscription_id_is_invalid(body) -> None:
    with pytest.raises(InvalidPayload):
        normalize_subscription_event(body)
