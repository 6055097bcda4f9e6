# subscription_activation/dependencies.py

from fastapi import Request

from subscription_activation.core.config import Settings, get_settings
from subscription_activation.services.record_store import RecordStore
from subscription_activation.services.subscription_control import SubscriptionControl


def get_app_settings() -> Settings:
    return get_settings()


def get_record_store(request: Request) -> RecordStore:
    return request.app.state.record_store


def get_subscription_control(request: Request) -> SubscriptionControl:
    return request.app.state.subscription_control
