# subscription_activation/services/subscription_control.py

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Union

import requests

from subscription_activation.core.config import DEFAULT_SEAL_API_URL, Settings
from subscription_activation.services.errors import UpstreamCallFailed

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {408, 425, 429}


class SubscriptionControl(ABC):
    """Pause/resume switch of the external subscription service."""

    @abstractmethod
    async def pause(self, subscription_id: str) -> None:
        ...

    @abstractmethod
    async def resume(self, subscription_id: str) -> None:
        ...

    async def fetch_status(self, subscription_id: str) -> str:
        raise NotImplementedError(f"{type(self).__name__} cannot read subscription status")

    async def close(self) -> None:
        pass


def is_transient_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in TRANSIENT_STATUS_CODES


def _seal_id(subscription_id: str) -> Union[int, str]:
    # Seal expects numeric ids as JSON numbers.
    return int(subscription_id) if subscription_id.isdigit() else subscription_id


class SealSubscriptionClient(SubscriptionControl):
    def __init__(
        self,
        api_key: str,
        *,
        api_url: str = DEFAULT_SEAL_API_URL,
        timeout: float = 15.0,
        max_attempts: int = 3,
        backoff: float = 0.5,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self.session = session or requests.Session()
        self._sleep = sleep

    async def pause(self, subscription_id: str) -> None:
        await self._call("PUT", "pause", json={"id": _seal_id(subscription_id), "action": "pause"})

    async def resume(self, subscription_id: str) -> None:
        await self._call("PUT", "resume", json={"id": _seal_id(subscription_id), "action": "resume"})

    async def fetch_status(self, subscription_id: str) -> str:
        response = await self._call("GET", "status", params={"id": subscription_id})
        try:
            body = response.json()
        except ValueError:
            raise UpstreamCallFailed(
                f"Seal status for {subscription_id} is not JSON", permanent=True
            ) from None
        payload = body.get("payload", body) if isinstance(body, dict) else {}
        status = payload.get("status") if isinstance(payload, dict) else None
        if not status:
            raise UpstreamCallFailed(f"Seal status for {subscription_id} is missing", permanent=True)
        return str(status).upper()

    async def close(self) -> None:
        self.session.close()

    def _send(self, method: str, **kwargs) -> requests.Response:
        headers = {"Content-Type": "application/json", "X-Seal-Token": self.api_key}
        return self.session.request(method, self.api_url, headers=headers, timeout=self.timeout, **kwargs)

    async def _call(self, method: str, action: str, **kwargs) -> requests.Response:
        if not self.api_key:
            raise UpstreamCallFailed(f"SEAL_API_KEY missing, cannot {action}", permanent=True)

        delay = self.backoff
        for attempt in range(1, self.max_attempts + 1):
            try:
                # requests blocks; keep the event loop free while Seal answers.
                response = await asyncio.to_thread(self._send, method, **kwargs)
            except requests.RequestException as exc:
                error = UpstreamCallFailed(f"Seal {action} request failed: {exc}")
            else:
                if response.ok:
                    return response
                error = UpstreamCallFailed(
                    f"Seal {action} failed with HTTP {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                    permanent=not is_transient_status(response.status_code),
                )

            if error.permanent or attempt == self.max_attempts:
                raise error
            logger.warning(
                "Seal %s attempt %d/%d failed, retrying in %.2fs: %s",
                action, attempt, self.max_attempts, delay, error,
            )
            await self._sleep(delay)
            delay *= 2

        raise AssertionError("unreachable")


def build_subscription_control(settings: Settings) -> SubscriptionControl:
    if not settings.seal_api_key:
        logger.warning("SEAL_API_KEY missing - pause and resume calls will fail")
    return SealSubscriptionClient(
        settings.seal_api_key,
        api_url=settings.seal_api_url,
        timeout=settings.subscription_timeout,
        max_attempts=settings.subscription_max_attempts,
        backoff=settings.subscription_backoff,
    )
