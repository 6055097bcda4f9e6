import json
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from subscription_activation.dependencies import get_app_settings, get_record_store
from subscription_activation.main import app
from subscription_activation.routers.activations import parse_date_bound
from subscription_activation.services.errors import GENERIC_REJECTION_MESSAGE, PersistenceFailed, UpstreamCallFailed
from subscription_activation.services.memory_store import InMemoryRecordStore
from subscription_activation.services.signature import SIGNATURE_HEADER, compute_signature

JSON = {"Accept": "application/json"}


async def _issue(client, body=None):
    response = await client.post("/api/seal-created", json=body or {"id": 4242, "email": "ann@example.com"})
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_root_and_echo(client) -> None:
    root = await client.get("/")
    assert root.json() == {"ok": True, "msg": "API root alive"}

    echo = await client.get("/api/echo", params={"x": "1"})
    assert echo.json() == {"ok": True, "method": "GET", "query": {"x": "1"}, "haveSeal": True, "storage": "memory"}


@pytest.mark.asyncio
async def test_webhook_issues_code(client, subscription_control) -> None:
    payload = await _issue(client, {"subscription": {"id": 4242, "order_id": 1001}, "customer": {"email": "ann@example.com"}})

    assert payload["ok"] is True
    assert payload["subscriptionId"] == "4242"
    assert payload["orderId"] == "1001"
    assert payload["customerEmail"] == "ann@example.com"
    assert len(payload["code"]) == 12
    assert payload["activateUrl"] == f"https://activate.test/api/activate?code={payload['code']}&subId=4242"
    assert payload["qrDataUrl"].startswith("data:image/png;base64,")
    assert payload["storage"] == "memory"
    assert subscription_control.paused == ["4242"]


@pytest.mark.asyncio
async def test_malformed_webhook_is_acknowledged(client, memory_store, subscription_control) -> None:
    response = await client.post("/api/seal-created", json={"order_id": "1001"})

    assert response.status_code == 200
    assert response.json() == {"ok": False, "error": "Missing subscriptionId in payload"}
    assert subscription_control.paused == []
    assert (await memory_store.list_records()).totals.total == 0


@pytest.mark.asyncio
async def test_initialize_requires_subscription_id(client) -> None:
    missing = await client.post("/api/initialize", json={"customerEmail": "ann@example.com"})
    assert missing.status_code == 400

    issued = await client.post("/api/initialize", json={"subscriptionId": "4242", "customerEmail": "ann@example.com"})
    assert issued.status_code == 200
    assert issued.json()["customerEmail"] == "ann@example.com"


@pytest.mark.asyncio
async def test_issuance_without_app_url_is_a_server_error(client, settings) -> None:
    app.dependency_overrides[get_app_settings] = lambda: replace(settings, app_url="")

    response = await client.post("/api/seal-created", json={"id": 4242})

    assert response.status_code == 500
    assert response.json()["ok"] is False


@pytest.mark.asyncio
async def test_strict_signature_check_rejects_bad_hmac(client, settings) -> None:
    app.dependency_overrides[get_app_settings] = lambda: replace(
        settings, seal_api_secret="whsec", seal_webhook_strict=True
    )
    raw = json.dumps({"id": 4242}).encode()

    rejected = await client.post("/api/seal-created", content=raw, headers={SIGNATURE_HEADER: "nope"})
    assert rejected.status_code == 401

    accepted = await client.post(
        "/api/seal-created",
        content=raw,
        headers={SIGNATURE_HEADER: compute_signature("whsec", raw), "Content-Type": "application/json"},
    )
    assert accepted.status_code == 200
    assert accepted.json()["ok"] is True


@pytest.mark.asyncio
async def test_lenient_signature_check_only_warns(client, settings) -> None:
    app.dependency_overrides[get_app_settings] = lambda: replace(settings, seal_api_secret="whsec")

    response = await client.post("/api/seal-created", json={"id": 4242}, headers={SIGNATURE_HEADER: "nope"})

    assert response.json()["ok"] is True


@pytest.mark.asyncio
async def test_activation_flow(client, subscription_control) -> None:
    code = (await _issue(client))["code"]

    page = await client.get("/api/activate", params={"code": code, "subId": "4242"})
    assert page.status_code == 200
    assert "Your subscription is activated" in page.text
    assert subscription_control.resumed == ["4242"]

    detail = await client.get(f"/api/activations/{code}")
    assert detail.json()["item"]["status"] == "used"
    assert detail.json()["item"]["usedAt"] is not None

    again = await client.get("/api/activate", params={"code": code, "subId": "4242"}, headers=JSON)
    assert again.status_code == 400
    assert again.json() == {"ok": False, "error": GENERIC_REJECTION_MESSAGE}
    assert subscription_control.resumed == ["4242"]


@pytest.mark.asyncio
async def test_unknown_and_mismatched_codes_look_identical(client) -> None:
    code = (await _issue(client))["code"]

    unknown = await client.get("/api/activate", params={"code": "NOSUCHCODE00", "subId": "4242"})
    mismatch = await client.get("/api/activate", params={"code": code, "subId": "9999"})

    assert unknown.status_code == mismatch.status_code == 400
    assert unknown.text == mismatch.text


@pytest.mark.asyncio
async def test_activation_requires_both_parameters(client) -> None:
    response = await client.get("/api/activate", params={"code": "AB12CD34EF56"}, headers=JSON)

    assert response.status_code == 400
    assert response.json()["error"] == "Missing code or subId"


@pytest.mark.asyncio
async def test_resume_failure_returns_bad_gateway_and_keeps_code(client, subscription_control) -> None:
    code = (await _issue(client))["code"]
    subscription_control.resume_error = UpstreamCallFailed("Seal is down", status_code=503)

    response = await client.get("/api/activate", params={"code": code, "subId": "4242"}, headers=JSON)

    assert response.status_code == 502
    detail = await client.get(f"/api/activations/{code}")
    assert detail.json()["item"]["status"] == "unused"


@pytest.mark.asyncio
async def test_listing_and_detail(client) -> None:
    first = (await _issue(client, {"id": 1001, "email": "ann@example.com"}))["code"]
    await _issue(client, {"id": 1002, "email": "bob@example.com"})
    await client.get("/api/activate", params={"code": first, "subId": "1001"})

    listing = (await client.get("/api/activations", params={"limit": 1})).json()
    assert listing["ok"] is True
    assert listing["totals"] == {"total": 2, "used": 1, "unused": 1}
    assert listing["meta"]["returned"] == 1
    assert listing["meta"]["totalPages"] == 2
    assert set(listing["items"][0]) == {"code", "subscriptionId", "status", "issuedAt", "usedAt", "customerEmail"}

    used = (await client.get("/api/activations", params={"status": "used"})).json()
    assert [item["code"] for item in used["items"]] == [first]

    searched = (await client.get("/api/activations", params={"q": "BOB@"})).json()
    assert [item["subscriptionId"] for item in searched["items"]] == ["1002"]

    detail = (await client.get(f"/api/activations/{first.lower()}")).json()
    assert detail["item"]["activateUrl"].endswith("subId=1001")
    assert detail["item"]["qrUrl"].startswith("data:image/png;base64,")

    missing = await client.get("/api/activations/NOSUCHCODE00")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_listing_rejects_bad_dates(client) -> None:
    response = await client.get("/api/activations", params={"issuedFrom": "yesterday"})

    assert response.status_code == 400


class UnavailableStore(InMemoryRecordStore):
    async def upsert(self, record, *, replace=True):
        raise PersistenceFailed("database is down")


class FailingSwapStore(InMemoryRecordStore):
    async def compare_and_set_used(self, code, expected_subscription_id, *, used_at=None):
        raise PersistenceFailed("database is down")


@pytest.mark.asyncio
async def test_unstored_code_is_never_returned(client) -> None:
    app.dependency_overrides[get_record_store] = lambda: UnavailableStore()

    response = await client.post("/api/seal-created", json={"id": 4242, "email": "ann@example.com"})

    assert response.status_code == 500
    body = response.json()
    assert body["ok"] is False
    assert "code" not in body
    assert "activateUrl" not in body


@pytest.mark.asyncio
async def test_mark_used_failure_after_resume_still_shows_success(client, subscription_control, make_record) -> None:
    store = FailingSwapStore()
    await store.upsert(make_record("AB12CD34EF56", "4242"))
    app.dependency_overrides[get_record_store] = lambda: store

    page = await client.get("/api/activate", params={"code": "AB12CD34EF56", "subId": "4242"})

    assert page.status_code == 200
    assert "Your subscription is activated" in page.text
    assert subscription_control.resumed == ["4242"]
    assert not (await store.get_by_code("AB12CD34EF56")).is_used


def test_date_bounds_accept_utc_suffix() -> None:
    assert parse_date_bound("2026-10-01T00:00:00Z") == datetime(2026, 10, 1, tzinfo=timezone.utc)
    assert parse_date_bound("2026-10-01", end_of_day=True) == datetime(
        2026, 10, 1, 23, 59, 59, 999999, tzinfo=timezone.utc
    )
    assert parse_date_bound("") is None


@pytest.mark.asyncio
async def test_listing_accepts_utc_timestamps(client) -> None:
    await _issue(client)

    response = await client.get("/api/activations", params={"issuedFrom": "2000-01-01T00:00:00Z"})

    assert response.status_code == 200
    assert response.json()["totals"]["total"] == 1
