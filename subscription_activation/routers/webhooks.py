# subscription_activation/routers/webhooks.py

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from subscription_activation.core.config import Settings
from subscription_activation.dependencies import get_app_settings, get_record_store, get_subscription_control
from subscription_activation.services import activation_code_service
from subscription_activation.services.errors import ConfigurationError, InvalidPayload, PersistenceFailed
from subscription_activation.services.payload import SubscriptionEvent, normalize_subscription_event
from subscription_activation.services.record_store import RecordStore
from subscription_activation.services.signature import SIGNATURE_HEADER, verify_signature
from subscription_activation.services.subscription_control import SubscriptionControl

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["issuance"])


def _parse_json(raw_body: bytes):
    try:
        return json.loads(raw_body or b"{}")
    except ValueError:
        raise InvalidPayload("Body is not valid JSON") from None


async def _issue(event: SubscriptionEvent, settings: Settings, store: RecordStore, control: SubscriptionControl):
    try:
        issued = await activation_code_service.issue_activation_code(
            event,
            store=store,
            control=control,
            app_url=settings.app_url,
            code_length=settings.code_length,
        )
    except ConfigurationError as e:
        logger.error("Cannot issue activation code for %s: %s", event.subscription_id, e)
        return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})
    except PersistenceFailed as e:
        logger.error("Activation code for %s was not stored: %s", event.subscription_id, e)
        return JSONResponse(status_code=500, content={"ok": False, "error": "Could not store activation code"})

    return {"ok": True, **issued.to_dict(), "storage": store.backend}


@router.post("/seal-created")
async def receive_subscription_created(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    store: RecordStore = Depends(get_record_store),
    control: SubscriptionControl = Depends(get_subscription_control),
):
    """Seal "subscription created" webhook.

    Malformed events are acknowledged with 200 so Seal does not redeliver them.
    """
    raw_body = await request.body()

    if settings.seal_api_secret:
        provided = request.headers.get(SIGNATURE_HEADER)
        if not verify_signature(settings.seal_api_secret, raw_body, provided):
            if settings.seal_webhook_strict:
                logger.warning("Rejected Seal webhook with bad signature")
                return JSONResponse(status_code=401, content={"ok": False, "error": "Bad signature"})
            logger.warning("Seal HMAC mismatch (continuing, SEAL_WEBHOOK_STRICT is off): provided=%s", provided)

    try:
        body = _parse_json(raw_body)
        event = normalize_subscription_event(body)
    except InvalidPayload as e:
        logger.warning("Ignoring Seal webhook: %s", e)
        return {"ok": False, "error": str(e)}

    return await _issue(event, settings, store, control)


@router.post("/initialize")
async def initialize_activation(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    store: RecordStore = Depends(get_record_store),
    control: SubscriptionControl = Depends(get_subscription_control),
):
    """Direct issuance for flows that post ``{subscriptionId, customerEmail}``."""
    try:
        event = normalize_subscription_event(_parse_json(await request.body()))
    except InvalidPayload as e:
        return JSONResponse(status_code=400, content={"ok": False, "error": str(e)})

    return await _issue(event, settings, store, control)
