# subscription_activation/routers/activation.py

import logging
from html import escape

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse

from subscription_activation.dependencies import get_record_store, get_subscription_control
from subscription_activation.services import activation_code_service
from subscription_activation.services.code_generator import normalize_code
from subscription_activation.services.errors import (
    MarkUsedFailed,
    PersistenceFailed,
    RedemptionRejected,
    UpstreamCallFailed,
)
from subscription_activation.services.record_store import RecordStore
from subscription_activation.services.subscription_control import SubscriptionControl

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["redemption"])

RESUME_FAILED_MESSAGE = "We could not activate your subscription right now. Please try again later."

PAGE_TEMPLATE = """<!doctype html>
<html lang="en"><head>
<meta charset="utf-8" /><meta name="viewport" content="width=device-width, initial-scale=1" />
<title>{title}</title>
<style>
body{{font-family:system-ui,-apple-system,Segoe UI,Roboto,sans-serif;background:#f7f7f8;margin:0}}
.card{{max-width:560px;margin:12vh auto;background:#fff;padding:28px;border-radius:16px;text-align:center}}
p{{color:#333;line-height:1.5}}.muted{{color:#666;font-size:14px}}
</style></head>
<body><div class="card">
<h1>{title}</h1>
{body}
</div></body></html>"""


def _wants_json(request: Request) -> bool:
    return "application/json" in request.headers.get("accept", "")


def _failure(request: Request, status_code: int, message: str):
    if _wants_json(request):
        return JSONResponse(status_code=status_code, content={"ok": False, "error": message})
    page = PAGE_TEMPLATE.format(title="Activation failed", body=f"<p>{escape(message)}</p>")
    return HTMLResponse(page, status_code=status_code)


def _success(request: Request, subscription_id: str):
    if _wants_json(request):
        return {"ok": True, "subscriptionId": subscription_id, "status": "activated"}
    body = (
        "<p>We've resumed your subscription.</p>"
        '<p class="muted">Check your email for your customer portal link.</p>'
        '<p class="muted">You can close this tab now.</p>'
        f"<p>Ref: <code>{escape(subscription_id)}</code></p>"
    )
    return HTMLResponse(PAGE_TEMPLATE.format(title="Your subscription is activated", body=body))


@router.get("/activate")
async def activate(
    request: Request,
    code: str = "",
    sub_id: str = Query("", alias="subId"),
    store: RecordStore = Depends(get_record_store),
    control: SubscriptionControl = Depends(get_subscription_control),
):
    code = normalize_code(code)
    sub_id = sub_id.strip()
    if not code or not sub_id:
        return _failure(request, 400, "Missing code or subId")

    try:
        await activation_code_service.redeem_activation_code(code, sub_id, store=store, control=control)
    except RedemptionRejected as e:
        logger.info("Rejected activation code=%s subscription=%s reason=%s", code, sub_id, e.reason)
        return _failure(request, 400, e.public_message)
    except UpstreamCallFailed:
        return _failure(request, 502, RESUME_FAILED_MESSAGE)
    except MarkUsedFailed:
        # The subscription is active; the stale record is repaired by reconciliation.
        return _success(request, sub_id)
    except PersistenceFailed as e:
        logger.error("Activation lookup failed for code=%s: %s", code, e)
        return _failure(request, 500, "Server error")

    return _success(request, sub_id)
