# subscription_activation/services/qr_code.py

import base64
import logging
from io import BytesIO

import qrcode
from qrcode.exceptions import DataOverflowError

logger = logging.getLogger(__name__)


def make_qr_data_url(data: str) -> str:
    image = qrcode.make(data)
    with BytesIO() as buffer:
        image.save(buffer)
        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def render_qr_data_url(data: str) -> str:
    """Like ``make_qr_data_url`` but returns "" when the image cannot be built.

    The activation URL alone is enough to redeem a code, so a missing QR
    image never blocks issuance.
    """
    try:
        return make_qr_data_url(data)
    except (DataOverflowError, OSError, ValueError):
        logger.exception("QR generation failed for %s", data)
        return ""


def qr_preview(data_url: str) -> str:
    return f"{data_url[:32]}...(base64)" if data_url else ""
