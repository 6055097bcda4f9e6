# subscription_activation/services/code_generator.py

import secrets
import string
from urllib.parse import quote, urlencode

# Uppercase URL-safe alphabet: 38 symbols, ~5.25 bits per character.
CODE_ALPHABET = string.ascii_uppercase + string.digits + "-_"
DEFAULT_CODE_LENGTH = 12
MIN_CODE_LENGTH = 8


def make_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    """Return a random activation code drawn from ``CODE_ALPHABET``.

    Codes are bearer tokens, so they come from ``secrets`` and carry no
    information about the subscription they unlock. Uniqueness against
    already stored codes is checked by the record store, not here.
    """
    if length < MIN_CODE_LENGTH:
        raise ValueError(f"Activation codes must be at least {MIN_CODE_LENGTH} characters")
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code) -> str:
    return str(code or "").strip().upper()


def build_activation_url(app_url: str, code: str, subscription_id: str) -> str:
    query = urlencode({"code": code, "subId": subscription_id}, quote_via=quote)
    return f"{app_url.rstrip('/')}/api/activate?{query}"
