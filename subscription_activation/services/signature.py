# subscription_activation/services/signature.py

import hashlib
import hmac
from typing import Optional

SIGNATURE_HEADER = "X-Seal-Hmac-Sha256"


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, raw_body: bytes, provided: Optional[str]) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(compute_signature(secret, raw_body), provided.strip().lower())
