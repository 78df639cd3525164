from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-TradeSafe-Signature"


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, header_value: str | None) -> bool:
    """
    Constant-time check of a webhook signature header. Accepts the bare hex
    digest or the "sha256=<hex>" form.
    """
    if not secret or not header_value:
        return False
    provided = header_value.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = compute_signature(secret, body)
    return hmac.compare_digest(expected.encode("ascii"), provided.lower().encode("utf-8"))
