"""
Capability tokens for the page rasterizer.

A token grants read access to exactly one page of one collection for a few
minutes. Format: base64url(JSON payload) + "." + hex HMAC-SHA256 of the
encoded payload.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional

DEFAULT_TTL_SECONDS = 300


class InvalidRenderToken(ValueError):
    """Raised when a render token is malformed, forged or expired."""


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _sign(secret: str, payload_b64: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload_b64.encode("ascii"), hashlib.sha256).hexdigest()


def create_render_token(
    secret: str,
    collection_id: str,
    page_id: str,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    now: Optional[float] = None,
) -> str:
    issued = int(now if now is not None else time.time())
    payload = {"collectionId": collection_id, "pageId": page_id, "exp": issued + ttl_seconds}
    payload_b64 = _b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    return f"{payload_b64}.{_sign(secret, payload_b64)}"


def verify_render_token(secret: str, token: str, now: Optional[float] = None) -> Dict[str, Any]:
    """
    Check a token's signature and expiry.

    Returns:
        The decoded payload ({collectionId, pageId, exp})

    Raises:
        InvalidRenderToken: On any malformed, tampered or expired token
    """
    payload_b64, sep, signature = token.partition(".")
    if not sep or not payload_b64 or not signature:
        raise InvalidRenderToken("Malformed render token")
    if not hmac.compare_digest(_sign(secret, payload_b64), signature):
        raise InvalidRenderToken("Render token signature mismatch")
    try:
        payload = json.loads(_b64decode(payload_b64))
    except (ValueError, json.JSONDecodeError) as exc:
        raise InvalidRenderToken("Render token payload is not valid JSON") from exc
    if (now if now is not None else time.time()) > payload.get("exp", 0):
        raise InvalidRenderToken("Render token expired")
    return payload
