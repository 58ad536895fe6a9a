from __future__ import annotations

import base64
import hashlib
import hmac
import os

from sms_inbox.core.config import get_settings


def new_random_token(*, nbytes: int = 32) -> str:
    raw = os.urandom(nbytes)
    # URL-safe base64 without padding to keep headers compact.
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def hash_session_token(token: str) -> bytes:
    settings = get_settings()
    # HMAC adds a server-side pepper; DB compromise alone is not enough to use tokens.
    return hmac.new(
        settings.JWT_SECRET.encode("utf-8"),
        token.encode("utf-8"),
        hashlib.sha256,
    ).digest()


def compute_webhook_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=raw_body,
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify_webhook_signature(*, secret: str, raw_body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    expected = compute_webhook_signature(secret, raw_body)
    # Providers differ on hex casing.
    return hmac.compare_digest(expected, signature.strip().lower())


def parse_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None
