from __future__ import annotations

import re

_LETTER_RE = re.compile(r"[A-Za-z]")
_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")
_NON_DIGIT_RE = re.compile(r"\D")

# GSM alphanumeric originators are capped at 11 characters.
SENDER_ID_MAX_LEN = 11


def is_sender_id(raw: str | None) -> bool:
    return bool(raw) and _LETTER_RE.search(raw) is not None


def normalize_identifier(raw: str | None) -> str:
    """Canonical form of a phone number or alphanumeric sender id.

    "+47 123 45 678" -> "+4712345678", "DALANE Kraft!!" -> "DALANEKRAFT".
    Idempotent; never raises.
    """
    if not raw:
        return ""
    if is_sender_id(raw):
        sender = _NON_ALNUM_RE.sub("", raw).upper()[:SENDER_ID_MAX_LEN]
        # Truncation can cut off every letter; what is left is a number.
        if _LETTER_RE.search(sender):
            return sender
    return "+" + _NON_DIGIT_RE.sub("", raw)
