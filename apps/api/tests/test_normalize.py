from __future__ import annotations

import pytest

from sms_inbox.services.ingest.normalize import is_sender_id, normalize_identifier


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("+47 123 45 678", "+4712345678"),
        ("4712345678", "+4712345678"),
        ("(+47) 123-45-678", "+4712345678"),
        ("DALANE Kraft!!", "DALANEKRAFT"),
        ("Kraft AS", "KRAFTAS"),
        ("VeryLongSenderName", "VERYLONGSEN"),
        ("", ""),
        (None, ""),
        ("---", "+"),
        ("12345678901A", "+12345678901"),
    ],
)
def test_normalize_identifier_examples(raw: str | None, expected: str) -> None:
    assert normalize_identifier(raw) == expected


@pytest.mark.parametrize(
    "raw",
    ["+47 123 45 678", "0047 22 33 44 55", "DALANE Kraft!!", "shop-1234", "abc", "+", "  ", "12345678901A"],
)
def test_normalize_identifier_is_idempotent(raw: str) -> None:
    once = normalize_identifier(raw)
    assert normalize_identifier(once) == once


def test_sender_ids_are_capped_at_eleven_characters() -> None:
    assert len(normalize_identifier("The Quick Brown Fox Company")) == 11


def test_is_sender_id_detects_letters() -> None:
    assert is_sender_id("DALANE")
    assert is_sender_id("shop1")
    assert not is_sender_id("+4712345678")
    assert not is_sender_id("")
    assert not is_sender_id(None)
