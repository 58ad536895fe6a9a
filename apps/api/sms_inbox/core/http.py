from __future__ import annotations

from collections.abc import Generator

import httpx

from sms_inbox.core.config import get_settings


def get_http_client() -> Generator[httpx.Client, None, None]:
    # Centralize gateway client configuration (timeouts, etc) so we can override in tests.
    settings = get_settings()
    with httpx.Client(timeout=settings.GATEWAY_TIMEOUT_SECONDS) as client:
        yield client
