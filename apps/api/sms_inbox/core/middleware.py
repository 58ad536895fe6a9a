from __future__ import annotations

import hashlib
import logging
import math
import re
import threading
import time
from collections import deque
from dataclasses import dataclass, field

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from sms_inbox.core.config import Settings
from sms_inbox.core.logging_config import log_structured
from sms_inbox.core.security import new_random_token, parse_bearer_token

logger = logging.getLogger("sms_inbox.api")

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _expire(bucket: deque[float], cutoff: float) -> None:
    while bucket and bucket[0] <= cutoff:
        bucket.popleft()


@dataclass
class RateLimiter:
    """Sliding-window limiter keyed per caller (session token or client IP).

    Idle callers are dropped on a periodic sweep so the map stays bounded by
    the number of callers active within one window.
    """

    max_requests: int
    window_seconds: int = 60
    sweep_every: int = 1000
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _buckets: dict[str, deque[float]] = field(default_factory=dict)
    _calls: int = 0

    def allow(self, key: str, *, now_ts: float) -> bool:
        cutoff = now_ts - float(self.window_seconds)
        with self._lock:
            self._calls += 1
            if self._calls % self.sweep_every == 0:
                self._sweep(cutoff)

            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = deque()
            _expire(bucket, cutoff)
            if len(bucket) >= self.max_requests:
                return False
            bucket.append(now_ts)
            return True

    def retry_after_seconds(self, key: str, *, now_ts: float) -> int:
        with self._lock:
            bucket = self._buckets.get(key)
            if not bucket:
                return 1
            return max(1, math.ceil(bucket[0] + self.window_seconds - now_ts))

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._buckets)

    def _sweep(self, cutoff: float) -> None:
        for key in list(self._buckets):
            bucket = self._buckets[key]
            _expire(bucket, cutoff)
            if not bucket:
                del self._buckets[key]


def build_request_id(request: Request, *, header_name: str) -> str:
    # Echoed into logs and response headers; only accept a plain token.
    incoming = (request.headers.get(header_name) or "").strip()
    if _REQUEST_ID_RE.match(incoming):
        return incoming
    return new_random_token(nbytes=18)


def apply_security_headers(response: Response, *, settings: Settings) -> None:
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    response.headers.setdefault("Content-Security-Policy", settings.CONTENT_SECURITY_POLICY)
    # Message bodies and phone numbers must not sit in shared caches.
    response.headers.setdefault("Cache-Control", "no-store")
    if settings.APP_ENV == "prod":
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")


def is_rate_limit_exempt(path: str, *, settings: Settings) -> bool:
    """Carrier webhooks are signed and bursty; throttling them drops SMS."""
    prefixes = [p.strip() for p in settings.RATE_LIMIT_EXEMPT_PATH_PREFIXES.split(",") if p.strip()]
    return any(path.startswith(prefix) for prefix in prefixes)


def rate_limit_key(request: Request) -> str:
    # Agents behind one office NAT share an IP, so signed-in callers are keyed by session.
    token = parse_bearer_token(request.headers.get("authorization"))
    if token:
        return "session:" + hashlib.sha256(token.encode("utf-8")).hexdigest()[:32]

    forwarded_for = (request.headers.get("x-forwarded-for") or "").strip()
    if forwarded_for:
        ip = forwarded_for.split(",", 1)[0].strip()
    else:
        ip = request.client.host if request.client else "unknown"
    return "ip:" + ip


def rate_limit_response(*, retry_after: int) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": "Rate limit exceeded"},
        headers={"Retry-After": str(retry_after)},
    )


def now_ts() -> float:
    return time.time()


def log_request_completion(
    *,
    request_id: str,
    method: str,
    path: str,
    status_code: int,
    duration_ms: int,
    rate_limited: bool,
) -> None:
    log_structured(
        logger,
        "http.request.completed",
        level=logging.WARNING if status_code >= 500 else logging.INFO,
        request_id=request_id,
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
        rate_limited=rate_limited,
    )
