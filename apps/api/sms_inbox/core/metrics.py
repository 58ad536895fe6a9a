from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request
from starlette.responses import Response

_HTTP_REQUESTS_TOTAL = Counter(
    "sms_inbox_http_requests_total",
    "Total HTTP requests handled by the API.",
    labelnames=("method", "path", "status_code"),
)
_HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "sms_inbox_http_request_duration_seconds",
    "HTTP request duration in seconds.",
    labelnames=("method", "path"),
)
_HTTP_RATE_LIMITED_TOTAL = Counter(
    "sms_inbox_http_rate_limited_total",
    "Total HTTP requests blocked by rate limiting.",
    labelnames=("method", "path"),
)
_INBOUND_MESSAGES_TOTAL = Counter(
    "sms_inbox_inbound_messages_total",
    "Inbound messages processed by the ingestion service.",
    labelnames=("outcome",),
)
_ESCALATIONS_TOTAL = Counter(
    "sms_inbox_escalations_total",
    "Escalation transitions performed by the scheduler.",
    labelnames=("level",),
)
_BULK_RECIPIENTS_TOTAL = Counter(
    "sms_inbox_bulk_recipients_total",
    "Bulk campaign recipients processed, by outcome.",
    labelnames=("outcome",),
)
_OUTBOUND_SENDS_TOTAL = Counter(
    "sms_inbox_outbound_sends_total",
    "Single outbound messages handed to a gateway, by outcome.",
    labelnames=("outcome",),
)
_AUTO_REPLIES_TOTAL = Counter(
    "sms_inbox_auto_replies_total",
    "Automatic replies evaluated for inbound messages, by trigger and outcome.",
    labelnames=("trigger", "outcome"),
)


def observe_http_request(
    *,
    method: str,
    path: str,
    status_code: int,
    duration_ms: int,
    rate_limited: bool,
) -> None:
    safe_path = path or "unknown"
    safe_method = method or "UNKNOWN"

    _HTTP_REQUESTS_TOTAL.labels(
        method=safe_method,
        path=safe_path,
        status_code=str(status_code),
    ).inc()
    _HTTP_REQUEST_DURATION_SECONDS.labels(method=safe_method, path=safe_path).observe(
        max(0.0, duration_ms / 1000.0)
    )
    if rate_limited:
        _HTTP_RATE_LIMITED_TOTAL.labels(method=safe_method, path=safe_path).inc()


def observe_inbound_message(*, outcome: str) -> None:
    # outcome: routed|continued|duplicate|no_route
    _INBOUND_MESSAGES_TOTAL.labels(outcome=outcome).inc()


def observe_escalation(*, level: int) -> None:
    _ESCALATIONS_TOTAL.labels(level=str(level)).inc()


def observe_bulk_recipient(*, outcome: str) -> None:
    _BULK_RECIPIENTS_TOTAL.labels(outcome=outcome).inc()


def observe_outbound_send(*, outcome: str) -> None:
    _OUTBOUND_SENDS_TOTAL.labels(outcome=outcome).inc()


def observe_auto_reply(*, trigger: str, outcome: str) -> None:
    # outcome: queued|cooldown
    _AUTO_REPLIES_TOTAL.labels(trigger=trigger, outcome=outcome).inc()


def metrics_endpoint(_request: Request) -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
