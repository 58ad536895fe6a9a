from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get() or "-"
        return True


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if any(getattr(h, "_sms_inbox", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s")
    )
    handler.addFilter(RequestIdFilter())
    handler._sms_inbox = True  # type: ignore[attr-defined]
    root.addHandler(handler)


def log_structured(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: object) -> None:
    """Emit one structured event line (compact, key-sorted JSON)."""
    payload: dict[str, object] = {"event": event}
    payload.update(fields)
    logger.log(
        level,
        json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str),
    )
