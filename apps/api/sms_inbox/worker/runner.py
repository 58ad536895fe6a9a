from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx

from sms_inbox.core.config import get_settings
from sms_inbox.core.logging_config import configure_logging
from sms_inbox.db.session import get_sessionmaker
from sms_inbox.services.escalation import EscalationSweepResult, run_escalation_sweep
from sms_inbox.services.outbound import DispatchResult, dispatch_queued_messages

logger = logging.getLogger("sms_inbox.worker")


@dataclass(frozen=True)
class SchedulerConfig:
    sweep_interval_seconds: float = 60.0
    dispatch_batch_size: int = 50

    @classmethod
    def from_settings(cls) -> SchedulerConfig:
        settings = get_settings()
        return cls(
            sweep_interval_seconds=settings.ESCALATION_SWEEP_INTERVAL_SECONDS,
            dispatch_batch_size=settings.OUTBOUND_DISPATCH_BATCH_SIZE,
        )


def run_scheduler_forever(config: SchedulerConfig) -> None:
    configure_logging(get_settings().LOG_LEVEL)
    logger.info("escalation scheduler started (interval=%ss)", config.sweep_interval_seconds)
    while True:
        started = time.monotonic()
        try:
            run_one_sweep()
        except Exception:
            # Keep the loop alive; the next tick retries with a fresh session.
            logger.exception("escalation sweep crashed")
        try:
            run_one_dispatch(limit=config.dispatch_batch_size)
        except Exception:
            logger.exception("outbound dispatch crashed")
        elapsed = time.monotonic() - started
        time.sleep(max(0.0, config.sweep_interval_seconds - elapsed))


def run_one_sweep(*, now: datetime | None = None) -> EscalationSweepResult:
    session = get_sessionmaker()()
    try:
        result = run_escalation_sweep(session=session, now=now or datetime.now(UTC))
        session.commit()
        return result
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def run_one_dispatch(*, limit: int, client: httpx.Client | None = None) -> DispatchResult:
    session = get_sessionmaker()()
    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=get_settings().GATEWAY_TIMEOUT_SECONDS)
    try:
        return dispatch_queued_messages(session=session, client=client, limit=limit)
    finally:
        session.close()
        if owns_client:
            client.close()
