from __future__ import annotations

import logging
from datetime import UTC, datetime, time, timedelta, tzinfo
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from sms_inbox.core.logging_config import log_structured
from sms_inbox.core.metrics import observe_auto_reply
from sms_inbox.models.automation import AutomaticReply, AutoReplyLog, OpeningHours, OpeningHoursException
from sms_inbox.models.enums import AutoReplyTrigger, MessageDirection, MessageStatus
from sms_inbox.models.messaging import Message, Thread

logger = logging.getLogger("sms_inbox.auto_replies")


def _within(now_t: time, open_time: time | None, close_time: time | None) -> bool:
    if open_time is None or close_time is None:
        return True
    if open_time <= close_time:
        return open_time <= now_t <= close_time
    # Overnight window, e.g. 22:00-06:00.
    return now_t >= open_time or now_t <= close_time


def is_group_open(*, session: Session, group_id: UUID, at: datetime, tz: tzinfo) -> bool:
    """Whether the group is staffed at `at`.

    A dated exception beats the weekly schedule. A day with no schedule row,
    or an open row without times, counts as open all day.
    """
    local = at.astimezone(tz)
    now_t = local.time().replace(second=0, microsecond=0)

    exception = session.execute(
        select(OpeningHoursException).where(
            OpeningHoursException.group_id == group_id,
            OpeningHoursException.exception_date == local.date(),
        )
    ).scalar_one_or_none()
    if exception is not None:
        if not exception.is_open:
            return False
        return _within(now_t, exception.open_time, exception.close_time)

    schedule = session.execute(
        select(OpeningHours).where(
            OpeningHours.group_id == group_id,
            OpeningHours.day_of_week == local.weekday(),
        )
    ).scalar_one_or_none()
    if schedule is None:
        return True
    if not schedule.is_open:
        return False
    return _within(now_t, schedule.open_time, schedule.close_time)


def _matches(
    reply: AutomaticReply,
    *,
    content: str,
    thread_created: bool,
    group_open: bool,
) -> bool:
    if reply.trigger_type == AutoReplyTrigger.keyword:
        pattern = (reply.trigger_pattern or "").strip().lower()
        return bool(pattern) and pattern in content.lower()
    if reply.trigger_type == AutoReplyTrigger.first_message:
        return thread_created
    if reply.trigger_type == AutoReplyTrigger.outside_hours:
        return not group_open
    return False


def _in_cooldown(*, session: Session, thread_id: UUID, since: datetime) -> bool:
    recent = session.execute(
        select(Message.id)
        .where(
            Message.thread_id == thread_id,
            Message.direction == MessageDirection.outbound,
            Message.created_at >= since,
        )
        .limit(1)
    ).scalar_one_or_none()
    return recent is not None


def evaluate_auto_replies(
    *,
    session: Session,
    inbound: Message,
    thread: Thread,
    thread_created: bool,
    now: datetime,
    tz: tzinfo,
) -> Message | None:
    """Queue the first matching automatic reply of the inbound message's group.

    Rules are tried newest first. A rule whose cooldown is still running for
    the thread is skipped and the next one is tried. The reply is only queued
    here; the scheduler hands it to the gateway.
    """
    if inbound.resolved_group_id is None:
        return None

    replies = list(
        session.execute(
            select(AutomaticReply)
            .where(
                AutomaticReply.tenant_id == inbound.tenant_id,
                AutomaticReply.group_id == inbound.resolved_group_id,
                AutomaticReply.is_active.is_(True),
            )
            .order_by(AutomaticReply.created_at.desc(), AutomaticReply.id.asc())
        )
        .scalars()
        .all()
    )
    if not replies:
        return None

    group_open = True
    if any(r.trigger_type == AutoReplyTrigger.outside_hours for r in replies):
        group_open = is_group_open(session=session, group_id=inbound.resolved_group_id, at=now, tz=tz)

    for reply in replies:
        if not _matches(reply, content=inbound.content, thread_created=thread_created, group_open=group_open):
            continue

        since = now - timedelta(minutes=max(0, reply.cooldown_minutes))
        if _in_cooldown(session=session, thread_id=thread.id, since=since):
            session.add(
                AutoReplyLog(
                    tenant_id=inbound.tenant_id,
                    auto_reply_id=reply.id,
                    triggering_message_id=inbound.id,
                    was_sent=False,
                    reason="cooldown",
                )
            )
            session.flush()
            observe_auto_reply(trigger=reply.trigger_type.value, outcome="cooldown")
            continue

        queued_at = max(datetime.now(UTC), now)
        message = Message(
            tenant_id=inbound.tenant_id,
            thread_id=thread.id,
            gateway_id=inbound.gateway_id,
            direction=MessageDirection.outbound,
            from_number=inbound.to_number,
            to_number=inbound.from_number,
            content=reply.message_template,
            resolved_group_id=inbound.resolved_group_id,
            is_fallback=False,
            status=MessageStatus.queued,
            created_at=queued_at,
        )
        session.add(message)
        session.flush()

        thread.last_message_at = queued_at
        session.add(thread)
        session.add(
            AutoReplyLog(
                tenant_id=inbound.tenant_id,
                auto_reply_id=reply.id,
                triggering_message_id=inbound.id,
                sent_message_id=message.id,
                was_sent=True,
                reason=f"trigger:{reply.trigger_type.value}",
            )
        )
        session.flush()

        observe_auto_reply(trigger=reply.trigger_type.value, outcome="queued")
        log_structured(
            logger,
            "auto_reply.queued",
            tenant_id=inbound.tenant_id,
            auto_reply_id=reply.id,
            trigger=reply.trigger_type.value,
            inbound_message_id=inbound.id,
            reply_message_id=message.id,
        )
        return message
    return None
