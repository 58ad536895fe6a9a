from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, select, text, update
from sqlalchemy.orm import Session

from sms_inbox.core.logging_config import log_structured
from sms_inbox.core.metrics import observe_escalation
from sms_inbox.models.enums import MembershipRole, MessageDirection
from sms_inbox.models.identity import Group, GroupMembership, Membership, User
from sms_inbox.models.messaging import EscalationEvent, Message
from sms_inbox.services.audit import log_event

logger = logging.getLogger("sms_inbox.escalation")

MAX_ESCALATION_LEVEL = 2
# Arbitrary constant shared by every process running the sweep.
SWEEP_ADVISORY_LOCK_KEY = 7_318_204_911


@dataclass
class EscalationSweepResult:
    escalated_count: int = 0
    failed_count: int = 0
    by_level: dict[int, int] = field(default_factory=dict)
    skipped: bool = False


def _group_member_ids(*, session: Session, group_id: UUID) -> list[UUID]:
    return list(
        session.execute(
            select(GroupMembership.user_id)
            .join(User, User.id == GroupMembership.user_id)
            .where(GroupMembership.group_id == group_id, User.is_disabled.is_(False))
            .order_by(GroupMembership.created_at.asc())
        )
        .scalars()
        .all()
    )


def _tenant_admin_ids(*, session: Session, tenant_id: UUID) -> list[UUID]:
    return list(
        session.execute(
            select(Membership.user_id)
            .join(User, User.id == Membership.user_id)
            .where(
                Membership.tenant_id == tenant_id,
                Membership.role == MembershipRole.tenant_admin,
                User.is_disabled.is_(False),
            )
            .order_by(Membership.created_at.asc())
        )
        .scalars()
        .all()
    )


def due_messages(*, session: Session, group: Group, now: datetime) -> list[Message]:
    cutoff = now - timedelta(minutes=group.escalation_timeout_minutes)
    return list(
        session.execute(
            select(Message)
            .where(
                Message.resolved_group_id == group.id,
                Message.direction == MessageDirection.inbound,
                Message.acknowledged_at.is_(None),
                Message.created_at < cutoff,
                Message.escalation_level < MAX_ESCALATION_LEVEL,
                # One level per timeout window.
                or_(Message.escalated_at.is_(None), Message.escalated_at < cutoff),
            )
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        .scalars()
        .all()
    )


def escalate_message(*, session: Session, message: Message, group: Group, now: datetime) -> int | None:
    """Advance one message by exactly one level; None if another writer moved it first."""
    current_level = int(message.escalation_level)
    next_level = current_level + 1
    if next_level > MAX_ESCALATION_LEVEL:
        return None

    if next_level == 1:
        target_group_id: UUID | None = group.id
        target_user_ids = _group_member_ids(session=session, group_id=group.id)
    else:
        target_group_id = None
        target_user_ids = _tenant_admin_ids(session=session, tenant_id=message.tenant_id)

    result = session.execute(
        update(Message)
        .where(
            Message.id == message.id,
            Message.escalation_level == current_level,
            Message.acknowledged_at.is_(None),
        )
        .values(escalation_level=next_level, escalated_at=now)
    )
    if result.rowcount != 1:
        return None

    reason = f"Unacknowledged for {group.escalation_timeout_minutes} minutes"
    user_ids = [str(u) for u in target_user_ids]
    session.add(
        EscalationEvent(
            tenant_id=message.tenant_id,
            message_id=message.id,
            escalation_level=next_level,
            target_group_id=target_group_id,
            target_user_ids=user_ids,
            reason=reason,
            created_at=now,
        )
    )
    session.flush()
    log_event(
        session=session,
        tenant_id=message.tenant_id,
        actor_user_id=None,
        event_type="message.escalated",
        entity_type="message",
        entity_id=message.id,
        event_data={
            "escalation_level": next_level,
            "group_id": str(group.id),
            "target_group_id": str(target_group_id) if target_group_id else None,
            "target_user_ids": user_ids,
            "reason": reason,
        },
    )
    return next_level


def try_acquire_sweep_lock(*, session: Session) -> bool:
    """Transaction-scoped lock so overlapping sweeps (cron + worker) do not interleave."""
    if session.get_bind().dialect.name != "postgresql":
        return True
    acquired = session.execute(
        text("SELECT pg_try_advisory_xact_lock(:key)"), {"key": SWEEP_ADVISORY_LOCK_KEY}
    ).scalar_one()
    return bool(acquired)


def run_escalation_sweep(*, session: Session, now: datetime) -> EscalationSweepResult:
    result = EscalationSweepResult()
    if not try_acquire_sweep_lock(session=session):
        log_structured(logger, "escalation.sweep_skipped", reason="lock_held")
        result.skipped = True
        return result

    groups = (
        session.execute(
            select(Group)
            .where(Group.escalation_enabled.is_(True))
            .order_by(Group.created_at.asc(), Group.id.asc())
        )
        .scalars()
        .all()
    )

    for group in groups:
        for message in due_messages(session=session, group=group, now=now):
            message_id = message.id
            try:
                with session.begin_nested():
                    level = escalate_message(session=session, message=message, group=group, now=now)
            except Exception:
                logger.exception("escalation failed for message %s", message_id)
                result.failed_count += 1
                continue

            if level is None:
                continue
            result.escalated_count += 1
            result.by_level[level] = result.by_level.get(level, 0) + 1
            observe_escalation(level=level)
            log_structured(
                logger,
                "message.escalated",
                message_id=message_id,
                group_id=group.id,
                level=level,
            )

    if result.escalated_count or result.failed_count:
        log_structured(
            logger,
            "escalation.sweep_completed",
            escalated=result.escalated_count,
            failed=result.failed_count,
        )
    return result
