from __future__ import annotations

from datetime import UTC, datetime, timedelta

from fastapi.testclient import TestClient
from sqlalchemy import select

from sms_inbox.core.config import get_settings
from sms_inbox.main import create_app
from sms_inbox.models import EscalationEvent, MembershipRole, Message, MessageDirection
from sms_inbox.services.escalation import run_escalation_sweep


def _inbox(seed, *, escalation_enabled: bool = True):
    tenant = seed.tenant()
    admin = seed.user(tenant, role=MembershipRole.tenant_admin)
    agent = seed.user(tenant)
    away = seed.user(tenant, is_disabled=True)
    group = seed.group(
        tenant,
        "Support",
        escalation_enabled=escalation_enabled,
        escalation_timeout_minutes=30,
        members=[agent, away],
    )
    gateway = seed.gateway(tenant)
    contact = seed.contact(tenant, "+4711122333")
    thread = seed.thread(tenant, gateway=gateway, contact=contact, group=group)
    return tenant, admin, agent, group, thread


def _events(db_session, message_id) -> list[EscalationEvent]:
    return list(
        db_session.execute(
            select(EscalationEvent)
            .where(EscalationEvent.message_id == message_id)
            .order_by(EscalationEvent.escalation_level.asc())
        )
        .scalars()
        .all()
    )


def test_only_messages_past_the_timeout_escalate(seed, db_session) -> None:
    _tenant, _admin, agent, group, thread = _inbox(seed)
    now = datetime.now(UTC)
    fresh = seed.message(thread, created_at=now - timedelta(minutes=10))
    stale = seed.message(thread, created_at=now - timedelta(minutes=40))
    db_session.commit()

    result = run_escalation_sweep(session=db_session, now=now)
    db_session.commit()

    assert result.escalated_count == 1
    assert result.failed_count == 0
    assert result.by_level == {1: 1}

    assert db_session.get(Message, fresh.id).escalation_level == 0
    escalated = db_session.get(Message, stale.id)
    assert escalated.escalation_level == 1
    assert escalated.escalated_at is not None

    [event] = _events(db_session, stale.id)
    assert event.escalation_level == 1
    assert event.target_group_id == group.id
    # Disabled members are not notified.
    assert event.target_user_ids == [str(agent.id)]
    assert event.reason == "Unacknowledged for 30 minutes"


def test_second_level_targets_tenant_admins_after_another_window(seed, db_session) -> None:
    _tenant, admin, _agent, _group, thread = _inbox(seed)
    now = datetime.now(UTC)
    message = seed.message(thread, created_at=now - timedelta(minutes=40))
    db_session.commit()

    run_escalation_sweep(session=db_session, now=now)
    db_session.commit()

    # Same window: no double escalation.
    repeat = run_escalation_sweep(session=db_session, now=now + timedelta(minutes=5))
    db_session.commit()
    assert repeat.escalated_count == 0
    assert db_session.get(Message, message.id).escalation_level == 1

    later = run_escalation_sweep(session=db_session, now=now + timedelta(minutes=31))
    db_session.commit()
    assert later.by_level == {2: 1}
    assert db_session.get(Message, message.id).escalation_level == 2

    events = _events(db_session, message.id)
    assert [e.escalation_level for e in events] == [1, 2]
    assert events[1].target_group_id is None
    assert events[1].target_user_ids == [str(admin.id)]

    # Level 2 is terminal.
    final = run_escalation_sweep(session=db_session, now=now + timedelta(hours=5))
    db_session.commit()
    assert final.escalated_count == 0
    assert db_session.get(Message, message.id).escalation_level == 2


def test_acknowledged_outbound_and_disabled_groups_are_skipped(seed, db_session) -> None:
    _tenant, admin, _agent, _group, thread = _inbox(seed)
    _t2, _a2, _g2, _grp2, quiet_thread = _inbox(seed, escalation_enabled=False)
    now = datetime.now(UTC)
    acked = seed.message(thread, created_at=now - timedelta(hours=2))
    acked.acknowledged_at = now - timedelta(minutes=90)
    acked.acknowledged_by_user_id = admin.id
    seed.message(thread, direction=MessageDirection.outbound, created_at=now - timedelta(hours=2))
    seed.message(quiet_thread, created_at=now - timedelta(hours=2))
    db_session.commit()

    result = run_escalation_sweep(session=db_session, now=now)
    assert result.escalated_count == 0


def test_sweep_endpoint_requires_cron_token(seed, db_session, monkeypatch) -> None:
    _tenant, _admin, _agent, _group, thread = _inbox(seed)
    seed.message(thread, created_at=datetime.now(UTC) - timedelta(minutes=45))
    db_session.commit()

    monkeypatch.setenv("CRON_SECRET", "tick-tock")
    get_settings.cache_clear()
    try:
        client = TestClient(create_app())
        denied = client.post("/escalations/sweep")
        assert denied.status_code == 401
        assert denied.json() == {"error": "Invalid cron token"}

        res = client.post("/escalations/sweep", headers={"x-cron-token": "tick-tock"})
        assert res.status_code == 200
        assert res.json() == {"escalated_count": 1, "failed_count": 0, "by_level": {"1": 1}, "skipped": False}
    finally:
        monkeypatch.delenv("CRON_SECRET", raising=False)
        get_settings.cache_clear()
