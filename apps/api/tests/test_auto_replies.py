from __future__ import annotations

from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from sms_inbox.main import create_app
from sms_inbox.models import (
    AutoReplyLog,
    AutoReplyTrigger,
    Message,
    MessageDirection,
    MessageStatus,
)
from sms_inbox.services.auto_replies import is_group_open

# A Monday evening, well outside 08:00-16:00.
MONDAY_EVENING = datetime(2026, 10, 19, 20, 0, tzinfo=UTC)
MONDAY_MORNING = datetime(2026, 10, 19, 10, 0, tzinfo=UTC)


def _payload(gateway, *, content: str = "hei", received_at: datetime | None = None) -> dict:
    body = {
        "gateway_id": str(gateway.id),
        "from_number": "+47 111 22 333",
        "to_number": gateway.phone_number,
        "content": content,
    }
    if received_at is not None:
        body["received_at"] = received_at.isoformat()
    return body


@pytest.fixture()
def client() -> TestClient:
    return TestClient(create_app())


def _outbound(db_session) -> list[Message]:
    return list(
        db_session.execute(
            select(Message)
            .where(Message.direction == MessageDirection.outbound)
            .order_by(Message.created_at.asc())
        )
        .scalars()
        .all()
    )


def test_keyword_reply_is_queued_back_to_sender(client: TestClient, seed, db_session) -> None:
    tenant = seed.tenant()
    support = seed.group(tenant, "Support")
    gateway = seed.gateway(tenant, fallback_group=support)
    rule = seed.auto_reply(
        support, trigger=AutoReplyTrigger.keyword, pattern="Åpningstid", template="Vi har åpent 08-16."
    )
    db_session.commit()

    res = client.post("/inbound/messages", json=_payload(gateway, content="Hva er åpningstidene deres?"))
    assert res.status_code == 200
    reply_id = res.json()["auto_reply_message_id"]
    assert reply_id is not None

    db_session.commit()
    (reply,) = _outbound(db_session)
    assert str(reply.id) == reply_id
    assert reply.status == MessageStatus.queued
    assert reply.from_number == gateway.phone_number
    assert reply.to_number == "+4711122333"
    assert reply.content == "Vi har åpent 08-16."
    assert str(reply.thread_id) == res.json()["thread_id"]
    assert reply.resolved_group_id == support.id

    log = db_session.execute(select(AutoReplyLog)).scalar_one()
    assert log.auto_reply_id == rule.id
    assert log.was_sent is True
    assert log.sent_message_id == reply.id
    assert str(log.triggering_message_id) == res.json()["message_id"]


def test_keyword_that_does_not_match_queues_nothing(client: TestClient, seed, db_session) -> None:
    tenant = seed.tenant()
    support = seed.group(tenant)
    gateway = seed.gateway(tenant, fallback_group=support)
    seed.auto_reply(support, trigger=AutoReplyTrigger.keyword, pattern="pris")
    seed.auto_reply(support, trigger=AutoReplyTrigger.keyword, pattern="hjelp", is_active=False)
    db_session.commit()

    res = client.post("/inbound/messages", json=_payload(gateway, content="jeg trenger hjelp"))
    assert res.status_code == 200
    assert res.json()["auto_reply_message_id"] is None

    db_session.commit()
    assert _outbound(db_session) == []


def test_first_message_reply_only_opens_a_conversation(client: TestClient, seed, db_session) -> None:
    tenant = seed.tenant()
    support = seed.group(tenant)
    gateway = seed.gateway(tenant, fallback_group=support)
    seed.auto_reply(
        support, trigger=AutoReplyTrigger.first_message, template="Vi svarer snart.", cooldown_minutes=0
    )
    db_session.commit()

    first = client.post("/inbound/messages", json=_payload(gateway, content="hei"))
    second = client.post("/inbound/messages", json=_payload(gateway, content="er dere der?"))
    assert first.json()["auto_reply_message_id"] is not None
    assert second.json()["auto_reply_message_id"] is None
    assert second.json()["thread_id"] == first.json()["thread_id"]

    db_session.commit()
    assert [m.content for m in _outbound(db_session)] == ["Vi svarer snart."]


def test_outside_hours_reply_depends_on_group_schedule(client: TestClient, seed, db_session) -> None:
    tenant = seed.tenant()
    support = seed.group(tenant)
    gateway = seed.gateway(tenant, fallback_group=support)
    seed.opening_hours(support, day_of_week=MONDAY_EVENING.weekday())
    seed.auto_reply(
        support, trigger=AutoReplyTrigger.outside_hours, template="Vi er stengt nå.", cooldown_minutes=0
    )
    db_session.commit()

    during = client.post("/inbound/messages", json=_payload(gateway, received_at=MONDAY_MORNING))
    assert during.status_code == 200
    assert during.json()["auto_reply_message_id"] is None

    after = client.post("/inbound/messages", json=_payload(gateway, received_at=MONDAY_EVENING))
    assert after.status_code == 200
    assert after.json()["auto_reply_message_id"] is not None


def test_recent_outbound_suppresses_reply_during_cooldown(client: TestClient, seed, db_session) -> None:
    tenant = seed.tenant()
    support = seed.group(tenant)
    gateway = seed.gateway(tenant, fallback_group=support)
    contact = seed.contact(tenant, "+4711122333")
    thread = seed.thread(tenant, gateway=gateway, contact=contact, group=support)
    seed.message(
        thread,
        direction=MessageDirection.outbound,
        content="Hei fra oss",
        created_at=datetime.now(UTC) - timedelta(minutes=10),
    )
    rule = seed.auto_reply(support, trigger=AutoReplyTrigger.keyword, pattern="hei", cooldown_minutes=30)
    db_session.commit()

    res = client.post("/inbound/messages", json=_payload(gateway, content="hei igjen"))
    assert res.status_code == 200
    assert res.json()["auto_reply_message_id"] is None

    db_session.commit()
    log = db_session.execute(select(AutoReplyLog)).scalar_one()
    assert log.auto_reply_id == rule.id
    assert log.was_sent is False
    assert log.reason == "cooldown"
    assert log.sent_message_id is None


def test_only_the_newest_matching_reply_is_queued(client: TestClient, seed, db_session) -> None:
    tenant = seed.tenant()
    support = seed.group(tenant)
    gateway = seed.gateway(tenant, fallback_group=support)
    now = datetime.now(UTC)
    seed.auto_reply(
        support,
        trigger=AutoReplyTrigger.keyword,
        pattern="faktura",
        template="Gammelt svar",
        created_at=now - timedelta(days=2),
    )
    seed.auto_reply(
        support,
        trigger=AutoReplyTrigger.first_message,
        template="Nytt svar",
        created_at=now - timedelta(days=1),
    )
    db_session.commit()

    res = client.post("/inbound/messages", json=_payload(gateway, content="Spørsmål om faktura"))
    assert res.status_code == 200

    db_session.commit()
    assert [m.content for m in _outbound(db_session)] == ["Nytt svar"]


def test_replies_of_other_groups_are_ignored(client: TestClient, seed, db_session) -> None:
    tenant = seed.tenant()
    support = seed.group(tenant, "Support")
    sales = seed.group(tenant, "Sales")
    gateway = seed.gateway(tenant, fallback_group=support)
    seed.auto_reply(sales, trigger=AutoReplyTrigger.first_message)
    db_session.commit()

    res = client.post("/inbound/messages", json=_payload(gateway))
    assert res.json()["auto_reply_message_id"] is None


def test_group_without_schedule_is_always_open(seed, db_session) -> None:
    group = seed.group(seed.tenant())
    assert is_group_open(session=db_session, group_id=group.id, at=MONDAY_EVENING, tz=UTC)


def test_closed_day_and_missing_times(seed, db_session) -> None:
    group = seed.group(seed.tenant())
    seed.opening_hours(group, day_of_week=MONDAY_EVENING.weekday(), is_open=False)
    sunday = MONDAY_EVENING - timedelta(days=1)
    seed.opening_hours(group, day_of_week=sunday.weekday(), open_time=None, close_time=None)

    assert not is_group_open(session=db_session, group_id=group.id, at=MONDAY_MORNING, tz=UTC)
    assert is_group_open(session=db_session, group_id=group.id, at=sunday, tz=UTC)


def test_date_exception_overrides_weekly_schedule(seed, db_session) -> None:
    group = seed.group(seed.tenant())
    seed.opening_hours(group, day_of_week=MONDAY_MORNING.weekday())
    seed.opening_exception(group, on=MONDAY_MORNING.date(), is_open=False)
    next_monday = MONDAY_MORNING + timedelta(days=7)
    seed.opening_exception(
        group, on=next_monday.date(), is_open=True, open_time=time(12, 0), close_time=time(14, 0)
    )

    assert not is_group_open(session=db_session, group_id=group.id, at=MONDAY_MORNING, tz=UTC)
    assert not is_group_open(session=db_session, group_id=group.id, at=next_monday, tz=UTC)
    assert is_group_open(session=db_session, group_id=group.id, at=next_monday.replace(hour=13), tz=UTC)


def test_schedule_boundaries_are_inclusive_to_the_minute(seed, db_session) -> None:
    group = seed.group(seed.tenant())
    seed.opening_hours(group, day_of_week=MONDAY_MORNING.weekday())
    closing = MONDAY_MORNING.replace(hour=16, minute=0, second=45)

    assert is_group_open(session=db_session, group_id=group.id, at=closing, tz=UTC)
    assert not is_group_open(
        session=db_session, group_id=group.id, at=closing + timedelta(minutes=1), tz=UTC
    )


def test_overnight_window_and_local_timezone(seed, db_session) -> None:
    group = seed.group(seed.tenant())
    seed.opening_hours(
        group, day_of_week=MONDAY_MORNING.weekday(), open_time=time(22, 0), close_time=time(6, 0)
    )
    assert is_group_open(session=db_session, group_id=group.id, at=MONDAY_MORNING.replace(hour=23), tz=UTC)
    assert not is_group_open(session=db_session, group_id=group.id, at=MONDAY_MORNING, tz=UTC)

    office = seed.group(seed.tenant())
    seed.opening_hours(office, day_of_week=MONDAY_MORNING.weekday())
    # 07:30 UTC is 09:30 in Oslo (summer time).
    early = MONDAY_MORNING.replace(hour=7, minute=30)
    assert not is_group_open(session=db_session, group_id=office.id, at=early, tz=UTC)
    assert is_group_open(session=db_session, group_id=office.id, at=early, tz=ZoneInfo("Europe/Oslo"))
