from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy import select

from sms_inbox.main import create_app
from sms_inbox.models import DeliveryStatusEvent, Message, MessageDirection, MessageStatus


def _outbound(seed, *, external_message_id: str = "ext-42"):
    tenant = seed.tenant()
    group = seed.group(tenant)
    gateway = seed.gateway(tenant)
    contact = seed.contact(tenant, "+4711122333")
    thread = seed.thread(tenant, gateway=gateway, contact=contact, group=group)
    return seed.message(
        thread,
        direction=MessageDirection.outbound,
        external_message_id=external_message_id,
        status=MessageStatus.sent,
    )


def test_unknown_external_id_is_ignored(seed, db_session) -> None:
    _outbound(seed)
    db_session.commit()

    client = TestClient(create_app())
    res = client.post("/webhooks/delivery-status", json={"external_message_id": "nobody", "status": "delivered"})
    assert res.status_code == 200
    assert res.json() == {"status": "ignored", "message_id": None}

    db_session.commit()
    assert db_session.execute(select(DeliveryStatusEvent)).scalars().all() == []


def test_delivered_report_updates_message_and_appends_event(seed, db_session) -> None:
    message = _outbound(seed)
    db_session.commit()

    client = TestClient(create_app())
    res = client.post(
        "/webhooks/delivery-status",
        json={
            "external_message_id": "ext-42",
            "status": "DELIVERED",
            "timestamp": "2026-10-19T08:30:00Z",
            "carrier": "telenor",
        },
    )
    assert res.status_code == 200
    assert res.json() == {"status": "updated", "message_id": str(message.id)}

    db_session.commit()
    stored = db_session.get(Message, message.id)
    assert stored.status == MessageStatus.delivered
    assert stored.delivered_at is not None
    assert stored.delivered_at.isoformat().startswith("2026-10-19T08:30:00")

    [event] = db_session.execute(
        select(DeliveryStatusEvent).where(DeliveryStatusEvent.message_id == message.id)
    ).scalars().all()
    assert event.status == MessageStatus.delivered
    assert event.raw_payload["carrier"] == "telenor"


def test_failure_report_keeps_history(seed, db_session) -> None:
    message = _outbound(seed)
    db_session.commit()

    client = TestClient(create_app())
    client.post("/webhooks/delivery-status", json={"external_message_id": "ext-42", "status": "sent"})
    res = client.post(
        "/webhooks/delivery-status",
        json={
            "external_message_id": "ext-42",
            "status": "undelivered",
            "error_code": 30005,
            "error_message": "Unknown destination handset",
        },
    )
    assert res.status_code == 200

    db_session.commit()
    stored = db_session.get(Message, message.id)
    assert stored.status == MessageStatus.undelivered
    assert stored.error_message == "Unknown destination handset"
    assert stored.delivered_at is None

    events = db_session.execute(
        select(DeliveryStatusEvent)
        .where(DeliveryStatusEvent.message_id == message.id)
        .order_by(DeliveryStatusEvent.event_at.asc())
    ).scalars().all()
    assert [e.status for e in events] == [MessageStatus.sent, MessageStatus.undelivered]
    assert events[1].error_code == "30005"


def test_invalid_reports_are_rejected() -> None:
    client = TestClient(create_app())

    res = client.post("/webhooks/delivery-status", json={"status": "delivered"})
    assert res.status_code == 400
    assert res.json() == {"error": "Missing required fields"}

    res = client.post("/webhooks/delivery-status", json={"external_message_id": "ext-1", "status": "teleported"})
    assert res.status_code == 400
    assert res.json() == {"error": "Unsupported delivery status: teleported"}

    res = client.post("/webhooks/delivery-status", json={"external_message_id": "ext-1", "status": "received"})
    assert res.status_code == 400
