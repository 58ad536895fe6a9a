from __future__ import annotations

from uuid import uuid4

from fastapi.testclient import TestClient
from sqlalchemy import select

from sms_inbox.main import create_app
from sms_inbox.models import AuditEvent, Message, MessageDirection, Thread


def _inbox(seed):
    tenant = seed.tenant()
    user = seed.user(tenant)
    support = seed.group(tenant, "Support", members=[user])
    sales = seed.group(tenant, "Sales")
    gateway = seed.gateway(tenant)
    contact = seed.contact(tenant, "+4711122333")
    thread = seed.thread(tenant, gateway=gateway, contact=contact, group=support)
    token = seed.token(user, tenant)
    return tenant, support, sales, gateway, thread, token


def test_reclassify_moves_thread_and_pending_messages(seed, db_session) -> None:
    tenant, support, sales, _gateway, thread, token = _inbox(seed)
    pending = seed.message(thread, content="hallo")
    pending.is_fallback = True
    handled = seed.message(thread, content="gammel")
    handled.acknowledged_at = handled.created_at
    db_session.commit()

    client = TestClient(create_app())
    res = client.patch(
        f"/threads/{thread.id}",
        json={"resolved_group_id": str(sales.id)},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert res.status_code == 200
    assert res.json()["id"] == str(thread.id)
    assert res.json()["resolved_group_id"] == str(sales.id)

    db_session.commit()
    assert db_session.get(Thread, thread.id).resolved_group_id == sales.id
    moved = db_session.get(Message, pending.id)
    assert moved.resolved_group_id == sales.id
    assert moved.is_fallback is False
    # Already handled messages keep the group that handled them.
    assert db_session.get(Message, handled.id).resolved_group_id == support.id

    audit = db_session.execute(
        select(AuditEvent).where(AuditEvent.tenant_id == tenant.id, AuditEvent.event_type == "thread.reclassified")
    ).scalar_one()
    assert audit.event_data == {"before_group_id": str(support.id), "after_group_id": str(sales.id)}


def test_reclassify_rejects_foreign_group(seed, db_session) -> None:
    _tenant, _support, _sales, _gateway, thread, token = _inbox(seed)
    other = seed.tenant()
    foreign = seed.group(other, "Foreign")
    db_session.commit()

    client = TestClient(create_app())
    headers = {"Authorization": f"Bearer {token}"}
    res = client.patch(f"/threads/{thread.id}", json={"resolved_group_id": str(foreign.id)}, headers=headers)
    assert res.status_code == 404
    assert res.json() == {"error": "Group not found"}

    res = client.patch(f"/threads/{uuid4()}", json={"resolved_group_id": str(foreign.id)}, headers=headers)
    assert res.status_code == 404


def test_resolve_then_new_inbound_reopens_via_outbound(seed, db_session) -> None:
    _tenant, support, _sales, gateway, thread, token = _inbox(seed)
    seed.message(thread, direction=MessageDirection.outbound, content="Hvordan kan vi hjelpe?")
    db_session.commit()

    client = TestClient(create_app())
    headers = {"Authorization": f"Bearer {token}"}

    res = client.post(f"/threads/{thread.id}/resolve", headers=headers)
    assert res.status_code == 200
    assert res.json()["is_resolved"] is True
    assert res.json()["resolved_at"] is not None

    again = client.post(f"/threads/{thread.id}/resolve", headers=headers)
    assert again.status_code == 409
    assert again.json() == {"error": "Thread already resolved"}

    inbound = client.post(
        "/inbound/messages",
        json={
            "gateway_id": str(gateway.id),
            "from_number": "+4711122333",
            "to_number": gateway.phone_number,
            "content": "Jeg har et spørsmål til",
        },
    )
    assert inbound.status_code == 200
    assert inbound.json()["thread_id"] == str(thread.id)
    assert inbound.json()["resolved_group_id"] == str(support.id)

    db_session.commit()
    assert db_session.get(Thread, thread.id).is_resolved is False


def test_list_threads_and_messages(seed, db_session) -> None:
    _tenant, support, sales, gateway, thread, token = _inbox(seed)
    seed.message(thread, content="første")
    seed.message(thread, direction=MessageDirection.outbound, content="svar")
    seed.message(thread, content="andre")
    closed_contact = seed.contact(_tenant, "+4799988777")
    seed.thread(_tenant, gateway=gateway, contact=closed_contact, group=sales, is_resolved=True)
    db_session.commit()

    client = TestClient(create_app())
    headers = {"Authorization": f"Bearer {token}"}

    res = client.get("/threads", headers=headers)
    assert res.status_code == 200
    items = res.json()
    assert [item["id"] for item in items] == [str(thread.id)]
    assert items[0]["unacknowledged_count"] == 2
    assert items[0]["contact_phone_number"] == "+4711122333"

    res = client.get("/threads", params={"include_resolved": "true"}, headers=headers)
    assert len(res.json()) == 2

    res = client.get("/threads", params={"group_id": str(sales.id), "include_resolved": "true"}, headers=headers)
    assert [item["resolved_group_id"] for item in res.json()] == [str(sales.id)]

    res = client.get(f"/threads/{thread.id}/messages", headers=headers)
    assert res.status_code == 200
    assert [m["content"] for m in res.json()] == ["første", "svar", "andre"]
    assert [m["direction"] for m in res.json()] == ["inbound", "outbound", "inbound"]
    assert str(support.id) in {m["resolved_group_id"] for m in res.json()}

    assert client.get(f"/threads/{uuid4()}/messages", headers=headers).status_code == 404
