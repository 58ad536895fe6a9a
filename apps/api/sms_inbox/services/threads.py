from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sms_inbox.core.errors import InvalidState, NotFound
from sms_inbox.models.enums import MessageDirection
from sms_inbox.models.identity import Group
from sms_inbox.models.messaging import Contact, Gateway, Message, Thread
from sms_inbox.services.audit import log_event
from sms_inbox.services.routing import RouteDecision, resolve_route


@dataclass(frozen=True)
class ThreadResolution:
    thread: Thread
    group_id: UUID
    is_continuation: bool
    prior_outbound: Message | None
    route: RouteDecision | None
    # True only when this message opened a brand-new thread.
    created: bool = False

    @property
    def is_fallback(self) -> bool:
        return self.route is not None and self.route.is_fallback


def get_or_create_contact(*, session: Session, tenant_id: UUID, phone_number: str) -> Contact:
    contact = _load_contact(session=session, tenant_id=tenant_id, phone_number=phone_number)
    if contact is not None:
        return contact
    try:
        with session.begin_nested():
            contact = Contact(tenant_id=tenant_id, phone_number=phone_number)
            session.add(contact)
            session.flush()
    except IntegrityError:
        contact = _load_contact(session=session, tenant_id=tenant_id, phone_number=phone_number)
        if contact is None:
            raise
    return contact


def _load_contact(*, session: Session, tenant_id: UUID, phone_number: str) -> Contact | None:
    return session.execute(
        select(Contact).where(Contact.tenant_id == tenant_id, Contact.phone_number == phone_number)
    ).scalar_one_or_none()


def load_open_thread(
    *, session: Session, tenant_id: UUID, gateway_id: UUID, contact_id: UUID
) -> Thread | None:
    return session.execute(
        select(Thread).where(
            Thread.tenant_id == tenant_id,
            Thread.gateway_id == gateway_id,
            Thread.contact_id == contact_id,
            Thread.is_resolved.is_(False),
        )
    ).scalar_one_or_none()


def latest_outbound_message(
    *, session: Session, tenant_id: UUID, gateway_id: UUID, to_number: str
) -> Message | None:
    return (
        session.execute(
            select(Message)
            .where(
                Message.tenant_id == tenant_id,
                Message.gateway_id == gateway_id,
                Message.direction == MessageDirection.outbound,
                Message.to_number == to_number,
            )
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
        )
        .scalars()
        .first()
    )


def get_or_create_open_thread(
    *,
    session: Session,
    tenant_id: UUID,
    gateway_id: UUID,
    contact_id: UUID,
    group_id: UUID,
    now: datetime,
) -> tuple[Thread, bool]:
    """Return the open thread for the pair, creating it on `group_id` if absent.

    A concurrent writer may win the partial unique index; its thread is reused.
    """
    existing = load_open_thread(
        session=session, tenant_id=tenant_id, gateway_id=gateway_id, contact_id=contact_id
    )
    if existing is not None:
        return existing, False

    try:
        with session.begin_nested():
            thread = Thread(
                tenant_id=tenant_id,
                gateway_id=gateway_id,
                contact_id=contact_id,
                resolved_group_id=group_id,
                is_resolved=False,
                last_message_at=now,
                created_at=now,
                updated_at=now,
            )
            session.add(thread)
            session.flush()
    except IntegrityError:
        winner = load_open_thread(
            session=session, tenant_id=tenant_id, gateway_id=gateway_id, contact_id=contact_id
        )
        if winner is None:
            raise
        return winner, False
    return thread, True


def _reopen_thread(*, session: Session, thread: Thread, now: datetime) -> Thread:
    other = load_open_thread(
        session=session,
        tenant_id=thread.tenant_id,
        gateway_id=thread.gateway_id,
        contact_id=thread.contact_id,
    )
    if other is not None:
        return other
    try:
        with session.begin_nested():
            thread.is_resolved = False
            thread.resolved_at = None
            thread.updated_at = now
            session.add(thread)
            session.flush()
    except IntegrityError:
        session.refresh(thread)
        other = load_open_thread(
            session=session,
            tenant_id=thread.tenant_id,
            gateway_id=thread.gateway_id,
            contact_id=thread.contact_id,
        )
        if other is None:
            raise
        return other
    return thread


def resolve_thread(
    *,
    session: Session,
    tenant_id: UUID,
    gateway: Gateway,
    contact: Contact,
    body: str,
    now: datetime,
) -> ThreadResolution:
    """Pick the thread an inbound message belongs to.

    A prior outbound message to the contact on this gateway wins over routing
    rules; then an open thread for the pair; then a fresh routing decision.
    """
    prior = latest_outbound_message(
        session=session, tenant_id=tenant_id, gateway_id=gateway.id, to_number=contact.phone_number
    )
    if prior is not None:
        thread = session.get(Thread, prior.thread_id)
        if thread is not None:
            if thread.is_resolved:
                thread = _reopen_thread(session=session, thread=thread, now=now)
            _touch(session=session, thread=thread, now=now)
            return ThreadResolution(
                thread=thread,
                group_id=thread.resolved_group_id,
                is_continuation=True,
                prior_outbound=prior,
                route=None,
            )

    existing = load_open_thread(
        session=session, tenant_id=tenant_id, gateway_id=gateway.id, contact_id=contact.id
    )
    if existing is not None:
        _touch(session=session, thread=existing, now=now)
        return ThreadResolution(
            thread=existing,
            group_id=existing.resolved_group_id,
            is_continuation=False,
            prior_outbound=None,
            route=None,
        )

    route = resolve_route(session=session, tenant_id=tenant_id, gateway=gateway, body=body, contact=contact)
    thread, created = get_or_create_open_thread(
        session=session,
        tenant_id=tenant_id,
        gateway_id=gateway.id,
        contact_id=contact.id,
        group_id=route.group_id,
        now=now,
    )
    if not created:
        # Lost the creation race; the winner's routing decision stands.
        _touch(session=session, thread=thread, now=now)
        return ThreadResolution(
            thread=thread,
            group_id=thread.resolved_group_id,
            is_continuation=False,
            prior_outbound=None,
            route=None,
        )
    return ThreadResolution(
        thread=thread,
        group_id=route.group_id,
        is_continuation=False,
        prior_outbound=None,
        route=route,
        created=True,
    )


def _touch(*, session: Session, thread: Thread, now: datetime) -> None:
    thread.last_message_at = now
    thread.updated_at = now
    session.add(thread)
    session.flush()


def _load_thread_for_tenant(*, session: Session, tenant_id: UUID, thread_id: UUID) -> Thread:
    thread = session.execute(
        select(Thread).where(Thread.id == thread_id, Thread.tenant_id == tenant_id).with_for_update()
    ).scalar_one_or_none()
    if thread is None:
        raise NotFound("Thread not found")
    return thread


def reclassify_thread(
    *,
    session: Session,
    tenant_id: UUID,
    thread_id: UUID,
    group_id: UUID,
    actor_user_id: UUID | None,
) -> Thread:
    thread = _load_thread_for_tenant(session=session, tenant_id=tenant_id, thread_id=thread_id)
    group = session.execute(
        select(Group).where(Group.id == group_id, Group.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if group is None:
        raise NotFound("Group not found")

    before = thread.resolved_group_id
    now = datetime.now(UTC)
    thread.resolved_group_id = group.id
    thread.updated_at = now
    session.add(thread)
    session.flush()

    # The thread was placed by hand; its messages are no longer fallback-routed.
    session.execute(update(Message).where(Message.thread_id == thread.id).values(is_fallback=False))
    # Pending inbound messages follow the thread so escalation targets the new owners.
    session.execute(
        update(Message)
        .where(
            Message.thread_id == thread.id,
            Message.direction == MessageDirection.inbound,
            Message.acknowledged_at.is_(None),
        )
        .values(resolved_group_id=group.id)
    )

    log_event(
        session=session,
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        event_type="thread.reclassified",
        entity_type="thread",
        entity_id=thread.id,
        event_data={"before_group_id": str(before), "after_group_id": str(group.id)},
    )
    return thread


def close_thread(
    *,
    session: Session,
    tenant_id: UUID,
    thread_id: UUID,
    actor_user_id: UUID | None,
) -> Thread:
    thread = _load_thread_for_tenant(session=session, tenant_id=tenant_id, thread_id=thread_id)
    if thread.is_resolved:
        raise InvalidState("Thread already resolved")

    now = datetime.now(UTC)
    thread.is_resolved = True
    thread.resolved_at = now
    thread.updated_at = now
    session.add(thread)
    session.flush()

    log_event(
        session=session,
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        event_type="thread.resolved",
        entity_type="thread",
        entity_id=thread.id,
        event_data={"group_id": str(thread.resolved_group_id)},
    )
    return thread


def list_threads(
    *,
    session: Session,
    tenant_id: UUID,
    group_id: UUID | None,
    include_resolved: bool,
    limit: int,
) -> list[dict]:
    pending = (
        select(func.count(Message.id))
        .where(
            Message.thread_id == Thread.id,
            Message.direction == MessageDirection.inbound,
            Message.acknowledged_at.is_(None),
        )
        .correlate(Thread)
        .scalar_subquery()
    )
    query = (
        select(Thread, Contact.phone_number, Contact.display_name, pending.label("unacknowledged_count"))
        .join(Contact, Contact.id == Thread.contact_id)
        .where(Thread.tenant_id == tenant_id)
        .order_by(Thread.last_message_at.desc(), Thread.id.desc())
        .limit(limit)
    )
    if group_id is not None:
        query = query.where(Thread.resolved_group_id == group_id)
    if not include_resolved:
        query = query.where(Thread.is_resolved.is_(False))

    items: list[dict] = []
    for thread, phone_number, display_name, unacknowledged_count in session.execute(query).all():
        items.append(
            {
                "id": thread.id,
                "contact_id": thread.contact_id,
                "contact_phone_number": phone_number,
                "contact_display_name": display_name,
                "gateway_id": thread.gateway_id,
                "resolved_group_id": thread.resolved_group_id,
                "is_resolved": thread.is_resolved,
                "resolved_at": thread.resolved_at,
                "last_message_at": thread.last_message_at,
                "unacknowledged_count": int(unacknowledged_count or 0),
            }
        )
    return items


def list_thread_messages(*, session: Session, tenant_id: UUID, thread_id: UUID) -> list[Message]:
    thread = session.execute(
        select(Thread.id).where(Thread.id == thread_id, Thread.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if thread is None:
        raise NotFound("Thread not found")
    return list(
        session.execute(
            select(Message)
            .where(Message.thread_id == thread_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        .scalars()
        .all()
    )
