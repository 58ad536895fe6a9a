from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Generator
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from uuid import uuid4

import pytest
from sqlalchemy.orm import Session

# Must be in place before anything imports the app and caches Settings.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="sms_inbox_tests_")
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL", f"sqlite+pysqlite:///{_TEST_DB_DIR}/sms_inbox_test.db"
)
os.environ["APP_ENV"] = "test"
os.environ["RATE_LIMIT_REQUESTS_PER_MINUTE"] = "0"
os.environ["BULK_SEND_DELAY_SECONDS"] = "0"
os.environ["WEBHOOK_SECRET"] = ""
os.environ["CRON_SECRET"] = ""

from sms_inbox.core.config import get_settings  # noqa: E402
from sms_inbox.db.session import get_engine, get_sessionmaker  # noqa: E402
from sms_inbox.models import (  # noqa: E402
    AutomaticReply,
    AutoReplyTrigger,
    Base,
    BulkCampaign,
    BulkRecipient,
    CampaignStatus,
    Contact,
    Gateway,
    Group,
    GroupMembership,
    Membership,
    MembershipRole,
    Message,
    MessageDirection,
    MessageStatus,
    OpeningHours,
    OpeningHoursException,
    RoutingRule,
    RoutingRuleKind,
    Tenant,
    Thread,
    User,
)
from sms_inbox.services.auth.sessions import create_api_session  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _test_database() -> Generator[None, None, None]:
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_sessionmaker.cache_clear()

    Base.metadata.create_all(get_engine())

    yield

    with suppress(Exception):
        Base.metadata.drop_all(get_engine())
    with suppress(Exception):
        get_engine().dispose()
    get_engine.cache_clear()
    get_sessionmaker.cache_clear()
    get_settings.cache_clear()
    shutil.rmtree(_TEST_DB_DIR, ignore_errors=True)


@pytest.fixture(autouse=True)
def _clean_tables() -> Generator[None, None, None]:
    yield
    # Escalation sweeps span every tenant, so each test starts from empty tables.
    with get_engine().begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    # Expire on commit so `commit()` after an API call re-reads what the app wrote.
    session = Session(bind=get_engine(), autoflush=False, expire_on_commit=True)
    try:
        yield session
    finally:
        session.close()


@dataclass
class Seed:
    """Builds tenant fixtures the way the admin UI would leave them."""

    session: Session

    def tenant(self, name: str | None = None) -> Tenant:
        tenant = Tenant(name=name or f"Tenant {uuid4().hex[:8]}")
        self.session.add(tenant)
        self.session.flush()
        return tenant

    def user(
        self,
        tenant: Tenant,
        *,
        role: MembershipRole = MembershipRole.member,
        is_disabled: bool = False,
    ) -> User:
        user = User(email=f"user-{uuid4().hex[:10]}@example.com", is_disabled=is_disabled)
        self.session.add(user)
        self.session.flush()
        self.session.add(Membership(tenant_id=tenant.id, user_id=user.id, role=role))
        self.session.flush()
        return user

    def group(
        self,
        tenant: Tenant,
        name: str = "Support",
        *,
        escalation_enabled: bool = True,
        escalation_timeout_minutes: int = 30,
        members: list[User] | None = None,
    ) -> Group:
        group = Group(
            tenant_id=tenant.id,
            name=name,
            escalation_enabled=escalation_enabled,
            escalation_timeout_minutes=escalation_timeout_minutes,
        )
        self.session.add(group)
        self.session.flush()
        for member in members or []:
            self.session.add(GroupMembership(tenant_id=tenant.id, group_id=group.id, user_id=member.id))
        self.session.flush()
        return group

    def gateway(
        self,
        tenant: Tenant,
        *,
        phone_number: str = "+4790000000",
        fallback_group: Group | None = None,
        is_active: bool = True,
        api_endpoint: str | None = "https://gateway.example.test/send",
        api_key: str | None = "gw-key",
    ) -> Gateway:
        gateway = Gateway(
            tenant_id=tenant.id,
            name=f"Gateway {phone_number}",
            phone_number=phone_number,
            fallback_group_id=fallback_group.id if fallback_group else None,
            is_active=is_active,
            api_endpoint=api_endpoint,
            api_key=api_key,
        )
        self.session.add(gateway)
        self.session.flush()
        return gateway

    def rule(
        self,
        tenant: Tenant,
        *,
        kind: RoutingRuleKind,
        target: Group,
        priority: int,
        pattern: str | None = None,
        gateway: Gateway | None = None,
        is_active: bool = True,
    ) -> RoutingRule:
        rule = RoutingRule(
            tenant_id=tenant.id,
            gateway_id=gateway.id if gateway else None,
            name=f"{kind.value}:{pattern or '*'}",
            kind=kind,
            pattern=pattern,
            target_group_id=target.id,
            priority=priority,
            is_active=is_active,
        )
        self.session.add(rule)
        self.session.flush()
        return rule

    def contact(self, tenant: Tenant, phone_number: str, *, default_group: Group | None = None) -> Contact:
        contact = Contact(
            tenant_id=tenant.id,
            phone_number=phone_number,
            default_group_id=default_group.id if default_group else None,
        )
        self.session.add(contact)
        self.session.flush()
        return contact

    def thread(
        self,
        tenant: Tenant,
        *,
        gateway: Gateway,
        contact: Contact,
        group: Group,
        is_resolved: bool = False,
    ) -> Thread:
        now = datetime.now(UTC)
        thread = Thread(
            tenant_id=tenant.id,
            gateway_id=gateway.id,
            contact_id=contact.id,
            resolved_group_id=group.id,
            is_resolved=is_resolved,
            resolved_at=now if is_resolved else None,
            last_message_at=now,
        )
        self.session.add(thread)
        self.session.flush()
        return thread

    def message(
        self,
        thread: Thread,
        *,
        direction: MessageDirection = MessageDirection.inbound,
        content: str = "hei",
        created_at: datetime | None = None,
        campaign: BulkCampaign | None = None,
        external_message_id: str | None = None,
        status: MessageStatus | None = None,
        escalation_level: int = 0,
        escalated_at: datetime | None = None,
    ) -> Message:
        contact = self.session.get(Contact, thread.contact_id)
        gateway = self.session.get(Gateway, thread.gateway_id)
        assert contact is not None and gateway is not None
        inbound = direction == MessageDirection.inbound
        message = Message(
            tenant_id=thread.tenant_id,
            thread_id=thread.id,
            gateway_id=gateway.id,
            direction=direction,
            from_number=contact.phone_number if inbound else gateway.phone_number,
            to_number=gateway.phone_number if inbound else contact.phone_number,
            content=content,
            resolved_group_id=thread.resolved_group_id,
            campaign_id=campaign.id if campaign else None,
            status=status or (MessageStatus.received if inbound else MessageStatus.sent),
            external_message_id=external_message_id,
            escalation_level=escalation_level,
            escalated_at=escalated_at,
            created_at=created_at or datetime.now(UTC),
        )
        self.session.add(message)
        self.session.flush()
        return message

    def campaign(
        self,
        tenant: Tenant,
        *,
        source_group: Group,
        recipients: list[str],
        template: str = "Hei {{name}}",
        gateway: Gateway | None = None,
        status: CampaignStatus = CampaignStatus.pending,
        metadata: list[dict] | None = None,
    ) -> BulkCampaign:
        campaign = BulkCampaign(
            tenant_id=tenant.id,
            name=f"Campaign {uuid4().hex[:6]}",
            message_template=template,
            source_group_id=source_group.id,
            gateway_id=gateway.id if gateway else None,
            status=status,
            total_recipients=len(recipients),
        )
        self.session.add(campaign)
        self.session.flush()
        for position, phone_number in enumerate(recipients):
            self.session.add(
                BulkRecipient(
                    campaign_id=campaign.id,
                    position=position,
                    phone_number=phone_number,
                    recipient_metadata=(metadata[position] if metadata else {}),
                )
            )
        self.session.flush()
        return campaign

    def auto_reply(
        self,
        group: Group,
        *,
        trigger: AutoReplyTrigger,
        template: str = "Takk for meldingen!",
        pattern: str | None = None,
        cooldown_minutes: int = 60,
        is_active: bool = True,
        created_at: datetime | None = None,
    ) -> AutomaticReply:
        reply = AutomaticReply(
            tenant_id=group.tenant_id,
            group_id=group.id,
            name=f"{trigger.value}:{pattern or '*'}",
            trigger_type=trigger,
            trigger_pattern=pattern,
            message_template=template,
            cooldown_minutes=cooldown_minutes,
            is_active=is_active,
            created_at=created_at or datetime.now(UTC),
        )
        self.session.add(reply)
        self.session.flush()
        return reply

    def opening_hours(
        self,
        group: Group,
        *,
        day_of_week: int,
        open_time: time | None = time(8, 0),
        close_time: time | None = time(16, 0),
        is_open: bool = True,
    ) -> OpeningHours:
        hours = OpeningHours(
            tenant_id=group.tenant_id,
            group_id=group.id,
            day_of_week=day_of_week,
            is_open=is_open,
            open_time=open_time,
            close_time=close_time,
        )
        self.session.add(hours)
        self.session.flush()
        return hours

    def opening_exception(
        self,
        group: Group,
        *,
        on: date,
        is_open: bool = False,
        open_time: time | None = None,
        close_time: time | None = None,
    ) -> OpeningHoursException:
        exception = OpeningHoursException(
            tenant_id=group.tenant_id,
            group_id=group.id,
            exception_date=on,
            is_open=is_open,
            open_time=open_time,
            close_time=close_time,
            description="Helligdag" if not is_open else None,
        )
        self.session.add(exception)
        self.session.flush()
        return exception

    def token(self, user: User, tenant: Tenant) -> str:
        token, _auth = create_api_session(session=self.session, user_id=user.id, tenant_id=tenant.id)
        self.session.flush()
        return token


@pytest.fixture()
def seed(db_session: Session) -> Seed:
    return Seed(session=db_session)

