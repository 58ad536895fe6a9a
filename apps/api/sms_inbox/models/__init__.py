from __future__ import annotations

from sms_inbox.models.audit import AuditEvent  # noqa: F401
from sms_inbox.models.auth import AuthSession  # noqa: F401
from sms_inbox.models.automation import (  # noqa: F401
    AutomaticReply,
    AutoReplyLog,
    OpeningHours,
    OpeningHoursException,
)
from sms_inbox.models.base import Base as Base  # noqa: F401
from sms_inbox.models.campaigns import BulkCampaign, BulkRecipient  # noqa: F401
from sms_inbox.models.enums import (  # noqa: F401
    AutoReplyTrigger,
    CampaignStatus,
    MembershipRole,
    MessageDirection,
    MessageStatus,
    RecipientStatus,
    RouteSource,
    RoutingRuleKind,
)
from sms_inbox.models.identity import Group, GroupMembership, Membership, Tenant, User  # noqa: F401
from sms_inbox.models.messaging import (  # noqa: F401
    Contact,
    DeliveryStatusEvent,
    EscalationEvent,
    Gateway,
    Message,
    RoutingRule,
    Thread,
)
