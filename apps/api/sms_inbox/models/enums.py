from __future__ import annotations

import enum


class MembershipRole(enum.StrEnum):
    tenant_admin = "tenant_admin"
    member = "member"


class MessageDirection(enum.StrEnum):
    inbound = "inbound"
    outbound = "outbound"


class MessageStatus(enum.StrEnum):
    received = "received"
    queued = "queued"
    sent = "sent"
    delivered = "delivered"
    failed = "failed"
    undelivered = "undelivered"


class RoutingRuleKind(enum.StrEnum):
    keyword = "keyword"
    prefix = "prefix"
    fallback = "fallback"


class RouteSource(enum.StrEnum):
    rule = "rule"
    contact_default = "contact_default"
    gateway_fallback = "gateway_fallback"


class CampaignStatus(enum.StrEnum):
    draft = "draft"
    pending = "pending"
    sending = "sending"
    completed = "completed"
    failed = "failed"


class RecipientStatus(enum.StrEnum):
    pending = "pending"
    sent = "sent"
    replied = "replied"
    failed = "failed"


class AutoReplyTrigger(enum.StrEnum):
    keyword = "keyword"
    first_message = "first_message"
    outside_hours = "outside_hours"
