from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from sms_inbox.core.errors import NoRouteFound, NotFound
from sms_inbox.core.logging_config import log_structured
from sms_inbox.models.enums import RouteSource, RoutingRuleKind
from sms_inbox.models.messaging import Contact, Gateway, RoutingRule
from sms_inbox.services.ingest.normalize import normalize_identifier

logger = logging.getLogger("sms_inbox.routing")


@dataclass(frozen=True)
class RouteDecision:
    group_id: UUID
    source: RouteSource
    rule_id: UUID | None = None

    @property
    def is_fallback(self) -> bool:
        return self.source != RouteSource.rule


@dataclass(frozen=True)
class RouteSimulationResult:
    decision: RouteDecision | None
    matched_rule: dict | None
    explanation: str


def rule_matches(*, kind: RoutingRuleKind, pattern: str | None, body: str) -> bool:
    if kind == RoutingRuleKind.fallback:
        return True
    needle = (pattern or "").strip().casefold()
    if not needle:
        return False
    haystack = (body or "").casefold()
    if kind == RoutingRuleKind.keyword:
        return needle in haystack
    if kind == RoutingRuleKind.prefix:
        return haystack.lstrip().startswith(needle)
    raise ValueError(f"Unsupported routing rule kind: {kind!r}")


def load_active_rules(*, session: Session, tenant_id: UUID, gateway_id: UUID) -> list[RoutingRule]:
    return list(
        session.execute(
            select(RoutingRule)
            .where(
                RoutingRule.tenant_id == tenant_id,
                RoutingRule.is_active.is_(True),
                or_(RoutingRule.gateway_id.is_(None), RoutingRule.gateway_id == gateway_id),
            )
            .order_by(RoutingRule.priority.asc(), RoutingRule.created_at.asc(), RoutingRule.id.asc())
        )
        .scalars()
        .all()
    )


def _evaluate(
    *,
    session: Session,
    tenant_id: UUID,
    gateway: Gateway,
    body: str,
    contact: Contact | None,
) -> tuple[RouteDecision | None, RoutingRule | None, str]:
    rules = load_active_rules(session=session, tenant_id=tenant_id, gateway_id=gateway.id)
    for rule in rules:
        if rule_matches(kind=rule.kind, pattern=rule.pattern, body=body):
            decision = RouteDecision(group_id=rule.target_group_id, source=RouteSource.rule, rule_id=rule.id)
            return (
                decision,
                rule,
                f"Matched {rule.kind.value} rule '{rule.name}' (priority {rule.priority}).",
            )

    if contact is not None and contact.default_group_id is not None:
        return (
            RouteDecision(group_id=contact.default_group_id, source=RouteSource.contact_default),
            None,
            f"No rule matched; using the default group of contact {contact.phone_number}.",
        )

    if gateway.fallback_group_id is not None:
        return (
            RouteDecision(group_id=gateway.fallback_group_id, source=RouteSource.gateway_fallback),
            None,
            f"No rule matched; using the fallback group of gateway '{gateway.name}'.",
        )

    return None, None, f"No rule, contact default or gateway fallback for gateway '{gateway.name}'."


def resolve_route(
    *,
    session: Session,
    tenant_id: UUID,
    gateway: Gateway,
    body: str,
    contact: Contact | None,
) -> RouteDecision:
    decision, _rule, explanation = _evaluate(
        session=session, tenant_id=tenant_id, gateway=gateway, body=body, contact=contact
    )
    if decision is None:
        # The inbound message is dropped by the caller; operators need to see this.
        log_structured(
            logger,
            "routing.no_route",
            level=logging.WARNING,
            tenant_id=tenant_id,
            gateway_id=gateway.id,
            contact=contact.phone_number if contact is not None else None,
        )
        raise NoRouteFound(explanation)
    return decision


def simulate_route(
    *,
    session: Session,
    tenant_id: UUID,
    gateway_id: UUID,
    from_number: str | None,
    body: str,
) -> RouteSimulationResult:
    gateway = session.execute(
        select(Gateway).where(Gateway.id == gateway_id, Gateway.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if gateway is None:
        raise NotFound("Gateway not found")

    contact = None
    phone = normalize_identifier(from_number)
    if phone:
        contact = session.execute(
            select(Contact).where(Contact.tenant_id == tenant_id, Contact.phone_number == phone)
        ).scalar_one_or_none()

    decision, rule, explanation = _evaluate(
        session=session, tenant_id=tenant_id, gateway=gateway, body=body, contact=contact
    )
    matched_rule = None
    if rule is not None:
        matched_rule = {
            "id": rule.id,
            "name": rule.name,
            "kind": rule.kind.value,
            "priority": int(rule.priority),
        }
    return RouteSimulationResult(decision=decision, matched_rule=matched_rule, explanation=explanation)
