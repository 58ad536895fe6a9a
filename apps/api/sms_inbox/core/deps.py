from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import UTC, datetime

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from sms_inbox.core.config import get_settings
from sms_inbox.core.security import hash_session_token, parse_bearer_token, verify_webhook_signature
from sms_inbox.db.session import get_session
from sms_inbox.models.auth import AuthSession
from sms_inbox.models.identity import Membership, Tenant, User


@dataclass(frozen=True)
class TenantContext:
    tenant: Tenant
    membership: Membership
    user: User
    session: AuthSession

    @property
    def tenant_id(self):
        return self.tenant.id


def require_session(
    request: Request,
    session: Session = Depends(get_session),
) -> tuple[AuthSession, User]:
    raw = parse_bearer_token(request.headers.get("authorization"))
    if not raw:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    token_hash = hash_session_token(raw)
    now = datetime.now(UTC)

    auth_session = (
        session.execute(
            select(AuthSession).where(
                AuthSession.token_hash == token_hash,
                AuthSession.revoked_at.is_(None),
                AuthSession.expires_at > now,
            )
        )
        .scalars()
        .first()
    )
    if auth_session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")

    user = session.get(User, auth_session.user_id)
    if user is None or user.is_disabled:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User disabled or missing")

    return auth_session, user


def require_tenant(
    auth: tuple[AuthSession, User] = Depends(require_session),
    session: Session = Depends(get_session),
) -> TenantContext:
    auth_session, user = auth

    tenant = session.get(Tenant, auth_session.active_tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant missing")

    membership = (
        session.execute(
            select(Membership).where(
                Membership.tenant_id == tenant.id,
                Membership.user_id == user.id,
            )
        )
        .scalars()
        .first()
    )
    if membership is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a member of this tenant")

    return TenantContext(tenant=tenant, membership=membership, user=user, session=auth_session)


async def require_webhook_signature(request: Request) -> None:
    settings = get_settings()
    if not settings.WEBHOOK_SECRET:
        return
    raw_body = await request.body()
    signature = request.headers.get(settings.WEBHOOK_SIGNATURE_HEADER)
    if not verify_webhook_signature(secret=settings.WEBHOOK_SECRET, raw_body=raw_body, signature=signature):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")


def require_cron_token(request: Request) -> None:
    settings = get_settings()
    if not settings.CRON_SECRET:
        return
    token = request.headers.get(settings.CRON_TOKEN_HEADER) or ""
    if not hmac.compare_digest(token.encode("utf-8"), settings.CRON_SECRET.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron token")
