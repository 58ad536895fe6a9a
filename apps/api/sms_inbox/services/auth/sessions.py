from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from sms_inbox.core.config import get_settings
from sms_inbox.core.security import hash_session_token, new_random_token
from sms_inbox.models.auth import AuthSession
from sms_inbox.models.identity import Membership
from sms_inbox.services.audit import log_event


def create_api_session(
    *,
    session: Session,
    user_id: UUID,
    tenant_id: UUID,
) -> tuple[str, AuthSession]:
    """Issue a bearer token for a tenant member; only the HMAC of the token is stored."""
    settings = get_settings()

    membership = (
        session.execute(
            select(Membership).where(
                Membership.tenant_id == tenant_id,
                Membership.user_id == user_id,
            )
        )
        .scalars()
        .first()
    )
    if membership is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a member of this tenant")

    token = new_random_token()
    now = datetime.now(UTC)
    auth_session = AuthSession(
        user_id=user_id,
        active_tenant_id=tenant_id,
        token_hash=hash_session_token(token),
        created_at=now,
        expires_at=now + timedelta(seconds=settings.SESSION_TTL_SECONDS),
    )
    session.add(auth_session)
    session.flush()

    log_event(
        session=session,
        tenant_id=tenant_id,
        actor_user_id=user_id,
        event_type="auth.session_created",
        entity_type="auth_session",
        entity_id=auth_session.id,
        event_data={},
    )
    return token, auth_session

