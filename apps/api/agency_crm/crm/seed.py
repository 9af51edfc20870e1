from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from agency_crm.core.config import Settings, get_settings
from agency_crm.core.security import hash_password
from agency_crm.crm.enums import UserRole
from agency_crm.crm.models import User

logger = logging.getLogger("app.crm.seed")


def ensure_default_owner(session: Session, settings: Settings | None = None) -> User:
    """Return the default owner account, creating it when absent.

    Safe to call repeatedly; only flushes, the caller owns the transaction.
    """
    resolved = settings or get_settings()
    email = resolved.default_owner_email.strip().lower()
    user = session.scalar(select(User).where(func.lower(User.email) == email))
    if user is not None:
        return user

    user = User(
        email=email,
        password_hash=hash_password(resolved.default_owner_password),
        first_name=resolved.default_owner_first_name,
        last_name=resolved.default_owner_last_name,
        role=UserRole.ADMIN,
        is_active=True,
    )
    session.add(user)
    session.flush()
    logger.info("crm.default_owner.provisioned", extra={"actor_user_id": str(user.id)})
    return user
