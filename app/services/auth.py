"""Bearer token handling.

Tokens are issued by the identity provider and signed with the shared
JWT_SECRET_KEY; ``sub`` carries the user id. ``issue_token`` exists for
local tooling and tests, production clients never get tokens from us.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID
from jose import JWTError, jwt

from app.core.config import settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_TOKEN_LIFETIME = timedelta(days=7)


def issue_token(user_id: UUID, lifetime: Optional[timedelta] = None, **claims) -> str:
    """Sign a token for ``user_id`` the way the identity provider does."""
    payload = {"sub": str(user_id), "exp": datetime.utcnow() + (lifetime or DEFAULT_TOKEN_LIFETIME)}
    payload.update(claims)
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=ALGORITHM)


def token_subject(token: str) -> Optional[UUID]:
    """User id carried by a valid token, or None if the token can't be trusted."""
    if not settings.JWT_SECRET_KEY:
        logger.warning("JWT_SECRET_KEY not set; rejecting bearer token")
        return None
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info("Rejected bearer token: %s", e)
        return None

    subject = payload.get("sub")
    try:
        return UUID(subject) if subject else None
    except (TypeError, ValueError):
        logger.info("Bearer token has a malformed subject: %r", subject)
        return None
