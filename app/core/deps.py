"""FastAPI dependencies for authentication and authorization."""

from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.errors import Forbidden, Unauthenticated
from app.models.user import User, Role
from app.services.auth import token_subject

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate the current user from the bearer token.

    The identity provider owns sessions; we only trust ``sub`` from a token
    signed with our shared secret.
    """
    if not credentials:
        raise Unauthenticated()

    user_id = token_subject(credentials.credentials)
    if not user_id:
        raise Unauthenticated("Could not validate credentials")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise Unauthenticated("User not found")

    if not user.is_active:
        raise Forbidden("User account is disabled")

    return user


def require_role(*roles: Role):
    """Dependency factory: the current user must hold one of ``roles``."""

    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise Forbidden(f"This action requires one of: {', '.join(r.value for r in roles)}")
        return current_user

    return checker


require_client = require_role(Role.CLIENT)
require_operator = require_role(Role.BARBER, Role.OWNER)
require_owner = require_role(Role.OWNER)
