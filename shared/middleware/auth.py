"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
JWT is validated here; the core only ever sees the resulting Actor.
"""

import uuid
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import User, UserRole
from shared.utils.actors import Actor
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


class TokenData:
    """Claims the platform relies on. A token missing any of them is invalid."""

    def __init__(self, payload: dict):
        self.user_id = uuid.UUID(payload["sub"])
        self.role = UserRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """Decode the bearer token and reject it if its jti is on the Redis deny list."""
    if not credentials:
        raise _unauthorized("Authentication required")

    try:
        token_data = TokenData(verify_access_token(credentials.credentials))
    except (JWTError, KeyError, ValueError):
        raise _unauthorized("Invalid or expired token")

    if await RedisCache(redis).is_token_revoked(token_data.jti):
        raise _unauthorized("Token has been revoked")
    return token_data


async def get_current_actor(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """
    Resolve the token's subject to an Actor.
    The role stored on the account wins over the role claimed in the token.
    """
    user = await db.get(User, token_data.user_id)
    if user is None:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    return Actor.from_user(user)


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(self, actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in self.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required role: {[r.value for r in self.roles]}",
            )
        return actor


require_provider = RoleRequired(UserRole.PROVIDER)
require_provider_or_admin = RoleRequired(UserRole.PROVIDER, UserRole.ADMIN)
