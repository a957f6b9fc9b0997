"""
ShopLens API Dependencies

Dependency injection for DB sessions, auth, and the acting account.
"""

import uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import User
from db.session import AsyncSessionLocal

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)

# Dev user_id must match seed_test_data.py
DEV_USER_ID = "00000000-0000-0000-0000-000000000001"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session; rolled back if the request fails."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {
            "sub": DEV_USER_ID,
            "email": "dev@shoplens.app",
            "role": "client",
        }

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


async def get_current_account(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
) -> User:
    """Resolve the token subject to its users row."""
    try:
        user_id = uuid.UUID(str(user.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")

    account = await db.get(User, user_id)
    if account is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown account")
    return account


async def require_admin(account: User = Depends(get_current_account)) -> User:
    if not account.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return account


async def require_job_token(x_job_token: str | None = Header(default=None)) -> None:
    """Authenticate the job processor callback."""
    from core.security import verify_job_token

    if not verify_job_token(x_job_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid job token")
