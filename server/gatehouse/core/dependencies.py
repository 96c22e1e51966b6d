"""FastAPI dependencies for database sessions, caller context and idempotency."""

from typing import AsyncGenerator, Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_db as _get_db
from .exceptions import InvalidInputError
from .security import AuthContext, Role, TenantGuard, require_role


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database dependency that provides async database sessions.

    Yields:
        AsyncSession: Database session
    """
    async for session in _get_db():
        yield session


DatabaseSession = Depends(get_db)


async def get_auth_context(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: AsyncSession = DatabaseSession,
) -> AuthContext:
    """Authenticate the caller once per request through the Tenant Guard."""
    return await TenantGuard(db).authenticate(authorization)


def _role_dependency(*roles: Role):
    async def dependency(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        require_role(ctx, *roles)
        return ctx

    return dependency


async def get_idempotency_key(
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")
) -> Optional[str]:
    """
    Extract and validate an optional idempotency key.

    Raises:
        InvalidInputError: If the key is empty or longer than 255 characters
    """
    if idempotency_key is None:
        return None

    if not 1 <= len(idempotency_key.strip()) <= 255:
        raise InvalidInputError("Idempotency key must be between 1 and 255 characters")

    return idempotency_key.strip()


AnyCaller = Depends(get_auth_context)
ResidentCaller = Depends(_role_dependency(Role.RESIDENT))
OperatorCaller = Depends(_role_dependency(Role.OPERATOR))
GateCaller = Depends(_role_dependency(Role.DEVICE, Role.OPERATOR))
IdempotencyKey = Depends(get_idempotency_key)
