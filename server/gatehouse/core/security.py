"""Tenant Guard: bearer credential verification and tenant scoping.

Each credential kind has its own signing secret. The kind is written into
the JWT header (``kid``) at issuance, so verification picks exactly one
secret instead of trying them in turn. The result is an immutable
``AuthContext`` that is built once per request and passed explicitly to
every service call.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID

import jwt
from jwt import PyJWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.society import Operator
from .config import settings
from .exceptions import AuthenticationError, AuthorizationError, TenantUnresolvedError
from .observability import get_logger

logger = get_logger(__name__)


class CredentialKind(str, Enum):
    """Signing context of a bearer credential; doubles as the caller's role."""
    RESIDENT = "resident"
    OPERATOR = "operator"
    DEVICE = "device"


Role = CredentialKind


def _secret_for(kind: CredentialKind) -> str:
    return {
        CredentialKind.RESIDENT: settings.resident_token_secret,
        CredentialKind.OPERATOR: settings.operator_token_secret,
        CredentialKind.DEVICE: settings.device_token_secret,
    }[kind]


@dataclass(frozen=True)
class AuthContext:
    """Fully resolved caller identity for one request."""

    subject_id: UUID
    tenant_id: UUID
    role: Role

    @property
    def is_operator(self) -> bool:
        return self.role is Role.OPERATOR

    def log_fields(self) -> dict[str, str]:
        return {
            "subject_id": str(self.subject_id),
            "tenant_id": str(self.tenant_id),
            "role": self.role.value,
        }


def parse_uuid(value: Any) -> Optional[UUID]:
    """Parse a UUID from a claim value, returning None when malformed."""
    if isinstance(value, UUID):
        return value
    if not isinstance(value, str):
        return None
    try:
        return UUID(value)
    except ValueError:
        return None


def issue_access_token(
    kind: CredentialKind,
    subject_id: UUID,
    tenant_id: Optional[UUID] = None,
    expires_in: Optional[int] = None,
) -> str:
    """
    Issue a bearer token in the signing context of ``kind``.

    Args:
        kind: Credential kind; selects the secret and is embedded in the header
        subject_id: Resident, operator or device id
        tenant_id: Society scope; may be omitted only for legacy operators
        expires_in: Lifetime in seconds (defaults to ACCESS_TOKEN_TTL_SECONDS)

    Returns:
        Encoded JWT
    """
    now = datetime.now(timezone.utc)
    ttl = settings.access_token_ttl_seconds if expires_in is None else expires_in
    payload: dict[str, Any] = {
        "sub": str(subject_id),
        "kind": kind.value,
        "iat": now,
        "exp": now + timedelta(seconds=ttl),
    }
    if tenant_id is not None:
        payload["tenant_id"] = str(tenant_id)

    return jwt.encode(
        payload,
        _secret_for(kind),
        algorithm=settings.token_algorithm,
        headers={"kid": kind.value},
    )


def extract_bearer_token(authorization: Optional[str]) -> str:
    """Return the token part of an ``Authorization: Bearer`` header."""
    if not authorization:
        raise AuthenticationError("Authorization header missing")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Invalid authorization header format")

    return parts[1]


class TenantGuard:
    """Verifies bearer credentials and resolves the caller's tenant."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def authenticate(self, authorization: Optional[str]) -> AuthContext:
        """
        Verify a bearer credential and build the caller's context.

        Raises:
            AuthenticationError: Missing, malformed, expired or invalid credential
            TenantUnresolvedError: Operator credential with no linked society
        """
        token = extract_bearer_token(authorization)
        kind = self._credential_kind(token)
        claims = self._verify(token, kind)

        subject_id = parse_uuid(claims.get("sub"))
        if subject_id is None:
            raise AuthenticationError("Invalid token payload")

        tenant_id = parse_uuid(claims.get("tenant_id"))
        if tenant_id is None:
            if claims.get("tenant_id") is not None or kind is not CredentialKind.OPERATOR:
                raise AuthenticationError("Token is missing a valid tenant scope")
            tenant_id = await self._resolve_operator_tenant(subject_id)

        return AuthContext(subject_id=subject_id, tenant_id=tenant_id, role=kind)

    @staticmethod
    def _credential_kind(token: str) -> CredentialKind:
        try:
            header = jwt.get_unverified_header(token)
        except PyJWTError as e:
            raise AuthenticationError(f"Token validation failed: {e}") from e

        try:
            return CredentialKind(header.get("kid"))
        except ValueError as e:
            raise AuthenticationError("Unknown credential kind") from e

    @staticmethod
    def _verify(token: str, kind: CredentialKind) -> dict[str, Any]:
        try:
            claims = jwt.decode(
                token,
                _secret_for(kind),
                algorithms=[settings.token_algorithm],
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Token has expired") from e
        except PyJWTError as e:
            raise AuthenticationError(f"Token validation failed: {e}") from e

        if claims.get("kind") != kind.value:
            raise AuthenticationError("Credential kind mismatch")

        return claims

    async def _resolve_operator_tenant(self, operator_id: UUID) -> UUID:
        """Legacy operator tokens carry no tenant; look it up once from the profile."""
        stmt = select(Operator.tenant_id).where(Operator.id == operator_id)
        result = await self.db.execute(stmt)
        tenant_id = result.scalar_one_or_none()

        if tenant_id is None:
            logger.warning("Operator has no linked society", operator_id=str(operator_id))
            raise TenantUnresolvedError(str(operator_id))

        logger.info(
            "Resolved operator tenant from profile",
            operator_id=str(operator_id),
            tenant_id=str(tenant_id),
        )
        return tenant_id


def require_role(ctx: AuthContext, *roles: Role) -> None:
    """Raise Forbidden unless the caller has one of ``roles``."""
    if ctx.role not in roles:
        raise AuthorizationError(
            detail=f"Role '{ctx.role.value}' may not perform this operation",
            required_roles=[role.value for role in roles],
        )


def ensure_tenant(ctx: AuthContext, tenant_id: Optional[UUID]) -> None:
    """
    Cross-check a tenant id taken from the request against the caller's scope.

    A missing value is accepted (the caller's own tenant is implied).
    """
    if tenant_id is not None and tenant_id != ctx.tenant_id:
        logger.warning(
            "Cross-tenant request rejected",
            requested_tenant_id=str(tenant_id),
            **ctx.log_fields(),
        )
        raise AuthorizationError(detail="Requested society is outside the caller's scope")


def ensure_owned_by_tenant(ctx: AuthContext, entity: Any, resource_type: str) -> None:
    """Raise Forbidden when a loaded entity belongs to another tenant."""
    if entity.tenant_id != ctx.tenant_id:
        logger.warning(
            "Cross-tenant entity access rejected",
            resource_type=resource_type,
            resource_id=str(entity.id),
            **ctx.log_fields(),
        )
        raise AuthorizationError(detail=f"The {resource_type} belongs to another society")
