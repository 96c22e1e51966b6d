"""Unit tests for bearer credential verification and tenant scoping."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt
import pytest

from gatehouse.core.config import settings
from gatehouse.core.exceptions import AuthenticationError, AuthorizationError, TenantUnresolvedError
from gatehouse.core.security import (
    CredentialKind,
    Role,
    TenantGuard,
    ensure_owned_by_tenant,
    ensure_tenant,
    issue_access_token,
    require_role,
)
from gatehouse.models import Operator


def _forge(secret: str, kid: str, **claims) -> str:
    now = datetime.now(timezone.utc)
    payload = {"iat": now, "exp": now + timedelta(minutes=5), **claims}
    return jwt.encode(payload, secret, algorithm="HS256", headers={"kid": kid})


@pytest.mark.asyncio
async def test_resident_token_resolves_context(test_session, community):
    """A resident token yields the resident's id, society and role."""
    token = issue_access_token(CredentialKind.RESIDENT, community.resident.id, community.society.id)

    ctx = await TenantGuard(test_session).authenticate(f"Bearer {token}")

    assert ctx.subject_id == community.resident.id
    assert ctx.tenant_id == community.society.id
    assert ctx.role is Role.RESIDENT


@pytest.mark.asyncio
async def test_each_kind_verifies_with_its_own_secret(test_session, community):
    guard = TenantGuard(test_session)
    device_id = uuid4()

    device = await guard.authenticate(
        f"Bearer {issue_access_token(CredentialKind.DEVICE, device_id, community.society.id)}"
    )
    operator = await guard.authenticate(
        f"Bearer {issue_access_token(CredentialKind.OPERATOR, community.operator.id, community.society.id)}"
    )

    assert device.role is Role.DEVICE and device.subject_id == device_id
    assert operator.role is Role.OPERATOR


@pytest.mark.asyncio
@pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer", "Bearer a b"])
async def test_missing_or_malformed_header_rejected(test_session, header):
    with pytest.raises(AuthenticationError):
        await TenantGuard(test_session).authenticate(header)


@pytest.mark.asyncio
async def test_expired_token_rejected(test_session, community):
    token = issue_access_token(
        CredentialKind.RESIDENT, community.resident.id, community.society.id, expires_in=-30
    )

    with pytest.raises(AuthenticationError) as exc_info:
        await TenantGuard(test_session).authenticate(f"Bearer {token}")

    assert "expired" in exc_info.value.problem_details["detail"].lower()


@pytest.mark.asyncio
async def test_operator_header_with_resident_signature_rejected(test_session, community):
    """A token signed with the resident secret cannot claim the operator context."""
    token = _forge(
        settings.resident_token_secret,
        kid="operator",
        sub=str(community.operator.id),
        kind="operator",
        tenant_id=str(community.society.id),
    )

    with pytest.raises(AuthenticationError):
        await TenantGuard(test_session).authenticate(f"Bearer {token}")


@pytest.mark.asyncio
async def test_kind_claim_must_match_header(test_session, community):
    token = _forge(
        settings.operator_token_secret,
        kid="operator",
        sub=str(community.resident.id),
        kind="resident",
        tenant_id=str(community.society.id),
    )

    with pytest.raises(AuthenticationError):
        await TenantGuard(test_session).authenticate(f"Bearer {token}")


@pytest.mark.asyncio
async def test_unknown_kind_rejected(test_session, community):
    token = _forge("whatever", kid="janitor", sub=str(community.resident.id), kind="janitor")

    with pytest.raises(AuthenticationError):
        await TenantGuard(test_session).authenticate(f"Bearer {token}")


@pytest.mark.asyncio
async def test_resident_token_without_tenant_rejected(test_session, community):
    token = issue_access_token(CredentialKind.RESIDENT, community.resident.id)

    with pytest.raises(AuthenticationError):
        await TenantGuard(test_session).authenticate(f"Bearer {token}")


@pytest.mark.asyncio
async def test_legacy_operator_tenant_resolved_from_profile(test_session, community):
    token = issue_access_token(CredentialKind.OPERATOR, community.operator.id)

    ctx = await TenantGuard(test_session).authenticate(f"Bearer {token}")

    assert ctx.tenant_id == community.society.id
    assert ctx.role is Role.OPERATOR


@pytest.mark.asyncio
async def test_unlinked_legacy_operator_is_tenant_unresolved(test_session, community):
    orphan = Operator(tenant_id=None, name="Night Guard", email="night@example.com")
    test_session.add(orphan)
    await test_session.commit()
    token = issue_access_token(CredentialKind.OPERATOR, orphan.id)

    with pytest.raises(TenantUnresolvedError) as exc_info:
        await TenantGuard(test_session).authenticate(f"Bearer {token}")

    assert exc_info.value.status_code == 401
    assert exc_info.value.code == "TENANT_UNRESOLVED"


async def test_require_role(community):
    require_role(community.operator_ctx, Role.OPERATOR, Role.DEVICE)

    with pytest.raises(AuthorizationError):
        require_role(community.resident_ctx, Role.OPERATOR)


async def test_ensure_tenant(community):
    ensure_tenant(community.operator_ctx, None)
    ensure_tenant(community.operator_ctx, community.society.id)

    with pytest.raises(AuthorizationError):
        ensure_tenant(community.operator_ctx, community.other_society.id)


async def test_ensure_owned_by_tenant(community):
    ensure_owned_by_tenant(community.operator_ctx, community.pool, "amenity")

    with pytest.raises(AuthorizationError):
        ensure_owned_by_tenant(community.operator_ctx, community.other_pool, "amenity")
