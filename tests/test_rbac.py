import pytest
from fastapi import HTTPException

from apps.api.dependencies.auth import Role, User, resolve_user_from_token, role_required


@pytest.mark.asyncio
async def test_role_required_allows_any_listed_role():
    dependency = role_required(Role.ADMIN, Role.AGENT)
    user = User("alice", (Role.AGENT,))
    result = await dependency(user)  # type: ignore[arg-type]
    assert result.username == "alice"


@pytest.mark.asyncio
async def test_role_required_rejects_unauthorized_user():
    dependency = role_required(Role.ADMIN)
    user = User("bob", (Role.BRAND,))
    with pytest.raises(HTTPException) as exc:
        await dependency(user)  # type: ignore[arg-type]

    assert exc.value.status_code == 403
    assert exc.value.detail == "Insufficient permissions"


def test_tokens_resolve_to_users():
    admin = resolve_user_from_token("admin-token")
    assert admin.has_role(Role.ADMIN) and admin.has_role(Role.AGENT)
    assert resolve_user_from_token(None).roles == ()
    with pytest.raises(HTTPException) as exc:
        resolve_user_from_token("forged")
    assert exc.value.status_code == 401
