import httpx
import pytest

from src.internal.dependencies import get_internal_user_service
from src.internal.services import InternalUserService
from src.session.store import SessionStore
from src.user.models import User
from tests.factories.sessions import SESSION_ID, USER_ID
from tests.factories.tokens import ROLE_CLAIM, issue_access_token, issue_machine_token
from tests.fakes.jwks import FakeJWKSClient
from tests.helpers.identity import FakeIdentityProvider
from tests.helpers.overrides import DependencyOverrides

PLAN_BODY = {"plan_id": "pro", "updated_at": "2025-08-20T12:00:00Z"}


@pytest.fixture
def machine_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_machine_token()}"}


@pytest.fixture
def service_override(
    dependency_overrides: DependencyOverrides, internal_service: InternalUserService
) -> InternalUserService:
    dependency_overrides.provide(get_internal_user_service, internal_service)
    return internal_service


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "Basic dXNlcjpwYXNz"},
        {"Authorization": "Bearer "},
        {"Authorization": f"Bearer {issue_access_token(USER_ID)}"},
    ],
)
async def test_internal_calls_require_machine_credential(
    async_client_with_fakes: httpx.AsyncClient,
    service_override: InternalUserService,
    headers: dict[str, str],
) -> None:
    response = await async_client_with_fakes.get(
        f"/internal/v1/sessions/{SESSION_ID}", headers=headers
    )

    assert response.status_code == 401
    assert response.json()["error"] == "Unauthorized"


@pytest.mark.asyncio
async def test_unreachable_jwks_is_bad_gateway(
    async_client_with_fakes: httpx.AsyncClient,
    service_override: InternalUserService,
    jwks_client: FakeJWKSClient,
    machine_headers: dict[str, str],
) -> None:
    jwks_client.unreachable = True

    response = await async_client_with_fakes.get(
        f"/internal/v1/sessions/{SESSION_ID}", headers=machine_headers
    )

    assert response.status_code == 502


@pytest.mark.asyncio
async def test_session_details(
    async_client_with_fakes: httpx.AsyncClient,
    service_override: InternalUserService,
    store: SessionStore,
    machine_headers: dict[str, str],
) -> None:
    token = issue_access_token(USER_ID, permissions=["read:budget"], **{ROLE_CLAIM: "rol_pro"})
    await store.create(USER_ID, token, session_id=SESSION_ID)

    response = await async_client_with_fakes.get(
        f"/internal/v1/sessions/{SESSION_ID}", headers=machine_headers
    )

    assert response.status_code == 200
    assert response.json() == {
        "user_id": USER_ID,
        "role": "rol_pro",
        "permissions": ["read:budget"],
    }
    assert token not in response.text
    assert response.headers["cache-control"] == "no-store"


@pytest.mark.asyncio
async def test_session_details_of_unknown_session(
    async_client_with_fakes: httpx.AsyncClient,
    service_override: InternalUserService,
    machine_headers: dict[str, str],
) -> None:
    response = await async_client_with_fakes.get(
        f"/internal/v1/sessions/{SESSION_ID}", headers=machine_headers
    )

    assert response.status_code == 404
    assert response.json() == {"error": "Instance not found", "message": "Session not found"}


@pytest.mark.asyncio
async def test_user_settings(
    async_client_with_fakes: httpx.AsyncClient,
    service_override: InternalUserService,
    machine_headers: dict[str, str],
    user: User,
) -> None:
    response = await async_client_with_fakes.get(
        f"/internal/v1/users/{USER_ID}/settings", headers=machine_headers
    )

    assert response.status_code == 200
    assert response.json() == {"settings": {}}


@pytest.mark.asyncio
async def test_user_settings_of_unknown_user(
    async_client_with_fakes: httpx.AsyncClient,
    service_override: InternalUserService,
    machine_headers: dict[str, str],
) -> None:
    response = await async_client_with_fakes.get(
        "/internal/v1/users/auth0%7Cnobody/settings", headers=machine_headers
    )

    assert response.status_code == 404
    assert response.json() == {"error": "Instance not found", "message": "User not found"}


@pytest.mark.asyncio
async def test_plan_update_syncs_role_once(
    async_client_with_fakes: httpx.AsyncClient,
    service_override: InternalUserService,
    fake_idp: FakeIdentityProvider,
    machine_headers: dict[str, str],
    user: User,
) -> None:
    fake_idp.roles[USER_ID] = ["rol_free"]
    url = f"/internal/v1/users/{USER_ID}/plan"

    first = await async_client_with_fakes.put(url, json=PLAN_BODY, headers=machine_headers)
    second = await async_client_with_fakes.put(url, json=PLAN_BODY, headers=machine_headers)

    assert first.status_code == 200
    assert first.json() == {"success": True, "message": "Role updated"}
    assert second.json() == {"success": True, "message": "Role already up to date"}
    assert user.plan_id == "pro"
    assert fake_idp.roles[USER_ID] == ["rol_pro"]


@pytest.mark.asyncio
async def test_plan_update_with_unmapped_plan(
    async_client_with_fakes: httpx.AsyncClient,
    service_override: InternalUserService,
    machine_headers: dict[str, str],
    user: User,
) -> None:
    response = await async_client_with_fakes.put(
        f"/internal/v1/users/{USER_ID}/plan",
        json={**PLAN_BODY, "plan_id": "enterprise"},
        headers=machine_headers,
    )

    assert response.status_code == 500
    assert response.json() == {
        "error": "Configuration error",
        "message": "Service misconfigured",
    }


@pytest.mark.asyncio
async def test_plan_update_rejects_unknown_fields(
    async_client_with_fakes: httpx.AsyncClient,
    service_override: InternalUserService,
    machine_headers: dict[str, str],
    user: User,
) -> None:
    response = await async_client_with_fakes.put(
        f"/internal/v1/users/{USER_ID}/plan",
        json={**PLAN_BODY, "role_id": "rol_admin"},
        headers=machine_headers,
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_partial_role_replacement_is_bad_gateway(
    async_client_with_fakes: httpx.AsyncClient,
    service_override: InternalUserService,
    fake_idp: FakeIdentityProvider,
    machine_headers: dict[str, str],
    user: User,
) -> None:
    fake_idp.roles[USER_ID] = ["rol_free"]
    fake_idp.fail_role_call("POST", 503)

    response = await async_client_with_fakes.put(
        f"/internal/v1/users/{USER_ID}/plan", json=PLAN_BODY, headers=machine_headers
    )

    assert response.status_code == 502
    assert response.json()["error"] == "Upstream error"
    assert user.plan_id == "pro"
