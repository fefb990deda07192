import pytest

from src.core.errors.exceptions import InfrastructureException
from src.main.config import Config
from src.session.gate import SessionValidationGate
from src.session.ledger import RefreshTokenLedger
from src.session.schemas import (
    ExpiredSession,
    MissingSession,
    SessionStatus,
    ValidSession,
)
from src.session.store import SessionStore
from src.user.models import User
from tests.factories.sessions import SESSION_ID, USER_ID, open_session
from tests.factories.tokens import issue_access_token
from tests.fakes.clock import FrozenClock
from tests.fakes.db import InMemoryDatabase, database_error
from tests.fakes.redis import InMemoryRedis
from tests.helpers.identity import FakeIdentityProvider, token_response


@pytest.mark.asyncio
@pytest.mark.parametrize("session_id", [None, ""])
async def test_missing_cookie_is_not_found(
    gate: SessionValidationGate, fake_redis: InMemoryRedis, session_id: str | None
) -> None:
    result = await gate.validate(session_id)

    assert isinstance(result, MissingSession)
    assert result.status is SessionStatus.NOT_FOUND
    assert fake_redis.calls == []


@pytest.mark.asyncio
async def test_unknown_session_is_not_found(gate: SessionValidationGate) -> None:
    result = await gate.validate("no-such-session")

    assert isinstance(result, MissingSession)
    assert result.session_id == "no-such-session"


@pytest.mark.asyncio
async def test_active_session_is_valid(
    gate: SessionValidationGate,
    store: SessionStore,
    ledger: RefreshTokenLedger,
    clock: FrozenClock,
    fake_idp: FakeIdentityProvider,
    user: User,
) -> None:
    session = await open_session(store, ledger, clock, expires_in=3600)

    result = await gate.validate(SESSION_ID)

    assert isinstance(result, ValidSession)
    assert result.status is SessionStatus.VALID
    assert result.access_token == session.access_token
    assert result.refreshed is False
    assert result.session.user_id == USER_ID
    assert fake_idp.requests == []


@pytest.mark.asyncio
async def test_session_near_expiry_is_refreshed(
    gate: SessionValidationGate,
    store: SessionStore,
    ledger: RefreshTokenLedger,
    database: InMemoryDatabase,
    clock: FrozenClock,
    fake_idp: FakeIdentityProvider,
    user: User,
) -> None:
    await open_session(store, ledger, clock, expires_in=30)
    new_access_token = issue_access_token(USER_ID, expires_in=86_400)
    fake_idp.on_token(
        "refresh_token",
        token_response(access_token=new_access_token, refresh_token="refresh-new"),
    )

    result = await gate.validate(SESSION_ID)

    assert isinstance(result, ValidSession)
    assert result.refreshed is True
    assert result.access_token == new_access_token
    assert len(database.active_tokens(SESSION_ID)) == 1


@pytest.mark.asyncio
async def test_failed_refresh_still_serves_request(
    gate: SessionValidationGate,
    store: SessionStore,
    ledger: RefreshTokenLedger,
    clock: FrozenClock,
    fake_idp: FakeIdentityProvider,
    user: User,
) -> None:
    session = await open_session(store, ledger, clock, expires_in=30)
    fake_idp.on_token("refresh_token", token_response())

    result = await gate.validate(SESSION_ID)

    assert isinstance(result, ValidSession)
    assert result.refreshed is False
    assert result.access_token == session.access_token


@pytest.mark.asyncio
async def test_inactive_session_is_expired_and_cleaned_up(
    gate: SessionValidationGate,
    store: SessionStore,
    ledger: RefreshTokenLedger,
    database: InMemoryDatabase,
    clock: FrozenClock,
    fake_redis: InMemoryRedis,
    settings: Config,
    user: User,
) -> None:
    await open_session(store, ledger, clock, expires_in=3600)
    clock.advance(settings.session.INACTIVITY_TIMEOUT + 1)

    result = await gate.validate(SESSION_ID)

    assert isinstance(result, ExpiredSession)
    assert result.status is SessionStatus.EXPIRED
    assert result.cleanup.complete
    assert fake_redis.keys() == []
    assert database.active_tokens(SESSION_ID) == []
    assert len(database.tokens_for(SESSION_ID)) == 1

    follow_up = await gate.validate(SESSION_ID)
    assert isinstance(follow_up, MissingSession)


@pytest.mark.asyncio
async def test_activity_keeps_session_alive(
    gate: SessionValidationGate,
    store: SessionStore,
    ledger: RefreshTokenLedger,
    clock: FrozenClock,
    settings: Config,
    user: User,
) -> None:
    await open_session(store, ledger, clock, expires_in=3600)

    for _ in range(3):
        clock.advance(settings.session.INACTIVITY_TIMEOUT - 60)
        result = await gate.validate(SESSION_ID)
        assert isinstance(result, ValidSession)


@pytest.mark.asyncio
async def test_cleanup_reports_ledger_failure(
    gate: SessionValidationGate,
    store: SessionStore,
    ledger: RefreshTokenLedger,
    database: InMemoryDatabase,
    clock: FrozenClock,
    fake_redis: InMemoryRedis,
    settings: Config,
    user: User,
) -> None:
    await open_session(store, ledger, clock, expires_in=3600)
    clock.advance(settings.session.INACTIVITY_TIMEOUT + 1)
    database.fail_with = database_error()

    result = await gate.validate(SESSION_ID)

    assert isinstance(result, ExpiredSession)
    assert result.cleanup.tokens_revoked is False
    assert result.cleanup.session_deleted is True
    assert result.cleanup.complete is False
    assert fake_redis.keys() == []


@pytest.mark.asyncio
async def test_cleanup_reports_store_failure(
    gate: SessionValidationGate,
    store: SessionStore,
    ledger: RefreshTokenLedger,
    database: InMemoryDatabase,
    clock: FrozenClock,
    fake_redis: InMemoryRedis,
    settings: Config,
    user: User,
) -> None:
    await open_session(store, ledger, clock, expires_in=3600)
    clock.advance(settings.session.INACTIVITY_TIMEOUT + 1)
    fake_redis.fail_on.add("delete")

    result = await gate.validate(SESSION_ID)

    assert isinstance(result, ExpiredSession)
    assert result.cleanup.tokens_revoked is True
    assert result.cleanup.session_deleted is False
    assert database.active_tokens(SESSION_ID) == []


@pytest.mark.asyncio
async def test_store_outage_propagates(
    gate: SessionValidationGate, fake_redis: InMemoryRedis
) -> None:
    fake_redis.fail_on.add("get")

    with pytest.raises(InfrastructureException):
        await gate.validate(SESSION_ID)
