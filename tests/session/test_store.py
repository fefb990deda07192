import json

import pytest

from src.core.errors.exceptions import InfrastructureException, InstanceNotFoundException
from src.session.schemas import SessionData
from src.session.store import SessionStore, liveness_key, session_key
from tests.factories.sessions import USER_ID
from tests.factories.tokens import issue_access_token
from tests.fakes.clock import FrozenClock
from tests.fakes.redis import InMemoryRedis


@pytest.mark.asyncio
async def test_create_writes_record_and_liveness_marker(
    store: SessionStore, fake_redis: InMemoryRedis, clock: FrozenClock
) -> None:
    token = issue_access_token(USER_ID, now=clock(), expires_in=3600)

    session_id = await store.create(USER_ID, token)

    record = json.loads(fake_redis.raw(session_key(session_id)) or "{}")
    assert record == {
        "accessToken": token,
        "userId": USER_ID,
        "accessExp": int(clock()) + 3600,
    }
    assert await fake_redis.pttl(session_key(session_id)) == 3600 * 1000
    assert await fake_redis.pttl(liveness_key(session_id)) == 900 * 1000


@pytest.mark.asyncio
async def test_record_ttl_is_clamped_to_session_maximum(
    store: SessionStore, fake_redis: InMemoryRedis, clock: FrozenClock
) -> None:
    token = issue_access_token(USER_ID, now=clock(), expires_in=3 * 86_400)

    session_id = await store.create(USER_ID, token)

    assert await fake_redis.ttl(session_key(session_id)) == 86_400


@pytest.mark.asyncio
async def test_record_ttl_never_drops_below_one_second(
    store: SessionStore, fake_redis: InMemoryRedis, clock: FrozenClock
) -> None:
    token = issue_access_token(USER_ID, now=clock() - 7200, expires_in=3600)

    session_id = await store.create(USER_ID, token)

    assert await fake_redis.ttl(session_key(session_id)) == 1


@pytest.mark.asyncio
async def test_fetch_missing_record_raises_not_found(store: SessionStore) -> None:
    with pytest.raises(InstanceNotFoundException):
        await store.fetch("unknown")


@pytest.mark.asyncio
async def test_fetch_without_marker_reports_inactive(
    store: SessionStore, fake_redis: InMemoryRedis, clock: FrozenClock
) -> None:
    session_id = await store.create(USER_ID, issue_access_token(USER_ID, now=clock()))
    await fake_redis.delete(liveness_key(session_id))

    lookup = await store.fetch(session_id)

    assert lookup.active is False
    assert lookup.session.user_id == USER_ID


@pytest.mark.asyncio
async def test_marker_lapses_after_inactivity_timeout(
    store: SessionStore, clock: FrozenClock
) -> None:
    session_id = await store.create(USER_ID, issue_access_token(USER_ID, now=clock()))

    clock.advance(901)
    lookup = await store.fetch(session_id)

    assert lookup.active is False


@pytest.mark.asyncio
async def test_fetch_does_not_extend_marker_above_threshold(
    store: SessionStore, fake_redis: InMemoryRedis, clock: FrozenClock
) -> None:
    session_id = await store.create(USER_ID, issue_access_token(USER_ID, now=clock()))

    clock.advance(600)
    lookup = await store.fetch(session_id)

    assert lookup.active is True
    assert await fake_redis.pttl(liveness_key(session_id)) == 300 * 1000
    assert "expire" not in fake_redis.calls


@pytest.mark.asyncio
async def test_fetch_extends_marker_below_threshold(
    store: SessionStore, fake_redis: InMemoryRedis, clock: FrozenClock
) -> None:
    session_id = await store.create(USER_ID, issue_access_token(USER_ID, now=clock()))

    clock.advance(800)
    lookup = await store.fetch(session_id)

    assert lookup.active is True
    assert await fake_redis.pttl(liveness_key(session_id)) == 900 * 1000


@pytest.mark.asyncio
async def test_sliding_window_keeps_active_session_alive(
    store: SessionStore, clock: FrozenClock
) -> None:
    session_id = await store.create(
        USER_ID, issue_access_token(USER_ID, now=clock(), expires_in=86_400)
    )

    for _ in range(5):
        clock.advance(800)
        assert (await store.fetch(session_id)).active is True


@pytest.mark.asyncio
async def test_fetch_repairs_marker_without_expiry(
    store: SessionStore, fake_redis: InMemoryRedis, clock: FrozenClock
) -> None:
    session_id = await store.create(USER_ID, issue_access_token(USER_ID, now=clock()))
    await fake_redis.set(liveness_key(session_id), "1")

    await store.fetch(session_id)

    assert await fake_redis.pttl(liveness_key(session_id)) == 900 * 1000


@pytest.mark.asyncio
async def test_update_replaces_payload_and_recomputes_ttl(
    store: SessionStore, fake_redis: InMemoryRedis, clock: FrozenClock
) -> None:
    session_id = await store.create(
        USER_ID, issue_access_token(USER_ID, now=clock(), expires_in=30)
    )
    new_token = issue_access_token(USER_ID, now=clock(), expires_in=7200)

    await store.update(
        session_id,
        SessionData(access_token=new_token, user_id=USER_ID, access_exp=int(clock()) + 7200),
    )

    lookup = await store.fetch(session_id)
    assert lookup.session.access_token == new_token
    assert await fake_redis.ttl(session_key(session_id)) == 7200


@pytest.mark.asyncio
async def test_update_does_not_resurrect_deleted_session(
    store: SessionStore, fake_redis: InMemoryRedis, clock: FrozenClock
) -> None:
    session_id = await store.create(USER_ID, issue_access_token(USER_ID, now=clock()))
    await store.delete(session_id)

    with pytest.raises(InstanceNotFoundException):
        await store.update(
            session_id,
            SessionData(access_token="t", user_id=USER_ID, access_exp=int(clock()) + 60),
        )

    assert fake_redis.raw(session_key(session_id)) is None


@pytest.mark.asyncio
async def test_delete_removes_record_and_marker(
    store: SessionStore, fake_redis: InMemoryRedis, clock: FrozenClock
) -> None:
    session_id = await store.create(USER_ID, issue_access_token(USER_ID, now=clock()))

    assert await store.delete(session_id) is True
    assert fake_redis.keys() == []
    assert await store.delete(session_id) is False


@pytest.mark.asyncio
async def test_redis_failures_are_wrapped(
    store: SessionStore, fake_redis: InMemoryRedis
) -> None:
    fake_redis.fail_on.add("get")

    with pytest.raises(InfrastructureException) as exc_info:
        await store.fetch("3f2a9c1e-0000-0000-0000-000000000000")

    assert exc_info.value.additional_info == {
        "operation": "fetch",
        "session": "3f2a9c1e***",
        "error": "ConnectionError",
    }


@pytest.mark.asyncio
async def test_unreadable_record_is_infrastructure_error(
    store: SessionStore, fake_redis: InMemoryRedis
) -> None:
    await fake_redis.set(session_key("broken"), "not-json", ex=60)

    with pytest.raises(InfrastructureException):
        await store.fetch("broken")


@pytest.mark.asyncio
async def test_session_data_repr_hides_token(clock: FrozenClock) -> None:
    token = issue_access_token(USER_ID, now=clock())
    data = SessionData(access_token=token, user_id=USER_ID, access_exp=1)

    assert token not in repr(data)
    assert token not in str(data)
