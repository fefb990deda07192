from collections.abc import AsyncGenerator, Generator
import os

os.environ.setdefault("TESTING", "true")

from fastapi import FastAPI  # noqa: E402
import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

import models  # noqa: E402, F401
from src.core.database.base import Base  # noqa: E402

from src.core.database.session import get_session, get_session_factory  # noqa: E402
from src.core.redis.dependencies import get_redis_client  # noqa: E402
from src.identity.client import IdentityProviderClient  # noqa: E402
from src.identity.dependencies import get_idp_http_client, get_jwks_client  # noqa: E402
from src.identity.machine_token import MachineTokenProvider  # noqa: E402
from src.identity.verifier import TokenVerifier  # noqa: E402
from src.internal.services import InternalUserService  # noqa: E402
from src.main.config import Config, get_settings  # noqa: E402
from src.main.web import get_application  # noqa: E402
from src.session.dependencies import (  # noqa: E402
    get_encryption_key,
    get_refresh_token_ledger,
)
from src.session.gate import SessionValidationGate  # noqa: E402
from src.session.ledger import RefreshTokenLedger  # noqa: E402
from src.session.orchestrator import TokenRefreshOrchestrator  # noqa: E402
from src.session.store import SessionStore  # noqa: E402
from src.user.models import User  # noqa: E402
from src.user.auth.usecases.login import LoginUseCase  # noqa: E402
from src.user.auth.usecases.logout import LogoutUseCase  # noqa: E402
from src.user.synchronizer import PlanRoleSynchronizer  # noqa: E402
from tests.factories.sessions import USER_ID  # noqa: E402
from tests.fakes.clock import FrozenClock  # noqa: E402
from tests.fakes.db import (  # noqa: E402
    FakeAsyncSession,
    FakeSessionFactory,
    InMemoryDatabase,
    InMemoryRefreshTokenRepository,
    InMemoryUserRepository,
    InMemoryUserSettingRepository,
)
from tests.fakes.jwks import FakeJWKSClient  # noqa: E402
from tests.fakes.redis import InMemoryRedis  # noqa: E402
from tests.helpers.identity import FakeIdentityProvider, token_response  # noqa: E402
from tests.helpers.overrides import DependencyOverrides, ProvideAsyncValue  # noqa: E402


@pytest.fixture(scope="session")
def settings() -> Config:
    return get_settings()


@pytest.fixture
def encryption_key() -> bytes:
    return get_encryption_key()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def fake_redis(clock: FrozenClock) -> InMemoryRedis:
    return InMemoryRedis(clock=clock)


@pytest.fixture
def database() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def fake_session(database: InMemoryDatabase) -> FakeAsyncSession:
    return FakeAsyncSession(database=database)


@pytest.fixture
def session_factory(database: InMemoryDatabase) -> FakeSessionFactory:
    return FakeSessionFactory(database)


@pytest_asyncio.fixture
async def sqlite_session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    """Real repositories over a throwaway in-memory SQLite database."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def jwks_client() -> FakeJWKSClient:
    return FakeJWKSClient()


@pytest.fixture
def app() -> FastAPI:
    return get_application()


@pytest.fixture
def dependency_overrides(app: FastAPI) -> Generator[DependencyOverrides]:
    overrides = DependencyOverrides(app)
    yield overrides
    overrides.reset()


@pytest.fixture
def app_with_fakes(
    app: FastAPI,
    dependency_overrides: DependencyOverrides,
    fake_redis: InMemoryRedis,
    fake_session: FakeAsyncSession,
    session_factory: FakeSessionFactory,
    jwks_client: FakeJWKSClient,
    idp_http_client: httpx.AsyncClient,
    ledger: RefreshTokenLedger,
) -> FastAPI:
    """
    Application wired to in-memory stores, the fake JWKS and the
    MockTransport identity provider from ``fake_idp``.
    """
    dependency_overrides.provide(get_redis_client, fake_redis)
    dependency_overrides.set(get_session, ProvideAsyncValue(fake_session))
    dependency_overrides.provide(get_session_factory, session_factory)
    dependency_overrides.provide(get_jwks_client, jwks_client)
    dependency_overrides.provide(get_idp_http_client, idp_http_client)
    dependency_overrides.provide(get_refresh_token_ledger, ledger)
    return app


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport, base_url="http://testserver"
    ) as client:
        yield client


@pytest_asyncio.fixture
async def async_client_with_fakes(
    app_with_fakes: FastAPI,
) -> AsyncGenerator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app_with_fakes)
    async with httpx.AsyncClient(
        transport=transport, base_url="http://testserver"
    ) as client:
        yield client


@pytest.fixture
def user(database: InMemoryDatabase) -> User:
    return database.add_user(USER_ID)


@pytest.fixture
def ledger(
    session_factory: FakeSessionFactory,
    database: InMemoryDatabase,
    encryption_key: bytes,
    settings: Config,
    clock: FrozenClock,
) -> RefreshTokenLedger:
    return RefreshTokenLedger(
        session_factory=session_factory,  # type: ignore[arg-type]
        encryption_key=encryption_key,
        token_lifetime_seconds=settings.session.REFRESH_TOKEN_EXPIRY,
        user_repository=InMemoryUserRepository(database),  # type: ignore[arg-type]
        token_repository=InMemoryRefreshTokenRepository(database),  # type: ignore[arg-type]
        clock=clock.datetime,
    )


@pytest.fixture
def store(fake_redis: InMemoryRedis, settings: Config, clock: FrozenClock) -> SessionStore:
    return SessionStore(redis_client=fake_redis, session_config=settings.session, clock=clock)


@pytest.fixture
def fake_idp() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest_asyncio.fixture
async def idp_http_client(fake_idp: FakeIdentityProvider) -> AsyncGenerator[httpx.AsyncClient]:
    async with fake_idp.client() as client:
        yield client


@pytest.fixture
def identity_client(
    idp_http_client: httpx.AsyncClient, settings: Config
) -> IdentityProviderClient:
    return IdentityProviderClient(http_client=idp_http_client, idp_config=settings.idp)


@pytest.fixture
def verifier(jwks_client: FakeJWKSClient, settings: Config) -> TokenVerifier:
    return TokenVerifier(
        jwks_client=jwks_client,  # type: ignore[arg-type]
        issuer=settings.idp.issuer,
        algorithms=settings.idp.IDP_ALGORITHMS,
    )


@pytest.fixture
def orchestrator(
    store: SessionStore,
    ledger: RefreshTokenLedger,
    identity_client: IdentityProviderClient,
    verifier: TokenVerifier,
    fake_redis: InMemoryRedis,
    settings: Config,
    clock: FrozenClock,
) -> TokenRefreshOrchestrator:
    return TokenRefreshOrchestrator(
        session_store=store,
        ledger=ledger,
        identity_client=identity_client,
        verifier=verifier,
        redis_client=fake_redis,  # type: ignore[arg-type]
        session_config=settings.session,
        audience=settings.idp.IDP_AUDIENCE,
        clock=clock,
    )


@pytest.fixture
def machine_tokens(
    fake_redis: InMemoryRedis, identity_client: IdentityProviderClient, settings: Config
) -> MachineTokenProvider:
    return MachineTokenProvider(
        redis_client=fake_redis,  # type: ignore[arg-type]
        identity_client=identity_client,
        cache_key=settings.idp.IDP_MANAGEMENT_TOKEN_CACHE_KEY,
    )


@pytest.fixture
def synchronizer(
    identity_client: IdentityProviderClient,
    machine_tokens: MachineTokenProvider,
    fake_idp: FakeIdentityProvider,
    settings: Config,
) -> PlanRoleSynchronizer:
    fake_idp.on_token(
        "client_credentials", token_response(access_token="m2m-token", expires_in=600)
    )
    return PlanRoleSynchronizer(
        identity_client=identity_client,
        machine_tokens=machine_tokens,
        plan_role_mapping=settings.plans.PLAN_ROLE_MAPPING,
    )


@pytest.fixture
def login_use_case(
    identity_client: IdentityProviderClient,
    verifier: TokenVerifier,
    store: SessionStore,
    ledger: RefreshTokenLedger,
    fake_session: FakeAsyncSession,
    database: InMemoryDatabase,
) -> LoginUseCase:
    return LoginUseCase(
        identity_client=identity_client,
        verifier=verifier,
        session_store=store,
        ledger=ledger,
        session=fake_session,  # type: ignore[arg-type]
        user_repository=InMemoryUserRepository(database),  # type: ignore[arg-type]
        setting_repository=InMemoryUserSettingRepository(database),  # type: ignore[arg-type]
    )


@pytest.fixture
def logout_use_case(
    store: SessionStore,
    ledger: RefreshTokenLedger,
    identity_client: IdentityProviderClient,
) -> LogoutUseCase:
    return LogoutUseCase(session_store=store, ledger=ledger, identity_client=identity_client)


@pytest.fixture
def internal_service(
    store: SessionStore,
    session_factory: FakeSessionFactory,
    synchronizer: PlanRoleSynchronizer,
    database: InMemoryDatabase,
    settings: Config,
) -> InternalUserService:
    return InternalUserService(
        session_store=store,
        session_factory=session_factory,  # type: ignore[arg-type]
        synchronizer=synchronizer,
        role_claim=settings.idp.role_claim,
        user_repository=InMemoryUserRepository(database),  # type: ignore[arg-type]
        setting_repository=InMemoryUserSettingRepository(database),  # type: ignore[arg-type]
    )


@pytest.fixture
def gate(
    store: SessionStore,
    orchestrator: TokenRefreshOrchestrator,
    ledger: RefreshTokenLedger,
) -> SessionValidationGate:
    return SessionValidationGate(session_store=store, orchestrator=orchestrator, ledger=ledger)
