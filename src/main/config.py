from functools import lru_cache
import json
import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _parse_str_list(v: Any) -> list[str]:
    if isinstance(v, list):
        return v
    if isinstance(v, str) and v.strip().startswith("[") and v.strip().endswith("]"):
        try:
            parsed = json.loads(v)
            if isinstance(parsed, list):
                return [str(item) for item in parsed]
        except json.JSONDecodeError:
            pass
    sep = "," if "," in v else ";"
    return [item.strip() for item in v.split(sep) if item.strip()]


def _parse_pairs(v: Any) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for pair in _parse_str_list(v):
        name, sep, value = pair.partition("=")
        if not sep or not name.strip() or not value.strip():
            raise ValueError(f"Invalid mapping entry: {pair!r}")
        pairs.append((name.strip(), value.strip()))
    return pairs


class RedisConfig(BaseModel):
    REDIS_HOST: str
    REDIS_PORT: int
    REDIS_PASSWORD: str
    REDIS_DATABASE: str

    REDIS_SOCKET_TIMEOUT: float = Field(5.0, gt=0)
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(5.0, gt=0)

    model_config = ConfigDict(extra="ignore")

    @property
    def dsn(self) -> str:
        return (
            f"redis://:"
            f"{self.REDIS_PASSWORD}@"
            f"{self.REDIS_HOST}:"
            f"{self.REDIS_PORT}/"
            f"{self.REDIS_DATABASE}"
        )


class SentryConfig(BaseModel):
    SENTRY_DSN: str | None = None
    SENTRY_ENV: str = "development"
    SENTRY_ENABLED: bool = False

    model_config = ConfigDict(extra="ignore")


class PostgresConfig(BaseModel):
    DB_ECHO: bool

    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_HOST: str
    POSTGRES_PORT: int
    POSTGRES_DB: str

    POSTGRES_CONNECT_TIMEOUT: float = Field(10.0, gt=0)
    POSTGRES_COMMAND_TIMEOUT: float = Field(15.0, gt=0)
    POSTGRES_POOL_TIMEOUT: float = Field(30.0, gt=0)

    model_config = ConfigDict(extra="ignore")

    @property
    def dsn_async(self) -> str:
        return (
            f"postgresql+asyncpg://"
            f"{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )


class IdentityProviderConfig(BaseModel):
    """Authorization server settings (token endpoint, role management, JWKS)."""

    IDP_DOMAIN: str
    IDP_CLIENT_ID: str
    IDP_CLIENT_SECRET: str
    IDP_AUDIENCE: str
    IDP_REDIRECT_URI: str
    IDP_SCOPE: str = "openid profile email offline_access"
    IDP_LOGOUT_RETURN_URL: str

    IDP_MANAGEMENT_CLIENT_ID: str
    IDP_MANAGEMENT_CLIENT_SECRET: str
    IDP_MANAGEMENT_AUDIENCE: str
    IDP_MANAGEMENT_TOKEN_CACHE_KEY: str = "idp:management_token"

    IDP_CLAIMS_NAMESPACE: str = "https://pennywise.app"
    IDP_ALGORITHMS: list[str] = Field(["RS256"])
    IDP_HTTP_TIMEOUT: float = Field(10.0, gt=0)
    IDP_HTTP_MAX_RETRIES: int = Field(2, ge=1)

    model_config = ConfigDict(extra="ignore")

    @field_validator("IDP_DOMAIN", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: Any) -> str:
        return str(v).rstrip("/")

    @field_validator("IDP_ALGORITHMS", mode="before")
    @classmethod
    def parse_algorithms(cls, v: Any) -> list[str]:
        return _parse_str_list(v)

    @property
    def issuer(self) -> str:
        return f"{self.IDP_DOMAIN}/"

    @property
    def token_url(self) -> str:
        return f"{self.IDP_DOMAIN}/oauth/token"

    @property
    def jwks_url(self) -> str:
        return f"{self.IDP_DOMAIN}/.well-known/jwks.json"

    @property
    def role_claim(self) -> str:
        return f"{self.IDP_CLAIMS_NAMESPACE}/role"


class SessionConfig(BaseModel):
    """
    Lifetimes are in seconds.

    SESSION_TTL caps the session record lifetime, the record never outlives
    the access token it holds. INACTIVITY_TIMEOUT is the sliding window kept
    by the liveness marker, which is extended lazily once its remaining TTL
    drops below INACTIVITY_REFRESH_THRESHOLD.
    """

    SESSION_TTL: int = Field(86_400, gt=0)
    INACTIVITY_TIMEOUT: int = Field(900, gt=0)
    INACTIVITY_REFRESH_THRESHOLD: int = Field(180, gt=0)
    REFRESH_TOKEN_WINDOW_SECONDS: int = Field(60, ge=0)
    REFRESH_TOKEN_EXPIRY: int = Field(31_557_600, gt=0)
    REFRESH_TOKEN_ENCRYPTION_KEY: str
    ROTATION_LOCK_TTL: int = Field(10, gt=0)

    STATE_SECRET: str
    STATE_TOKEN_EXPIRE_SECONDS: int = Field(300, gt=0)

    SESSION_COOKIE_NAME: str = "sessionId"
    SESSION_COOKIE_SECURE: bool = True
    SESSION_COOKIE_SAMESITE: str = "strict"

    model_config = ConfigDict(extra="ignore")


class InternalRpcConfig(BaseModel):
    INTERNAL_RPC_AUDIENCE: str

    model_config = ConfigDict(extra="ignore")


class PlanConfig(BaseModel):
    PLAN_ROLE_MAPPING: dict[str, str] = Field(default_factory=dict)
    DEFAULT_PLAN_ID: str = "free"
    # Settings rows written for a user on first login
    DEFAULT_USER_SETTINGS: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")

    @field_validator("PLAN_ROLE_MAPPING", mode="before")
    @classmethod
    def parse_mapping(cls, v: Any) -> dict[str, str]:
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        if isinstance(v, str) and v.strip().startswith("{"):
            parsed = json.loads(v)
            if isinstance(parsed, dict):
                return {str(k): str(val) for k, val in parsed.items()}
        # plan=role pairs, e.g. "free=rol_1,pro=rol_2"
        return dict(_parse_pairs(v))

    @field_validator("DEFAULT_USER_SETTINGS", mode="before")
    @classmethod
    def parse_default_settings(cls, v: Any) -> dict[str, Any]:
        if isinstance(v, dict):
            return v
        if isinstance(v, str) and v.strip().startswith("{"):
            parsed = json.loads(v)
            if isinstance(parsed, dict):
                return parsed
        if isinstance(v, str) and not v.strip():
            return {}
        # key=value pairs; values are JSON literals or bare strings
        settings: dict[str, Any] = {}
        for name, raw in _parse_pairs(v):
            try:
                settings[name] = json.loads(raw)
            except json.JSONDecodeError:
                settings[name] = raw
        return settings


class AppConfig(BaseModel):
    VERSION: str
    DEBUG: bool = False
    TESTING: bool = False

    LOG_LEVEL: str
    LOG_LEVEL_FILE: str

    CORS_ALLOWED_ORIGINS: list[str] = Field(["*"])
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOWED_METHODS: list[str] = Field(["*"])
    CORS_ALLOWED_HEADERS: list[str] = Field(["*"])
    CORS_EXPOSE_HEADERS: list[str] = Field(["*"])

    PROJECT_NAME: str

    model_config = ConfigDict(extra="ignore")

    @field_validator(
        "CORS_ALLOWED_ORIGINS",
        "CORS_ALLOWED_METHODS",
        "CORS_ALLOWED_HEADERS",
        "CORS_EXPOSE_HEADERS",
        mode="before",
    )
    @classmethod
    def parse_cors_list(cls, v: Any) -> list[str]:
        return _parse_str_list(v)


class Config(BaseModel):
    app: AppConfig
    redis: RedisConfig
    sentry: SentryConfig
    postgres: PostgresConfig
    idp: IdentityProviderConfig
    session: SessionConfig
    internal: InternalRpcConfig
    plans: PlanConfig

    model_config = ConfigDict(extra="ignore")


@lru_cache
def get_settings() -> Config:
    """
    Cached settings factory. Override in tests via monkeypatching or dependency overrides.
    """
    env_filename = ".env.test" if os.getenv("TESTING") == "true" else ".env"
    env_file_values = dotenv_values(env_filename)
    merged_env: dict[str, Any] = {
        k: v
        for k, v in {**env_file_values, **dict(os.environ)}.items()
        if v is not None
    }

    return Config(
        app=AppConfig(**merged_env),
        redis=RedisConfig(**merged_env),
        sentry=SentryConfig(**merged_env),
        postgres=PostgresConfig(**merged_env),
        idp=IdentityProviderConfig(**merged_env),
        session=SessionConfig(**merged_env),
        internal=InternalRpcConfig(**merged_env),
        plans=PlanConfig(**merged_env),
    )


config = get_settings()

