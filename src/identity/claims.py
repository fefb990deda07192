from typing import Any

import jwt
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.core.errors.exceptions import UnauthorizedException


class AccessTokenClaims(BaseModel):
    """
    Typed view over a decoded JWT payload.

    ``sub`` and a numeric ``exp`` are required; a token without them fails
    closed with UnauthorizedException. Provider specific claims (namespaced
    role, first-login flag) stay available through ``custom_claim``.
    """

    sub: str
    exp: int
    iss: str | None = None
    aud: str | list[str] | None = None
    iat: int | None = None
    azp: str | None = None
    scope: str | None = None
    permissions: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")

    @field_validator("exp", mode="before")
    @classmethod
    def require_numeric_exp(cls, v: Any) -> int:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("exp must be a numeric timestamp")
        return int(v)

    def custom_claim(self, name: str, default: Any = None) -> Any:
        return (self.model_extra or {}).get(name, default)


def parse_claims(payload: dict[str, Any]) -> AccessTokenClaims:
    try:
        return AccessTokenClaims.model_validate(payload)
    except ValidationError as exc:
        missing = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        raise UnauthorizedException(
            "Token is missing required claims",
            additional_info={"claims": missing},
        )


def decode_unverified(token: str) -> AccessTokenClaims:
    """
    Read claims without checking the signature.

    Only for tokens this service already verified before storing them
    (the access token held in a session record).
    """
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        raise UnauthorizedException("Malformed token")
    return parse_claims(payload)
