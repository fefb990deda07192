import asyncio
from collections.abc import Sequence
from typing import Any

import jwt
from jwt import PyJWKClient
from jwt.exceptions import PyJWKClientConnectionError

from loggers import get_logger
from src.core.errors.exceptions import UnauthorizedException, UpstreamException
from src.identity.claims import AccessTokenClaims, parse_claims

logger = get_logger(__name__)


class TokenVerifier:
    """
    Verifies provider-issued JWTs: signature against the JWKS, issuer and audience.

    Signing keys are cached by PyJWKClient; the blocking key fetch runs in a
    worker thread so the event loop is never held by a slow JWKS endpoint.
    """

    def __init__(
        self,
        jwks_client: PyJWKClient,
        issuer: str,
        algorithms: Sequence[str] = ("RS256",),
    ) -> None:
        self.jwks_client = jwks_client
        self.issuer = issuer
        self.algorithms = list(algorithms)

    async def verify(self, token: str, audience: str) -> AccessTokenClaims:
        payload = await asyncio.to_thread(self._decode, token, audience)
        return parse_claims(payload)

    def _decode(self, token: str, audience: str) -> dict[str, Any]:
        try:
            signing_key = self.jwks_client.get_signing_key_from_jwt(token)
        except PyJWKClientConnectionError as exc:
            logger.error("[TokenVerifier] JWKS endpoint unreachable: %s", type(exc).__name__)
            raise UpstreamException("Unable to fetch signing keys")
        except jwt.PyJWTError as exc:
            raise UnauthorizedException(
                "Invalid token", additional_info={"reason": type(exc).__name__}
            )

        try:
            return jwt.decode(
                token,
                signing_key.key,
                algorithms=self.algorithms,
                audience=audience,
                issuer=self.issuer,
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise UnauthorizedException("Token expired")
        except jwt.PyJWTError as exc:
            raise UnauthorizedException(
                "Invalid token", additional_info={"reason": type(exc).__name__}
            )
