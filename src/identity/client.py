"""
HTTP client for the external identity provider.

Covers the token endpoint (authorization code, refresh token and client
credentials grants), per-user role management and the logout endpoint.
Every non-success status or transport failure surfaces as UpstreamException;
token values and secrets are never logged or attached to errors.
"""

from typing import Any
from urllib.parse import quote, urlencode

import httpx
from pydantic import ValidationError

from loggers import get_logger
from src.core.errors.exceptions import (
    NoRoleAssignedException,
    RoleReplacementException,
    UpstreamException,
)
from src.core.utils.retry import with_retries
from src.identity.schemas import (
    AuthorizationTokens,
    MachineToken,
    ProviderRole,
    TokenResponse,
)
from src.main.config import IdentityProviderConfig, config

logger = get_logger(__name__)

FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}

# Only idempotent calls are retried, and only on transport failures
_retry_transport = with_retries(
    max_retries=config.idp.IDP_HTTP_MAX_RETRIES,
    delay=0.2,
    retry_on=(httpx.TransportError,),
)


def _error_code(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        code = body.get("error") or body.get("errorCode")
        return str(code) if code else None
    return None


class IdentityProviderClient:
    def __init__(
        self, http_client: httpx.AsyncClient, idp_config: IdentityProviderConfig
    ) -> None:
        self.http_client = http_client
        self.idp_config = idp_config

    # ----- URLs ----- #
    def build_authorize_url(self, state: str) -> str:
        query = urlencode(
            {
                "audience": self.idp_config.IDP_AUDIENCE,
                "scope": self.idp_config.IDP_SCOPE,
                "response_type": "code",
                "client_id": self.idp_config.IDP_CLIENT_ID,
                "redirect_uri": self.idp_config.IDP_REDIRECT_URI,
                "state": state,
            }
        )
        return f"{self.idp_config.IDP_DOMAIN}/authorize?{query}"

    def build_logout_url(self) -> str:
        query = urlencode(
            {
                "client_id": self.idp_config.IDP_CLIENT_ID,
                "returnTo": self.idp_config.IDP_LOGOUT_RETURN_URL,
            }
        )
        return f"{self.idp_config.IDP_DOMAIN}/v2/logout?{query}"

    def _roles_url(self, user_id: str) -> str:
        return f"{self.idp_config.IDP_DOMAIN}/api/v2/users/{quote(user_id, safe='')}/roles"

    # ----- Token endpoint ----- #
    async def exchange_authorization_code(self, code: str) -> AuthorizationTokens:
        tokens = await self._token_request(
            "authorization_code",
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.idp_config.IDP_REDIRECT_URI,
                "client_id": self.idp_config.IDP_CLIENT_ID,
                "client_secret": self.idp_config.IDP_CLIENT_SECRET,
            },
        )
        if not tokens.access_token or not tokens.refresh_token or not tokens.id_token:
            raise UpstreamException(
                "Identity provider returned an incomplete token set",
                additional_info={"grant": "authorization_code", "tokens": repr(tokens)},
            )
        return AuthorizationTokens(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            id_token=tokens.id_token,
        )

    async def exchange_refresh_token(self, refresh_token: str) -> TokenResponse:
        """
        Not retried: providers that rotate refresh tokens invalidate the
        presented one on first use, so a replay can only fail.
        """
        return await self._token_request(
            "refresh_token",
            {
                "grant_type": "refresh_token",
                "client_id": self.idp_config.IDP_CLIENT_ID,
                "client_secret": self.idp_config.IDP_CLIENT_SECRET,
                "refresh_token": refresh_token,
            },
        )

    async def exchange_client_credentials(self) -> MachineToken:
        tokens = await self._token_request(
            "client_credentials",
            {
                "grant_type": "client_credentials",
                "client_id": self.idp_config.IDP_MANAGEMENT_CLIENT_ID,
                "client_secret": self.idp_config.IDP_MANAGEMENT_CLIENT_SECRET,
                "audience": self.idp_config.IDP_MANAGEMENT_AUDIENCE,
            },
            idempotent=True,
        )
        if not tokens.access_token or tokens.expires_in is None:
            raise UpstreamException(
                "Identity provider returned an incomplete machine token",
                additional_info={"grant": "client_credentials"},
            )
        return MachineToken(access_token=tokens.access_token, expires_in=tokens.expires_in)

    async def _token_request(
        self, grant: str, form: dict[str, str], idempotent: bool = False
    ) -> TokenResponse:
        send = self._post_form_with_retries if idempotent else self._post_form
        try:
            response = await send(self.idp_config.token_url, form)
        except httpx.HTTPError as exc:
            logger.error(
                "[IdentityProvider] Token request failed grant=%s error=%s",
                grant,
                type(exc).__name__,
            )
            raise UpstreamException(
                "Identity provider is unreachable",
                additional_info={"grant": grant, "error": type(exc).__name__},
            )

        self._ensure_success(response, operation=f"token:{grant}")
        try:
            tokens = TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError):
            raise UpstreamException(
                "Identity provider returned an unreadable token response",
                additional_info={"grant": grant},
            )
        logger.debug("[IdentityProvider] Token request succeeded grant=%s %r", grant, tokens)
        return tokens

    async def _post_form(self, url: str, form: dict[str, str]) -> httpx.Response:
        return await self.http_client.post(url, data=form, headers=FORM_HEADERS)

    @_retry_transport
    async def _post_form_with_retries(
        self, url: str, form: dict[str, str]
    ) -> httpx.Response:
        return await self.http_client.post(url, data=form, headers=FORM_HEADERS)

    # ----- Role management ----- #
    async def get_user_role(self, machine_token: str, user_id: str) -> str:
        """First role assigned to the user; NoRoleAssignedException when there is none."""
        try:
            response = await self._get_with_retries(
                self._roles_url(user_id), self._bearer(machine_token)
            )
        except httpx.HTTPError as exc:
            raise UpstreamException(
                "Identity provider is unreachable",
                additional_info={"operation": "get_roles", "error": type(exc).__name__},
            )
        self._ensure_success(response, operation="get_roles")

        try:
            payload = response.json()
            roles = [ProviderRole.model_validate(item) for item in payload]
        except (ValueError, TypeError, ValidationError):
            raise UpstreamException(
                "Identity provider returned an unreadable role list",
                additional_info={"operation": "get_roles"},
            )
        if not roles:
            raise NoRoleAssignedException(
                "User has no role assigned", additional_info={"operation": "get_roles"}
            )
        return roles[0].id

    async def add_user_role(self, machine_token: str, user_id: str, role_id: str) -> None:
        await self._role_mutation("POST", machine_token, user_id, role_id, "add_role")

    async def remove_user_role(
        self, machine_token: str, user_id: str, role_id: str
    ) -> None:
        await self._role_mutation("DELETE", machine_token, user_id, role_id, "remove_role")

    async def replace_user_role(
        self,
        machine_token: str,
        user_id: str,
        old_role_id: str,
        new_role_id: str,
    ) -> None:
        """
        Remove ``old_role_id`` then add ``new_role_id``. The two calls are not
        transactional: a failed add after a successful remove raises
        RoleReplacementException so the caller can retry the add.
        """
        await self.remove_user_role(machine_token, user_id, old_role_id)
        try:
            await self.add_user_role(machine_token, user_id, new_role_id)
        except UpstreamException as exc:
            logger.error(
                "[IdentityProvider] Role replacement left user without a role "
                "removed=%s target=%s",
                old_role_id,
                new_role_id,
            )
            raise RoleReplacementException(
                "Previous role removed but new role could not be assigned",
                additional_info={
                    "removed_role_id": old_role_id,
                    "target_role_id": new_role_id,
                },
                status_code=exc.status_code,
                removed_role_id=old_role_id,
                target_role_id=new_role_id,
            ) from exc

    async def _role_mutation(
        self,
        method: str,
        machine_token: str,
        user_id: str,
        role_id: str,
        operation: str,
    ) -> None:
        try:
            response = await self.http_client.request(
                method,
                self._roles_url(user_id),
                json={"roles": [role_id]},
                headers=self._bearer(machine_token),
            )
        except httpx.HTTPError as exc:
            raise UpstreamException(
                "Identity provider is unreachable",
                additional_info={"operation": operation, "error": type(exc).__name__},
            )
        self._ensure_success(response, operation=operation)

    @_retry_transport
    async def _get_with_retries(
        self, url: str, headers: dict[str, str]
    ) -> httpx.Response:
        return await self.http_client.get(url, headers=headers)

    # ----- Logout ----- #
    async def logout(self) -> bool:
        """Best-effort provider logout; failures are logged and reported as False."""
        try:
            response = await self.http_client.get(self.build_logout_url())
        except httpx.HTTPError as exc:
            logger.warning("[IdentityProvider] Logout call failed: %s", type(exc).__name__)
            return False
        if response.is_error:
            logger.warning(
                "[IdentityProvider] Logout call returned status=%s", response.status_code
            )
            return False
        return True

    # ----- Helpers ----- #
    @staticmethod
    def _bearer(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    @staticmethod
    def _ensure_success(response: httpx.Response, operation: str) -> None:
        if response.is_success:
            return
        info: dict[str, Any] = {"operation": operation, "status": response.status_code}
        error_code = _error_code(response)
        if error_code:
            info["error_code"] = error_code
        logger.warning(
            "[IdentityProvider] %s failed with status=%s", operation, response.status_code
        )
        raise UpstreamException(
            "Identity provider rejected the request",
            additional_info=info,
            status_code=response.status_code,
        )
