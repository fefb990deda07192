from pydantic import BaseModel, ConfigDict


class TokenResponse(BaseModel):
    """Token endpoint payload. Which fields are present depends on the grant."""

    access_token: str | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    expires_in: int | None = None
    token_type: str | None = None
    scope: str | None = None

    model_config = ConfigDict(extra="ignore")

    def __repr__(self) -> str:
        # Token values must never reach logs through repr()
        present = [
            name
            for name in ("access_token", "refresh_token", "id_token")
            if getattr(self, name)
        ]
        return f"TokenResponse(present={present}, expires_in={self.expires_in})"

    __str__ = __repr__


class MachineToken(BaseModel):
    access_token: str
    expires_in: int

    model_config = ConfigDict(extra="ignore")

    def __repr__(self) -> str:
        return f"MachineToken(expires_in={self.expires_in})"

    __str__ = __repr__


class ProviderRole(BaseModel):
    id: str
    name: str | None = None
    description: str | None = None

    model_config = ConfigDict(extra="ignore")


class AuthorizationTokens(BaseModel):
    """Complete token set returned by the authorization code grant."""

    access_token: str
    refresh_token: str
    id_token: str

    def __repr__(self) -> str:
        return "AuthorizationTokens(<redacted>)"

    __str__ = __repr__
