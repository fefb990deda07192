from typing import Any


class CoreException(Exception):
    def __init__(
        self, message: str | None = None, additional_info: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.additional_info = additional_info


class InfrastructureException(CoreException):
    """A backing store (cache or database) failed; wrapped with context."""


class ConfigurationException(CoreException):
    """Static configuration is missing or malformed (unmapped plan, bad key)."""


class InstanceNotFoundException(CoreException):
    pass


class NoRoleAssignedException(InstanceNotFoundException):
    pass


class SessionExpiredException(CoreException):
    """The session exists but its inactivity window has elapsed."""


class UnauthorizedException(CoreException):
    pass


class SessionRejectedException(UnauthorizedException):
    """
    Terminal rejection of a session cookie. The handler also clears the cookie
    so the client stops presenting a dead reference.
    """


class CipherIntegrityException(CoreException):
    """Authenticated decryption failed: malformed blob, tampered data or wrong key."""


class UpstreamException(CoreException):
    """The identity provider returned a non-success status or was unreachable."""

    def __init__(
        self,
        message: str | None = None,
        additional_info: dict[str, Any] | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, additional_info)
        self.status_code = status_code


class RoleReplacementException(UpstreamException):
    """
    The previous role was removed but the new one could not be added.
    The user is left without a role until the call is retried.
    """

    def __init__(
        self,
        message: str | None = None,
        additional_info: dict[str, Any] | None = None,
        status_code: int | None = None,
        removed_role_id: str | None = None,
        target_role_id: str | None = None,
    ):
        super().__init__(message, additional_info, status_code)
        self.removed_role_id = removed_role_id
        self.target_role_id = target_role_id


class BadRequestException(CoreException):
    pass
