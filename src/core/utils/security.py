import secrets
from uuid import uuid4


def generate_session_id() -> str:
    return str(uuid4())


def generate_nonce(nbytes: int = 16) -> str:
    """URL-safe random value for one-shot identifiers (state jti, lock owners)."""
    return secrets.token_urlsafe(nbytes)


def mask_identifier(value: str | None, visible: int = 8) -> str:
    """
    Keep a short prefix of an identifier for log correlation.
    Mask pattern: 3f2a9c1e***
    """
    if not value:
        return "***"
    return f"{value[:visible]}***"


def mask_email(email: str | None) -> str:
    """
    Masks an email address by replacing part of the local and domain parts
    with asterisks.
    Mask pattern: ab***@cd***
    """
    if not email or "@" not in email:
        return "***"
    local, domain = email.split("@", 1)
    masked_local = (local[:2] + "***") if local else "*****"
    masked_domain = (domain[:2] + "***") if domain else "*****"
    return f"{masked_local}@{masked_domain}"
