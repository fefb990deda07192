"""
Signed ``state`` values for the authorization code flow.

The state is a short-lived HS256 JWT carrying a random ``jti``; the callback
only accepts states this service issued within the last few minutes.
"""

from datetime import timedelta

import jwt

from loggers import get_logger
from src.core.utils.datetime_utils import get_utc_now
from src.core.utils.security import generate_nonce
from src.main.config import config

logger = get_logger(__name__)

STATE_ALGORITHM = "HS256"


def create_state_token() -> str:
    now = get_utc_now()
    payload = {
        "jti": generate_nonce(),
        "iat": now,
        "exp": now + timedelta(seconds=config.session.STATE_TOKEN_EXPIRE_SECONDS),
    }
    return jwt.encode(payload, config.session.STATE_SECRET, algorithm=STATE_ALGORITHM)


def verify_state_token(state: str) -> bool:
    try:
        jwt.decode(
            state,
            config.session.STATE_SECRET,
            algorithms=[STATE_ALGORITHM],
            options={"require": ["exp", "jti"]},
        )
    except jwt.ExpiredSignatureError:
        logger.info("[StateToken] Expired state presented")
        return False
    except jwt.PyJWTError:
        logger.warning("[StateToken] Invalid state presented")
        return False
    return True
