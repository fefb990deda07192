from starlette.responses import Response

from src.main.config import config


def set_session_cookie(response: Response, session_id: str) -> None:
    response.set_cookie(
        key=config.session.SESSION_COOKIE_NAME,
        value=session_id,
        max_age=config.session.SESSION_TTL,
        httponly=True,
        secure=config.session.SESSION_COOKIE_SECURE,
        samesite=config.session.SESSION_COOKIE_SAMESITE,  # type: ignore[arg-type]
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=config.session.SESSION_COOKIE_NAME,
        httponly=True,
        secure=config.session.SESSION_COOKIE_SECURE,
        samesite=config.session.SESSION_COOKIE_SAMESITE,  # type: ignore[arg-type]
    )
