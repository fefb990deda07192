from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from loggers import get_logger
from src.core.errors.exceptions import BadRequestException
from src.core.schemas import SuccessResponse
from src.core.utils.cookies import clear_session_cookie, set_session_cookie
from src.identity.client import IdentityProviderClient
from src.identity.dependencies import get_identity_provider_client
from src.main.config import config
from src.session.dependencies import require_session
from src.session.schemas import ValidSession
from src.user.auth.schemas import SessionDetailsResponse
from src.user.auth.security import create_state_token, verify_state_token
from src.user.auth.usecases.login import LoginUseCase, get_login_use_case
from src.user.auth.usecases.logout import LogoutUseCase, get_logout_use_case

logger = get_logger(__name__)

router = APIRouter()


@router.get("/authorize", status_code=307, response_class=RedirectResponse)
async def authorize(
    identity_client: Annotated[
        IdentityProviderClient, Depends(get_identity_provider_client)
    ],
) -> RedirectResponse:
    """
    Start the authorization code flow at the identity provider.
    """
    return RedirectResponse(
        identity_client.build_authorize_url(create_state_token()), status_code=307
    )


@router.get("/callback", response_model=SuccessResponse)
async def callback(
    use_case: Annotated[LoginUseCase, Depends(get_login_use_case)],
    code: Annotated[str, Query(min_length=1)],
    state: Annotated[str, Query(min_length=1)],
) -> JSONResponse:
    """
    Exchange the authorization code, open a session and set the session cookie.
    """
    if not verify_state_token(state):
        raise BadRequestException("Invalid or expired state token")

    session_id = await use_case.execute(code)

    response = JSONResponse(
        SuccessResponse(success=True, message="Authentication successful").model_dump()
    )
    set_session_cookie(response, session_id)
    return response


@router.get("/logout", status_code=307, response_class=RedirectResponse)
async def logout(
    request: Request,
    use_case: Annotated[LogoutUseCase, Depends(get_logout_use_case)],
) -> Response:
    """
    End the session and redirect to the post-logout page. The cookie is
    cleared even when parts of the cleanup failed.
    """
    session_id = request.cookies.get(config.session.SESSION_COOKIE_NAME)
    if not session_id:
        return Response(status_code=204)

    await use_case.execute(session_id)

    response = RedirectResponse(config.idp.IDP_LOGOUT_RETURN_URL, status_code=307)
    clear_session_cookie(response)
    return response


@router.get("/session", response_model=SessionDetailsResponse)
async def get_current_session(
    current: Annotated[ValidSession, Depends(require_session)],
) -> SessionDetailsResponse:
    """
    Describe the caller's session. Rotates the access token when it is close to expiry.
    """
    return SessionDetailsResponse(
        user_id=current.session.user_id,
        access_exp=current.session.access_exp,
        refreshed=current.refreshed,
    )
