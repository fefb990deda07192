from fastapi import APIRouter, FastAPI
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from src.core.errors.exceptions import (
    CipherIntegrityException,
    ConfigurationException,
    CoreException,
    InfrastructureException,
    InstanceNotFoundException,
    SessionExpiredException,
    SessionRejectedException,
    UnauthorizedException,
    UpstreamException,
)
from src.core.errors.handlers import (
    CipherIntegrityExceptionHandler,
    ConfigurationExceptionHandler,
    CoreExceptionHandler,
    InfrastructureExceptionHandler,
    InstanceNotFoundExceptionHandler,
    RequestValidationExceptionHandler,
    SessionExpiredExceptionHandler,
    SessionRejectedExceptionHandler,
    UnauthorizedExceptionHandler,
    UpstreamExceptionHandler,
    ValidationErrorExceptionHandler,
    as_exception_handler,
)
from src.internal import routers as internal_routers
from src.system import routers as system_routers

# Import routers here
from src.user.auth import routers as auth_routers


def include_routers(app: FastAPI) -> None:
    """
    Includes API routers into the FastAPI application.

    Parameters:
        app (FastAPI): The FastAPI application instance to which routers will
        be added.

    Returns:
        None
    """
    v1_router = APIRouter()
    v1_router.include_router(auth_routers.router, prefix="/auth", tags=["Auth"])

    internal_v1_router = APIRouter()
    internal_v1_router.include_router(internal_routers.router, tags=["Internal"])

    app.include_router(v1_router, prefix="/v1")
    app.include_router(internal_v1_router, prefix="/internal/v1")
    app.include_router(system_routers.router, tags=["System"])


def include_exceptions_handlers(app: FastAPI) -> None:
    """
    Registers exception handlers for the custom exceptions with the provided FastAPI
    application instance. Handlers are resolved along the exception MRO, so a
    subclass handler wins over its base.

    Parameters:
        app (FastAPI): The FastAPI application instance to which the exception handlers
        will be added.

    Returns:
        None
    """
    app.add_exception_handler(
        InfrastructureException, as_exception_handler(InfrastructureExceptionHandler())
    )
    app.add_exception_handler(
        ConfigurationException, as_exception_handler(ConfigurationExceptionHandler())
    )
    app.add_exception_handler(
        CipherIntegrityException,
        as_exception_handler(CipherIntegrityExceptionHandler()),
    )
    app.add_exception_handler(
        UpstreamException, as_exception_handler(UpstreamExceptionHandler())
    )
    app.add_exception_handler(
        RequestValidationError,
        as_exception_handler(RequestValidationExceptionHandler()),
    )
    app.add_exception_handler(
        ValidationError, as_exception_handler(ValidationErrorExceptionHandler())
    )
    app.add_exception_handler(
        InstanceNotFoundException,
        as_exception_handler(InstanceNotFoundExceptionHandler()),
    )
    app.add_exception_handler(
        UnauthorizedException, as_exception_handler(UnauthorizedExceptionHandler())
    )
    app.add_exception_handler(
        SessionRejectedException,
        as_exception_handler(SessionRejectedExceptionHandler()),
    )
    app.add_exception_handler(
        SessionExpiredException, as_exception_handler(SessionExpiredExceptionHandler())
    )
    app.add_exception_handler(
        CoreException,
        as_exception_handler(CoreExceptionHandler()),
    )
