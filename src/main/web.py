import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute
from sentry_sdk.integrations.asgi import SentryAsgiMiddleware

from loggers import get_logger
from src.core.middleware import register_middlewares
from src.main.config import config
from src.main.lifespan import lifespan
from src.main.presentation import include_exceptions_handlers, include_routers

logging.getLogger("uvicorn.access").disabled = True
logger = get_logger(__name__)


def get_application() -> FastAPI:
    application = FastAPI(
        title=config.app.PROJECT_NAME,
        debug=config.app.DEBUG,
        version=config.app.VERSION,
        lifespan=lifespan,
    )

    register_middlewares(application)

    # The session cookie is sent cross-origin by the frontend
    application.add_middleware(
        CORSMiddleware,  # noqa
        allow_origins=config.app.CORS_ALLOWED_ORIGINS,
        allow_credentials=config.app.CORS_ALLOW_CREDENTIALS,
        allow_methods=config.app.CORS_ALLOWED_METHODS,
        allow_headers=config.app.CORS_ALLOWED_HEADERS,
        expose_headers=config.app.CORS_EXPOSE_HEADERS,
    )

    include_exceptions_handlers(application)
    include_routers(application)

    api_routes = [route for route in application.routes if isinstance(route, APIRoute)]
    logger.info("[App] %s API routes mounted", len(api_routes))
    if config.app.DEBUG:
        for route in sorted(api_routes, key=lambda r: r.path):
            logger.debug("[App] %s %s", ",".join(sorted(route.methods)), route.path)

    application.add_middleware(SentryAsgiMiddleware)

    return application


app = get_application()
