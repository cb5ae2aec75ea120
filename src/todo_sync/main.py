from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .dependencies import build_services
from .errors import AppError
from .logging_config import configure_logging
from .routers import auth as auth_router
from .routers import todos as todos_router
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {"name": "auth", "description": "Email/password and anonymous sessions for the current user."},
    {"name": "todos", "description": "Todos of the signed-in user, statistics and bulk operations."},
]

# HTTP status per AppError.kind.
STATUS_BY_KIND = {
    "validation": 422,
    "auth": 401,
    "not_found": 404,
    "limit_exceeded": 409,
    "permission_denied": 403,
    "network": 503,
    "data_access": 500,
    "unknown": 500,
}


# PUBLIC_INTERFACE
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Settings are read from the environment unless given; the store, identity
    provider and services are created once and kept on ``app.state.services``.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Todo Sync",
        description="Per-user todo lists with email/password and anonymous sign-in.",
        version="0.1.0",
        openapi_tags=openapi_tags,
    )
    app.state.services = build_services(settings)

    # '*' (or an empty list) allows every origin.
    allow_all = (settings.cors_allow_origins == ["*"]) or (len(settings.cors_allow_origins) == 0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """
        Return a consistent JSON structure for request validation errors.

        Response format:
            {
                "error": "ValidationError",
                "detail": [... pydantic/fastapi error details ...],
                "message": "Request validation failed"
            }
        """
        return JSONResponse(
            status_code=422,
            content={
                "error": "ValidationError",
                "message": "Request validation failed",
                "detail": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        """
        Map service errors to JSON ``{error, message, detail}``. Only the
        user-facing message is returned; the technical description is logged.
        """
        status_code = STATUS_BY_KIND.get(exc.kind, 500)
        log = logger.error if status_code >= 500 else logger.info
        log("%s %s failed: %s %s", request.method, request.url.path, exc.description, exc.context or "")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    # PUBLIC_INTERFACE
    @app.get("/", summary="Health Check", tags=["health"])
    def health_check():
        """
        Health check endpoint.

        Returns:
            A JSON object indicating service health.
        """
        return {"message": "Healthy", "backend": settings.persistence_backend}

    app.include_router(auth_router.router)
    app.include_router(todos_router.router)

    logger.info("Application created (env=%s, backend=%s)", settings.environment, settings.persistence_backend)
    return app


app = create_app()
