# propauth/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .db import init_db, session_scope
from .domain.roles import ROLE_TABLE_VERSION, validate_persisted_roles
from .errors import AuthorizationDenied, NotFoundError, SubscriptionLimitError, ValidationError
from .middleware.request_id import RequestIDMiddleware
from .middleware.structured_logging import StructuredLoggingMiddleware
from .routers.organizations import router as organizations_router
from .routers.permissions import router as permissions_router
from .routers.teams import router as teams_router

API_PREFIX = "/api"

log = logging.getLogger("propauth.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.auto_create_tables:
        init_db()

    if settings.validate_roles_on_startup:
        with session_scope() as db:
            validate_persisted_roles(db)

    log.info("propauth started (role table %s)", ROLE_TABLE_VERSION)
    yield


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthorizationDenied)
    async def _denied(_request: Request, _exc: AuthorizationDenied):
        # body never names the rule that failed
        return JSONResponse(status_code=403, content={"detail": "Insufficient permissions"})

    @app.exception_handler(NotFoundError)
    async def _not_found(_request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def _invalid(_request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(SubscriptionLimitError)
    async def _limit(_request: Request, exc: SubscriptionLimitError):
        return JSONResponse(status_code=402, content={"detail": str(exc)})


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version=ROLE_TABLE_VERSION,
        lifespan=lifespan,
    )

    # last added wraps outermost: request id is set before the request log line
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)

    app.include_router(permissions_router, prefix=API_PREFIX)
    app.include_router(teams_router, prefix=API_PREFIX)
    app.include_router(organizations_router, prefix=API_PREFIX)

    return app


app = create_app()
