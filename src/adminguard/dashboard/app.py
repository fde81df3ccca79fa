"""FastAPI application: second-factor verification + admin access REST API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from adminguard import __version__
from adminguard.auth.identity import HostedIdentityProvider, IdentityProvider
from adminguard.db import close_pool, init_pool
from adminguard.errors import AdminGuardError, TransientError, ValidationError
from adminguard.service import AccessManager, VerificationService
from adminguard.store import PostgresSecondFactorStore, SecondFactorStore

logger = logging.getLogger(__name__)


def create_app(
    store: SecondFactorStore | None = None,
    identity: IdentityProvider | None = None,
    *,
    verifier: VerificationService | None = None,
) -> FastAPI:
    """Build the app. Without a store, accounts live in Postgres and the pool
    is opened for the app's lifetime."""
    use_database = store is None
    store = store or PostgresSecondFactorStore()
    identity = identity or HostedIdentityProvider()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if use_database:
            await init_pool()
        yield
        if use_database:
            await close_pool()

    app = FastAPI(
        title="Admin Guard",
        description="TOTP second factor for the portal admin area",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.verifier = verifier or VerificationService(store, identity)
    app.state.access = AccessManager(store, identity)

    @app.exception_handler(AdminGuardError)
    async def _guard_error(request: Request, exc: AdminGuardError):
        return JSONResponse(exc.to_body(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _request_error(request: Request, exc: RequestValidationError):
        err = ValidationError("Invalid request")
        return JSONResponse(err.to_body(), status_code=err.status_code)

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        err = TransientError()
        return JSONResponse(err.to_body(), status_code=err.status_code)

    # Import and include route modules
    from adminguard.dashboard.routes import access, verify

    app.include_router(verify.router)
    app.include_router(access.router)

    @app.get("/api/health")
    async def health():
        return {"ok": True, "version": __version__}

    return app
