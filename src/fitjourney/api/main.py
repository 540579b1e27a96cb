"""FastAPI application factory.

Serve with ``uvicorn --factory fitjourney.api.main:create_app``.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fitjourney.api.routes import profile, progress, sync as sync_routes
from fitjourney.cloud.auth import NotLoggedInError, SessionExpiredError
from fitjourney.container import Services, build_services


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build and return the FastAPI app.

    Args:
        services: Pre-built container (tests); built from settings otherwise.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.services.close()

    app = FastAPI(
        title="FitJourney Sync API",
        description="Local-first workout tracking with cloud sync",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services or build_services()

    @app.exception_handler(NotLoggedInError)
    async def not_logged_in(request: Request, exc: NotLoggedInError):
        return JSONResponse(status_code=401, content={"detail": str(exc)})

    @app.exception_handler(SessionExpiredError)
    async def session_expired(request: Request, exc: SessionExpiredError):
        return JSONResponse(status_code=401, content={"detail": str(exc)})

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])
    app.include_router(progress.router, prefix="/progress", tags=["progress"])
    app.include_router(profile.router, prefix="/profile", tags=["profile"])

    return app

