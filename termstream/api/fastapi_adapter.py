"""
FastAPI server adapter
Exposes the session registry over HTTP and WebSocket
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import ServerSettings
from ..terminal.models import SessionNotFoundError, SpawnError, UnauthorizedError
from ..terminal.registry import SessionRegistry
from .pty_routes import router as pty_router
from .pty_routes import ws_router as pty_ws_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("PTY server starting up...")
    yield
    logger.info("PTY server shutting down...")
    app.state.registry.kill_all()


def create_fastapi_app(
    registry: SessionRegistry, settings: Optional[ServerSettings] = None
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        registry: The session registry served by this app
        settings: Server settings; the token is read from here

    Returns:
        The configured application
    """
    app = FastAPI(
        title="termstream",
        description="PTY sessions over HTTP and WebSocket",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.settings = settings or ServerSettings()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    register_exception_handlers(app)

    @app.get("/health")
    async def health():
        return {"ok": True}

    app.include_router(pty_router)
    app.include_router(pty_ws_router)

    return app


def register_exception_handlers(app: FastAPI) -> None:
    """Map the session error taxonomy to JSON error responses"""

    @app.exception_handler(UnauthorizedError)
    async def unauthorized_handler(request: Request, exc: UnauthorizedError):
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    @app.exception_handler(SessionNotFoundError)
    async def not_found_handler(request: Request, exc: SessionNotFoundError):
        return JSONResponse(status_code=404, content={"error": "session not found"})

    @app.exception_handler(SpawnError)
    async def spawn_error_handler(request: Request, exc: SpawnError):
        logger.error(f"[pty.create] {exc.message}")
        return JSONResponse(status_code=500, content={"error": exc.message})


async def run_fastapi_server(app: FastAPI, settings: ServerSettings) -> None:
    """Run the server until it is asked to stop"""
    import uvicorn

    config = uvicorn.Config(
        app=app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )
    server = uvicorn.Server(config)

    logger.info(f"Listening on http://{settings.host}:{settings.port}")
    logger.info(f"Token: {settings.token}")
    await server.serve()
