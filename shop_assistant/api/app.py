"""
Application factory for the chat session API.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..config.loader import AssistantConfig, load_config
from ..core.errors import (
    AssistantError,
    BudgetExceeded,
    InvalidTransition,
    LedgerInvariantError,
    RequestCancelled,
    SessionEnded,
    SessionNotFound,
)
from ..core.manager import SessionManager
from .routes import router

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "SHOP_ASSISTANT_CONFIG"

# Most specific first; the first matching class decides the status code.
ERROR_STATUS = (
    (SessionNotFound, 404),
    (SessionEnded, 410),
    (InvalidTransition, 409),
    (BudgetExceeded, 402),
    (RequestCancelled, 499),
    (LedgerInvariantError, 500),
)


def _status_for(exc: AssistantError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the session manager if one was not injected, and run the idle
    session sweeper for the lifetime of the app.
    """
    if getattr(app.state, "manager", None) is None:
        app.state.manager = SessionManager.from_config(app.state.config)
    manager: SessionManager = app.state.manager
    manager.start()
    logger.info("Chat session API started")
    try:
        yield
    finally:
        manager.shutdown()
        logger.info("Chat session API stopped")


def create_app(
    config: Optional[AssistantConfig] = None,
    manager: Optional[SessionManager] = None
) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    When ``config`` is omitted it is loaded from the file named by
    ``SHOP_ASSISTANT_CONFIG`` (if set) plus environment overrides.
    """
    if config is None:
        config = load_config(os.getenv(CONFIG_PATH_ENV))

    app = FastAPI(title="Shop Assistant", lifespan=lifespan)
    app.state.config = config
    app.state.manager = manager

    @app.exception_handler(AssistantError)
    async def assistant_error_handler(request: Request, exc: AssistantError):
        status = _status_for(exc)
        if status >= 500:
            logger.error("Request failed: %s", exc)
        return JSONResponse(status_code=status, content={"success": False, "message": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"success": False, "message": str(exc)})

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=422, content={"success": False, "message": "Invalid request", "errors": jsonable_encoder(exc.errors())})

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check reporting whether the manager is ready.
        """
        current = getattr(request.app.state, "manager", None)
        return {"ok": current is not None, "sessions": len(current.registry) if current is not None else 0}

    app.include_router(router)
    return app
