"""Main entry point for the Zenfeed reader service.

Creates the FastAPI app that hosts the read-state synchronization engine
and the API proxy.

To run the development server:
    uvicorn main:app --reload

To run in production:
    uvicorn main:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.dependencies import initialize_engine, shutdown_engine
from api.exceptions import (
    ProxyRequestError,
    generic_exception_handler,
    proxy_request_error_handler,
    runtime_error_handler,
    value_error_handler,
)
from api.routes import proxy as proxy_routes
from api.routes import read_state as read_state_routes
from config import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the read-state engine on startup and stop it on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to FastAPI to handle requests.
    """
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    logger.info(f"Starting Zenfeed reader (backend: {settings.backend_url})")
    await initialize_engine(settings)

    yield

    logger.info("Shutting down Zenfeed reader")
    await shutdown_engine()


app = FastAPI(
    title="Zenfeed Reader",
    description="Read-state synchronization and API proxy for a Zenfeed backend",
    version="0.1.0",
    lifespan=lifespan,
)

# Order matters: specific exceptions before general ones
app.add_exception_handler(ProxyRequestError, proxy_request_error_handler)
app.add_exception_handler(ValueError, value_error_handler)
app.add_exception_handler(RuntimeError, runtime_error_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.include_router(read_state_routes.router)
app.include_router(proxy_routes.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {"status": "healthy"}
