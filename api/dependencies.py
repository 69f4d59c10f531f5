"""Dependency injection providers for the FastAPI application.

The application owns one ReadSyncEngine, created in the lifespan handler
and injected into route handlers through ``ReadStateStoreDep``.
"""

from typing import Annotated

from fastapi import Depends

from config import Settings, get_settings
from models.engine import ReadSyncEngine
from models.read_state import ReadStateStore


_engine: ReadSyncEngine | None = None


def get_engine() -> ReadSyncEngine:
    """Get the shared ReadSyncEngine instance.

    Raises:
        RuntimeError: If the engine hasn't been initialized yet.
    """
    if _engine is None:
        raise RuntimeError(
            "ReadSyncEngine not initialized. Call initialize_engine() first."
        )
    return _engine


ReadSyncEngineDep = Annotated[ReadSyncEngine, Depends(get_engine)]


def get_read_state_store(engine: ReadSyncEngineDep) -> ReadStateStore:
    """Get the store owned by the shared engine."""
    return engine.store


async def initialize_engine(settings: Settings | None = None) -> ReadSyncEngine:
    """Create and start the shared engine.

    Called once from the application lifespan. Any previous engine is
    stopped first.
    """
    global _engine

    if _engine is not None:
        await _engine.stop()

    _engine = ReadSyncEngine.from_settings(settings or get_settings())
    await _engine.start()
    return _engine


async def shutdown_engine() -> None:
    """Stop the shared engine and drop the reference."""
    global _engine

    if _engine is not None:
        await _engine.stop()
    _engine = None


SettingsDep = Annotated[Settings, Depends(get_settings)]
ReadStateStoreDep = Annotated[ReadStateStore, Depends(get_read_state_store)]
