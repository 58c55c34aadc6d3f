"""Main FastAPI application and server startup."""

import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request

from role_memory.config import MemorySettings
from role_memory.persist import TABLES, KVStore
from role_memory.telemetry import setup_logging
from .memory import MemoryServices, get_services, router as memory_router
from .schemas import HealthResponse


logger = logging.getLogger(__name__)


def create_app(settings: Optional[MemorySettings] = None, kv: Optional[KVStore] = None) -> FastAPI:
    """
    Build the role memory API.

    Args:
        settings: Role memory settings (default: from environment)
        kv: Existing KV store to serve from; opened at `settings.db_path` when absent

    Returns:
        FastAPI app with the memory router mounted
    """
    settings = settings or MemorySettings.from_env()

    app = FastAPI(
        title="Role Memory API",
        description="Long-term episodic and semantic memory for conversational roles",
        version="0.1.0",
    )
    app.state.memory = MemoryServices(settings, kv)
    app.include_router(memory_router)

    @app.on_event("shutdown")
    async def shutdown_event():
        """Close the database on shutdown."""
        app.state.memory.close()

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request):
        """Health check endpoint."""
        services = get_services(request)
        return HealthResponse(
            status="ok",
            db_path=str(services.kv.db_path),
            tables={table: services.kv.count(table) for table in TABLES},
        )

    logger.info(f"Role memory API ready, database at {settings.db_path}")
    return app


def run():
    """Run the API server."""
    settings = MemorySettings.from_env()
    setup_logging(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
