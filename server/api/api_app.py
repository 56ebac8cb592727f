"""FastAPI application entry point for the embedding sync API."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from server.api.routers.SearchRouter import search_router
from server.api.routers.SyncRouter import sync_router
from services.embedding_sync.SyncEngine import SyncEngine
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging

app_version = os.getenv("APP_VERSION", "unknown")


def create_app(engine: SyncEngine | None = None, config: HelperConfig | None = None) -> FastAPI:
    """Build the API app.

    Args:
        engine (SyncEngine | None): A ready engine to serve. When omitted the
            lifespan builds one from the environment and boots its clients.
        config (HelperConfig | None): Configuration; read from the environment when omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage application startup and shutdown."""
        app.state.logging = config.get_logger() if config else setup_logging()
        app.state.config = config or HelperConfig(logger=app.state.logging)

        owns_engine = engine is None
        app.state.engine = engine or SyncEngine.from_config(app.state.config)
        if owns_engine:
            await app.state.engine.start()

        if not app.state.engine.index.available:
            app.state.logging.warning("Vector index not configured: sync and search are no-ops.")
        app.state.logging.info("Embedding sync API ready.")
        yield

        # Shutdown
        if owns_engine:
            await app.state.engine.close()
        app.state.logging.info("Embedding sync API shut down.")

    app = FastAPI(
        title="Embedding Sync",
        description="Keeps the semantic search index of a multi-tenant compliance app in sync with its records.",
        version=app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sync_router)
    app.include_router(search_router)
    return app


app = create_app()


# Server Start
if __name__ == "__main__":
    # start server
    import uvicorn
    port = int(os.getenv("APP_PORT", "8000"))
    setup_logging().info("Starting embedding sync API v%s on port %d...", app_version, port)
    uvicorn.run(app, host="0.0.0.0", port=port)
