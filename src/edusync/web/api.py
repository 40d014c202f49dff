"""FastAPI application factory for the class server.

A teacher device runs this app over its own store so student devices
can replicate with it on the local network.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from edusync.db.schemas import COLLECTIONS
from edusync.db.store import DocumentStore
from edusync.web.routes import health_router, leaderboard_router, replication_router

logger = structlog.get_logger(__name__)


def create_app(store: DocumentStore) -> FastAPI:
    """Create and configure the class server.

    Args:
        store: Document store served to student devices

    Returns:
        Configured FastAPI app instance
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "server_startup",
            db_path=str(store.db_path),
            documents={c: store.count(c) for c in COLLECTIONS},
        )
        yield

    app = FastAPI(
        title="EduSync Class Server",
        description="Replication endpoint for student devices",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.store = store

    # Student devices connect from arbitrary LAN addresses
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Fixed paths first; replication routes match any first segment
    app.include_router(health_router)
    app.include_router(leaderboard_router)
    app.include_router(replication_router)

    return app
