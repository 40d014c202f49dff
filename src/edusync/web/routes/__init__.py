"""Route handlers for the class server."""

from edusync.web.routes.health import router as health_router
from edusync.web.routes.leaderboard import router as leaderboard_router
from edusync.web.routes.replication import router as replication_router

__all__ = [
    "health_router",
    "leaderboard_router",
    "replication_router",
]
