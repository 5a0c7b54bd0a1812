from .videos import router as videos_router
from .edge import router as edge_router
from .events import router as events_router
from .health import router as health_router

__all__ = [
    "videos_router",
    "edge_router",
    "events_router",
    "health_router",
]
