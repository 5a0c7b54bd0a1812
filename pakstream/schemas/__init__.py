from .edge import EdgeServerCreate, EdgeServerUpdate, EdgeMetadataPush
from .video import VideoUpdate

__all__ = [
    "EdgeServerCreate", "EdgeServerUpdate", "EdgeMetadataPush",
    "VideoUpdate",
]
