from .video import Video
from .edge_server import EdgeServer
from .queue_entry import QueueEntry

__all__ = [
    "Video",
    "EdgeServer",
    "QueueEntry",
]
