"""
Read-through cache of video records for the segment serving path.

Every HLS segment request needs the owning record to exist; without the
cache each segment fetch would hit the database. Entries expire after a fixed
TTL and are evicted explicitly when a record is updated or deleted.
"""
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Tuple

from .video_store import VideoStore

DEFAULT_TTL = 5 * 60  # seconds
DEFAULT_MAX_ENTRIES = 10000


class MetadataCache:
    """TTL + LRU cache keyed by video id."""

    def __init__(
        self,
        store: VideoStore,
        ttl: float = DEFAULT_TTL,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[Dict[str, Any], float]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, video_id: str) -> Optional[Dict[str, Any]]:
        """Return a fresh snapshot, reading through to the store when needed.

        Lookups for records that do not exist are not cached, so a record
        becomes visible as soon as it is created. Each caller gets its own
        top-level copy; nested values such as ``processed_files`` are shared
        and must be treated as read-only.
        """
        now = self._clock()
        with self._lock:
            entry = self._entries.get(video_id)
            if entry is not None:
                snapshot, stored_at = entry
                if now - stored_at < self.ttl:
                    self._entries.move_to_end(video_id)
                    self.hits += 1
                    return dict(snapshot)
                del self._entries[video_id]
            self.misses += 1

        snapshot = self._store.get(video_id)
        if snapshot is None:
            return None

        # Concurrent refreshes of the same key: last writer wins
        with self._lock:
            self._entries[video_id] = (snapshot, self._clock())
            self._entries.move_to_end(video_id)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return dict(snapshot)

    def invalidate(self, video_id: str) -> bool:
        with self._lock:
            return self._entries.pop(video_id, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl,
            "hits": self.hits,
            "misses": self.misses,
        }
