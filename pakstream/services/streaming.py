"""
Helpers for serving original files and HLS artifacts.
"""
import re
from pathlib import Path
from typing import Iterator, Optional, Tuple

from ..exceptions import InvalidRangeError

CHUNK_SIZE = 64 * 1024

CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".mp4": "video/mp4",
}

# Playlists are revalidated on every fetch, segments are immutable
CACHE_CONTROL = {
    ".m3u8": "no-cache",
    ".ts": "public, max-age=31536000, immutable",
    ".jpg": "public, max-age=86400",
    ".jpeg": "public, max-age=86400",
    ".png": "public, max-age=86400",
}

ARTIFACT_EXTENSIONS = {".m3u8", ".ts", ".jpg", ".jpeg", ".png"}

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


def content_type_for(path: str) -> str:
    return CONTENT_TYPES.get(Path(path).suffix.lower(), "application/octet-stream")


def cache_control_for(path: str) -> Optional[str]:
    return CACHE_CONTROL.get(Path(path).suffix.lower())


def parse_range(header: str, file_size: int) -> Tuple[int, int]:
    """Parse a single ``bytes=`` range into inclusive (start, end) offsets.

    Supports ``bytes=100-199``, open-ended ``bytes=100-`` and suffix
    ``bytes=-500`` forms. The end is clamped to the last byte.
    """
    match = _RANGE_RE.match(header.strip().replace(" ", ""))
    if not match or file_size <= 0:
        raise InvalidRangeError(header, file_size)

    first, last = match.groups()
    if not first and not last:
        raise InvalidRangeError(header, file_size)

    if not first:
        # Suffix range: the final N bytes
        length = int(last)
        if length == 0:
            raise InvalidRangeError(header, file_size)
        return max(0, file_size - length), file_size - 1

    start = int(first)
    end = int(last) if last else file_size - 1
    if start >= file_size or end < start:
        raise InvalidRangeError(header, file_size)
    return start, min(end, file_size - 1)


def iter_file_range(path: Path, start: int, end: int, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield bytes ``start..end`` (inclusive) of a file."""
    remaining = end - start + 1
    with open(path, "rb") as f:
        f.seek(start)
        while remaining > 0:
            chunk = f.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk
