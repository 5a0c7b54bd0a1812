"""
Upload validation and storage placement.

Pure functions: the upload route asks for a decision and a destination and
does the I/O itself.
"""
import time
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..exceptions import UploadRejected

ALLOWED_VIDEO_MIMES = {
    "video/mp4",
    "video/avi",
    "video/mov",
    "video/quicktime",
    "video/wmv",
    "video/flv",
    "video/webm",
    "video/mkv",
    "video/x-matroska",
    "video/3gp",
    "application/octet-stream",  # Some clients send mp4 this way
}

ALLOWED_VIDEO_EXTENSIONS = {".mp4", ".avi", ".mov", ".wmv", ".flv", ".webm", ".mkv", ".3gp"}


@dataclass
class UploadDecision:
    accepted: bool
    reason: Optional[str] = None


def check_video_file(filename: str, mimetype: Optional[str], size: Optional[int] = None, max_size: Optional[int] = None) -> UploadDecision:
    """Accept a file whose MIME type or extension looks like video."""
    if not filename:
        return UploadDecision(False, "No video file provided")

    if max_size is not None and size is not None and size > max_size:
        return UploadDecision(False, f"File too large. Maximum size is {max_size // (1024 ** 3)}GB.")

    extension = Path(filename).suffix.lower()
    if (mimetype or "").lower() in ALLOWED_VIDEO_MIMES or extension in ALLOWED_VIDEO_EXTENSIONS:
        return UploadDecision(True)

    return UploadDecision(False, "Invalid file type. Only video files are allowed.")


def require_video_file(filename: str, mimetype: Optional[str], size: Optional[int] = None, max_size: Optional[int] = None) -> None:
    decision = check_video_file(filename, mimetype, size, max_size)
    if not decision.accepted:
        raise UploadRejected(decision.reason)


def destination_for(original_dir: Path, filename: str, prefix: str = "video") -> Path:
    """Unique path under ``original_dir`` keeping the original extension."""
    unique_suffix = f"{int(time.time() * 1000)}-{secrets.randbelow(10 ** 9)}"
    extension = Path(filename).suffix.lower()
    return Path(original_dir) / f"{prefix}-{unique_suffix}{extension}"


def processed_dir_for(processed_root: Path, video_id: str) -> Path:
    """Deterministic output directory for a video's artifacts."""
    return Path(processed_root) / str(video_id)


def safe_join(root: Path, relative: str) -> Optional[Path]:
    """Join a client-supplied relative path, refusing anything outside ``root``."""
    root = Path(root).resolve()
    candidate = (root / relative).resolve()
    if candidate == root or root not in candidate.parents:
        return None
    return candidate
