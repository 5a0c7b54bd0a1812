"""
Media Transcoder

Turns an uploaded video into an HLS package:
- Probes duration / resolution / size
- Encodes one HLS variant per rung of the quality ladder the source can fill
- Extracts evenly spaced thumbnails
- Writes a master playlist tying the variants together

The processing queue only depends on the ``MediaTranscoder`` protocol; the
ffmpeg adapter below is the default implementation.
"""

import json
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from ..exceptions import TranscodeError
from ..logging_config import get_logger

logger = get_logger("transcoder")

ProgressCallback = Callable[[int, str], None]


@dataclass
class TranscodeResult:
    """What a finished transcode hands back to the queue"""
    duration: Optional[float]
    resolution: Optional[str]
    file_size: Optional[int]
    processed_files: Dict[str, Any] = field(default_factory=dict)


class MediaTranscoder(Protocol):
    """Anything that can turn an input file into HLS outputs.

    ``process`` may be a plain function (run in a worker thread) or a
    coroutine function (awaited on the event loop).
    """

    def process(
        self,
        video_id: str,
        input_path: str,
        output_dir: str,
        progress: ProgressCallback,
    ) -> TranscodeResult:
        ...


@dataclass
class Quality:
    resolution: str
    width: int
    height: int
    bitrate: str  # ffmpeg notation, e.g. "2500k"

    @property
    def bandwidth(self) -> int:
        return int(self.bitrate.rstrip("k")) * 1000


class FFmpegTranscoder:
    """HLS packaging via the ffmpeg / ffprobe command line tools"""

    QUALITIES = [
        Quality("360p", 640, 360, "500k"),
        Quality("480p", 854, 480, "1000k"),
        Quality("720p", 1280, 720, "2500k"),
        Quality("1080p", 1920, 1080, "5000k"),
    ]

    THUMBNAIL_COUNT = 5
    THUMBNAIL_SIZE = "320x180"
    SEGMENT_SECONDS = 10

    def __init__(self, ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe", command_timeout: Optional[float] = None):
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.command_timeout = command_timeout

    def process(
        self,
        video_id: str,
        input_path: str,
        output_dir: str,
        progress: ProgressCallback,
    ) -> TranscodeResult:
        hls_dir = Path(output_dir) / "hls"
        hls_dir.mkdir(parents=True, exist_ok=True)

        metadata = self.probe(input_path)
        progress(10, "Getting video metadata...")

        thumbnails = self.generate_thumbnails(input_path, hls_dir, video_id, metadata["duration"], progress)
        variants = self.generate_variants(input_path, hls_dir, video_id, metadata, progress)
        if not variants:
            raise TranscodeError("No HLS variants could be generated")

        master_playlist = self.write_master_playlist(variants, hls_dir)
        progress(95, "Generating master playlist...")

        progress(100, "Processing completed!")
        return TranscodeResult(
            duration=metadata["duration"],
            resolution=metadata["resolution"],
            file_size=metadata["file_size"],
            processed_files={
                "hls": {
                    "master_playlist": master_playlist,
                    "variants": variants,
                    "segments": [s for v in variants for s in v["segments"]],
                },
                "thumbnails": thumbnails,
                "poster": thumbnails[0] if thumbnails else None,
            },
        )

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(cmd, capture_output=True, check=True, timeout=self.command_timeout)
        except FileNotFoundError as e:
            raise TranscodeError(f"{cmd[0]} is not installed") from e
        except subprocess.TimeoutExpired as e:
            raise TranscodeError(f"{cmd[0]} timed out after {self.command_timeout}s") from e
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace")[-500:] if e.stderr else ""
            raise TranscodeError(f"{cmd[0]} failed: {stderr}") from e

    def probe(self, input_path: str) -> Dict[str, Any]:
        """Duration, dimensions and size of the first video stream"""
        result = self._run([
            self.ffprobe, "-v", "error",
            "-print_format", "json",
            "-show_format", "-show_streams",
            str(input_path),
        ])
        data = json.loads(result.stdout or b"{}")

        stream = next((s for s in data.get("streams", []) if s.get("codec_type") == "video"), None)
        if stream is None:
            raise TranscodeError("No video stream found")

        fmt = data.get("format", {})
        width, height = int(stream["width"]), int(stream["height"])
        return {
            "duration": float(fmt.get("duration", 0) or 0),
            "width": width,
            "height": height,
            "resolution": f"{width}x{height}",
            "file_size": int(fmt.get("size", 0) or 0),
        }

    def generate_thumbnails(
        self,
        input_path: str,
        output_dir: Path,
        video_id: str,
        duration: float,
        progress: ProgressCallback,
    ) -> List[str]:
        thumbnails = []
        for i in range(1, self.THUMBNAIL_COUNT + 1):
            timestamp = (duration / (self.THUMBNAIL_COUNT + 1)) * i
            name = f"{video_id}_thumb_{i}.jpg"
            try:
                self._run([
                    self.ffmpeg, "-y",
                    "-ss", f"{timestamp:.2f}",
                    "-i", str(input_path),
                    "-frames:v", "1",
                    "-s", self.THUMBNAIL_SIZE,
                    str(output_dir / name),
                ])
            except TranscodeError as e:
                # A missing thumbnail does not fail the video
                logger.warning("thumbnail_failed", video_id=video_id, index=i, error=str(e))
                continue
            thumbnails.append(name)
            progress(15 + i * 2, f"Generating thumbnail {i}/{self.THUMBNAIL_COUNT}...")
        return thumbnails

    def generate_variants(
        self,
        input_path: str,
        output_dir: Path,
        video_id: str,
        metadata: Dict[str, Any],
        progress: ProgressCallback,
    ) -> List[Dict[str, Any]]:
        ladder = [q for q in self.QUALITIES if metadata["width"] >= q.width and metadata["height"] >= q.height]
        if not ladder:
            ladder = [Quality("original", metadata["width"], metadata["height"], "500k")]

        variants = []
        for index, quality in enumerate(ladder):
            try:
                variants.append(self._encode_variant(input_path, output_dir, video_id, quality))
            except TranscodeError as e:
                logger.warning("variant_failed", video_id=video_id, resolution=quality.resolution, error=str(e))
                continue
            # Variants cover 25% .. 90% of the overall progress
            progress(25 + int(65 * (index + 1) / len(ladder)), f"Encoded {quality.resolution}")
        return variants

    def _encode_variant(self, input_path: str, output_dir: Path, video_id: str, quality: Quality) -> Dict[str, Any]:
        playlist = f"{video_id}_{quality.resolution}.m3u8"
        segment_pattern = output_dir / f"{video_id}_{quality.resolution}_%03d.ts"
        bufsize = f"{int(quality.bitrate.rstrip('k')) * 2}k"

        self._run([
            self.ffmpeg, "-y", "-i", str(input_path),
            "-c:v", "libx264", "-c:a", "aac",
            "-vf", f"scale={quality.width}:{quality.height}",
            "-b:v", quality.bitrate, "-maxrate", quality.bitrate, "-bufsize", bufsize,
            "-b:a", "128k",
            "-preset", "medium", "-crf", "23",
            "-profile:v", "main", "-g", "48", "-sc_threshold", "0",
            "-hls_time", str(self.SEGMENT_SECONDS),
            "-hls_list_size", "0",
            "-hls_segment_filename", str(segment_pattern),
            "-f", "hls",
            str(output_dir / playlist),
        ])

        segments = sorted(p.name for p in output_dir.glob(f"{video_id}_{quality.resolution}_*.ts"))
        return {
            "resolution": quality.resolution,
            "width": quality.width,
            "height": quality.height,
            "bitrate": quality.bandwidth,
            "playlist": playlist,
            "segments": segments,
        }

    def write_master_playlist(self, variants: List[Dict[str, Any]], output_dir: Path) -> str:
        lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
        for variant in variants:
            lines.append(
                f"#EXT-X-STREAM-INF:BANDWIDTH={variant['bitrate']},"
                f"RESOLUTION={variant['width']}x{variant['height']}"
            )
            lines.append(variant["playlist"])
        (output_dir / "master.m3u8").write_text("\n".join(lines) + "\n")
        return "master.m3u8"
