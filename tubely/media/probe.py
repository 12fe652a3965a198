from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Protocol

from tubely.core.errors import ProcessingError
from tubely.core.logging import get_logger

logger = get_logger(component="ffprobe")


@dataclass(frozen=True, slots=True)
class VideoDimensions:
    """Pixel size of the first video stream."""

    width: int
    height: int

    @property
    def ratio(self) -> float:
        return self.width / self.height


class MediaInspector(Protocol):
    def inspect(self, path: Path) -> VideoDimensions: ...


def run_ffprobe(target: Path, *, binary: str = "ffprobe", timeout_s: Optional[float] = None) -> Dict[str, Any]:
    """Run ffprobe on a media file and return its stream listing.

    Args:
        target: The path to the media file.
        binary: The ffprobe executable.
        timeout_s: Seconds before the process is killed.

    Returns:
        The decoded ffprobe JSON.

    Raises:
        ProcessingError: If ffprobe is missing, exits non-zero, times out or prints invalid JSON.
    """
    command = [
        binary,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_streams",
        str(target),
    ]
    try:
        proc = subprocess.run(
            command,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout_s,
        )
    except FileNotFoundError as exc:
        raise ProcessingError(f"{binary} not found", code="ffprobe_missing") from exc
    except subprocess.TimeoutExpired as exc:
        logger.error("ffprobe_timeout", path=str(target), timeout_s=timeout_s)
        raise ProcessingError(f"ffprobe timed out after {timeout_s}s", code="ffprobe_timeout") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        logger.error("ffprobe_failed", path=str(target), returncode=exc.returncode, stderr=stderr)
        raise ProcessingError(f"ffprobe failed: {stderr}", code="ffprobe_failed") from exc

    try:
        payload = json.loads(proc.stdout)
    except json.JSONDecodeError as exc:
        raise ProcessingError("ffprobe produced malformed JSON", code="ffprobe_malformed_output") from exc
    if not isinstance(payload, dict):
        raise ProcessingError("ffprobe produced malformed JSON", code="ffprobe_malformed_output")
    return payload


def first_video_dimensions(raw: Dict[str, Any]) -> VideoDimensions:
    """Pick the first video stream in ffprobe output and return its dimensions.

    Raises:
        ProcessingError: If there is no video stream or its size is missing or not positive.
    """
    streams = raw.get("streams")
    if not isinstance(streams, list):
        raise ProcessingError("ffprobe output has no stream list", code="ffprobe_malformed_output")

    stream = _first_video_stream(streams)
    if stream is None:
        raise ProcessingError("media has no video stream", code="no_video_stream")

    width = _int_or_none(stream.get("width"))
    height = _int_or_none(stream.get("height"))
    if not width or not height or width < 0 or height < 0:
        raise ProcessingError(
            f"video stream has invalid dimensions {stream.get('width')}x{stream.get('height')}",
            code="invalid_video_dimensions",
        )
    return VideoDimensions(width=width, height=height)


def _first_video_stream(streams: Iterable[Any]) -> Optional[Dict[str, Any]]:
    for stream in streams:
        if not isinstance(stream, dict):
            continue
        codec_type = stream.get("codec_type")
        if isinstance(codec_type, str) and codec_type.lower() == "video":
            return stream
    return None


def _int_or_none(value: Any) -> Optional[int]:
    if value in (None, "N/A", "") or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class FFprobeInspector:
    """Production inspector shelling out to ffprobe."""

    def __init__(self, *, binary: str = "ffprobe", timeout_s: Optional[float] = None):
        self.binary = binary
        self.timeout_s = timeout_s

    def inspect(self, path: Path) -> VideoDimensions:
        raw = run_ffprobe(path, binary=self.binary, timeout_s=self.timeout_s)
        return first_video_dimensions(raw)


__all__ = [
    "VideoDimensions",
    "MediaInspector",
    "FFprobeInspector",
    "run_ffprobe",
    "first_video_dimensions",
]
