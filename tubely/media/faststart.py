from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional, Protocol

from tubely.core.errors import ProcessingError
from tubely.core.logging import get_logger

PROCESSING_SUFFIX = ".processing"

logger = get_logger(component="faststart")


class ContainerRewriter(Protocol):
    def rewrite(self, path: Path) -> Path: ...


def faststart_output_path(source: Path) -> Path:
    return source.with_name(source.name + PROCESSING_SUFFIX)


class FFmpegFaststartRewriter:
    """Move the MP4 ``moov`` atom to the front of the file with a stream copy.

    Audio and video samples are passed through untouched (``-c copy``); only the
    container layout changes, so playback can start from a prefix of the file.
    """

    def __init__(self, *, binary: str = "ffmpeg", timeout_s: Optional[float] = None):
        self.binary = binary
        self.timeout_s = timeout_s

    def command(self, source: Path, destination: Path) -> list[str]:
        return [
            self.binary,
            "-nostdin",
            "-v",
            "error",
            "-y",
            "-i",
            str(source),
            "-c",
            "copy",
            "-movflags",
            "faststart",
            "-f",
            "mp4",
            str(destination),
        ]

    def rewrite(self, path: Path) -> Path:
        destination = faststart_output_path(path)
        try:
            subprocess.run(
                self.command(path, destination),
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout_s,
            )
        except FileNotFoundError as exc:
            destination.unlink(missing_ok=True)
            raise ProcessingError(f"{self.binary} not found", code="ffmpeg_missing") from exc
        except subprocess.TimeoutExpired as exc:
            destination.unlink(missing_ok=True)
            logger.error("faststart_timeout", path=str(path), timeout_s=self.timeout_s)
            raise ProcessingError(f"ffmpeg timed out after {self.timeout_s}s", code="ffmpeg_timeout") from exc
        except subprocess.CalledProcessError as exc:
            destination.unlink(missing_ok=True)
            stderr = (exc.stderr or "").strip()
            logger.error("faststart_failed", path=str(path), returncode=exc.returncode, stderr=stderr)
            raise ProcessingError(f"ffmpeg failed: {stderr}", code="ffmpeg_failed") from exc

        if not destination.is_file() or destination.stat().st_size == 0:
            destination.unlink(missing_ok=True)
            raise ProcessingError("ffmpeg produced no output", code="ffmpeg_empty_output")

        logger.info("faststart_rewritten", source=str(path), output=str(destination))
        return destination


__all__ = ["ContainerRewriter", "FFmpegFaststartRewriter", "faststart_output_path", "PROCESSING_SUFFIX"]
