from __future__ import annotations

import secrets
from dataclasses import dataclass

from .geometry import GeometryCategory

CONTAINER_EXTENSION = ".mp4"
KEY_ENTROPY_BYTES = 32
POINTER_SEPARATOR = ","


def derive_storage_key(category: GeometryCategory) -> str:
    """Return ``{category}/{random-id}.mp4`` with 256 bits of fresh CSPRNG output.

    Keys are never derived from content, so re-uploading identical bytes yields a new key.
    """
    token = secrets.token_urlsafe(KEY_ENTROPY_BYTES)
    return f"{GeometryCategory(category).value}/{token}{CONTAINER_EXTENSION}"


@dataclass(frozen=True, slots=True)
class StoredPointer:
    """Bucket/key pair persisted as ``"<bucket>,<key>"`` in ``videos.video_url``."""

    bucket: str
    key: str

    def encode(self) -> str:
        if not self.bucket or not self.key:
            raise ValueError("pointer needs both bucket and key")
        if POINTER_SEPARATOR in self.bucket or POINTER_SEPARATOR in self.key:
            raise ValueError(f"pointer component contains {POINTER_SEPARATOR!r}: {self.bucket!r}, {self.key!r}")
        return f"{self.bucket}{POINTER_SEPARATOR}{self.key}"

    @classmethod
    def decode(cls, raw: str) -> "StoredPointer":
        parts = raw.split(POINTER_SEPARATOR)
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"malformed stored pointer: {raw!r}")
        return cls(bucket=parts[0], key=parts[1])


__all__ = [
    "CONTAINER_EXTENSION",
    "KEY_ENTROPY_BYTES",
    "StoredPointer",
    "derive_storage_key",
]
