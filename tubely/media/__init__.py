"""Media processing building blocks used by the ingestion pipeline."""

from tubely.media.faststart import ContainerRewriter, FFmpegFaststartRewriter
from tubely.media.geometry import GeometryCategory, classify_dimensions, classify_video
from tubely.media.keys import StoredPointer, derive_storage_key
from tubely.media.probe import FFprobeInspector, MediaInspector, VideoDimensions

__all__ = [
    "ContainerRewriter",
    "FFmpegFaststartRewriter",
    "FFprobeInspector",
    "GeometryCategory",
    "MediaInspector",
    "StoredPointer",
    "VideoDimensions",
    "classify_dimensions",
    "classify_video",
    "derive_storage_key",
]
