from __future__ import annotations

import enum
from pathlib import Path

from tubely.core.errors import ProcessingError

from .probe import MediaInspector, VideoDimensions

# Inclusive windows around 16:9 (~1.778) and 9:16 (0.5625); tolerate minor crops and padding.
LANDSCAPE_RATIO_RANGE = (1.70, 1.85)
PORTRAIT_RATIO_RANGE = (0.50, 0.60)


class GeometryCategory(str, enum.Enum):
    landscape = "landscape"
    portrait = "portrait"
    other = "other"


def classify_ratio(ratio: float) -> GeometryCategory:
    low, high = LANDSCAPE_RATIO_RANGE
    if low <= ratio <= high:
        return GeometryCategory.landscape
    low, high = PORTRAIT_RATIO_RANGE
    if low <= ratio <= high:
        return GeometryCategory.portrait
    return GeometryCategory.other


def classify_dimensions(width: int, height: int) -> GeometryCategory:
    """Bucket a pixel size into a geometry category.

    Raises:
        ProcessingError: If ``height`` is not positive.
    """
    if height <= 0:
        raise ProcessingError(f"cannot classify height {height}", code="invalid_video_dimensions")
    return classify_ratio(width / height)


def classify_video(path: Path, inspector: MediaInspector) -> GeometryCategory:
    dimensions: VideoDimensions = inspector.inspect(path)
    return classify_dimensions(dimensions.width, dimensions.height)


__all__ = [
    "GeometryCategory",
    "LANDSCAPE_RATIO_RANGE",
    "PORTRAIT_RATIO_RANGE",
    "classify_ratio",
    "classify_dimensions",
    "classify_video",
]
