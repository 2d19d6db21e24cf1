"""Data models shared by the mosaic components."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence
from urllib.parse import urlparse

import numpy as np

from imosaic.geo.crs import ProjectionDescriptor
from imosaic.geo.rectangle import Rectangle

CHANNELS = 4


def absolute_url(url: str | Path) -> str:
    """Resolve local paths to absolute form; keep URIs with a scheme as-is."""
    text = str(url)
    parsed = urlparse(text)
    # Single-letter schemes are Windows drive letters.
    if parsed.scheme and len(parsed.scheme) > 1:
        return text
    return str(Path(text).expanduser().resolve())


@dataclass(frozen=True)
class SourceImage:
    """One geo-referenced input image."""

    url: str
    projected_rectangle: Rectangle
    projection: ProjectionDescriptor
    geographic_rectangle: Rectangle

    @classmethod
    def create(
        cls,
        url: str | Path,
        projected_rectangle: Rectangle | Sequence[float],
        projection: ProjectionDescriptor | str,
    ) -> "SourceImage":
        """Build a source, resolving its URL and geographic extent."""
        if not isinstance(projected_rectangle, Rectangle):
            projected_rectangle = Rectangle.from_bounds(projected_rectangle)
        descriptor = ProjectionDescriptor.from_user_input(projection)
        return cls(
            url=absolute_url(url),
            projected_rectangle=projected_rectangle,
            projection=descriptor,
            geographic_rectangle=descriptor.approximate_geographic_extent(projected_rectangle),
        )


@dataclass(frozen=True)
class WorkerPartition:
    """Sources assigned to a single worker."""

    worker_id: int
    indices: tuple[int, ...]
    urls: tuple[str, ...]
    projections: tuple[ProjectionDescriptor, ...]
    projected_rectangles: tuple[Rectangle, ...]
    cache_size: int

    def __len__(self) -> int:
        return len(self.indices)


@dataclass(eq=False)
class Raster:
    """RGBA pixel buffer tagged with its extent and request iteration."""

    data: np.ndarray
    rectangle: Rectangle
    iteration: int

    def __post_init__(self) -> None:
        if self.data.ndim != 3 or self.data.shape[2] != CHANNELS:
            raise ValueError(
                f"Raster data must have shape (height, width, {CHANNELS}), got {self.data.shape}."
            )

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @classmethod
    def blank(cls, width: int, height: int, rectangle: Rectangle, iteration: int) -> "Raster":
        return cls(np.zeros((height, width, CHANNELS), dtype=np.uint8), rectangle, iteration)
