"""Messages exchanged with reprojection workers."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from imosaic.geo.crs import ProjectionDescriptor
from imosaic.geo.rectangle import Rectangle
from imosaic.models import WorkerPartition


@dataclass(frozen=True)
class InitializeTask:
    """Assign a partition of sources to a worker."""

    worker_id: int
    urls: tuple[str, ...]
    projections: tuple[ProjectionDescriptor, ...]
    projected_rectangles: tuple[Rectangle, ...]
    cache_size: int
    resampling: str = "bilinear"

    @classmethod
    def for_partition(
        cls,
        partition: WorkerPartition,
        *,
        resampling: str = "bilinear",
    ) -> "InitializeTask":
        return cls(
            worker_id=partition.worker_id,
            urls=partition.urls,
            projections=partition.projections,
            projected_rectangles=partition.projected_rectangles,
            cache_size=partition.cache_size,
            resampling=resampling,
        )


@dataclass(frozen=True)
class ReprojectTask:
    """Render the worker's sources into a geographic rectangle."""

    width: int
    height: int
    rectangle: Rectangle
    iteration: int


@dataclass(frozen=True)
class ReprojectResult:
    """Partial RGBA raster produced by one worker."""

    data: np.ndarray
    iteration: int
