"""Default reprojection worker backed by rasterio warping."""

from __future__ import annotations

import logging
import warnings
from contextlib import ExitStack
from dataclasses import dataclass

import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.errors import NotGeoreferencedWarning
from rasterio.transform import from_bounds
from rasterio.warp import reproject

from imosaic.geo.crs import GEOGRAPHIC_CRS, ProjectionDescriptor
from imosaic.geo.rectangle import Rectangle, union_geographic
from imosaic.logging_utils import ContextAdapter
from imosaic.workers.cache import ImageCache
from imosaic.workers.tasks import InitializeTask, ReprojectResult, ReprojectTask

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Source:
    url: str
    projection: ProjectionDescriptor
    projected_rectangle: Rectangle
    geographic_rectangle: Rectangle


def _to_uint8(data: np.ndarray) -> np.ndarray:
    """Scale integer bands to 8 bits and clip anything else."""
    if data.dtype == np.uint8:
        return data
    if np.issubdtype(data.dtype, np.integer):
        info = np.iinfo(data.dtype)
        scaled = (data.astype(np.float64) - info.min) * 255.0 / (info.max - info.min)
        return np.round(scaled).astype(np.uint8)
    return np.clip(np.nan_to_num(data), 0, 255).astype(np.uint8)


def decode_rgba(url: str) -> np.ndarray:
    """Read an image as a (4, height, width) uint8 RGBA array."""
    with warnings.catch_warnings():
        # Sources are placed by their projected rectangle, not embedded georeferencing.
        warnings.simplefilter("ignore", NotGeoreferencedWarning)
        with rasterio.open(url) as dataset:
            data = _to_uint8(dataset.read())
            count = dataset.count
            if count == 1:
                rgb = np.repeat(data, 3, axis=0)
                alpha = dataset.dataset_mask()[np.newaxis]
            elif count == 2:
                rgb = np.repeat(data[:1], 3, axis=0)
                alpha = data[1:2]
            elif count == 3:
                rgb = data
                alpha = dataset.dataset_mask()[np.newaxis]
            else:
                rgb = data[:3]
                alpha = data[3:4]
    return np.ascontiguousarray(np.concatenate([rgb, alpha], axis=0), dtype=np.uint8)


class ReprojectionWorker:
    """Stateful worker that owns one partition of the mosaic sources."""

    def __init__(self) -> None:
        self.worker_id: int | None = None
        self._sources: tuple[_Source, ...] = ()
        self._cache: ImageCache[int, np.ndarray] | None = None
        self._resampling = Resampling.bilinear
        self._log: logging.LoggerAdapter = ContextAdapter(LOGGER, {})

    @property
    def initialized(self) -> bool:
        return self._cache is not None

    def handle(self, task: InitializeTask | ReprojectTask) -> Rectangle | ReprojectResult | None:
        """Dispatch a task message to its handler."""
        if isinstance(task, InitializeTask):
            return self.initialize(task)
        if isinstance(task, ReprojectTask):
            return self.reproject(task)
        raise TypeError(f"Unsupported worker task: {type(task).__name__}")

    def initialize(self, task: InitializeTask) -> Rectangle | None:
        """Store the partition and return its geographic bounding rectangle."""
        if not (len(task.urls) == len(task.projections) == len(task.projected_rectangles)):
            raise ValueError("Worker partition lists must have equal lengths.")
        sources = []
        for url, projection, rectangle in zip(
            task.urls, task.projections, task.projected_rectangles
        ):
            sources.append(
                _Source(
                    url=url,
                    projection=projection,
                    projected_rectangle=rectangle,
                    geographic_rectangle=projection.approximate_geographic_extent(rectangle),
                )
            )
        self.worker_id = task.worker_id
        self._sources = tuple(sources)
        self._resampling = Resampling[task.resampling]
        self._cache = ImageCache(task.cache_size, self._load)
        self._log = ContextAdapter(LOGGER, {"worker": task.worker_id})
        self._log.debug("Worker initialized with %d sources.", len(sources))
        return union_geographic(source.geographic_rectangle for source in self._sources)

    def _load(self, index: int) -> np.ndarray:
        return decode_rgba(self._sources[index].url)

    def reproject(self, task: ReprojectTask) -> ReprojectResult:
        """Render every overlapping source into the requested rectangle."""
        if self._cache is None:
            raise RuntimeError("Worker received a reproject task before initialize.")
        if task.width < 1 or task.height < 1:
            raise ValueError("Reprojection size must be positive.")
        output = np.zeros((task.height, task.width, 4), dtype=np.uint8)
        target = task.rectangle
        dst_transform = from_bounds(*target.bounds(), task.width, task.height)
        dst_crs = CRS.from_user_input(GEOGRAPHIC_CRS)
        scratch = np.zeros((4, task.height, task.width), dtype=np.uint8)
        used = 0
        for index, source in enumerate(self._sources):
            if not source.geographic_rectangle.overlaps_geographic(target):
                continue
            used += 1
            pixels = self._cache.get_or_load(index)
            _, src_height, src_width = pixels.shape
            scratch.fill(0)
            reproject(
                source=pixels,
                destination=scratch,
                src_transform=from_bounds(
                    *source.projected_rectangle.bounds(), src_width, src_height
                ),
                src_crs=CRS.from_user_input(source.projection.crs),
                dst_transform=dst_transform,
                dst_crs=dst_crs,
                resampling=self._resampling,
            )
            covered = scratch[3] > 0
            output[covered] = np.moveaxis(scratch, 0, -1)[covered]
        self._log.debug(
            "Reprojected %d of %d sources into %s.",
            used,
            len(self._sources),
            target.bounds(),
            extra={"iteration": task.iteration},
        )
        return ReprojectResult(data=output, iteration=task.iteration)


_WORKER: ReprojectionWorker | None = None
_RUNTIME = ExitStack()


def bootstrap_worker_process() -> None:
    """Process initializer: load the GDAL runtime and create the worker."""
    global _WORKER
    _RUNTIME.enter_context(rasterio.Env())
    _WORKER = ReprojectionWorker()


def ping_worker_process() -> bool:
    """Return True once the process initializer has completed."""
    return _WORKER is not None


def run_worker_task(task: InitializeTask | ReprojectTask) -> Rectangle | ReprojectResult | None:
    """Execute a task against this process's worker."""
    if _WORKER is None:
        raise RuntimeError("Worker process was not bootstrapped.")
    return _WORKER.handle(task)
