"""One-shot headless composite rendering."""

from __future__ import annotations

import logging
from typing import Sequence

from imosaic.config import MosaicOptions
from imosaic.coordinator import IterationCounter, RequestCoordinator
from imosaic.errors import ConfigurationError, WorkerInitializationError
from imosaic.geo.rectangle import Rectangle, union_all, union_geographic
from imosaic.models import Raster, SourceImage
from imosaic.workers.pool import WORKER_BACKENDS, HandleFactory, WorkerPool, partition_sources

LOGGER = logging.getLogger(__name__)


def coverage_rectangle(sources: Sequence[SourceImage]) -> Rectangle:
    """Return the geographic union of all source extents."""
    coverage = union_geographic(source.geographic_rectangle for source in sources)
    if coverage is None:
        raise ConfigurationError("At least one source image is required.")
    return coverage


def render_mosaic(
    sources: Sequence[SourceImage],
    options: MosaicOptions,
    *,
    rectangle: Rectangle | None = None,
    size: tuple[int, int] | None = None,
    handle_factory: HandleFactory | None = None,
) -> Raster:
    """Start a pool, composite one rectangle, and shut the pool down.

    Without ``rectangle`` the whole coverage is rendered at the
    full-coverage size.
    """
    options.validate()
    partitions = partition_sources(
        sources,
        options.resolved_concurrency(),
        options.image_cache_size,
    )
    factory = handle_factory or WORKER_BACKENDS[options.worker_backend]
    with WorkerPool(partitions, handle_factory=factory, resampling=options.resampling) as pool:
        coverage = union_all(pool.start(timeout=options.task_timeout))
        if coverage is None:
            raise WorkerInitializationError("Workers reported no geographic coverage.")
        target = coverage if rectangle is None else rectangle.clip(coverage)
        if target.is_empty():
            raise ConfigurationError(
                f"Requested rectangle {rectangle.bounds() if rectangle else None} "
                "does not overlap the mosaic."
            )
        width, height = size or options.full_coverage_size
        coordinator = RequestCoordinator(
            pool,
            IterationCounter(),
            check_all_iterations=options.check_all_iterations,
            timeout=options.task_timeout,
        )
        try:
            raster = coordinator.project(width, height, target, 0)
        finally:
            coordinator.close()
    LOGGER.info("Rendered %dx%d composite of %s.", width, height, target.bounds())
    return raster
