"""Mosaic controller: startup, viewport-driven refresh, and picking."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Sequence

from imosaic.config import MosaicOptions, build_sources, load_mosaic_definition
from imosaic.coordinator import IterationCounter, RequestCoordinator
from imosaic.errors import ConfigurationError, WorkerInitializationError
from imosaic.geo.crs import ProjectionDescriptor
from imosaic.geo.rectangle import Rectangle, union_all
from imosaic.index import SpatialIndex
from imosaic.models import Raster, SourceImage
from imosaic.scene import DebugOverlay, Scene
from imosaic.viewport import ViewState, estimate_view_rectangle, should_refresh
from imosaic.workers.pool import WORKER_BACKENDS, HandleFactory, WorkerPool, partition_sources

LOGGER = logging.getLogger(__name__)


def source_footprint(source: SourceImage) -> list[tuple[float, float]]:
    """Return the NW, NE, SE, SW corners of a source in lon/lat."""
    rectangle = source.projected_rectangle
    corners = (
        (rectangle.west, rectangle.north),
        (rectangle.east, rectangle.north),
        (rectangle.east, rectangle.south),
        (rectangle.west, rectangle.south),
    )
    return [source.projection.unproject(x, y) for x, y in corners]


def build_source_index(sources: Sequence[SourceImage]) -> SpatialIndex[int]:
    """Index source positions by geographic rectangle."""
    return SpatialIndex(
        (position, source.geographic_rectangle) for position, source in enumerate(sources)
    )


def pick_sources(
    sources: Sequence[SourceImage],
    index: SpatialIndex[int],
    lon: float,
    lat: float,
) -> list[SourceImage]:
    """Return sources whose native rectangle contains the lon/lat point.

    The index only narrows candidates by approximate geographic extent;
    the exact test happens in each source's own projection.
    """
    picked = []
    for position in index.search(Rectangle.point(lon, lat)):
        source = sources[position]
        x, y = source.projection.project(lon, lat)
        if source.projected_rectangle.contains(x, y):
            picked.append(source)
    return picked


class MosaicController:
    """Keep a full-coverage layer plus one sharp local layer for the view.

    ``start`` reprojects the whole coverage once at low resolution. After
    that every camera change requests a reprojection of just the visible
    rectangle, tagged with a new iteration; results whose iteration is no
    longer current are dropped.
    """

    def __init__(
        self,
        sources: Sequence[SourceImage],
        scene: Scene,
        options: MosaicOptions | None = None,
        *,
        handle_factory: HandleFactory | None = None,
    ) -> None:
        if not sources:
            raise ConfigurationError("At least one source image is required.")
        options = options or MosaicOptions()
        options.validate()
        self.sources = tuple(sources)
        self.options = options
        self.scene = scene
        self._index = build_source_index(self.sources)
        self._pool = WorkerPool(
            partition_sources(
                self.sources,
                options.resolved_concurrency(),
                options.image_cache_size,
            ),
            handle_factory=handle_factory or WORKER_BACKENDS[options.worker_backend],
            resampling=options.resampling,
        )
        self._counter = IterationCounter()
        self._coordinator = RequestCoordinator(
            self._pool,
            self._counter,
            check_all_iterations=options.check_all_iterations,
            timeout=options.task_timeout,
        )
        self._lock = threading.RLock()
        self._coverage: Rectangle | None = None
        self._full_layer: Any = None
        self._local_layer: Any = None
        self._local_rectangle: Rectangle | None = None
        self._requested_rectangle: Rectangle | None = None
        self._freeze = False
        self._debug_show_bounds = False
        self._waited_frames = 0
        self._removers: list[Callable[[], None]] = []
        self._startup: ThreadPoolExecutor | None = None
        self.ready: Future | None = None

    @classmethod
    def from_inputs(
        cls,
        urls: Sequence[str | Path],
        projected_rectangles: Sequence[Rectangle | Sequence[float]],
        projections: Sequence[ProjectionDescriptor | str],
        scene: Scene,
        options: MosaicOptions | None = None,
        **kwargs: Any,
    ) -> "MosaicController":
        """Build a controller from parallel url/rectangle/projection lists."""
        return cls(build_sources(urls, projected_rectangles, projections), scene, options, **kwargs)

    @classmethod
    def from_definition(cls, path: Path, scene: Scene, **kwargs: Any) -> "MosaicController":
        definition = load_mosaic_definition(path)
        return cls(definition.sources, scene, definition.options, **kwargs)

    def __enter__(self) -> "MosaicController":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def coverage(self) -> Rectangle | None:
        return self._coverage

    @property
    def iteration(self) -> int:
        return self._counter.current

    @property
    def concurrency(self) -> int:
        return len(self._pool)

    @property
    def full_coverage_layer(self) -> Any:
        return self._full_layer

    @property
    def local_layer(self) -> Any:
        return self._local_layer

    @property
    def local_rectangle(self) -> Rectangle | None:
        return self._local_rectangle

    @property
    def requested_rectangle(self) -> Rectangle | None:
        """Rectangle of the reprojection currently in flight, if any."""
        return self._requested_rectangle

    @property
    def freeze(self) -> bool:
        return self._freeze

    @freeze.setter
    def freeze(self, value: bool) -> None:
        with self._lock:
            was_frozen = self._freeze
            self._freeze = bool(value)
        if was_frozen and not value:
            self.refresh(self.scene.current_view())

    @property
    def debug_show_bounds(self) -> bool:
        return self._debug_show_bounds

    @debug_show_bounds.setter
    def debug_show_bounds(self, value: bool) -> None:
        self._debug_show_bounds = bool(value)
        debug = self._debug()
        if debug is not None:
            debug.set_bounds_visible(self._debug_show_bounds)

    def _debug(self) -> DebugOverlay | None:
        return getattr(self.scene, "debug", None)

    def start(self) -> Future:
        """Begin asynchronous startup and return the readiness future."""
        if self.ready is not None:
            return self.ready
        self._startup = ThreadPoolExecutor(max_workers=1, thread_name_prefix="imosaic-startup")
        self.ready = self._startup.submit(self._run_startup)
        return self.ready

    def _run_startup(self) -> Rectangle:
        try:
            rectangles = self._pool.start(timeout=self.options.task_timeout)
            coverage = union_all(rectangles)
            if coverage is None:
                raise WorkerInitializationError("Workers reported no geographic coverage.")
            self._coverage = coverage
            LOGGER.info("Mosaic coverage is %s.", coverage.bounds())

            width, height = self.options.full_coverage_size
            raster = self._coordinator.project(width, height, coverage, self._counter.current)
            layers = self.scene.layers
            full_layer = layers.create_imagery_layer(raster, coverage, self.options.credit)
            layers.add_layer(full_layer)
            with self._lock:
                self._full_layer = full_layer

            self._removers.append(self.scene.camera_changed.add_listener(self._on_camera_changed))
            self._removers.append(self.scene.post_render.add_listener(self._on_post_render))
            self.refresh(self.scene.current_view())
            return coverage
        except Exception:
            LOGGER.exception("Mosaic startup failed.")
            raise

    def refresh(self, view: ViewState) -> Future | None:
        """Request a local reprojection for the view, unless nothing changed.

        Returns the pending request future, or None when no request was made.
        """
        with self._lock:
            coverage = self._coverage
            if coverage is None or self._full_layer is None:
                LOGGER.debug("Ignoring refresh before startup completed.")
                return None
            candidate = estimate_view_rectangle(
                view,
                coverage,
                samples=self.options.samples,
                max_view_angle=self.options.max_view_angle,
            )
            live = self._local_rectangle if self._local_layer is not None else None
            if candidate is None or not should_refresh(candidate, coverage, live):
                return None
            if candidate == self._requested_rectangle:
                return None
            debug = self._debug()
            if debug is not None:
                debug.show_bounds(candidate, self._debug_show_bounds)
            iteration = self._counter.increment()
            self._requested_rectangle = candidate

        width, height = self.options.local_size
        try:
            future = self._coordinator.request_projection(width, height, candidate, iteration)
        except Exception:
            LOGGER.exception("Could not submit reprojection.", extra={"iteration": iteration})
            with self._lock:
                if self._requested_rectangle == candidate:
                    self._requested_rectangle = None
            return None
        future.add_done_callback(
            lambda done: self._on_projection_done(done, candidate, iteration)
        )
        return future

    def _on_projection_done(self, future: Future, rectangle: Rectangle, iteration: int) -> None:
        with self._lock:
            if self._counter.is_current(iteration):
                self._requested_rectangle = None
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            LOGGER.error("Reprojection failed: %s", error, extra={"iteration": iteration})
            return
        self._install_local(future.result(), rectangle)

    def _install_local(self, raster: Raster, rectangle: Rectangle) -> None:
        with self._lock:
            if not self._counter.is_current(raster.iteration):
                LOGGER.debug("Discarding superseded raster.", extra={"iteration": raster.iteration})
                return
            layers = self.scene.layers
            new_layer = layers.create_imagery_layer(raster, rectangle, self.options.credit)
            layers.add_layer(new_layer)
            if self._local_layer is not None:
                layers.remove_layer(self._local_layer)
            layers.set_cutout(self._full_layer, None)
            self._waited_frames = 0
            self._local_rectangle = rectangle
            self._local_layer = new_layer
        LOGGER.debug("Installed local layer %s.", rectangle.bounds(), extra={"iteration": raster.iteration})

    def _on_camera_changed(self, *_: object) -> None:
        if self._freeze:
            return
        self.refresh(self.scene.current_view())

    def _on_post_render(self, *_: object) -> None:
        # The cutout waits a few frames so the local layer is drawn before
        # the coarse layer underneath disappears.
        with self._lock:
            if self._full_layer is None:
                return
            wait_frames = self.options.cutout_wait_frames
            if self._waited_frames < wait_frames:
                self._waited_frames += 1
                if self._waited_frames == wait_frames:
                    self.scene.layers.set_cutout(self._full_layer, self._local_rectangle)

    def pick_cartographic(self, lon: float, lat: float) -> list[str]:
        """Return URLs of sources whose native rectangle contains the point."""
        picked = pick_sources(self.sources, self._index, lon, lat)
        debug = self._debug()
        if debug is not None:
            debug.show_footprints([(source.url, source_footprint(source)) for source in picked])
        return [source.url for source in picked]

    def close(self) -> None:
        """Detach listeners and stop the workers."""
        for remove in self._removers:
            remove()
        self._removers.clear()
        self._coordinator.close()
        self._pool.shutdown()
        if self._startup is not None:
            self._startup.shutdown(wait=False)
