"""Fan-out/fan-in of reprojection requests and compositing of partial rasters."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from typing import Sequence

import numpy as np

from imosaic.errors import ReprojectionError
from imosaic.geo.rectangle import Rectangle
from imosaic.models import Raster
from imosaic.workers.pool import WorkerPool
from imosaic.workers.tasks import ReprojectResult, ReprojectTask

LOGGER = logging.getLogger(__name__)


class IterationCounter:
    """Monotonic request version shared by the controller and coordinator."""

    def __init__(self, start: int = 0) -> None:
        self._value = start
        self._lock = threading.Lock()

    @property
    def current(self) -> int:
        with self._lock:
            return self._value

    def increment(self) -> int:
        """Bump the counter and return the new value atomically."""
        with self._lock:
            self._value += 1
            return self._value

    def is_current(self, iteration: int) -> bool:
        return iteration == self.current


def composite_rasters(layers: Sequence[np.ndarray]) -> np.ndarray:
    """Overlay partial RGBA rasters in order.

    Every pixel with nonzero alpha in a later layer replaces the pixel below
    it wholesale; this is last-writer-wins, not alpha blending. The first
    layer is copied, never modified.
    """
    if not layers:
        raise ValueError("At least one raster is required for compositing.")
    target = np.array(layers[0], dtype=np.uint8, copy=True)
    for layer in layers[1:]:
        if layer.shape != target.shape:
            raise ValueError(
                f"Partial raster shape {layer.shape} does not match {target.shape}."
            )
        covered = layer[..., 3] > 0
        target[covered] = layer[covered]
    return target


class RequestCoordinator:
    """Issue one reprojection to every worker and merge the results.

    By default only worker 0's returned iteration is compared with the live
    counter before compositing, so the other workers' tags are never
    inspected. With ``check_all_iterations`` a response carrying any other
    iteration fails the request and staleness is judged on the requested
    iteration itself; this changes behaviour and stays opt-in.
    """

    def __init__(
        self,
        pool: WorkerPool,
        counter: IterationCounter,
        *,
        check_all_iterations: bool = False,
        timeout: float | None = None,
    ) -> None:
        self.pool = pool
        self.counter = counter
        self.check_all_iterations = check_all_iterations
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="imosaic-coordinator",
        )

    def request_projection(
        self,
        width: int,
        height: int,
        rectangle: Rectangle,
        iteration: int,
    ) -> Future:
        """Fan out a reprojection and return a future for the composite Raster."""
        task = ReprojectTask(width=width, height=height, rectangle=rectangle, iteration=iteration)
        futures = self.pool.submit_all(task)
        LOGGER.debug(
            "Requested %dx%d reprojection of %s from %d workers.",
            width,
            height,
            rectangle.bounds(),
            len(futures),
            extra={"iteration": iteration},
        )
        return self._executor.submit(self._gather, futures, rectangle, iteration)

    def project(
        self,
        width: int,
        height: int,
        rectangle: Rectangle,
        iteration: int,
    ) -> Raster:
        """Blocking form of ``request_projection``."""
        return self.request_projection(width, height, rectangle, iteration).result()

    def _gather(
        self,
        futures: list[Future],
        rectangle: Rectangle,
        iteration: int,
    ) -> Raster:
        done, pending = wait(futures, timeout=self.timeout, return_when=FIRST_EXCEPTION)
        for worker_id, future in enumerate(futures):
            if future in done and future.exception() is not None:
                for other in pending:
                    other.cancel()
                raise ReprojectionError(
                    f"Worker {worker_id} failed to reproject: {future.exception()}"
                ) from future.exception()
        if pending:
            raise ReprojectionError(
                f"{len(pending)} worker(s) did not respond within {self.timeout} seconds."
            )

        results: list[ReprojectResult] = [future.result() for future in futures]
        if self._is_stale(results, iteration):
            LOGGER.debug(
                "Skipping composite for superseded request.",
                extra={"iteration": iteration},
            )
            first = results[0]
            return Raster(first.data, rectangle, first.iteration)

        try:
            data = composite_rasters([result.data for result in results])
        except ValueError as exc:
            raise ReprojectionError(str(exc)) from exc
        return Raster(data, rectangle, iteration)

    def _is_stale(self, results: list[ReprojectResult], iteration: int) -> bool:
        live = self.counter.current
        if not self.check_all_iterations:
            return results[0].iteration != live
        for worker_id, result in enumerate(results):
            if result.iteration != iteration:
                raise ReprojectionError(
                    f"Worker {worker_id} answered iteration {result.iteration} "
                    f"for request {iteration}."
                )
        return iteration != live

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
