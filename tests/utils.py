from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Tuple

import numpy as np
import rasterio
from rasterio.transform import from_bounds

from imosaic.geo.crs import transformer
from imosaic.geo.rectangle import Rectangle, union_geographic
from imosaic.viewport import ECEF_CRS, GEODETIC_3D_CRS, PerspectiveFrustum, ViewState
from imosaic.workers.tasks import InitializeTask, ReprojectResult, ReprojectTask


def write_rgba(
    path: Path,
    color: Tuple[int, int, int, int],
    *,
    size: Tuple[int, int] = (4, 4),
    bounds: Tuple[float, float, float, float] = (0.0, 0.0, 1.0, 1.0),
    crs: str | None = "EPSG:4326",
    driver: str = "GTiff",
) -> Path:
    """Write a solid RGBA image, georeferenced unless crs is None."""
    width, height = size
    data = np.empty((4, height, width), dtype=np.uint8)
    for band, value in enumerate(color):
        data[band].fill(value)
    profile = {
        "driver": driver,
        "height": height,
        "width": width,
        "count": 4,
        "dtype": "uint8",
    }
    if crs is not None:
        profile["crs"] = crs
        profile["transform"] = from_bounds(*bounds, width=width, height=height)
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(path, "w", **profile) as dataset:
        dataset.write(data)
    return path


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll until predicate is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def view_above(
    lon: float,
    lat: float,
    altitude: float,
    *,
    size: Tuple[int, int] = (200, 100),
    fov_degrees: float = 60.0,
) -> ViewState:
    """Return a perspective camera looking straight down at a lon/lat."""
    x, y, z = transformer(GEODETIC_3D_CRS, ECEF_CRS).transform(lon, lat, altitude)
    gx, gy, gz = transformer(GEODETIC_3D_CRS, ECEF_CRS).transform(lon, lat, 0.0)
    return ViewState(
        position=(x, y, z),
        direction=(gx - x, gy - y, gz - z),
        up=(0.0, 0.0, 1.0),
        width=size[0],
        height=size[1],
        frustum=PerspectiveFrustum(fov_y=np.radians(fov_degrees)),
    )


def view_into_space() -> ViewState:
    """Return a camera that sees no part of the globe."""
    return ViewState(
        position=(2.0e7, 0.0, 0.0),
        direction=(1.0, 0.0, 0.0),
        up=(0.0, 0.0, 1.0),
        width=100,
        height=100,
        frustum=PerspectiveFrustum(fov_y=np.radians(60.0)),
    )


class FakeWorkerHandle:
    """In-memory worker handle that answers tasks without any rasterio work.

    Each worker paints its whole output with a solid color keyed by its id.
    Reproject tasks whose iteration is in ``hold`` stay pending until
    ``release`` is called.
    """

    def __init__(self, worker_id: int, *, hold: set[int] | None = None) -> None:
        self.worker_id = worker_id
        self.tasks: list[object] = []
        self.hold = hold if hold is not None else set()
        self.fail_initialize = False
        self.fail_reproject = False
        self.shut_down = False
        self._pending: dict[int, list[tuple[Future, ReprojectTask]]] = {}
        self._lock = threading.Lock()
        self._rectangles: tuple[Rectangle, ...] = ()

    def start(self) -> Future:
        future: Future = Future()
        future.set_result(True)
        return future

    def submit(self, task) -> Future:
        future: Future = Future()
        with self._lock:
            self.tasks.append(task)
        if isinstance(task, InitializeTask):
            if self.fail_initialize:
                future.set_exception(RuntimeError(f"worker {self.worker_id} cannot start"))
                return future
            self._rectangles = tuple(
                projection.approximate_geographic_extent(rectangle)
                for projection, rectangle in zip(task.projections, task.projected_rectangles)
            )
            future.set_result(union_geographic(self._rectangles))
            return future
        if task.iteration in self.hold:
            with self._lock:
                self._pending.setdefault(task.iteration, []).append((future, task))
            return future
        self._answer(future, task)
        return future

    def _answer(self, future: Future, task: ReprojectTask) -> None:
        if self.fail_reproject:
            future.set_exception(RuntimeError(f"worker {self.worker_id} crashed"))
            return
        data = np.zeros((task.height, task.width, 4), dtype=np.uint8)
        if self._rectangles:
            data[...] = (self.worker_id + 1, 0, 0, 255)
        future.set_result(ReprojectResult(data=data, iteration=task.iteration))

    def release(self, iteration: int) -> None:
        with self._lock:
            pending = self._pending.pop(iteration, [])
        for future, task in pending:
            self._answer(future, task)

    def shutdown(self) -> None:
        self.shut_down = True

    def count(self, task_type: type) -> int:
        with self._lock:
            return sum(1 for task in self.tasks if isinstance(task, task_type))


def fake_factory(**kwargs) -> tuple[Callable[[int], FakeWorkerHandle], list[FakeWorkerHandle]]:
    """Return a handle factory plus the list of handles it creates."""
    handles: list[FakeWorkerHandle] = []

    def factory(worker_id: int) -> FakeWorkerHandle:
        handle = FakeWorkerHandle(worker_id, **kwargs)
        handles.append(handle)
        return handle

    return factory, handles
