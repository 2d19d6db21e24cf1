from __future__ import annotations

import numpy as np
import pytest

from imosaic.geo.crs import ProjectionDescriptor
from imosaic.geo.rectangle import Rectangle
from imosaic.workers.reproject import ReprojectionWorker, decode_rgba
from imosaic.workers.tasks import InitializeTask, ReprojectTask
from tests.utils import write_rgba

GEOGRAPHIC = ProjectionDescriptor("EPSG:4326")


def _initialize(worker: ReprojectionWorker, urls, rectangles, projections=None):
    projections = projections or [GEOGRAPHIC] * len(urls)
    return worker.initialize(
        InitializeTask(
            worker_id=0,
            urls=tuple(str(url) for url in urls),
            projections=tuple(projections),
            projected_rectangles=tuple(rectangles),
            cache_size=4,
        )
    )


def test_decode_rgba_reads_four_bands(tmp_path) -> None:
    path = write_rgba(tmp_path / "red.tif", (255, 0, 0, 255), size=(3, 2))

    pixels = decode_rgba(str(path))

    assert pixels.shape == (4, 2, 3)
    assert pixels.dtype == np.uint8
    assert pixels[:, 0, 0].tolist() == [255, 0, 0, 255]


def test_decode_rgba_ignores_missing_georeferencing(tmp_path) -> None:
    path = write_rgba(tmp_path / "plain.png", (0, 0, 255, 128), crs=None, driver="PNG")

    pixels = decode_rgba(str(path))

    assert pixels[:, 1, 1].tolist() == [0, 0, 255, 128]


def test_initialize_returns_geographic_union(tmp_path) -> None:
    worker = ReprojectionWorker()
    rectangle = _initialize(
        worker,
        [tmp_path / "a.tif", tmp_path / "b.tif"],
        [Rectangle(0.0, 0.0, 1.0, 1.0), Rectangle(2.0, -1.0, 3.0, 0.5)],
    )

    assert worker.initialized
    assert rectangle == Rectangle(0.0, -1.0, 3.0, 1.0)


def test_initialize_empty_partition_returns_none() -> None:
    worker = ReprojectionWorker()

    assert _initialize(worker, [], []) is None


def test_reproject_before_initialize_fails() -> None:
    worker = ReprojectionWorker()

    with pytest.raises(RuntimeError, match="before initialize"):
        worker.reproject(ReprojectTask(2, 2, Rectangle(0.0, 0.0, 1.0, 1.0), 1))


def test_reproject_fills_overlap_and_tags_iteration(tmp_path) -> None:
    path = write_rgba(tmp_path / "red.tif", (255, 0, 0, 255))
    worker = ReprojectionWorker()
    _initialize(worker, [path], [Rectangle(0.0, 0.0, 1.0, 1.0)])

    result = worker.reproject(ReprojectTask(8, 4, Rectangle(0.0, 0.0, 2.0, 1.0), 7))

    assert result.iteration == 7
    assert result.data.shape == (4, 8, 4)
    # West half is covered by the source, east half stays transparent.
    assert result.data[2, 1].tolist() == [255, 0, 0, 255]
    assert result.data[2, 6].tolist() == [0, 0, 0, 0]


def test_reproject_skips_sources_outside_target(tmp_path) -> None:
    worker = ReprojectionWorker()
    # The file does not exist; it must never be opened.
    _initialize(worker, [tmp_path / "missing.tif"], [Rectangle(10.0, 10.0, 11.0, 11.0)])

    result = worker.reproject(ReprojectTask(4, 4, Rectangle(0.0, 0.0, 1.0, 1.0), 1))

    assert not result.data.any()


def test_reproject_later_sources_win(tmp_path) -> None:
    red = write_rgba(tmp_path / "red.tif", (255, 0, 0, 255))
    green = write_rgba(tmp_path / "green.tif", (0, 255, 0, 255))
    worker = ReprojectionWorker()
    _initialize(
        worker,
        [red, green],
        [Rectangle(0.0, 0.0, 1.0, 1.0), Rectangle(0.0, 0.0, 1.0, 1.0)],
    )

    result = worker.reproject(ReprojectTask(4, 4, Rectangle(0.0, 0.0, 1.0, 1.0), 1))

    assert result.data[1, 1].tolist() == [0, 255, 0, 255]


def test_reproject_from_projected_source(tmp_path) -> None:
    mercator = ProjectionDescriptor("EPSG:3857")
    east, north = mercator.project(1.0, 1.0)
    path = write_rgba(tmp_path / "blue.tif", (0, 0, 255, 255), size=(16, 16), crs=None)
    worker = ReprojectionWorker()
    _initialize(worker, [path], [Rectangle(0.0, 0.0, east, north)], [mercator])

    result = worker.reproject(ReprojectTask(10, 10, Rectangle(0.0, 0.0, 1.0, 1.0), 3))

    assert result.data[5, 5].tolist() == [0, 0, 255, 255]


def test_cache_reuses_decoded_sources(tmp_path) -> None:
    path = write_rgba(tmp_path / "red.tif", (255, 0, 0, 255))
    worker = ReprojectionWorker()
    _initialize(worker, [path], [Rectangle(0.0, 0.0, 1.0, 1.0)])
    task = ReprojectTask(2, 2, Rectangle(0.0, 0.0, 1.0, 1.0), 1)

    worker.reproject(task)
    worker.reproject(task)

    assert worker._cache is not None
    assert (worker._cache.hits, worker._cache.misses) == (1, 1)


def test_handle_rejects_unknown_tasks() -> None:
    with pytest.raises(TypeError, match="Unsupported"):
        ReprojectionWorker().handle("noop")


def test_reproject_source_across_antimeridian(tmp_path) -> None:
    utm_zone_1 = ProjectionDescriptor("EPSG:32601")
    bounds = (100_000.0, 0.0, 400_000.0, 100_000.0)
    path = write_rgba(
        tmp_path / "dateline.tif", (0, 255, 0, 255), size=(30, 10), bounds=bounds, crs="EPSG:32601"
    )
    worker = ReprojectionWorker()
    coverage = _initialize(worker, [path], [Rectangle(*bounds)], [utm_zone_1])

    assert (coverage.west, coverage.east) == (-180.0, 180.0)
    west_of_line = worker.reproject(ReprojectTask(4, 4, Rectangle(179.5, 0.2, 180.0, 0.7), 1))
    east_of_line = worker.reproject(ReprojectTask(4, 4, Rectangle(-180.0, 0.2, -179.0, 0.7), 2))

    assert (west_of_line.data[..., 3] == 255).all()
    assert (east_of_line.data[..., 3] == 255).all()
