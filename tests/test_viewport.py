from __future__ import annotations

import numpy as np
import pytest

from imosaic.geo.rectangle import Rectangle
from imosaic.viewport import (
    OrthographicFrustum,
    PerspectiveFrustum,
    SceneMode,
    ViewState,
    estimate_view_rectangle,
    intersect_ellipsoid,
    intersect_plane,
    should_refresh,
)
from tests.utils import view_above, view_into_space

WORLD = Rectangle(-180.0, -90.0, 180.0, 90.0)


def _globe_view(**overrides) -> ViewState:
    values = dict(
        position=(2.0e7, 0.0, 0.0),
        direction=(-1.0, 0.0, 0.0),
        up=(0.0, 0.0, 1.0),
        width=100,
        height=100,
        frustum=PerspectiveFrustum(fov_y=np.radians(30.0)),
    )
    values.update(overrides)
    return ViewState(**values)


def test_intersect_ellipsoid_hits_and_misses() -> None:
    origins = np.array([[2.0e7, 0.0, 0.0], [2.0e7, 0.0, 0.0]])
    directions = np.array([[-1.0, 0.0, 0.0], [1.0, 0.0, 0.0]])

    points, hit = intersect_ellipsoid(origins, directions)

    assert hit.tolist() == [True, False]
    assert points[0, 0] == pytest.approx(6378137.0)


def test_intersect_plane_ignores_parallel_and_backward_rays() -> None:
    origins = np.array([[0.0, 0.0, 10.0]] * 3)
    directions = np.array([[0.0, 0.0, -1.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])

    points, hit = intersect_plane(origins, directions)

    assert hit.tolist() == [True, False, False]
    assert points[0].tolist() == [0.0, 0.0, 0.0]


def test_globe_view_centred_on_origin() -> None:
    rectangle = estimate_view_rectangle(_globe_view(), WORLD)

    assert rectangle is not None
    assert rectangle.contains(0.0, 0.0)
    assert rectangle.west == pytest.approx(-rectangle.east, abs=1e-6)
    assert rectangle.south == pytest.approx(-rectangle.north, abs=1e-6)
    assert rectangle.east < 90.0


def test_globe_view_is_clipped_to_coverage() -> None:
    coverage = Rectangle(0.0, 0.0, 5.0, 5.0)

    rectangle = estimate_view_rectangle(_globe_view(), coverage)

    assert rectangle is not None
    assert rectangle.west == 0.0
    assert rectangle.south == 0.0
    assert rectangle.east <= 5.0


def test_close_view_is_small() -> None:
    rectangle = estimate_view_rectangle(view_above(1.0, 1.0, 50_000.0), WORLD)

    assert rectangle is not None
    assert rectangle.contains(1.0, 1.0)
    assert rectangle.width < 2.0
    assert rectangle.height < rectangle.width


def test_view_into_space_returns_none() -> None:
    assert estimate_view_rectangle(view_into_space(), WORLD) is None


def test_view_outside_coverage_returns_none() -> None:
    assert estimate_view_rectangle(_globe_view(), Rectangle(100.0, 0.0, 110.0, 10.0)) is None


def test_zero_sized_view_returns_none() -> None:
    assert estimate_view_rectangle(_globe_view(width=0), WORLD) is None


def test_grazing_view_drops_oblique_samples() -> None:
    view = _globe_view(frustum=PerspectiveFrustum(fov_y=np.radians(60.0)))

    wide = estimate_view_rectangle(view, WORLD, max_view_angle=90.0)
    narrow = estimate_view_rectangle(view, WORLD, max_view_angle=30.0)

    assert wide is not None and narrow is not None
    assert narrow.width < wide.width


def test_plane_view_orthographic() -> None:
    view = ViewState(
        position=(0.0, 0.0, 1.0e6),
        direction=(0.0, 0.0, -1.0),
        up=(0.0, 1.0, 0.0),
        width=100,
        height=100,
        frustum=OrthographicFrustum(width=2.0e5),
        mode=SceneMode.PLANE,
    )

    rectangle = estimate_view_rectangle(view, WORLD)

    assert rectangle is not None
    assert rectangle.east == pytest.approx(0.8983, abs=1e-3)
    assert rectangle.west == pytest.approx(-0.8983, abs=1e-3)
    assert rectangle.north == pytest.approx(0.8983, abs=1e-3)


def test_should_refresh_rules() -> None:
    coverage = Rectangle(0.0, 0.0, 10.0, 10.0)
    candidate = Rectangle(1.0, 1.0, 2.0, 2.0)

    assert should_refresh(candidate, coverage, None)
    assert should_refresh(candidate, coverage, Rectangle(1.0, 1.0, 3.0, 3.0))
    assert not should_refresh(candidate, coverage, candidate)
    assert not should_refresh(coverage, coverage, None)
    assert not should_refresh(None, coverage, None)
    assert not should_refresh(Rectangle.point(1.0, 1.0), coverage, None)
