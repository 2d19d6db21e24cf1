"""Camera model and viewport-to-geographic bounds estimation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Tuple

import numpy as np

from imosaic.geo.crs import GEOGRAPHIC_CRS, transformer
from imosaic.geo.rectangle import Rectangle

Vector3 = Tuple[float, float, float]

WGS84_RADII = np.array([6378137.0, 6378137.0, 6356752.314245179])
ECEF_CRS = "EPSG:4978"
GEODETIC_3D_CRS = "EPSG:4979"

DEFAULT_SAMPLES = 10
DEFAULT_MAX_VIEW_ANGLE = 80.0
# Samples on the window edge land on NDC +-1 up to rounding.
NDC_TOLERANCE = 1e-9


class SceneMode(Enum):
    """Surface that view rays are intersected with."""

    GLOBE = "globe"
    PLANE = "plane"


@dataclass(frozen=True)
class PerspectiveFrustum:
    fov_y: float
    near: float = 1.0
    far: float = 5.0e8


@dataclass(frozen=True)
class OrthographicFrustum:
    width: float
    near: float = 1.0
    far: float = 5.0e8


def _normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=-1, keepdims=True)
    return vectors / np.where(norms == 0.0, 1.0, norms)


@dataclass(frozen=True)
class ViewState:
    """Snapshot of the camera and drawing surface.

    In GLOBE mode positions are Earth-centred Earth-fixed metres. In PLANE
    mode the map lies on z = 0 with x/y in ``map_crs`` units.
    """

    position: Vector3
    direction: Vector3
    up: Vector3
    width: int
    height: int
    frustum: PerspectiveFrustum | OrthographicFrustum
    mode: SceneMode = SceneMode.GLOBE
    map_crs: str = "EPSG:3857"

    @property
    def aspect(self) -> float:
        return self.width / self.height

    def basis(self) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Return position plus orthonormal direction, right, and up vectors."""
        position = np.asarray(self.position, dtype=np.float64)
        direction = _normalize(np.asarray(self.direction, dtype=np.float64))
        right = _normalize(np.cross(direction, np.asarray(self.up, dtype=np.float64)))
        up = np.cross(right, direction)
        return position, direction, right, up

    def view_matrix(self) -> np.ndarray:
        position, direction, right, up = self.basis()
        matrix = np.eye(4)
        matrix[0, :3] = right
        matrix[1, :3] = up
        matrix[2, :3] = -direction
        matrix[:3, 3] = -matrix[:3, :3] @ position
        return matrix

    def projection_matrix(self) -> np.ndarray:
        frustum = self.frustum
        near, far = frustum.near, frustum.far
        matrix = np.zeros((4, 4))
        if isinstance(frustum, PerspectiveFrustum):
            focal = 1.0 / math.tan(frustum.fov_y / 2.0)
            matrix[0, 0] = focal / self.aspect
            matrix[1, 1] = focal
            matrix[2, 2] = (far + near) / (near - far)
            matrix[2, 3] = 2.0 * far * near / (near - far)
            matrix[3, 2] = -1.0
        else:
            half_width = frustum.width / 2.0
            half_height = half_width / self.aspect
            matrix[0, 0] = 1.0 / half_width
            matrix[1, 1] = 1.0 / half_height
            matrix[2, 2] = -2.0 / (far - near)
            matrix[2, 3] = -(far + near) / (far - near)
            matrix[3, 3] = 1.0
        return matrix

    def view_projection(self) -> np.ndarray:
        return self.projection_matrix() @ self.view_matrix()

    def pick_rays(self, xs: np.ndarray, ys: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Return ray origins and unit directions through window pixels.

        Window y grows downwards from the top edge.
        """
        position, direction, right, up = self.basis()
        ndc_x = 2.0 * np.asarray(xs, dtype=np.float64) / self.width - 1.0
        ndc_y = 1.0 - 2.0 * np.asarray(ys, dtype=np.float64) / self.height
        count = ndc_x.shape[0]
        frustum = self.frustum
        if isinstance(frustum, PerspectiveFrustum):
            tangent = math.tan(frustum.fov_y / 2.0)
            directions = (
                direction
                + np.outer(ndc_x * tangent * self.aspect, right)
                + np.outer(ndc_y * tangent, up)
            )
            origins = np.tile(position, (count, 1))
            return origins, _normalize(directions)
        half_width = frustum.width / 2.0
        half_height = half_width / self.aspect
        origins = (
            position
            + np.outer(ndc_x * half_width, right)
            + np.outer(ndc_y * half_height, up)
        )
        return origins, np.tile(direction, (count, 1))


def intersect_ellipsoid(
    origins: np.ndarray,
    directions: np.ndarray,
    radii: np.ndarray = WGS84_RADII,
) -> tuple[np.ndarray, np.ndarray]:
    """Return first intersection points with an ellipsoid and a hit mask."""
    scaled_origins = origins / radii
    scaled_directions = directions / radii
    a = np.einsum("ij,ij->i", scaled_directions, scaled_directions)
    b = 2.0 * np.einsum("ij,ij->i", scaled_origins, scaled_directions)
    c = np.einsum("ij,ij->i", scaled_origins, scaled_origins) - 1.0
    discriminant = b * b - 4.0 * a * c
    hit = discriminant >= 0.0
    root = np.sqrt(np.where(hit, discriminant, 0.0))
    near = (-b - root) / (2.0 * a)
    far = (-b + root) / (2.0 * a)
    hit &= far >= 0.0
    distance = np.maximum(near, 0.0)
    return origins + directions * distance[:, np.newaxis], hit


def geodetic_surface_normals(
    points: np.ndarray,
    radii: np.ndarray = WGS84_RADII,
) -> np.ndarray:
    return _normalize(points / (radii * radii))


def intersect_plane(
    origins: np.ndarray,
    directions: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Return intersections with the z = 0 plane and a hit mask."""
    dz = directions[:, 2]
    parallel = np.abs(dz) < 1e-12
    with np.errstate(divide="ignore", invalid="ignore"):
        distance = np.where(parallel, -1.0, -origins[:, 2] / np.where(parallel, 1.0, dz))
    hit = ~parallel & (distance >= 0.0)
    distance = np.where(hit, distance, 0.0)
    return origins + directions * distance[:, np.newaxis], hit


def visible_points(
    points: np.ndarray,
    normals: np.ndarray,
    view_projection: np.ndarray,
    camera_position: np.ndarray,
    max_view_angle: float = DEFAULT_MAX_VIEW_ANGLE,
) -> np.ndarray:
    """Mask points inside the clip volume and not seen too obliquely."""
    homogeneous = np.hstack([points, np.ones((points.shape[0], 1))])
    clip = homogeneous @ view_projection.T
    w = clip[:, 3]
    in_front = w > 0.0
    with np.errstate(divide="ignore", invalid="ignore"):
        ndc = clip[:, :3] / np.where(in_front, w, 1.0)[:, np.newaxis]
    limit = 1.0 + NDC_TOLERANCE
    inside = in_front & np.all((ndc >= -limit) & (ndc <= limit), axis=1)
    to_camera = _normalize(camera_position - points)
    cosine = np.clip(np.einsum("ij,ij->i", to_camera, normals), -1.0, 1.0)
    return inside & (np.arccos(cosine) < math.radians(max_view_angle))


def _sample_grid(view: ViewState, samples: int) -> tuple[np.ndarray, np.ndarray]:
    xs = np.linspace(0.0, float(view.width), samples)
    ys = np.linspace(0.0, float(view.height), samples)
    grid_x, grid_y = np.meshgrid(xs, ys)
    return grid_x.ravel(), grid_y.ravel()


def estimate_view_rectangle(
    view: ViewState,
    coverage: Rectangle,
    *,
    samples: int = DEFAULT_SAMPLES,
    max_view_angle: float = DEFAULT_MAX_VIEW_ANGLE,
) -> Rectangle | None:
    """Return the visible geographic rectangle clipped to coverage.

    A samples x samples grid of window rays is cast at the globe or map
    plane; visible hits are reduced to a lon/lat envelope. Returns None
    when nothing usable is in view.
    """
    if view.width <= 0 or view.height <= 0 or samples < 2:
        return None
    xs, ys = _sample_grid(view, samples)
    origins, directions = view.pick_rays(xs, ys)

    if view.mode is SceneMode.GLOBE:
        points, hit = intersect_ellipsoid(origins, directions)
        normals = geodetic_surface_normals(points)
    else:
        points, hit = intersect_plane(origins, directions)
        normals = np.tile(np.array([0.0, 0.0, 1.0]), (points.shape[0], 1))
    if not hit.any():
        return None

    points = points[hit]
    position = np.asarray(view.position, dtype=np.float64)
    mask = visible_points(
        points,
        normals[hit],
        view.view_projection(),
        position,
        max_view_angle,
    )
    if not mask.any():
        return None
    points = points[mask]

    if view.mode is SceneMode.GLOBE:
        lons, lats, _ = transformer(ECEF_CRS, GEODETIC_3D_CRS).transform(
            points[:, 0], points[:, 1], points[:, 2]
        )
    else:
        lons, lats = transformer(view.map_crs, GEOGRAPHIC_CRS).transform(
            points[:, 0], points[:, 1]
        )
    lons = np.asarray(lons, dtype=np.float64)
    lats = np.asarray(lats, dtype=np.float64)
    finite = np.isfinite(lons) & np.isfinite(lats)
    if not finite.any():
        return None

    bounds = Rectangle(
        float(lons[finite].min()),
        float(lats[finite].min()),
        float(lons[finite].max()),
        float(lats[finite].max()),
    ).clip(coverage)
    if bounds.is_empty():
        return None
    return bounds


def should_refresh(
    candidate: Rectangle | None,
    coverage: Rectangle,
    live: Rectangle | None,
) -> bool:
    """Return True when the candidate would produce new imagery."""
    if candidate is None or candidate.is_empty():
        return False
    if candidate == coverage:
        return False
    return candidate != live
