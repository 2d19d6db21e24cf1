"""CRS handling and per-source projection descriptors."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

from pyproj import CRS, Transformer

from imosaic.geo.rectangle import Rectangle

Bounds = Tuple[float, float, float, float]

GEOGRAPHIC_CRS = "EPSG:4326"


def normalize_crs(value: str | CRS) -> CRS:
    """Accept EPSG codes, WKT, PROJ strings, or CRS objects."""
    return CRS.from_user_input(value)


@lru_cache(maxsize=64)
def _transformer_for(src: str, dst: str) -> Transformer:
    return Transformer.from_crs(normalize_crs(src), normalize_crs(dst), always_xy=True)


def transformer(src: str | CRS, dst: str | CRS) -> Transformer:
    """Return an x/y (lon/lat) ordered transformer, cached for string inputs.

    Each process builds its own cache; transformers never cross a process
    boundary.
    """
    if isinstance(src, CRS) or isinstance(dst, CRS):
        return Transformer.from_crs(normalize_crs(src), normalize_crs(dst), always_xy=True)
    return _transformer_for(src, dst)


def transform_bounds(
    bounds: Bounds,
    src: str | CRS,
    dst: str | CRS,
    *,
    densify_pts: int = 0,
) -> Bounds:
    """Return the envelope of ``bounds`` after reprojection.

    ``densify_pts`` adds points along each edge so curved edges are not
    under-estimated.
    """
    west, south, east, north = transformer(src, dst).transform_bounds(
        *bounds,
        densify_pts=densify_pts,
    )
    return (float(west), float(south), float(east), float(north))


@dataclass(frozen=True)
class ProjectionDescriptor:
    """Picklable stand-in for a source projection.

    Holds only the CRS text, so it can be sent to worker processes as-is.
    """

    crs: str

    def __post_init__(self) -> None:
        if not isinstance(self.crs, str) or not self.crs.strip():
            raise ValueError("Projection CRS must be a non-empty string.")

    @classmethod
    def from_user_input(cls, value: "str | CRS | ProjectionDescriptor") -> "ProjectionDescriptor":
        if isinstance(value, ProjectionDescriptor):
            return value
        if isinstance(value, CRS):
            return cls(value.to_wkt())
        return cls(str(value))

    def to_crs(self) -> CRS:
        return normalize_crs(self.crs)

    def project(self, lon: float, lat: float) -> tuple[float, float]:
        """Geographic degrees to native coordinates."""
        x, y = transformer(GEOGRAPHIC_CRS, self.crs).transform(lon, lat)
        return float(x), float(y)

    def unproject(self, x: float, y: float) -> tuple[float, float]:
        """Native coordinates to geographic degrees."""
        lon, lat = transformer(self.crs, GEOGRAPHIC_CRS).transform(x, y)
        return float(lon), float(lat)

    def approximate_geographic_extent(
        self,
        rectangle: Rectangle,
        *,
        densify_pts: int = 21,
    ) -> Rectangle:
        """Envelope in degrees of a native rectangle; used for indexing only.

        A rectangle crossing the antimeridian keeps its west edge and gets an
        east edge past 180, so west < east always holds.
        """
        west, south, east, north = transform_bounds(
            rectangle.bounds(), self.crs, GEOGRAPHIC_CRS, densify_pts=densify_pts
        )
        # pyproj reports an antimeridian crossing as west > east.
        if west > east:
            east += 360.0
        return Rectangle(west, south, east, north)
