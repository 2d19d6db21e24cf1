"""Geometry and CRS helpers."""

from imosaic.geo.crs import (
    GEOGRAPHIC_CRS,
    ProjectionDescriptor,
    normalize_crs,
    transform_bounds,
    transformer,
)
from imosaic.geo.rectangle import Rectangle, union_all, union_geographic

__all__ = [
    "GEOGRAPHIC_CRS",
    "ProjectionDescriptor",
    "Rectangle",
    "normalize_crs",
    "transform_bounds",
    "transformer",
    "union_all",
    "union_geographic",
]
