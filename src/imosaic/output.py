"""Write composite rasters to GeoTIFF."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import rasterio
from rasterio.enums import ColorInterp
from rasterio.transform import from_bounds

from imosaic.geo.crs import GEOGRAPHIC_CRS
from imosaic.models import Raster


def write_raster(
    path: Path,
    raster: Raster,
    *,
    driver: str = "GTiff",
    compression: str | None = "deflate",
) -> Path:
    """Write an RGBA raster georeferenced to its geographic rectangle."""
    transform = from_bounds(*raster.rectangle.bounds(), raster.width, raster.height)
    meta = {
        "driver": driver,
        "height": raster.height,
        "width": raster.width,
        "count": 4,
        "dtype": "uint8",
        "crs": GEOGRAPHIC_CRS,
        "transform": transform,
    }
    if compression:
        meta["compress"] = compression
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(path, "w", **meta) as dataset:
        dataset.write(np.moveaxis(raster.data, -1, 0))
        dataset.colorinterp = [
            ColorInterp.red,
            ColorInterp.green,
            ColorInterp.blue,
            ColorInterp.alpha,
        ]
        dataset.update_tags(iteration=str(raster.iteration))
    return path
