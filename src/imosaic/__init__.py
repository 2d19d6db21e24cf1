"""On-demand reprojected imagery mosaics."""

from imosaic.controller import MosaicController
from imosaic.geo.crs import ProjectionDescriptor
from imosaic.geo.rectangle import Rectangle
from imosaic.models import Raster, SourceImage

__version__ = "0.3.0"

__all__ = [
    "MosaicController",
    "ProjectionDescriptor",
    "Raster",
    "Rectangle",
    "SourceImage",
    "__version__",
]
