"""Mosaic options and JSON mosaic definitions."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Sequence

from pyproj.exceptions import CRSError
from rasterio.enums import Resampling

from imosaic.errors import ConfigurationError
from imosaic.geo.crs import ProjectionDescriptor
from imosaic.geo.rectangle import Rectangle
from imosaic.models import SourceImage, absolute_url
from imosaic.workers.pool import WORKER_BACKENDS, default_concurrency

ENV_CONCURRENCY = "IMOSAIC_CONCURRENCY"
RESAMPLING_METHODS = tuple(Resampling.__members__)


def _size(value: object, name: str) -> tuple[int, int]:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ConfigurationError(f"{name} must be a [width, height] pair.")
    width, height = value
    if not isinstance(width, int) or not isinstance(height, int) or width < 1 or height < 1:
        raise ConfigurationError(f"{name} must contain positive integers.")
    return (width, height)


@dataclass(frozen=True)
class MosaicOptions:
    """Tuning knobs for a mosaic controller."""

    concurrency: int | None = None
    image_cache_size: int = 100
    credit: str | None = None
    full_coverage_size: tuple[int, int] = (1024, 1024)
    local_size: tuple[int, int] = (1024, 1024)
    resampling: str = "bilinear"
    worker_backend: str = "process"
    check_all_iterations: bool = False
    task_timeout: float | None = None
    samples: int = 10
    max_view_angle: float = 80.0
    cutout_wait_frames: int = 3

    def resolved_concurrency(self) -> int:
        """Return explicit concurrency, then the environment, then CPU count."""
        if self.concurrency is not None:
            return self.concurrency
        env_value = os.environ.get(ENV_CONCURRENCY)
        if env_value:
            try:
                return int(env_value)
            except ValueError as exc:
                raise ConfigurationError(
                    f"{ENV_CONCURRENCY} must be an integer, got {env_value!r}."
                ) from exc
        return default_concurrency()

    def validate(self) -> None:
        """Raise ConfigurationError for out-of-range values."""
        if self.resolved_concurrency() < 1:
            raise ConfigurationError("concurrency must be >= 1")
        if self.image_cache_size < 1:
            raise ConfigurationError("image_cache_size must be >= 1")
        _size(self.full_coverage_size, "full_coverage_size")
        _size(self.local_size, "local_size")
        if self.resampling not in RESAMPLING_METHODS:
            raise ConfigurationError(f"Unknown resampling method: {self.resampling}")
        if self.worker_backend not in WORKER_BACKENDS:
            raise ConfigurationError(f"Unknown worker backend: {self.worker_backend}")
        if self.task_timeout is not None and self.task_timeout <= 0:
            raise ConfigurationError("task_timeout must be positive when set")
        if self.samples < 2:
            raise ConfigurationError("samples must be >= 2")
        if not 0.0 < self.max_view_angle <= 90.0:
            raise ConfigurationError("max_view_angle must be in (0, 90]")
        if self.cutout_wait_frames < 1:
            raise ConfigurationError("cutout_wait_frames must be >= 1")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MosaicOptions":
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown mosaic options: {', '.join(unknown)}")
        payload = dict(data)
        for key in ("full_coverage_size", "local_size"):
            if key in payload:
                payload[key] = _size(payload[key], key)
        try:
            options = cls(**payload)
        except TypeError as exc:
            raise ConfigurationError(str(exc)) from exc
        options.validate()
        return options

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["full_coverage_size"] = list(self.full_coverage_size)
        payload["local_size"] = list(self.local_size)
        return payload


def build_sources(
    urls: Sequence[str | Path],
    projected_rectangles: Sequence[Rectangle | Sequence[float]],
    projections: Sequence[ProjectionDescriptor | str],
) -> list[SourceImage]:
    """Validate parallel input lists and build SourceImage records."""
    if not urls:
        raise ConfigurationError("At least one source URL is required.")
    if len(projected_rectangles) != len(urls):
        raise ConfigurationError("projected_rectangles must match urls one-to-one.")
    if len(projections) != len(urls):
        raise ConfigurationError("projections must match urls one-to-one.")
    sources = []
    for index, (url, rectangle, projection) in enumerate(
        zip(urls, projected_rectangles, projections)
    ):
        try:
            source = SourceImage.create(url, rectangle, projection)
        except (CRSError, ValueError) as exc:
            raise ConfigurationError(f"Source {index} ({url}) is invalid: {exc}") from exc
        if source.projected_rectangle.is_empty():
            raise ConfigurationError(f"Source {index} ({url}) has an empty rectangle.")
        sources.append(source)
    return sources


@dataclass(frozen=True)
class MosaicDefinition:
    """Sources and options loaded from a definition file."""

    sources: tuple[SourceImage, ...]
    options: MosaicOptions


def _coerce_source(raw: object, base_dir: Path) -> tuple[str, list[float], str]:
    if not isinstance(raw, dict):
        raise ConfigurationError("Mosaic source must be an object.")
    url = raw.get("url") or raw.get("path")
    if not url or not isinstance(url, str):
        raise ConfigurationError("Mosaic source requires a url.")
    rectangle = raw.get("rectangle")
    if not isinstance(rectangle, list) or len(rectangle) != 4:
        raise ConfigurationError(f"Source {url} requires rectangle [west, south, east, north].")
    crs = raw.get("crs")
    if not crs or not isinstance(crs, str):
        raise ConfigurationError(f"Source {url} requires a crs.")
    if "://" not in url and not Path(url).is_absolute():
        url = absolute_url(base_dir / url)
    return url, [float(value) for value in rectangle], crs


def load_mosaic_definition(path: Path) -> MosaicDefinition:
    """Parse a mosaic definition from JSON."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Could not read mosaic definition {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError("Mosaic definition must be a JSON object.")
    raw_sources = data.get("sources")
    if not isinstance(raw_sources, list) or not raw_sources:
        raise ConfigurationError("Mosaic definition requires a non-empty sources list.")
    base_dir = path.resolve().parent
    entries = [_coerce_source(raw, base_dir) for raw in raw_sources]
    raw_options = data.get("options", {})
    if not isinstance(raw_options, dict):
        raise ConfigurationError("Mosaic options must be an object.")
    if "credit" in data and "credit" not in raw_options:
        raw_options = {**raw_options, "credit": data["credit"]}
    options = MosaicOptions.from_dict(raw_options)
    sources = build_sources(
        [entry[0] for entry in entries],
        [entry[1] for entry in entries],
        [entry[2] for entry in entries],
    )
    return MosaicDefinition(sources=tuple(sources), options=options)
