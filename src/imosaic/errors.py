"""Exception types raised by the mosaic pipeline."""

from __future__ import annotations


class MosaicError(Exception):
    """Base class for mosaic failures."""


class ConfigurationError(MosaicError, ValueError):
    """Construction inputs are missing or malformed."""


class WorkerInitializationError(MosaicError, RuntimeError):
    """A worker failed its one-time setup; the pool is unusable."""


class ReprojectionError(MosaicError, RuntimeError):
    """A reprojection request failed on at least one worker."""
