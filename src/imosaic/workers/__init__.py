"""Reprojection worker exports."""

from imosaic.workers.cache import ImageCache
from imosaic.workers.pool import (
    WORKER_BACKENDS,
    ProcessWorkerHandle,
    ThreadWorkerHandle,
    WorkerHandle,
    WorkerPool,
    default_concurrency,
    partition_sources,
)
from imosaic.workers.reproject import ReprojectionWorker, decode_rgba
from imosaic.workers.tasks import InitializeTask, ReprojectResult, ReprojectTask

__all__ = [
    "ImageCache",
    "InitializeTask",
    "ProcessWorkerHandle",
    "ThreadWorkerHandle",
    "WORKER_BACKENDS",
    "ReprojectResult",
    "ReprojectTask",
    "ReprojectionWorker",
    "WorkerHandle",
    "WorkerPool",
    "decode_rgba",
    "default_concurrency",
    "partition_sources",
]
