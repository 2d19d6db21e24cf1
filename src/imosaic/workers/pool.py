"""Fixed-size pool of isolated reprojection workers."""

from __future__ import annotations

import logging
import os
from concurrent.futures import Future, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Callable, Protocol, Sequence

from imosaic.errors import ConfigurationError, WorkerInitializationError
from imosaic.geo.rectangle import Rectangle
from imosaic.models import SourceImage, WorkerPartition
from imosaic.workers.reproject import (
    ReprojectionWorker,
    bootstrap_worker_process,
    ping_worker_process,
    run_worker_task,
)
from imosaic.workers.tasks import InitializeTask, ReprojectTask

LOGGER = logging.getLogger(__name__)

WorkerTask = InitializeTask | ReprojectTask


def default_concurrency() -> int:
    """Return one worker per spare CPU, at least one."""
    cpu_count = os.cpu_count() or 1
    return max(cpu_count - 1, 1)


def partition_sources(
    sources: Sequence[SourceImage],
    concurrency: int,
    cache_size: int,
) -> list[WorkerPartition]:
    """Split sources round-robin: worker i gets i, i + N, i + 2N, ...

    Neighbouring inputs land on different workers. Inputs that are sorted
    geographically in long runs balance poorly; that is not corrected here.
    """
    if concurrency < 1:
        raise ConfigurationError("concurrency must be >= 1")
    partitions = []
    for worker_id in range(concurrency):
        indices = tuple(range(worker_id, len(sources), concurrency))
        partitions.append(
            WorkerPartition(
                worker_id=worker_id,
                indices=indices,
                urls=tuple(sources[index].url for index in indices),
                projections=tuple(sources[index].projection for index in indices),
                projected_rectangles=tuple(
                    sources[index].projected_rectangle for index in indices
                ),
                cache_size=cache_size,
            )
        )
    return partitions


class WorkerHandle(Protocol):
    """Execution context for exactly one worker."""

    def start(self) -> Future:
        ...

    def submit(self, task: WorkerTask) -> Future:
        ...

    def shutdown(self) -> None:
        ...


class ProcessWorkerHandle:
    """Worker hosted in its own single-process executor."""

    def __init__(self, worker_id: int) -> None:
        self.worker_id = worker_id
        self._executor = ProcessPoolExecutor(
            max_workers=1,
            initializer=bootstrap_worker_process,
        )

    def start(self) -> Future:
        return self._executor.submit(ping_worker_process)

    def submit(self, task: WorkerTask) -> Future:
        return self._executor.submit(run_worker_task, task)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


class ThreadWorkerHandle:
    """Worker hosted on a private thread of the current process.

    Shares the interpreter with the caller, so it offers no failure
    isolation; useful for debugging and small mosaics.
    """

    def __init__(self, worker_id: int) -> None:
        self.worker_id = worker_id
        self._worker = ReprojectionWorker()
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"imosaic-worker-{worker_id}",
        )

    def start(self) -> Future:
        return self._executor.submit(lambda: True)

    def submit(self, task: WorkerTask) -> Future:
        return self._executor.submit(self._worker.handle, task)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


HandleFactory = Callable[[int], WorkerHandle]

WORKER_BACKENDS: dict[str, HandleFactory] = {
    "process": ProcessWorkerHandle,
    "thread": ThreadWorkerHandle,
}


class WorkerPool:
    """Own N workers, each initialized with one source partition."""

    def __init__(
        self,
        partitions: Sequence[WorkerPartition],
        *,
        handle_factory: HandleFactory = ProcessWorkerHandle,
        resampling: str = "bilinear",
    ) -> None:
        if not partitions:
            raise ConfigurationError("Worker pool requires at least one partition.")
        self.partitions = tuple(partitions)
        self.resampling = resampling
        self._handles = [handle_factory(partition.worker_id) for partition in self.partitions]
        self._started = False

    def __len__(self) -> int:
        return len(self._handles)

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    @property
    def started(self) -> bool:
        return self._started

    def start(self, *, timeout: float | None = None) -> list[Rectangle | None]:
        """Boot every worker and return per-partition geographic rectangles.

        Any failure aborts the whole pool; there is no partial pool.
        """
        try:
            boots = [handle.start() for handle in self._handles]
            for worker_id, boot in enumerate(boots):
                boot.result(timeout=timeout)
                LOGGER.debug("Worker runtime ready.", extra={"worker": worker_id})
            initializations = [
                handle.submit(InitializeTask.for_partition(partition, resampling=self.resampling))
                for handle, partition in zip(self._handles, self.partitions)
            ]
            rectangles = [future.result(timeout=timeout) for future in initializations]
        except Exception as exc:
            self.shutdown()
            raise WorkerInitializationError(f"Worker pool failed to initialize: {exc}") from exc
        self._started = True
        LOGGER.info("Started %d reprojection workers.", len(self._handles))
        return rectangles

    def submit_all(self, task: WorkerTask) -> list[Future]:
        """Send a task to every worker; futures are in worker-index order."""
        if not self._started:
            raise RuntimeError("Worker pool has not been started.")
        return [handle.submit(task) for handle in self._handles]

    def shutdown(self) -> None:
        for handle in self._handles:
            handle.shutdown()
        self._started = False
