"""In-memory job status store.

Thread-safe. Each job goes through: queued -> processing -> done | failed.
Entries and their output files are evicted by ``sweep`` once they are older
than the retention window.
"""

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Iterator

from .errors import DuplicateJobError, InvalidTransitionError
from .interfaces import JobEntry, JobStatus, utcnow

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.DONE, JobStatus.FAILED}),
    JobStatus.DONE: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class RWLock:
    """Writer-preferring reader/writer lock.

    Any number of readers may hold the lock together; a writer holds it
    alone. Once a writer is waiting, new readers queue behind it.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class JobStore:
    def __init__(self) -> None:
        self._lock = RWLock()
        self._jobs: dict[str, JobEntry] = {}

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        with self._lock.read():
            return job_id in self._jobs

    def register(self, job_id: str, entry: JobEntry | None = None) -> JobEntry:
        entry = entry or JobEntry()
        if entry.status is not JobStatus.QUEUED:
            raise InvalidTransitionError(f"job {job_id} must be registered as queued, got {entry.status.value}")
        with self._lock.write():
            if job_id in self._jobs:
                raise DuplicateJobError(f"job {job_id} already registered")
            self._jobs[job_id] = entry
        return replace(entry)

    def get(self, job_id: str) -> JobEntry | None:
        with self._lock.read():
            entry = self._jobs.get(job_id)
            # Copy so callers never observe a later mutation half-way
            return replace(entry) if entry is not None else None

    def set_status(
        self,
        job_id: str,
        status: JobStatus,
        output_path: str | None = None,
        error: str | None = None,
    ) -> JobEntry:
        with self._lock.write():
            entry = self._jobs.get(job_id)
            if entry is None:
                raise KeyError(job_id)
            if status not in _TRANSITIONS[entry.status]:
                raise InvalidTransitionError(
                    f"job {job_id}: {entry.status.value} -> {status.value} not allowed"
                )
            entry.status = status
            if status is JobStatus.DONE:
                entry.output_path = output_path or ""
            elif status is JobStatus.FAILED:
                entry.error = error or "conversion failed"
            entry.updated_at = utcnow()
            return replace(entry)

    def sweep(self, max_age: timedelta, now: datetime | None = None) -> list[str]:
        """Evict entries older than ``max_age`` and delete their output files.

        Returns the evicted job ids. File removal is best-effort.
        """
        now = now or utcnow()
        evicted: list[tuple[str, str]] = []
        with self._lock.write():
            for job_id, entry in list(self._jobs.items()):
                if now - entry.created_at > max_age:
                    evicted.append((job_id, entry.output_path))
                    del self._jobs[job_id]
        for job_id, output_path in evicted:
            if not output_path:
                continue
            try:
                os.remove(output_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Failed to remove output %s for job %s: %s", output_path, job_id, e)
        if evicted:
            logger.info("Swept %d expired job(s)", len(evicted))
        return [job_id for job_id, _ in evicted]
