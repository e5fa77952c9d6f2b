import asyncio
import logging
import os
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable

from .errors import InvalidTransitionError, JobWaitTimeoutError, QueueFullError
from .formats import extension_for
from .interfaces import (
    ConversionJob,
    ConverterGateway,
    JobEntry,
    JobResult,
    JobStatus,
    StorageGateway,
)
from .store import JobStore

logger = logging.getLogger(__name__)


class ConversionService:
    """Core domain service orchestrating conversion jobs.

    This service is framework-agnostic. It owns the bounded job queue, the
    job status store, the worker tasks and the cleanup sweeper, and exposes
    ``submit``/``wait`` so an HTTP handler can block on a background
    conversion with a deadline.
    """

    def __init__(
        self,
        converter: ConverterGateway,
        storage: StorageGateway,
        *,
        store: JobStore | None = None,
        workers: int = 8,
        queue_capacity: int = 256,
        wait_timeout: float = 65.0,
        retention: float = 1800.0,
        sweep_interval: float = 600.0,
    ) -> None:
        self._converter = converter
        self._storage = storage
        self._store = store if store is not None else JobStore()
        self._workers = workers
        self._wait_timeout = wait_timeout
        self._retention = timedelta(seconds=retention)
        self._sweep_interval = sweep_interval
        self._queue: asyncio.Queue[ConversionJob] = asyncio.Queue(maxsize=queue_capacity)
        self._tasks: list[asyncio.Task] = []
        self._executor: ThreadPoolExecutor | None = None

    @property
    def queue(self) -> asyncio.Queue[ConversionJob]:
        return self._queue

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def storage(self) -> StorageGateway:
        return self._storage

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        # One thread per worker so every worker can run a conversion at once
        self._executor = ThreadPoolExecutor(max_workers=max(1, self._workers), thread_name_prefix="convertly-worker")
        for i in range(self._workers):
            task = asyncio.create_task(self._worker_loop(f"worker-{i+1}"), name=f"worker-{i+1}")
            self._tasks.append(task)
        self._tasks.append(asyncio.create_task(self._sweeper_loop(), name="sweeper"))
        logger.info("Started %d workers (queue capacity %d)", self._workers, self._queue.maxsize)

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        executor, self._executor = self._executor, None
        if executor is not None:
            # Running conversions finish on their own and clean up after themselves
            executor.shutdown(wait=False, cancel_futures=True)
        if tasks:
            logger.info("Stopped workers and sweeper")

    # API used by HTTP controller to persist an upload before submitting it
    async def save_upload(
        self,
        filename: str,
        reader: Callable[[int], Awaitable[bytes]],
        *,
        max_upload_mb: int,
    ) -> str:
        """Stream an upload into a temp input file and return its path."""
        ext = Path(filename or "upload").suffix
        input_path = self._storage.new_input_path(ext)
        size_bytes = 0
        CHUNK = 1024 * 1024
        max_bytes = max_upload_mb * 1024 * 1024
        try:
            with open(input_path, "wb") as f_out:
                while True:
                    chunk = await reader(CHUNK)
                    if not chunk:
                        break
                    size_bytes += len(chunk)
                    if size_bytes > max_bytes:
                        raise ValueError(f"upload exceeds {max_upload_mb} MB")
                    f_out.write(chunk)
        except BaseException:
            self._storage.remove(input_path)
            raise
        return input_path

    def submit(
        self,
        from_fmt: str,
        to_fmt: str,
        *,
        content: str | None = None,
        input_path: str | None = None,
    ) -> ConversionJob:
        """Register a queued job and enqueue it without blocking.

        Raises QueueFullError when the queue is at capacity. The queued store
        entry is then left behind for the sweeper.
        """
        loop = asyncio.get_running_loop()
        job = ConversionJob(
            id=str(uuid.uuid4()),
            from_fmt=from_fmt,
            to_fmt=to_fmt,
            result=loop.create_future(),
            content=content,
            input_path=input_path,
        )
        self._store.register(job.id)
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning("Queue full, rejecting job %s", job.id)
            if job.input_path:
                self._storage.remove(job.input_path)
            raise QueueFullError(job.id) from None
        logger.info("Queued job %s (%s -> %s)", job.id, from_fmt, to_fmt)
        return job

    async def wait(
        self,
        job: ConversionJob,
        timeout: float | None = None,
        cancelled: Awaitable[object] | None = None,
    ) -> JobResult:
        """Wait for the job's result, the deadline, or ``cancelled``.

        Giving up never cancels the job; its outcome stays readable through
        the store.
        """
        timeout = self._wait_timeout if timeout is None else timeout
        waiters: set[asyncio.Future] = {job.result}
        watcher = asyncio.ensure_future(cancelled) if cancelled is not None else None
        if watcher is not None:
            waiters.add(watcher)
        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if watcher is not None:
                watcher.cancel()
        if job.result in done:
            return job.result.result()
        if watcher is not None and watcher in done:
            logger.info("Client gave up waiting on job %s", job.id)
            raise JobWaitTimeoutError(job.id, "request cancelled")
        logger.warning("Timed out after %gs waiting on job %s", timeout, job.id)
        raise JobWaitTimeoutError(job.id)

    async def convert(
        self,
        from_fmt: str,
        to_fmt: str,
        *,
        content: str | None = None,
        input_path: str | None = None,
        timeout: float | None = None,
    ) -> JobResult:
        job = self.submit(from_fmt, to_fmt, content=content, input_path=input_path)
        return await self.wait(job, timeout)

    def get(self, job_id: str) -> JobEntry | None:
        return self._store.get(job_id)

    def sweep(self, now: datetime | None = None) -> list[str]:
        return self._store.sweep(self._retention, now=now)

    async def _sweeper_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await asyncio.to_thread(self.sweep)
            except Exception:
                logger.exception("Cleanup sweep failed")

    async def _worker_loop(self, name: str) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._process(job, name)
            except Exception:
                logger.exception("%s: unexpected error on job %s", name, job.id)
            finally:
                self._queue.task_done()

    async def _process(self, job: ConversionJob, name: str) -> None:
        try:
            self._store.set_status(job.id, JobStatus.PROCESSING)
        except (KeyError, InvalidTransitionError) as e:
            # Entry expired while the job sat in the queue
            logger.warning("%s: dropping job %s: %r", name, job.id, e)
            if job.input_path:
                self._storage.remove(job.input_path)
            self._deliver(job, JobResult(job.id, error="job expired before processing"))
            return

        logger.info("%s: converting job %s (%s -> %s)", name, job.id, job.from_fmt, job.to_fmt)
        input_path = job.input_path
        output_path = self._storage.output_path(job.id, extension_for(job.to_fmt))
        pending: Future | None = None
        try:
            if input_path is None:
                input_path = await self._run_blocking(
                    self._storage.write_input, job.content or "", extension_for(job.from_fmt)
                )
            pending = self._executor.submit(self._converter.convert, input_path, job.from_fmt, job.to_fmt, output_path)
            await asyncio.wrap_future(pending)
            if not os.path.exists(output_path):
                raise RuntimeError("converter produced no output file")
        except asyncio.CancelledError:
            if pending is not None:
                # The converter thread may still be writing; clean up once it returns
                pending.add_done_callback(self._cleanup_callback(input_path, output_path))
                input_path = None
            else:
                self._storage.remove(output_path)
            self._deliver(job, JobResult(job.id, error="service stopped"))
            raise
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.warning("%s: job %s failed: %s", name, job.id, error)
            self._storage.remove(output_path)
            self._finish(job, JobStatus.FAILED, error=error)
        else:
            logger.info("%s: job %s done", name, job.id)
            self._finish(job, JobStatus.DONE, output_path=output_path)
        finally:
            if input_path is not None:
                self._storage.remove(input_path)

    def _finish(self, job: ConversionJob, status: JobStatus, *, output_path: str = "", error: str | None = None) -> None:
        try:
            self._store.set_status(job.id, status, output_path=output_path, error=error)
        except KeyError:
            logger.warning("Job %s was swept before it finished", job.id)
            if output_path:
                self._storage.remove(output_path)
            self._deliver(job, JobResult(job.id, error="job expired before it finished"))
            return
        if status is JobStatus.DONE:
            self._deliver(job, JobResult(job.id, output_path=output_path))
        else:
            self._deliver(job, JobResult(job.id, error=error))

    async def _run_blocking(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.wrap_future(self._executor.submit(fn, *args))

    def _cleanup_callback(self, *paths: str | None) -> Callable[[Future], None]:
        def cleanup(_: Future) -> None:
            for path in paths:
                if path:
                    self._storage.remove(path)

        return cleanup

    @staticmethod
    def _deliver(job: ConversionJob, result: JobResult) -> None:
        # Nobody may be listening any more; the store already has the outcome
        if not job.result.done():
            job.result.set_result(result)
