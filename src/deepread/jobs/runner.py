"""Background execution of analysis jobs, decoupled from the caller.

``JobRunner`` owns one daemon thread running an asyncio event loop.
``submit()`` schedules ``process_job`` on that loop and returns at once with a
``concurrent.futures.Future``. Submitting a job id that is already in flight
returns the existing future instead of starting a second run; the engine's
conditional ``pending → processing`` transition guards against anything that
slips past this (another process, a restart).
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future

from deepread.jobs.engine import DeepAnalysisService

logger = logging.getLogger(__name__)


class JobRunner:
    """Run deep analysis jobs on a dedicated background event loop."""

    def __init__(self, service: DeepAnalysisService) -> None:
        self.service = service
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, name="deepread-job-runner", daemon=True
        )
        self._lock = threading.Lock()
        self._in_flight: dict[str, Future[None]] = {}
        self._closed = False
        self._thread.start()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def submit(self, job_id: str) -> Future[None]:
        """Schedule *job_id* for processing; idempotent while the job is in flight."""
        with self._lock:
            if self._closed:
                raise RuntimeError("JobRunner is shut down")
            existing = self._in_flight.get(job_id)
            if existing is not None and not existing.done():
                logger.debug("Job %s already in flight", job_id)
                return existing
            future = asyncio.run_coroutine_threadsafe(
                self.service.process_job(job_id), self._loop
            )
            self._in_flight[job_id] = future
        future.add_done_callback(lambda f: self._finished(job_id, f))
        return future

    def _finished(self, job_id: str, future: Future[None]) -> None:
        with self._lock:
            if self._in_flight.get(job_id) is future:
                del self._in_flight[job_id]
        if not future.cancelled() and future.exception() is not None:
            logger.error("Job %s crashed: %s", job_id, future.exception())

    @property
    def in_flight(self) -> list[str]:
        with self._lock:
            return list(self._in_flight)

    def shutdown(self, wait: bool = True, timeout: float | None = None) -> None:
        """Stop accepting jobs; optionally wait for in-flight jobs, then stop the loop."""
        with self._lock:
            self._closed = True
            pending = list(self._in_flight.values())
        if wait:
            for future in pending:
                try:
                    future.result(timeout=timeout)
                except Exception as exc:
                    logger.warning("Job ended with error during shutdown: %s", exc)
        else:
            for future in pending:
                future.cancel()
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=timeout)
        if not self._thread.is_alive():
            self._loop.close()

    def __enter__(self) -> JobRunner:
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown(wait=True)
