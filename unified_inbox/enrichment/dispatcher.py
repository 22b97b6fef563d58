"""Threaded enrichment dispatcher with retry and dead-letter support."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Event, Lock
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeadLetter:
    """A message whose enrichment failed on every attempt."""

    message_id: UUID
    attempts: int
    error: str
    failed_at: datetime


class EnrichmentDispatcher:
    """Run enrichment jobs off the ingestion path.

    ``submit`` never blocks on the job and never raises because of it.  Each
    job is retried up to ``max_attempts`` times with exponential backoff; a job
    that still fails lands in a bounded dead-letter list for inspection.  With
    ``max_workers=0`` jobs run inline on the caller's thread, which keeps tests
    deterministic.
    """

    Job = Callable[[UUID], object]

    def __init__(
        self,
        job: Job,
        *,
        max_workers: int = 2,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        dead_letter_limit: int = 100,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._job = job
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._stop = Event()
        self._lock = Lock()
        # Keyed by future: the same message may be queued more than once.
        self._futures: dict[Future, UUID] = {}
        self._dead_letters: deque[DeadLetter] = deque(maxlen=dead_letter_limit)
        self.executor = (
            ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="enrichment")
            if max_workers > 0
            else None
        )

    def submit(self, message_id: UUID) -> None:
        """Schedule enrichment for ``message_id``."""
        if self._stop.is_set():
            logger.warning("Dispatcher stopped, dropping enrichment of %s", message_id)
            return
        if self.executor is None:
            self._run(message_id)
            return
        future = self.executor.submit(self._run, message_id)
        with self._lock:
            self._futures[future] = message_id
        future.add_done_callback(self._clear)

    def _clear(self, future: Future) -> None:
        with self._lock:
            self._futures.pop(future, None)

    def _run(self, message_id: UUID) -> None:
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                self._job(message_id)
                return
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Enrichment attempt %s/%s failed for %s: %s",
                    attempt,
                    self.max_attempts,
                    message_id,
                    exc,
                )
            if attempt < self.max_attempts:
                if self._stop.is_set():
                    break
                self._sleep(self.backoff_seconds * 2 ** (attempt - 1))
        letter = DeadLetter(
            message_id=message_id,
            attempts=attempt,
            error=str(last_error),
            failed_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._dead_letters.append(letter)
        logger.error("Enrichment dead-lettered for %s after %s attempts", message_id, attempt)

    def pending(self) -> Iterable[UUID]:
        with self._lock:
            return list(self._futures.values())

    def dead_letters(self) -> list[DeadLetter]:
        with self._lock:
            return list(self._dead_letters)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight jobs; return ``True`` when none remain."""
        with self._lock:
            futures = list(self._futures)
        if not futures:
            return True
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True, *, cancel_pending: bool = False) -> None:
        """Stop accepting work; ``cancel_pending`` drops jobs not yet started."""
        self._stop.set()
        if self.executor is not None:
            self.executor.shutdown(wait=wait, cancel_futures=cancel_pending)
