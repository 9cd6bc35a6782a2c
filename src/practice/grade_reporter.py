"""
Grade reporting to the hosting LMS.

Score updates never wait on the LMS. notify() drops an (assignment, learner)
pair on a queue and a background thread delivers it:

    reporter = BackgroundGradeReporter(deliver=make_score_delivery(store, client))
    reporter.start()
    reporter.notify("assignment-1", "learner-1")
    # ...
    reporter.stop()

Delivery reads the learner's current high-water score at send time, so a
duplicate or late notification still posts the right value.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol

import httpx
from loguru import logger

from src.practice.exceptions import GradeReportError
from src.practice.store import ScoreStore


class GradeReporter(Protocol):
    def notify(self, assignment_id: str, learner_id: str) -> None: ...


class NullGradeReporter:
    """Reporter for self-hosted deployments and disabled reporting."""

    def notify(self, assignment_id: str, learner_id: str) -> None:
        logger.debug("Grade reporting disabled; skipping {}/{}", assignment_id, learner_id)


# =============================================================================
# HTTP client
# =============================================================================


class LmsScoreClient:
    """Posts a learner's score to the LMS reporting endpoint."""

    def __init__(
        self,
        report_url: str,
        timeout_seconds: float = 30.0,
        retry_attempts: int = 3,
        backoff_seconds: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.report_url = report_url
        self.retry_attempts = retry_attempts
        self.backoff_seconds = backoff_seconds
        self.client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def post_score(self, assignment_id: str, learner_id: str, score: int) -> dict[str, Any]:
        """
        Send one score with retry on timeouts and 5xx responses.

        A 422 means the LMS understood but declined the score (for example an
        instructor account); it is treated as delivered.

        Raises:
            GradeReportError: When every attempt failed
        """
        payload = {"assignment_id": assignment_id, "learner_id": learner_id, "score": score}
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = self.client.post(self.report_url, json=payload)
                if response.status_code == 422:
                    logger.info(
                        "LMS declined score for {} on {} (422)", learner_id, assignment_id
                    )
                    return {"status": "declined"}
                response.raise_for_status()
                return {"status": "delivered", "reply": response.text}

            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(
                    "Score report timeout on attempt {}/{}", attempt + 1, self.retry_attempts
                )

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    break
                logger.warning(
                    "LMS returned {} on attempt {}/{}",
                    e.response.status_code,
                    attempt + 1,
                    self.retry_attempts,
                )

            except httpx.HTTPError as e:
                last_error = e
                logger.warning("Score report failed on attempt {}: {}", attempt + 1, e)

            if attempt < self.retry_attempts - 1:
                time.sleep(self.backoff_seconds * 2**attempt)

        raise GradeReportError(
            f"Could not report score for {learner_id} on {assignment_id}: {last_error}"
        )


def make_score_delivery(
    store: ScoreStore, client: LmsScoreClient
) -> Callable[[str, str], None]:
    """Delivery function that posts the record's current max_score."""

    def deliver(assignment_id: str, learner_id: str) -> None:
        record = store.get(learner_id, assignment_id)
        if record is None:
            logger.warning("No score record to report for {}/{}", learner_id, assignment_id)
            return
        client.post_score(assignment_id, learner_id, record.max_score)

    return deliver


# =============================================================================
# Background worker
# =============================================================================


@dataclass
class ReportStatus:
    """Current reporter status."""

    is_running: bool = False
    delivered: int = 0
    failed: int = 0
    last_report_at: datetime | None = None
    error_message: str | None = None


@dataclass
class BackgroundGradeReporter:
    """
    Fire-and-forget grade reporter.

    Pending notifications for the same pair are collapsed. Failures are
    logged and counted; they never propagate to the caller of notify().
    """

    deliver: Callable[[str, str], None]
    poll_seconds: float = 0.5

    _status: ReportStatus = field(default_factory=ReportStatus)
    _queue: queue.Queue = field(default_factory=queue.Queue, repr=False)
    _pending: set = field(default_factory=set, repr=False)
    _pending_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _thread: threading.Thread | None = field(default=None, repr=False)
    _stop_event: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def status(self) -> ReportStatus:
        return self._status

    def notify(self, assignment_id: str, learner_id: str) -> None:
        item = (assignment_id, learner_id)
        with self._pending_lock:
            if item in self._pending:
                return
            self._pending.add(item)
        self._queue.put(item)

    def start(self) -> None:
        if self._status.is_running:
            logger.warning("Grade reporter already running")
            return

        self._stop_event.clear()
        self._status.is_running = True
        self._thread = threading.Thread(
            target=self._run,
            name="grade-reporter",
            daemon=True,
        )
        self._thread.start()
        logger.info("Background grade reporter started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the worker. Undelivered items stay queued."""
        if not self._status.is_running:
            return

        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)

        self._status.is_running = False
        logger.info("Background grade reporter stopped")

    def flush(self) -> None:
        """Block until every queued notification has been attempted. No-op while stopped."""
        if not self._status.is_running:
            logger.warning(
                "Grade reporter not running; {} notifications stay queued", self._queue.qsize()
            )
            return
        self._queue.join()

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                assignment_id, learner_id = self._queue.get(timeout=self.poll_seconds)
            except queue.Empty:
                continue

            with self._pending_lock:
                self._pending.discard((assignment_id, learner_id))

            try:
                self.deliver(assignment_id, learner_id)
                self._status.delivered += 1
                self._status.last_report_at = datetime.now()
                self._status.error_message = None
            except Exception as exc:  # Reporting must never take the worker down
                self._status.failed += 1
                self._status.error_message = str(exc)
                logger.error(
                    "Grade report failed for {}/{}: {}", learner_id, assignment_id, exc
                )
            finally:
                self._queue.task_done()
