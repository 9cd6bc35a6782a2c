"""
Unit tests for LMS grade reporting.

HTTP is served by httpx.MockTransport; backoff is zero so retries are instant.
"""

import json

import httpx
import pytest

from src.practice.exceptions import GradeReportError
from src.practice.grade_reporter import (
    BackgroundGradeReporter,
    LmsScoreClient,
    NullGradeReporter,
    make_score_delivery,
)
from src.practice.models import ScoreRecord

REPORT_URL = "https://lms.example.edu/api/scores"


class ScriptedLms:
    """Mock LMS endpoint replying with a scripted list of statuses or exceptions."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, type) and issubclass(reply, Exception):
            raise reply("scripted failure", request=request)
        return httpx.Response(reply, text="ok")


def _client(lms, retry_attempts=3):
    return LmsScoreClient(
        REPORT_URL,
        timeout_seconds=1.0,
        retry_attempts=retry_attempts,
        backoff_seconds=0,
        transport=httpx.MockTransport(lms),
    )


class TestLmsScoreClient:
    def test_delivered(self):
        lms = ScriptedLms([200])

        result = _client(lms).post_score("A1", "learner-1", 73)

        assert result["status"] == "delivered"
        assert len(lms.requests) == 1
        sent = lms.requests[0]
        assert str(sent.url) == REPORT_URL
        assert json.loads(sent.content) == {
            "assignment_id": "A1",
            "learner_id": "learner-1",
            "score": 73,
        }

    def test_unprocessable_counts_as_declined(self):
        lms = ScriptedLms([422])

        assert _client(lms).post_score("A1", "learner-1", 73) == {"status": "declined"}
        assert len(lms.requests) == 1

    def test_server_errors_are_retried(self):
        lms = ScriptedLms([503, 502, 200])

        assert _client(lms).post_score("A1", "learner-1", 10)["status"] == "delivered"
        assert len(lms.requests) == 3

    def test_gives_up_after_retry_attempts(self):
        lms = ScriptedLms([500])

        with pytest.raises(GradeReportError):
            _client(lms, retry_attempts=4).post_score("A1", "learner-1", 10)

        assert len(lms.requests) == 4

    def test_client_errors_not_retried(self):
        lms = ScriptedLms([404])

        with pytest.raises(GradeReportError):
            _client(lms).post_score("A1", "learner-1", 10)

        assert len(lms.requests) == 1

    def test_timeouts_are_retried(self):
        lms = ScriptedLms([httpx.ReadTimeout, 200])

        assert _client(lms).post_score("A1", "learner-1", 10)["status"] == "delivered"
        assert len(lms.requests) == 2

    def test_connection_errors_are_retried(self):
        lms = ScriptedLms([httpx.ConnectError])

        with pytest.raises(GradeReportError):
            _client(lms, retry_attempts=2).post_score("A1", "learner-1", 10)

        assert len(lms.requests) == 2


class TestScoreDelivery:
    def test_posts_current_max_score(self, store):
        store.put(ScoreRecord("learner-1", "A1", total_score=40, max_score=64))
        lms = ScriptedLms([200])

        make_score_delivery(store, _client(lms))("A1", "learner-1")

        assert json.loads(lms.requests[0].content)["score"] == 64

    def test_missing_record_is_skipped(self, store):
        lms = ScriptedLms([200])

        make_score_delivery(store, _client(lms))("A1", "nobody")

        assert lms.requests == []


class TestBackgroundGradeReporter:
    def test_delivers_queued_notifications(self):
        delivered = []
        reporter = BackgroundGradeReporter(
            deliver=lambda *pair: delivered.append(pair), poll_seconds=0.05
        )

        reporter.start()
        try:
            reporter.notify("A1", "learner-1")
            reporter.notify("A1", "learner-2")
            reporter.flush()
        finally:
            reporter.stop()

        assert delivered == [("A1", "learner-1"), ("A1", "learner-2")]
        assert reporter.status.delivered == 2
        assert reporter.status.is_running is False

    def test_pending_duplicates_collapse(self):
        delivered = []
        reporter = BackgroundGradeReporter(
            deliver=lambda *pair: delivered.append(pair), poll_seconds=0.05
        )

        # Not started yet, so all three are pending at once
        reporter.notify("A1", "learner-1")
        reporter.notify("A1", "learner-1")
        reporter.notify("A1", "learner-1")

        reporter.start()
        try:
            reporter.flush()
        finally:
            reporter.stop()

        assert delivered == [("A1", "learner-1")]

    def test_failures_are_counted_not_raised(self):
        def deliver(assignment_id, learner_id):
            if learner_id == "bad":
                raise GradeReportError("LMS down")

        reporter = BackgroundGradeReporter(deliver=deliver, poll_seconds=0.05)
        reporter.start()
        try:
            reporter.notify("A1", "bad")
            reporter.notify("A1", "good")
            reporter.flush()
        finally:
            reporter.stop()

        assert reporter.status.failed == 1
        assert reporter.status.delivered == 1
        assert reporter.status.error_message is None

    def test_notify_does_not_block_without_worker(self):
        reporter = BackgroundGradeReporter(deliver=lambda *pair: None)
        reporter.notify("A1", "learner-1")
        assert reporter.status.delivered == 0

    def test_null_reporter_accepts_notifications(self):
        NullGradeReporter().notify("A1", "learner-1")

    def test_flush_without_worker_returns(self):
        reporter = BackgroundGradeReporter(deliver=lambda *pair: None)
        reporter.notify("A1", "learner-1")

        reporter.flush()

        assert reporter.status.delivered == 0
        assert reporter.status.is_running is False
