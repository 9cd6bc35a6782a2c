"""
Unit tests for PracticeService.

Uses the in-memory catalog, score store and assignment repository with a
seeded random source.
"""

import random
import threading
from collections import Counter
from contextlib import contextmanager

import pytest

from src.practice.catalog import InMemoryQuestionCatalog
from src.practice.exceptions import (
    ContentUnavailableError,
    PersistenceError,
    QuestionNotFoundError,
)
from src.practice.models import Assignment, ScoreKey, ScoreRecord
from src.practice.scoring import next_topic_score, next_total_score
from src.practice.service import PracticeService
from src.practice.store import InMemoryScoreStore, RecordHandle

from tests.conftest import LMS_PLATFORM, make_questions


@pytest.fixture
def service(catalog, store, reporter, assignments, settings):
    return PracticeService(
        catalog,
        store,
        reporter=reporter,
        assignments=assignments,
        rng=random.Random(5),
        settings=settings,
    )


def _stored(store, learner_id="learner-1", assignment_id="A1"):
    record = store.get(learner_id, assignment_id)
    assert record is not None
    return record


class TestGetOrCreateRecord:
    def test_new_record_starts_at_zero(self, service, store, catalog, lms_assignment):
        record = service.get_or_create_record("learner-1", lms_assignment)

        assert record.topic_ids == ["T1", "T2", "T3"]
        assert record.topic_scores == [0, 0, 0]
        assert record.total_score == 0 and record.max_score == 0
        assert catalog.get(record.current_question_id).topic_id in record.topic_ids
        assert _stored(store).current_question_id == record.current_question_id

    def test_existing_record_keeps_current_question(self, service, lms_assignment):
        first = service.get_or_create_record("learner-1", lms_assignment)
        second = service.get_or_create_record("learner-1", lms_assignment)
        assert second.current_question_id == first.current_question_id

    def test_stale_record_repaired_on_load(self, service, store, lms_assignment):
        store.put(ScoreRecord("learner-1", "A1", topic_ids=["T1", "T2"], topic_scores=[50, 20]))

        record = service.get_or_create_record("learner-1", lms_assignment)

        assert record.topic_ids == ["T1", "T2", "T3"]
        assert record.topic_scores == [50, 20, 0]
        assert _stored(store).topic_scores == [50, 20, 0]

    def test_progress(self, service, lms_assignment):
        report = service.progress("learner-1", lms_assignment)
        assert report.learner_id == "learner-1"
        assert [t.topic_id for t in report.topics] == ["T1", "T2", "T3"]
        assert report.current_question_id == service.current_question_id("learner-1", lms_assignment)


class TestSubmitAnswer:
    def test_correct_answer_updates_scores(self, service, store, lms_assignment):
        result = service.submit_answer("learner-1", lms_assignment, "T2-checkbox-0", 1)

        assert result.attributed
        assert result.record.total_score == 10
        assert result.record.topic_scores == [0, 33, 0]
        assert result.next_question_id == result.record.current_question_id
        assert _stored(store).total_score == 10

    def test_lms_assignment_notified_when_max_rises(self, service, reporter, lms_assignment):
        result = service.submit_answer("learner-1", lms_assignment, "T1-true_false-0", 1)

        assert result.max_score_raised
        assert result.report_queued
        assert reporter.calls == [("A1", "learner-1")]

    def test_self_hosted_assignment_never_notified(self, service, reporter, self_hosted_assignment):
        result = service.submit_answer("learner-1", self_hosted_assignment, "T1-true_false-0", 1)

        assert result.max_score_raised
        assert not result.report_queued
        assert reporter.calls == []

    def test_no_notification_without_new_high(self, service, reporter, lms_assignment):
        result = service.submit_answer("learner-1", lms_assignment, "T1-true_false-0", 0)

        assert result.record.total_score == 0
        assert not result.max_score_raised
        assert reporter.calls == []

    def test_reporter_failure_does_not_undo_score(
        self, catalog, store, failing_reporter, settings, lms_assignment
    ):
        service = PracticeService(
            catalog, store, reporter=failing_reporter, rng=random.Random(1), settings=settings
        )

        result = service.submit_answer("learner-1", lms_assignment, "T1-true_false-0", 1)

        assert result.max_score_raised
        assert not result.report_queued
        assert _stored(store).total_score == 10

    def test_unknown_question(self, service, store, lms_assignment):
        with pytest.raises(QuestionNotFoundError):
            service.submit_answer("learner-1", lms_assignment, "missing", 1)
        assert store.get("learner-1", "A1") is None

    def test_stale_record_repaired_then_scored(self, service, store, lms_assignment):
        store.put(ScoreRecord("learner-1", "A1", topic_ids=["T1", "T2"], topic_scores=[50, 20]))

        result = service.submit_answer("learner-1", lms_assignment, "T3-numeric-0", 1)

        assert result.attributed
        assert result.record.topic_ids == ["T1", "T2", "T3"]
        assert result.record.topic_scores == [50, 20, 33]
        assert _stored(store).topic_scores == [50, 20, 33]

    def test_topics_added_to_assignment_are_picked_up(self, service, store, lms_assignment):
        store.put(ScoreRecord("learner-1", "A1", topic_ids=["T1", "T2"], topic_scores=[50, 20]))

        result = service.submit_answer("learner-1", lms_assignment, "T1-true_false-0", 1)

        assert result.attributed
        assert result.record.topic_ids == ["T1", "T2", "T3"]
        assert result.record.topic_scores == [66, 20, 0]
        assert _stored(store).topic_ids == ["T1", "T2", "T3"]

    def test_answer_on_removed_topic_not_attributed(self, store, reporter, settings, lms_assignment):
        service = PracticeService(
            InMemoryQuestionCatalog(make_questions(["T1", "T2", "T3", "T4"])),
            store,
            reporter=reporter,
            rng=random.Random(4),
            settings=settings,
        )
        store.put(
            ScoreRecord(
                "learner-1",
                "A1",
                topic_ids=["T1", "T2", "T3", "T4"],
                topic_scores=[50, 20, 10, 90],
                total_score=30,
                max_score=30,
            )
        )

        result = service.submit_answer("learner-1", lms_assignment, "T4-numeric-0", 1)

        assert not result.attributed
        stored = _stored(store)
        assert stored.topic_ids == ["T1", "T2", "T3"]
        assert stored.topic_scores == [50, 20, 10]
        assert stored.total_score == 30
        assert reporter.calls == []

    def test_commit_failure_skips_notification(self, catalog, reporter, settings, lms_assignment):
        class CommitFailingStore(InMemoryScoreStore):
            @contextmanager
            def transaction(self, learner_id, assignment_id):
                handle = RecordHandle(
                    ScoreKey(learner_id, assignment_id), self.get(learner_id, assignment_id)
                )
                yield handle
                raise PersistenceError("disk full")

        store = CommitFailingStore()
        service = PracticeService(
            catalog, store, reporter=reporter, rng=random.Random(1), settings=settings
        )

        with pytest.raises(PersistenceError):
            service.submit_answer("learner-1", lms_assignment, "T1-true_false-0", 1)

        assert reporter.calls == []
        assert store.get("learner-1", "A1") is None

    def test_concurrent_answers_are_serialised(self, service, store, lms_assignment):
        threads_count, answers_each = 8, 5
        barrier = threading.Barrier(threads_count)
        errors = []

        def learner_session():
            try:
                barrier.wait()
                for _ in range(answers_each):
                    service.submit_answer("learner-1", lms_assignment, "T1-true_false-0", 1)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=learner_session) for _ in range(threads_count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        expected_total, expected_topic = 0, 0
        for _ in range(threads_count * answers_each):
            expected_total = next_total_score(expected_total, 1)
            expected_topic = next_topic_score(expected_topic, 1)

        assert errors == []
        stored = _stored(store)
        assert stored.total_score == expected_total
        assert stored.topic_scores[0] == expected_topic
        assert len(stored.recent_question_ids) <= 5


class TestUpdate:
    def test_update_persists_and_returns_next(self, service, store, reporter):
        record = ScoreRecord("learner-1", "A1", topic_ids=["T1", "T2", "T3"], topic_scores=[0, 0, 0])

        next_id = service.update(record, "T1-true_false-0", 1)

        assert next_id == record.current_question_id
        assert _stored(store).total_score == 10
        # A1 is looked up from the assignment repository and lives on the LMS
        assert reporter.calls == [("A1", "learner-1")]

    def test_update_without_assignment_lookup(self, catalog, store, reporter, settings):
        service = PracticeService(catalog, store, reporter=reporter, rng=random.Random(2), settings=settings)
        record = ScoreRecord("learner-1", "A9", topic_ids=["T1"], topic_scores=[0])

        service.update(record, "T1-true_false-0", 1)

        assert _stored(store, assignment_id="A9").topic_scores == [33]
        assert reporter.calls == []


    def test_record_untouched_when_no_next_question(self, store, settings):
        service = PracticeService(
            InMemoryQuestionCatalog(make_questions(["T1"])),
            store,
            rng=random.Random(6),
            settings=settings,
        )
        # T1 is mastered, so the next draw lands on T2, which has no questions
        record = ScoreRecord(
            "learner-1",
            "A9",
            topic_ids=["T1", "T2"],
            topic_scores=[100, 0],
            total_score=50,
            max_score=50,
            recent_question_ids=["T1-numeric-0"],
        )

        with pytest.raises(ContentUnavailableError):
            service.update(record, "T1-true_false-0", 1)

        assert (record.total_score, record.topic_scores) == (50, [100, 0])
        assert record.recent_question_ids == ["T1-numeric-0"]
        assert record.current_question_id is None
        assert store.get("learner-1", "A9") is None


class TestRepair:
    def test_repair_persists(self, service, store):
        record = ScoreRecord("learner-1", "A1", topic_ids=["T1", "T2"], topic_scores=[40, 60])

        report = service.repair(record, Assignment("A1", topic_ids=["T2", "T3"]))

        assert report.dropped == {"T1": 40}
        assert _stored(store).topic_score_map() == {"T2": 60, "T3": 0}


class TestAssignmentsAndGradebook:
    def test_create_assignment_filters_thin_topics(self, catalog, store, assignments, settings):
        catalog.add(make_questions(["T9"], per_type=1)[0])
        service = PracticeService(
            catalog, store, assignments=assignments, rng=random.Random(3), settings=settings
        )

        assignment = service.create_assignment(
            "A3", ["T9", "T1", "T2"], title="Week 3", platform_id=LMS_PLATFORM
        )

        assert assignment.topic_ids == ["T1", "T2"]
        assert assignments.get("A3").title == "Week 3"

    def test_synchronize_requeues_mismatched_scores(self, service, store, reporter, lms_assignment):
        for learner_id, max_score in [("learner-1", 50), ("learner-2", 30), ("learner-3", 20), ("learner-4", 70)]:
            store.put(ScoreRecord(learner_id, "A1", total_score=max_score, max_score=max_score))

        queued = service.synchronize_scores(
            lms_assignment,
            {"learner-1": "50.0", "learner-2": 25, "learner-3": None, "learner-5": 10},
        )

        assert queued == ["learner-2", "learner-3"]
        assert reporter.calls == [("A1", "learner-2"), ("A1", "learner-3")]

    def test_synchronize_ignores_self_hosted(self, service, store, reporter, self_hosted_assignment):
        store.put(ScoreRecord("learner-1", "A2", total_score=50, max_score=50))

        assert service.synchronize_scores(self_hosted_assignment, {"learner-1": 0}) == []
        assert reporter.calls == []


    def test_unparseable_lms_scores_are_resent(self, service, store, reporter, lms_assignment):
        store.put(ScoreRecord("learner-1", "A1", total_score=50, max_score=50))
        store.put(ScoreRecord("learner-2", "A1", total_score=40, max_score=40))

        queued = service.synchronize_scores(
            lms_assignment, {"learner-1": "inf", "learner-2": "n/a"}
        )

        assert queued == ["learner-1", "learner-2"]


class TestEndToEnd:
    def test_five_correct_answers_on_one_topic(self, service, store, reporter, lms_assignment):
        service.get_or_create_record("learner-1", lms_assignment)

        totals = []
        for n in range(5):
            result = service.submit_answer("learner-1", lms_assignment, f"T1-true_false-{n % 3}", 1)
            totals.append(result.record.total_score)

        stored = _stored(store)
        assert totals == [10, 19, 27, 35, 42]
        assert stored.topic_scores == [86, 0, 0]
        assert stored.max_score == 42
        assert len(reporter.calls) == 5
        # T1 now weighs 14 against 100 for each untouched topic
        assert service.selector.topic_weights(stored) == [14, 100, 100]

        draws = Counter(service.selector.choose_topic(stored) for _ in range(2000))
        assert draws["T2"] > 3 * draws["T1"]
        assert draws["T3"] > 3 * draws["T1"]
