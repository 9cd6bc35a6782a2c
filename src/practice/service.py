"""
Practice Service.

Main orchestration layer for adaptive practice:
- Get-or-create score records (repairing stale ones on load)
- Answer submission as one read-modify-write per (learner, assignment)
- Grade notifications after commit, only for external LMS assignments
- Progress read-out and gradebook re-synchronisation
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping

from loguru import logger

from config import Settings, get_settings
from src.practice.catalog import QuestionCatalog, SqlQuestionCatalog, build_topic_ids
from src.practice.exceptions import StaleRecordError
from src.practice.grade_reporter import (
    BackgroundGradeReporter,
    GradeReporter,
    LmsScoreClient,
    NullGradeReporter,
    make_score_delivery,
)
from src.practice.models import (
    AnswerResult,
    Assignment,
    ProgressReport,
    RepairReport,
    ScoreRecord,
)
from src.practice.question_selector import QuestionSelector
from src.practice.randomness import RandomSource, make_random
from src.practice.repair import AssignmentRepairer
from src.practice.scoring import ScoringEngine
from src.practice.store import (
    AssignmentRepository,
    ScoreStore,
    SqlAssignmentRepository,
    SqlScoreStore,
)


class PracticeService:
    """
    Entry point used by request handlers.

    Example:
        service = PracticeService(catalog, store, reporter=reporter)
        record = service.get_or_create_record("learner-1", assignment)
        result = service.submit_answer("learner-1", assignment, record.current_question_id, 1)
    """

    def __init__(
        self,
        catalog: QuestionCatalog,
        store: ScoreStore,
        reporter: GradeReporter | None = None,
        assignments: AssignmentRepository | None = None,
        rng: RandomSource | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self._catalog = catalog
        self._store = store
        self._reporter = reporter or NullGradeReporter()
        self._assignments = assignments
        self._settings = settings
        self._selector = QuestionSelector(
            catalog,
            rng if rng is not None else make_random(settings.selection_seed),
            assignment_type=settings.exercise_assignment_type,
            window=settings.recent_question_window,
        )
        self._engine = ScoringEngine(self._selector)
        self._repairer = AssignmentRepairer(catalog, self._selector, store)

    @property
    def selector(self) -> QuestionSelector:
        return self._selector

    # =========================================================================
    # Records
    # =========================================================================

    def get_or_create_record(self, learner_id: str, assignment: Assignment) -> ScoreRecord:
        """
        Load the learner's record, creating or repairing it as needed.

        Raises:
            ContentUnavailableError: If a new record cannot be given a first question
            PersistenceError: If the store fails
        """
        with self._store.transaction(learner_id, assignment.assignment_id) as handle:
            if handle.record is None:
                handle.record = self._initialize(learner_id, assignment)
            elif handle.record.is_stale_for(assignment):
                self._repairer.rebuild(handle.record, assignment)
            elif handle.record.current_question_id is None and handle.record.topic_ids:
                handle.record.current_question_id = self._selector.select_next(handle.record)
            record = handle.record
        return record

    def current_question_id(self, learner_id: str, assignment: Assignment) -> str | None:
        return self.get_or_create_record(learner_id, assignment).current_question_id

    def progress(self, learner_id: str, assignment: Assignment) -> ProgressReport:
        """Total, high-water and per-topic scores for display."""
        return self.get_or_create_record(learner_id, assignment).to_progress()

    def repair(self, record: ScoreRecord, assignment: Assignment) -> RepairReport:
        """Rebuild the record's topics against the assignment and persist it."""
        with self._store.transaction(record.learner_id, record.assignment_id) as handle:
            report = self._repairer.rebuild(record, assignment)
            handle.record = record
        return report

    # =========================================================================
    # Answers
    # =========================================================================

    def submit_answer(
        self,
        learner_id: str,
        assignment: Assignment,
        question_id: str,
        q_score: int,
    ) -> AnswerResult:
        """
        Score an answer and choose the next question.

        The record is read, updated and committed under the store's per-record
        transaction. A grade notification is queued only after the commit.

        Raises:
            QuestionNotFoundError: If question_id is not in the catalog
            PersistenceError: If the commit fails (nothing is reported)
        """
        info = self._catalog.get(question_id)

        with self._store.transaction(learner_id, assignment.assignment_id) as handle:
            if handle.record is None:
                handle.record = self._initialize(learner_id, assignment)
            elif handle.record.is_stale_for(assignment):
                self._repairer.rebuild(handle.record, assignment)
            result = self._apply(handle.record, assignment, info.topic_id, q_score)

        self._after_commit(result, assignment)
        return result

    def update(
        self,
        record: ScoreRecord,
        question_id: str,
        q_score: int,
        assignment: Assignment | None = None,
    ) -> str | None:
        """
        Apply an answer to a caller-held record, persist it, return the next question id.

        The caller's copy wins over whatever is stored; use submit_answer when
        requests for the same learner may overlap.
        """
        info = self._catalog.get(question_id)
        if assignment is None and self._assignments is not None:
            assignment = self._assignments.get(record.assignment_id)

        with self._store.transaction(record.learner_id, record.assignment_id) as handle:
            result = self._apply(record, assignment, info.topic_id, q_score)
            handle.record = record

        if assignment is not None:
            self._after_commit(result, assignment)
        return result.next_question_id

    # =========================================================================
    # Assignments & gradebook
    # =========================================================================

    def create_assignment(
        self,
        assignment_id: str,
        candidate_topic_ids: Iterable[str],
        title: str | None = None,
        platform_id: str | None = None,
    ) -> Assignment:
        """Build an assignment from the topics that have enough exercise questions."""
        assignment = Assignment(
            assignment_id=assignment_id,
            topic_ids=build_topic_ids(
                self._catalog,
                candidate_topic_ids,
                min_questions=self._settings.min_questions_per_topic,
                assignment_type=self._settings.exercise_assignment_type,
            ),
            assignment_type=self._settings.exercise_assignment_type,
            platform_id=platform_id,
            title=title,
        )
        if self._assignments is not None:
            self._assignments.put(assignment)
        logger.info(
            "Created assignment {} with {} topics", assignment_id, len(assignment.topic_ids)
        )
        return assignment

    def synchronize_scores(
        self,
        assignment: Assignment,
        lms_scores: Mapping[str, object],
    ) -> list[str]:
        """
        Queue a report for every rostered learner whose LMS score differs from max_score.

        Args:
            assignment: Assignment to reconcile
            lms_scores: Learner id -> score currently held by the LMS (None if blank)

        Returns:
            Learner ids queued for reporting
        """
        if not assignment.reports_grades(self._settings.server_url):
            logger.info("Assignment {} is self-hosted; nothing to synchronise", assignment.assignment_id)
            return []

        queued: list[str] = []
        for record in self._store.list_for_assignment(assignment.assignment_id):
            if record.learner_id not in lms_scores:
                continue
            if _same_score(record.max_score, lms_scores[record.learner_id]):
                continue
            self._notify(assignment.assignment_id, record.learner_id)
            queued.append(record.learner_id)

        logger.info(
            "Queued {} score reports for assignment {}", len(queued), assignment.assignment_id
        )
        return queued

    # =========================================================================
    # Internal
    # =========================================================================

    def _initialize(self, learner_id: str, assignment: Assignment) -> ScoreRecord:
        record = ScoreRecord.fresh(learner_id, assignment)
        record.current_question_id = self._selector.select_next(record)
        logger.info(
            "Created score record learner={} assignment={} topics={}",
            learner_id,
            assignment.assignment_id,
            len(record.topic_ids),
        )
        return record

    def _apply(
        self,
        record: ScoreRecord,
        assignment: Assignment | None,
        topic_id: str,
        q_score: int,
    ) -> AnswerResult:
        try:
            update = self._engine.update(record, topic_id, q_score)
        except StaleRecordError:
            if assignment is None:
                logger.warning(
                    "Topic {} missing from record {} and no assignment to repair from",
                    topic_id,
                    record.key,
                )
                return AnswerResult(record, record.current_question_id, attributed=False)

            logger.info("Topic {} missing from record {}; repairing", topic_id, record.key)
            self._repairer.rebuild(record, assignment)
            try:
                update = self._engine.update(record, topic_id, q_score)
            except StaleRecordError:
                logger.warning(
                    "Answer on topic {} not attributable: topic is no longer on assignment {}",
                    topic_id,
                    record.assignment_id,
                )
                return AnswerResult(record, record.current_question_id, attributed=False)

        return AnswerResult(
            record,
            update.next_question_id,
            max_score_raised=update.max_score_raised,
        )

    def _after_commit(self, result: AnswerResult, assignment: Assignment) -> None:
        if result.max_score_raised and assignment.reports_grades(self._settings.server_url):
            result.report_queued = self._notify(assignment.assignment_id, result.record.learner_id)

    def _notify(self, assignment_id: str, learner_id: str) -> bool:
        try:
            self._reporter.notify(assignment_id, learner_id)
            return True
        except Exception as exc:  # Reporting is best-effort; scoring already committed
            logger.error("Could not queue grade report for {}/{}: {}", learner_id, assignment_id, exc)
            return False


def _same_score(max_score: int, lms_score: object) -> bool:
    if lms_score is None or lms_score == "":
        return False
    try:
        return int(float(str(lms_score))) == max_score
    except (ValueError, OverflowError):
        return False


def create_practice_service(
    settings: Settings | None = None,
) -> tuple[PracticeService, BackgroundGradeReporter | None]:
    """
    Wire a service against the configured database.

    Returns the service and the background reporter (None when reporting is
    disabled). The caller starts and stops the reporter.
    """
    settings = settings or get_settings()
    catalog = SqlQuestionCatalog()
    store = SqlScoreStore()

    reporter: BackgroundGradeReporter | None = None
    if settings.grade_report_enabled:
        report_config = settings.get_grade_report_config()
        client = LmsScoreClient(
            report_config["url"],
            timeout_seconds=report_config["timeout_seconds"],
            retry_attempts=report_config["retry_attempts"],
        )
        reporter = BackgroundGradeReporter(deliver=make_score_delivery(store, client))

    service = PracticeService(
        catalog,
        store,
        reporter=reporter,
        assignments=SqlAssignmentRepository(),
        settings=settings,
    )
    return service, reporter
