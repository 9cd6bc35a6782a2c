"""
Assignment Repairer.

Instructors can change an assignment's topics after learners have started it.
Repair rebuilds a score record's topic list to match the assignment: retained
topics keep their score (in the new order), new topics start at 0, and removed
topics are dropped. Dropped scores are written to the log before they are
discarded.
"""
from __future__ import annotations

from loguru import logger

from src.practice.catalog import QuestionCatalog
from src.practice.exceptions import QuestionNotFoundError
from src.practice.models import Assignment, RepairReport, ScoreRecord
from src.practice.question_selector import QuestionSelector
from src.practice.store import ScoreStore


class AssignmentRepairer:
    """Reconcile score records with their assignment's current topic list."""

    def __init__(
        self,
        catalog: QuestionCatalog,
        selector: QuestionSelector,
        store: ScoreStore | None = None,
    ):
        self._catalog = catalog
        self._selector = selector
        self._store = store

    def repair(self, record: ScoreRecord, assignment: Assignment) -> RepairReport:
        """Rebuild the record against the assignment and persist it if anything changed."""
        report = self.rebuild(record, assignment)
        if report.changed and self._store is not None:
            self._store.put(record)
        return report

    def rebuild(self, record: ScoreRecord, assignment: Assignment) -> RepairReport:
        """
        Rebuild the record's topics in place without persisting.

        Idempotent: a record already matching the assignment is left as is.
        """
        old_scores = record.topic_score_map()
        new_topic_ids = list(assignment.topic_ids)

        report = RepairReport(
            added=[t for t in new_topic_ids if t not in old_scores],
            dropped={t: s for t, s in old_scores.items() if t not in new_topic_ids},
        )
        retained_old_order = [t for t in record.topic_ids if t in new_topic_ids]
        retained_new_order = [t for t in new_topic_ids if t in old_scores]
        report.reordered = retained_old_order != retained_new_order

        if not report.changed:
            return report

        record.topic_ids = new_topic_ids
        record.topic_scores = [old_scores.get(t, 0) for t in new_topic_ids]

        if report.dropped:
            logger.warning(
                "Discarding topic scores for learner={} assignment={}: {}",
                record.learner_id,
                record.assignment_id,
                report.dropped,
            )

        if self._current_question_orphaned(record):
            record.current_question_id = (
                self._selector.select_next(record) if record.topic_ids else None
            )

        logger.info(
            "Repaired score record learner={} assignment={} (added={}, dropped={}, reordered={})",
            record.learner_id,
            record.assignment_id,
            report.added,
            list(report.dropped),
            report.reordered,
        )
        return report

    def _current_question_orphaned(self, record: ScoreRecord) -> bool:
        if record.current_question_id is None:
            return bool(record.topic_ids)
        try:
            info = self._catalog.get(record.current_question_id)
        except QuestionNotFoundError:
            return True
        return info.topic_id not in record.topic_ids
