"""
Scoring Engine.

Total score: dampened running average
    total = (150*q + 14*total) // 15
clamped to [current decile floor, 100]. A correct answer moves a low score
quickly and a high score only slightly; a wrong answer can never drop the
score below the decile it started in.

Topic score: faster running average
    topic = (100*q + 2*topic) // 3
which tops out at 100 on its own.
"""
from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from src.practice.exceptions import ContentUnavailableError, StaleRecordError
from src.practice.models import MAX_SCORE, ScoreRecord
from src.practice.question_selector import QuestionSelector

TOTAL_SCORE_MULTIPLIER = 150
TOTAL_SCORE_DENOMINATOR = 15
TOPIC_SCORE_MULTIPLIER = 100
TOPIC_SCORE_DENOMINATOR = 3


def next_total_score(total_score: int, q_score: int) -> int:
    """Apply one answer to the total score."""
    floor = total_score // 10 * 10
    updated = (
        TOTAL_SCORE_MULTIPLIER * q_score + (TOTAL_SCORE_DENOMINATOR - 1) * total_score
    ) // TOTAL_SCORE_DENOMINATOR
    return max(floor, min(updated, MAX_SCORE))


def next_topic_score(topic_score: int, q_score: int) -> int:
    """Apply one answer to a topic score."""
    return (
        TOPIC_SCORE_MULTIPLIER * q_score + (TOPIC_SCORE_DENOMINATOR - 1) * topic_score
    ) // TOPIC_SCORE_DENOMINATOR


@dataclass
class ScoreUpdate:
    """What a single update changed."""

    next_question_id: str
    previous_total: int
    previous_max: int
    max_score_raised: bool


class ScoringEngine:
    """Updates a score record from an answer outcome and picks the next question."""

    def __init__(self, selector: QuestionSelector):
        self._selector = selector

    @property
    def selector(self) -> QuestionSelector:
        return self._selector

    def update(self, record: ScoreRecord, topic_id: str, q_score: int) -> ScoreUpdate:
        """
        Apply an answer to the record in place.

        The record is not persisted here; callers commit it through a ScoreStore
        transaction.

        Args:
            record: Score record to mutate
            topic_id: Topic of the answered question
            q_score: 1 for correct, 0 for incorrect

        Returns:
            ScoreUpdate with the next question id and high-water mark change

        Raises:
            ValueError: If q_score is not 0 or 1
            StaleRecordError: If topic_id is not on the record (record untouched)
            ContentUnavailableError: If no next question exists (record untouched)
        """
        if q_score not in (0, 1):
            raise ValueError(f"q_score must be 0 or 1, got {q_score!r}")

        index = record.topic_index(topic_id)
        if index is None:
            raise StaleRecordError(record.learner_id, record.assignment_id, topic_id)

        previous_total = record.total_score
        previous_max = record.max_score
        previous_topic = record.topic_scores[index]
        previous_recent = list(record.recent_question_ids)

        record.total_score = next_total_score(previous_total, q_score)
        record.topic_scores[index] = next_topic_score(previous_topic, q_score)
        try:
            next_question_id = self._selector.select_next(record)
        except ContentUnavailableError:
            # Leave the record as it was so the answer can be re-applied
            record.total_score = previous_total
            record.topic_scores[index] = previous_topic
            record.recent_question_ids = previous_recent
            raise
        record.current_question_id = next_question_id

        raised = record.total_score > previous_max
        if raised:
            record.max_score = record.total_score

        logger.debug(
            "Score update learner={} assignment={} topic={} q={} total {}->{} topic_score={}",
            record.learner_id,
            record.assignment_id,
            topic_id,
            q_score,
            previous_total,
            record.total_score,
            record.topic_scores[index],
        )

        return ScoreUpdate(
            next_question_id=record.current_question_id,
            previous_total=previous_total,
            previous_max=previous_max,
            max_score_raised=raised,
        )
