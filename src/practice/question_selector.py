"""
Question Selector.

Chooses the next question for a score record in two weighted stages:

1. Topic: weight = 100 - topic score, so weaker topics come up more often.
   When every topic is at 100 the draw is uniform.
2. Type: the total score's quintile picks a difficulty band; types are
   weighted 8/4/2/1/0 by their distance from it.

Candidates for the (topic, type) pair are then filtered against the record's
anti-repetition window and one is drawn uniformly.
"""
from __future__ import annotations

from loguru import logger

from src.practice.catalog import QuestionCatalog
from src.practice.exceptions import ContentUnavailableError
from src.practice.models import (
    EXERCISES,
    MAX_SCORE,
    RECENT_QUESTION_WINDOW,
    QuestionType,
    ScoreRecord,
)
from src.practice.randomness import RandomSource, make_random, weighted_index

# Type weight by distance between a type's difficulty and the score quintile
DISTANCE_WEIGHTS: dict[int, int] = {0: 8, 1: 4, 2: 2, 3: 1}
QUINTILE_WIDTH = 20
MAX_QUINTILE = 5


class QuestionSelector:
    """
    Pick the next question id for a learner.

    All draws go through the injected RandomSource; pass a seeded
    random.Random for reproducible sequences.
    """

    def __init__(
        self,
        catalog: QuestionCatalog,
        rng: RandomSource | None = None,
        assignment_type: str = EXERCISES,
        window: int = RECENT_QUESTION_WINDOW,
    ):
        self._catalog = catalog
        self._rng = rng if rng is not None else make_random()
        self._assignment_type = assignment_type
        self._window = window

    # =========================================================================
    # Pure helpers
    # =========================================================================

    @staticmethod
    def quintile(total_score: int) -> int:
        """Map a 0-100 score to a quintile 1..5 (100 stays in 5)."""
        return min(total_score // QUINTILE_WIDTH + 1, MAX_QUINTILE)

    @classmethod
    def type_weights(cls, total_score: int) -> list[int]:
        """Weights for each QuestionType, in difficulty order."""
        quintile = cls.quintile(total_score)
        return [
            DISTANCE_WEIGHTS.get(abs(question_type.difficulty - quintile), 0)
            for question_type in QuestionType.ordered()
        ]

    @staticmethod
    def topic_weights(record: ScoreRecord) -> list[int]:
        return [MAX_SCORE - score for score in record.topic_scores]

    # =========================================================================
    # Stages
    # =========================================================================

    def choose_topic(self, record: ScoreRecord) -> str:
        """Stage A: weighted topic draw in stored topic order."""
        if not record.topic_ids:
            raise ContentUnavailableError(None, reason="score record has no topics")
        index = weighted_index(self.topic_weights(record), self._rng)
        return record.topic_ids[index]

    def choose_question_type(self, total_score: int) -> QuestionType:
        """Stage B: weighted difficulty draw around the score quintile."""
        index = weighted_index(self.type_weights(total_score), self._rng)
        return QuestionType.ordered()[index]

    def select_next(self, record: ScoreRecord) -> str:
        """
        Choose the next question and record it in the anti-repetition window.

        Args:
            record: Score record; recent_question_ids is updated in place

        Returns:
            The chosen question id

        Raises:
            ContentUnavailableError: If the chosen topic has no exercise questions
        """
        topic_id = self.choose_topic(record)
        question_type = self.choose_question_type(record.total_score)
        question_type, candidates = self._find_candidates(
            topic_id, question_type, record.total_score
        )

        recent = set(record.recent_question_ids)
        fresh = candidates - recent
        if not fresh:
            # Every candidate was seen recently: drop the window for this draw,
            # but avoid repeating the question just shown when there is a choice.
            fresh = set(candidates)
            if len(fresh) > 1 and record.recent_question_ids:
                fresh.discard(record.recent_question_ids[-1])
            logger.warning(
                "All {} candidates for topic {} ({}) are in the recent window; relaxing",
                len(candidates),
                topic_id,
                question_type.value,
            )

        question_id = self._rng.choice(sorted(fresh))
        record.remember_question(question_id, self._window)

        logger.debug(
            "Selected {} (topic={}, type={}, total={})",
            question_id,
            topic_id,
            question_type.value,
            record.total_score,
        )
        return question_id

    # =========================================================================
    # Internal
    # =========================================================================

    def _find_candidates(
        self,
        topic_id: str,
        question_type: QuestionType,
        total_score: int,
    ) -> tuple[QuestionType, set[str]]:
        """Stage C with re-roll: fall back to other types before giving up."""
        candidates = self._catalog.find(self._assignment_type, topic_id, question_type)
        if candidates:
            return question_type, candidates

        logger.warning(
            "No {} questions for topic {}; re-rolling question type",
            question_type.value,
            topic_id,
        )
        weights = dict(zip(QuestionType.ordered(), self.type_weights(total_score)))
        quintile = self.quintile(total_score)
        remaining = [t for t in QuestionType.ordered() if t != question_type]

        while remaining:
            remaining_weights = [weights[t] for t in remaining]
            if sum(remaining_weights) > 0:
                pick = remaining[weighted_index(remaining_weights, self._rng)]
            else:
                pick = min(remaining, key=lambda t: abs(t.difficulty - quintile))
            remaining.remove(pick)

            candidates = self._catalog.find(self._assignment_type, topic_id, pick)
            if candidates:
                return pick, candidates

        raise ContentUnavailableError(
            topic_id, question_type.value, "topic has no exercise questions of any type"
        )
