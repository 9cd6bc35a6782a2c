"""
Practice Engine Models.

Plain data types shared by the scoring, selection and repair components:
- QuestionType: closed set of question formats ordered by difficulty
- QuestionInfo: catalog attributes of a question
- Assignment: ordered topic list plus hosting platform
- ScoreRecord: per (learner, assignment) performance state
- ProgressReport: read-only view for presentation layers
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple

from pydantic import BaseModel, Field

MAX_SCORE = 100
RECENT_QUESTION_WINDOW = 5
EXERCISES = "Exercises"


class QuestionType(str, Enum):
    """
    Question formats, declared from easiest to hardest.

    The enum value is the type string stored in the question catalog.
    """

    TRUE_FALSE = "true_false"
    MULTIPLE_CHOICE = "multiple_choice"
    FILL_IN_BLANK = "fill_in_blank"
    CHECKBOX = "checkbox"
    NUMERIC = "numeric"

    @property
    def difficulty(self) -> int:
        """Ordinal difficulty, 1 (easiest) through 5."""
        return _DIFFICULTY_ORDER.index(self) + 1

    @classmethod
    def from_difficulty(cls, difficulty: int) -> QuestionType:
        """Map an ordinal 1..5 back to its question type."""
        if not 1 <= difficulty <= len(_DIFFICULTY_ORDER):
            raise ValueError(f"Difficulty out of range: {difficulty}")
        return _DIFFICULTY_ORDER[difficulty - 1]

    @classmethod
    def ordered(cls) -> tuple[QuestionType, ...]:
        return _DIFFICULTY_ORDER


_DIFFICULTY_ORDER: tuple[QuestionType, ...] = tuple(QuestionType)


class ScoreKey(NamedTuple):
    """Composite key of a score record."""

    learner_id: str
    assignment_id: str


@dataclass(frozen=True)
class QuestionInfo:
    """Catalog attributes of a single question."""

    question_id: str
    topic_id: str
    question_type: QuestionType
    assignment_type: str = EXERCISES


@dataclass
class Assignment:
    """An assignment as seen by the practice engine."""

    assignment_id: str
    topic_ids: list[str] = field(default_factory=list)
    assignment_type: str = EXERCISES
    platform_id: str | None = None
    title: str | None = None

    def reports_grades(self, self_hosted_platform_id: str) -> bool:
        """True when an external LMS gradebook should receive scores."""
        return bool(self.platform_id) and self.platform_id != self_hosted_platform_id


@dataclass
class ScoreRecord:
    """
    Performance state for one learner on one assignment.

    Invariants:
    - 0 <= total_score <= 100 and 0 <= max_score <= 100
    - max_score is the highest total_score ever reached
    - topic_scores[i] belongs to topic_ids[i]
    - recent_question_ids holds at most RECENT_QUESTION_WINDOW ids, oldest first
    """

    learner_id: str
    assignment_id: str
    topic_ids: list[str] = field(default_factory=list)
    topic_scores: list[int] = field(default_factory=list)
    total_score: int = 0
    max_score: int = 0
    recent_question_ids: list[str] = field(default_factory=list)
    current_question_id: str | None = None

    def __post_init__(self) -> None:
        if len(self.topic_ids) != len(self.topic_scores):
            raise ValueError(
                f"topic_ids ({len(self.topic_ids)}) and topic_scores "
                f"({len(self.topic_scores)}) must have equal length"
            )

    @classmethod
    def fresh(cls, learner_id: str, assignment: Assignment) -> ScoreRecord:
        """Zero-initialised record for a learner starting an assignment."""
        return cls(
            learner_id=learner_id,
            assignment_id=assignment.assignment_id,
            topic_ids=list(assignment.topic_ids),
            topic_scores=[0] * len(assignment.topic_ids),
        )

    @property
    def key(self) -> ScoreKey:
        return ScoreKey(self.learner_id, self.assignment_id)

    def topic_index(self, topic_id: str) -> int | None:
        """Position of a topic in topic_ids, or None if absent."""
        try:
            return self.topic_ids.index(topic_id)
        except ValueError:
            return None

    def topic_score(self, topic_id: str) -> int | None:
        index = self.topic_index(topic_id)
        return None if index is None else self.topic_scores[index]

    def topic_score_map(self) -> dict[str, int]:
        return dict(zip(self.topic_ids, self.topic_scores))

    def is_stale_for(self, assignment: Assignment) -> bool:
        """True when the assignment's topic list no longer matches this record."""
        return list(self.topic_ids) != list(assignment.topic_ids)

    def remember_question(self, question_id: str, window: int = RECENT_QUESTION_WINDOW) -> None:
        """Append to the anti-repetition window, evicting the oldest entries."""
        self.recent_question_ids.append(question_id)
        overflow = len(self.recent_question_ids) - window
        if overflow > 0:
            del self.recent_question_ids[:overflow]

    def to_progress(self) -> ProgressReport:
        return ProgressReport(
            learner_id=self.learner_id,
            assignment_id=self.assignment_id,
            total_score=self.total_score,
            max_score=self.max_score,
            topics=[
                TopicProgress(topic_id=topic_id, score=score)
                for topic_id, score in zip(self.topic_ids, self.topic_scores)
            ],
            current_question_id=self.current_question_id,
        )


@dataclass
class RepairReport:
    """What an assignment repair changed."""

    added: list[str] = field(default_factory=list)
    dropped: dict[str, int] = field(default_factory=dict)
    reordered: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.added or self.dropped or self.reordered)


@dataclass
class AnswerResult:
    """Outcome of submitting one answer."""

    record: ScoreRecord
    next_question_id: str | None
    attributed: bool = True
    max_score_raised: bool = False
    report_queued: bool = False


class TopicProgress(BaseModel):
    """Score for a single topic."""

    topic_id: str
    score: int = Field(..., ge=0, le=MAX_SCORE)


class ProgressReport(BaseModel):
    """Progress display model for a learner on an assignment."""

    learner_id: str
    assignment_id: str
    total_score: int = Field(..., ge=0, le=MAX_SCORE)
    max_score: int = Field(..., ge=0, le=MAX_SCORE)
    topics: list[TopicProgress] = Field(default_factory=list)
    current_question_id: str | None = None

    @property
    def weakest_topic(self) -> str | None:
        if not self.topics:
            return None
        return min(self.topics, key=lambda t: t.score).topic_id
