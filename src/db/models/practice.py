"""
Adaptive Practice Models.

SQLAlchemy models for the practice engine:
- Per-learner score records (composite key learner + assignment)
- Assignment descriptors with their ordered topic list
- The exercise question catalog (ids, topic, type only)
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Index, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class PracticeScore(Base):
    """
    Performance state for one learner on one assignment.

    Lists are stored as JSON and always replaced wholesale on write so the
    ORM sees the change.
    """

    __tablename__ = "practice_scores"

    learner_id: Mapped[str] = mapped_column(Text, primary_key=True)
    assignment_id: Mapped[str] = mapped_column(Text, primary_key=True)

    total_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    topic_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    topic_scores: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    recent_question_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    current_question_id: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(default=func.now())
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    __table_args__ = (Index("idx_practice_scores_assignment", "assignment_id"),)

    def __repr__(self) -> str:
        return (
            f"<PracticeScore learner={self.learner_id} assignment={self.assignment_id} "
            f"total={self.total_score} max={self.max_score}>"
        )


class PracticeAssignment(Base):
    """An assignment and the ordered topics it covers."""

    __tablename__ = "practice_assignments"

    assignment_id: Mapped[str] = mapped_column(Text, primary_key=True)
    title: Mapped[str | None] = mapped_column(Text)
    assignment_type: Mapped[str] = mapped_column(Text, default="Exercises", nullable=False)
    platform_id: Mapped[str | None] = mapped_column(Text)
    topic_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=func.now())

    def __repr__(self) -> str:
        return f"<PracticeAssignment {self.assignment_id} topics={len(self.topic_ids or [])}>"


class PracticeQuestion(Base):
    """Catalog entry for a question. Content lives elsewhere."""

    __tablename__ = "practice_questions"

    question_id: Mapped[str] = mapped_column(Text, primary_key=True)
    topic_id: Mapped[str] = mapped_column(Text, nullable=False)
    question_type: Mapped[str] = mapped_column(Text, nullable=False)
    assignment_type: Mapped[str] = mapped_column(Text, default="Exercises", nullable=False)

    __table_args__ = (
        Index("idx_practice_questions_lookup", "assignment_type", "topic_id", "question_type"),
    )

    def __repr__(self) -> str:
        return f"<PracticeQuestion {self.question_id} topic={self.topic_id} type={self.question_type}>"
