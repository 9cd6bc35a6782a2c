"""
Question Catalog.

Read-only lookups of exercise questions by (assignment type, topic, type) and of
a question's attributes by id. The SQL catalog reads the practice_questions
table; the in-memory catalog backs tests and offline tools.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from typing import Protocol

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from src.db.database import session_scope
from src.db.models import PracticeQuestion
from src.practice.exceptions import QuestionNotFoundError
from src.practice.models import EXERCISES, QuestionInfo, QuestionType


class QuestionCatalog(Protocol):
    def find(self, assignment_type: str, topic_id: str, question_type: QuestionType) -> set[str]: ...

    def get(self, question_id: str) -> QuestionInfo: ...

    def count(self, assignment_type: str, topic_id: str) -> int: ...


class InMemoryQuestionCatalog:
    """Dictionary-backed catalog."""

    def __init__(self, questions: Iterable[QuestionInfo] = ()):
        self._by_id: dict[str, QuestionInfo] = {}
        self._index: dict[tuple[str, str, QuestionType], set[str]] = defaultdict(set)
        for question in questions:
            self.add(question)

    def add(self, question: QuestionInfo) -> None:
        self._by_id[question.question_id] = question
        self._index[(question.assignment_type, question.topic_id, question.question_type)].add(
            question.question_id
        )

    def find(self, assignment_type: str, topic_id: str, question_type: QuestionType) -> set[str]:
        return set(self._index.get((assignment_type, topic_id, question_type), ()))

    def get(self, question_id: str) -> QuestionInfo:
        try:
            return self._by_id[question_id]
        except KeyError:
            raise QuestionNotFoundError(question_id) from None

    def count(self, assignment_type: str, topic_id: str) -> int:
        return sum(
            len(ids)
            for (a_type, t_id, _), ids in self._index.items()
            if a_type == assignment_type and t_id == topic_id
        )

    def __len__(self) -> int:
        return len(self._by_id)


class SqlQuestionCatalog:
    """Catalog backed by the practice_questions table."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._session_factory = session_factory

    def find(self, assignment_type: str, topic_id: str, question_type: QuestionType) -> set[str]:
        stmt = select(PracticeQuestion.question_id).where(
            PracticeQuestion.assignment_type == assignment_type,
            PracticeQuestion.topic_id == topic_id,
            PracticeQuestion.question_type == QuestionType(question_type).value,
        )
        with session_scope(self._session_factory) as session:
            return set(session.scalars(stmt).all())

    def get(self, question_id: str) -> QuestionInfo:
        with session_scope(self._session_factory) as session:
            row = session.get(PracticeQuestion, question_id)
            if row is None:
                raise QuestionNotFoundError(question_id)
            return QuestionInfo(
                question_id=row.question_id,
                topic_id=row.topic_id,
                question_type=QuestionType(row.question_type),
                assignment_type=row.assignment_type,
            )

    def count(self, assignment_type: str, topic_id: str) -> int:
        stmt = select(func.count()).select_from(PracticeQuestion).where(
            PracticeQuestion.assignment_type == assignment_type,
            PracticeQuestion.topic_id == topic_id,
        )
        with session_scope(self._session_factory) as session:
            return int(session.scalar(stmt) or 0)

    def add_many(self, questions: Iterable[QuestionInfo]) -> int:
        """Insert or update catalog entries. Returns the number written."""
        written = 0
        with session_scope(self._session_factory) as session:
            for question in questions:
                session.merge(
                    PracticeQuestion(
                        question_id=question.question_id,
                        topic_id=question.topic_id,
                        question_type=question.question_type.value,
                        assignment_type=question.assignment_type,
                    )
                )
                written += 1
        logger.debug("Catalog upserted {} questions", written)
        return written


def build_topic_ids(
    catalog: QuestionCatalog,
    candidate_topic_ids: Iterable[str],
    min_questions: int = 5,
    assignment_type: str = EXERCISES,
) -> list[str]:
    """
    Topics eligible for an assignment, in curriculum order.

    A topic qualifies only with more than min_questions exercise questions, so
    every topic on an assignment offers some variety.
    """
    topic_ids: list[str] = []
    for topic_id in candidate_topic_ids:
        n_questions = catalog.count(assignment_type, topic_id)
        if n_questions > min_questions:
            topic_ids.append(topic_id)
        else:
            logger.debug(
                "Skipping topic {}: {} questions (need more than {})",
                topic_id,
                n_questions,
                min_questions,
            )
    return topic_ids
