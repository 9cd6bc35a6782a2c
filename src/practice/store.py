"""
Score and Assignment Stores.

Score records are keyed by (learner_id, assignment_id). Answer submission is
a read-modify-write, so stores expose transaction(), which holds the record
exclusively until the block exits and commits it only on a clean exit.

- SqlScoreStore: practice_scores table, SELECT ... FOR UPDATE plus an
  in-process key lock (SQLite ignores row locks)
- InMemoryScoreStore: dict of copies guarded by per-key locks
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Generator
from contextlib import contextmanager
from typing import Protocol

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.db.database import session_scope
from src.db.models import PracticeAssignment, PracticeScore
from src.practice.exceptions import AssignmentNotFoundError, PersistenceError
from src.practice.models import Assignment, ScoreKey, ScoreRecord


class RecordHandle:
    """Mutable slot handed out by a store transaction."""

    def __init__(self, key: ScoreKey, record: ScoreRecord | None):
        self.key = key
        self.record = record


class ScoreStore(Protocol):
    def get(self, learner_id: str, assignment_id: str) -> ScoreRecord | None: ...

    def put(self, record: ScoreRecord) -> None: ...

    def transaction(self, learner_id: str, assignment_id: str): ...

    def list_for_assignment(self, assignment_id: str) -> list[ScoreRecord]: ...


class KeyedLocks:
    """One lock per score key, created on demand."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[ScoreKey, threading.Lock] = {}

    def lock_for(self, key: ScoreKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


# =============================================================================
# In-memory
# =============================================================================


class InMemoryScoreStore:
    """Score store for tests and offline use. Records are copied in and out."""

    def __init__(self) -> None:
        self._records: dict[ScoreKey, ScoreRecord] = {}
        self._guard = threading.Lock()
        self._key_locks = KeyedLocks()

    def get(self, learner_id: str, assignment_id: str) -> ScoreRecord | None:
        with self._guard:
            record = self._records.get(ScoreKey(learner_id, assignment_id))
            return copy.deepcopy(record) if record is not None else None

    def put(self, record: ScoreRecord) -> None:
        with self._guard:
            self._records[record.key] = copy.deepcopy(record)

    @contextmanager
    def transaction(self, learner_id: str, assignment_id: str) -> Generator[RecordHandle, None, None]:
        key = ScoreKey(learner_id, assignment_id)
        with self._key_locks.lock_for(key):
            handle = RecordHandle(key, self.get(learner_id, assignment_id))
            yield handle
            if handle.record is not None:
                self.put(handle.record)

    def list_for_assignment(self, assignment_id: str) -> list[ScoreRecord]:
        with self._guard:
            return [
                copy.deepcopy(record)
                for key, record in self._records.items()
                if key.assignment_id == assignment_id
            ]

    def __len__(self) -> int:
        return len(self._records)


# =============================================================================
# SQL
# =============================================================================


def _row_to_record(row: PracticeScore) -> ScoreRecord:
    return ScoreRecord(
        learner_id=row.learner_id,
        assignment_id=row.assignment_id,
        topic_ids=list(row.topic_ids or []),
        topic_scores=[int(s) for s in (row.topic_scores or [])],
        total_score=row.total_score,
        max_score=row.max_score,
        recent_question_ids=list(row.recent_question_ids or []),
        current_question_id=row.current_question_id,
    )


def _copy_into_row(record: ScoreRecord, row: PracticeScore) -> None:
    # New list objects so the JSON columns are flagged dirty
    row.total_score = record.total_score
    row.max_score = record.max_score
    row.topic_ids = list(record.topic_ids)
    row.topic_scores = list(record.topic_scores)
    row.recent_question_ids = list(record.recent_question_ids)
    row.current_question_id = record.current_question_id


class SqlScoreStore:
    """Score store backed by the practice_scores table."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._session_factory = session_factory
        self._key_locks = KeyedLocks()

    def get(self, learner_id: str, assignment_id: str) -> ScoreRecord | None:
        try:
            with session_scope(self._session_factory) as session:
                row = session.get(PracticeScore, (learner_id, assignment_id))
                return _row_to_record(row) if row is not None else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load score record: {e}") from e

    def put(self, record: ScoreRecord) -> None:
        try:
            with session_scope(self._session_factory) as session:
                self._upsert(session, record)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save score record: {e}") from e

    @contextmanager
    def transaction(self, learner_id: str, assignment_id: str) -> Generator[RecordHandle, None, None]:
        key = ScoreKey(learner_id, assignment_id)
        with self._key_locks.lock_for(key):
            try:
                with session_scope(self._session_factory) as session:
                    stmt = (
                        select(PracticeScore)
                        .where(
                            PracticeScore.learner_id == learner_id,
                            PracticeScore.assignment_id == assignment_id,
                        )
                        .with_for_update()
                    )
                    row = session.scalars(stmt).first()
                    handle = RecordHandle(key, _row_to_record(row) if row is not None else None)
                    yield handle
                    if handle.record is not None:
                        self._upsert(session, handle.record, row)
            except SQLAlchemyError as e:
                logger.error("Score transaction failed for {}: {}", key, e)
                raise PersistenceError(f"Failed to commit score record: {e}") from e

    def list_for_assignment(self, assignment_id: str) -> list[ScoreRecord]:
        stmt = select(PracticeScore).where(PracticeScore.assignment_id == assignment_id)
        try:
            with session_scope(self._session_factory) as session:
                return [_row_to_record(row) for row in session.scalars(stmt).all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list score records: {e}") from e

    @staticmethod
    def _upsert(session: Session, record: ScoreRecord, row: PracticeScore | None = None) -> None:
        if row is None:
            row = session.get(PracticeScore, (record.learner_id, record.assignment_id))
        if row is None:
            row = PracticeScore(learner_id=record.learner_id, assignment_id=record.assignment_id)
            session.add(row)
        _copy_into_row(record, row)


# =============================================================================
# Assignments
# =============================================================================


class AssignmentRepository(Protocol):
    def get(self, assignment_id: str) -> Assignment: ...

    def put(self, assignment: Assignment) -> None: ...


class InMemoryAssignmentRepository:
    def __init__(self, assignments: list[Assignment] | None = None):
        self._assignments = {a.assignment_id: a for a in assignments or []}

    def get(self, assignment_id: str) -> Assignment:
        try:
            return copy.deepcopy(self._assignments[assignment_id])
        except KeyError:
            raise AssignmentNotFoundError(assignment_id) from None

    def put(self, assignment: Assignment) -> None:
        self._assignments[assignment.assignment_id] = copy.deepcopy(assignment)


class SqlAssignmentRepository:
    """Assignment descriptors from the practice_assignments table."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        self._session_factory = session_factory

    def get(self, assignment_id: str) -> Assignment:
        with session_scope(self._session_factory) as session:
            row = session.get(PracticeAssignment, assignment_id)
            if row is None:
                raise AssignmentNotFoundError(assignment_id)
            return Assignment(
                assignment_id=row.assignment_id,
                topic_ids=list(row.topic_ids or []),
                assignment_type=row.assignment_type,
                platform_id=row.platform_id,
                title=row.title,
            )

    def put(self, assignment: Assignment) -> None:
        with session_scope(self._session_factory) as session:
            row = session.get(PracticeAssignment, assignment.assignment_id)
            if row is None:
                row = PracticeAssignment(assignment_id=assignment.assignment_id)
                session.add(row)
            row.title = assignment.title
            row.assignment_type = assignment.assignment_type
            row.platform_id = assignment.platform_id
            row.topic_ids = list(assignment.topic_ids)
