"""Error types raised by the practice engine."""

from __future__ import annotations


class PracticeError(Exception):
    """Base class for practice engine errors."""


class StaleRecordError(PracticeError):
    """The answered question's topic is not on the score record."""

    def __init__(self, learner_id: str, assignment_id: str, topic_id: str):
        self.learner_id = learner_id
        self.assignment_id = assignment_id
        self.topic_id = topic_id
        super().__init__(
            f"Topic {topic_id} not found on score record "
            f"(learner={learner_id}, assignment={assignment_id})"
        )


class ContentUnavailableError(PracticeError):
    """No question can be offered for the selected topic."""

    def __init__(self, topic_id: str | None, question_type: str | None = None, reason: str = ""):
        self.topic_id = topic_id
        self.question_type = question_type
        detail = f"topic={topic_id}"
        if question_type:
            detail += f", type={question_type}"
        message = f"No questions available ({detail})"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class QuestionNotFoundError(PracticeError):
    """A question id is not in the catalog."""

    def __init__(self, question_id: str):
        self.question_id = question_id
        super().__init__(f"Question not found: {question_id}")


class AssignmentNotFoundError(PracticeError):
    """An assignment id is unknown."""

    def __init__(self, assignment_id: str):
        self.assignment_id = assignment_id
        super().__init__(f"Assignment not found: {assignment_id}")


class PersistenceError(PracticeError):
    """The score store could not read or commit a record."""


class GradeReportError(PracticeError):
    """A score could not be delivered to the LMS."""
