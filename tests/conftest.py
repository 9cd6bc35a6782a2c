"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import random
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from src.practice.catalog import InMemoryQuestionCatalog  # noqa: E402
from src.practice.models import Assignment, QuestionInfo, QuestionType  # noqa: E402
from src.practice.store import InMemoryAssignmentRepository, InMemoryScoreStore  # noqa: E402

SELF_HOSTED = "https://practice.local"
LMS_PLATFORM = "https://lms.example.edu"


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite in memory)")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


class ScriptedRandom:
    """
    RandomSource that replays scripted randrange results.

    choice() always returns the first element, so tests control the pick by
    controlling the candidate set.
    """

    def __init__(self, values=()):
        self.values = list(values)
        self.calls = []

    def randrange(self, stop):
        self.calls.append(stop)
        value = self.values.pop(0) if self.values else 0
        assert 0 <= value < stop, f"scripted value {value} outside [0, {stop})"
        return value

    def choice(self, seq):
        return seq[0]


def make_questions(topic_ids, per_type=3, types=tuple(QuestionType), assignment_type="Exercises"):
    """Questions named '<topic>-<type>-<n>' for every topic and type."""
    return [
        QuestionInfo(
            question_id=f"{topic}-{qtype.value}-{n}",
            topic_id=topic,
            question_type=qtype,
            assignment_type=assignment_type,
        )
        for topic in topic_ids
        for qtype in types
        for n in range(per_type)
    ]


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def settings():
    """Settings independent of the environment."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        server_url=SELF_HOSTED,
        selection_seed=None,
        grade_report_enabled=False,
    )


@pytest.fixture
def scripted_random():
    return ScriptedRandom


@pytest.fixture
def seeded_random():
    return random.Random(1234)


@pytest.fixture
def topics():
    return ["T1", "T2", "T3"]


@pytest.fixture
def catalog(topics):
    return InMemoryQuestionCatalog(make_questions(topics))


@pytest.fixture
def store():
    return InMemoryScoreStore()


@pytest.fixture
def lms_assignment(topics):
    return Assignment(assignment_id="A1", topic_ids=list(topics), platform_id=LMS_PLATFORM)


@pytest.fixture
def self_hosted_assignment(topics):
    return Assignment(assignment_id="A2", topic_ids=list(topics), platform_id=SELF_HOSTED)


@pytest.fixture
def assignments(lms_assignment, self_hosted_assignment):
    return InMemoryAssignmentRepository([lms_assignment, self_hosted_assignment])


class RecordingReporter:
    """GradeReporter that remembers notifications."""

    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def notify(self, assignment_id, learner_id):
        if self.fail:
            raise RuntimeError("queue unavailable")
        self.calls.append((assignment_id, learner_id))


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def failing_reporter():
    return RecordingReporter(fail=True)
