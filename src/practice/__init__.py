"""
Adaptive Practice Engine.

Keeps a running score per learner and assignment and picks the next question
after every answer.

Components:
- ScoringEngine: dampened total score and per-topic running averages
- QuestionSelector: weighted topic draw, quintile-weighted type draw, anti-repetition window
- AssignmentRepairer: realigns score records with a changed topic list
- ScoreStore: keyed transactional persistence of score records
- BackgroundGradeReporter: fire-and-forget high-water score reporting to the LMS
- PracticeService: main orchestration layer
"""
from src.practice.catalog import (
    InMemoryQuestionCatalog,
    QuestionCatalog,
    SqlQuestionCatalog,
    build_topic_ids,
)
from src.practice.exceptions import (
    AssignmentNotFoundError,
    ContentUnavailableError,
    GradeReportError,
    PersistenceError,
    PracticeError,
    QuestionNotFoundError,
    StaleRecordError,
)
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
    QuestionInfo,
    QuestionType,
    RepairReport,
    ScoreKey,
    ScoreRecord,
    TopicProgress,
)
from src.practice.question_selector import QuestionSelector
from src.practice.randomness import RandomSource, make_random, weighted_index
from src.practice.repair import AssignmentRepairer
from src.practice.scoring import ScoringEngine, next_topic_score, next_total_score
from src.practice.service import PracticeService, create_practice_service
from src.practice.store import (
    InMemoryAssignmentRepository,
    InMemoryScoreStore,
    SqlAssignmentRepository,
    SqlScoreStore,
)

__all__ = [
    # Main service
    "PracticeService",
    "create_practice_service",
    # Components
    "ScoringEngine",
    "QuestionSelector",
    "AssignmentRepairer",
    "BackgroundGradeReporter",
    "LmsScoreClient",
    "NullGradeReporter",
    "GradeReporter",
    "make_score_delivery",
    # Catalog & stores
    "QuestionCatalog",
    "InMemoryQuestionCatalog",
    "SqlQuestionCatalog",
    "InMemoryScoreStore",
    "SqlScoreStore",
    "InMemoryAssignmentRepository",
    "SqlAssignmentRepository",
    "build_topic_ids",
    # Randomness
    "RandomSource",
    "make_random",
    "weighted_index",
    # Scoring formulas
    "next_total_score",
    "next_topic_score",
    # Data models
    "AnswerResult",
    "Assignment",
    "ProgressReport",
    "QuestionInfo",
    "QuestionType",
    "RepairReport",
    "ScoreKey",
    "ScoreRecord",
    "TopicProgress",
    # Errors
    "PracticeError",
    "StaleRecordError",
    "ContentUnavailableError",
    "QuestionNotFoundError",
    "AssignmentNotFoundError",
    "PersistenceError",
    "GradeReportError",
]
