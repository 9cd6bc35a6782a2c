# SQLAlchemy models
from .base import Base
from .practice import (
    PracticeAssignment,
    PracticeQuestion,
    PracticeScore,
)

__all__ = [
    "Base",
    "PracticeAssignment",
    "PracticeQuestion",
    "PracticeScore",
]
