"""Skill categories, difficulty levels and the shared rating heuristics."""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Dict, Tuple


class SkillCategory(str, Enum):
    """The five mixing competency areas assessed by the platform."""

    FREQUENCY_FINDER = "FREQUENCY_FINDER"
    EQ_SKILL = "EQ_SKILL"
    BALANCING = "BALANCING"
    COMPRESSION = "COMPRESSION"
    SONG_STRUCTURE = "SONG_STRUCTURE"


class DifficultyLevel(IntEnum):
    """Ordinal difficulty; compared directly against 1-5 skill ratings."""

    BEGINNER = 1
    INTERMEDIATE = 2
    ADVANCED = 3
    EXPERT = 4
    MASTER = 5


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    AUDIO_IDENTIFICATION = "AUDIO_IDENTIFICATION"
    INTERACTIVE_MINIGAME = "INTERACTIVE_MINIGAME"
    SLIDER_MATCH = "SLIDER_MATCH"
    ORDERING = "ORDERING"


class ContentType(str, Enum):
    LESSON = "LESSON"
    MINI_GAME = "MINI_GAME"
    QUIZ = "QUIZ"
    PRACTICE = "PRACTICE"


class ProgressStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    MASTERED = "MASTERED"


CATEGORY_ORDER: Tuple[SkillCategory, ...] = tuple(SkillCategory)
"""Fixed category order used wherever categories are concatenated."""

MIN_RATING = 1.0
MAX_RATING = 5.0

_DISPLAY_NAMES: Dict[SkillCategory, str] = {
    SkillCategory.FREQUENCY_FINDER: "Frequency Finder",
    SkillCategory.EQ_SKILL: "EQ Skills",
    SkillCategory.BALANCING: "Mix Balancing",
    SkillCategory.COMPRESSION: "Compression",
    SkillCategory.SONG_STRUCTURE: "Song Structure",
}

# Lessons come first, quizzes last.
CONTENT_TYPE_PRIORITY: Dict[ContentType, int] = {
    ContentType.LESSON: 1,
    ContentType.PRACTICE: 2,
    ContentType.MINI_GAME: 3,
    ContentType.QUIZ: 4,
}

ACTIONABLE_STATUSES = frozenset({ProgressStatus.NOT_STARTED, ProgressStatus.IN_PROGRESS})
FINISHED_STATUSES = frozenset({ProgressStatus.COMPLETED, ProgressStatus.MASTERED})


def category_display_name(category: SkillCategory | str) -> str:
    """Return the learner-facing label for ``category``."""

    return _DISPLAY_NAMES[SkillCategory(category)]


def clamp_rating(value: float) -> float:
    return max(MIN_RATING, min(MAX_RATING, float(value)))


def max_difficulty_for_rating(rating: float) -> DifficultyLevel:
    """Map a 1-5 skill rating to the hardest content a learner should see."""

    if rating <= 1:
        return DifficultyLevel.BEGINNER
    if rating <= 2:
        return DifficultyLevel.INTERMEDIATE
    if rating <= 3:
        return DifficultyLevel.ADVANCED
    if rating <= 4:
        return DifficultyLevel.EXPERT
    return DifficultyLevel.MASTER


def rating_from_percentage(percentage: float, average_difficulty: float) -> int:
    """Convert a section percentage into a 1-5 rating, weighted by difficulty.

    The base band comes from fixed percentage thresholds. Sections built from
    harder questions earn one extra point once the learner clears 50%, while
    beginner-only sections lose one point below 80%.
    """

    if percentage >= 90:
        rating = 5
    elif percentage >= 75:
        rating = 4
    elif percentage >= 60:
        rating = 3
    elif percentage >= 40:
        rating = 2
    else:
        rating = 1

    if average_difficulty >= DifficultyLevel.ADVANCED and percentage >= 50:
        rating = min(5, rating + 1)
    elif average_difficulty <= DifficultyLevel.BEGINNER and percentage < 80:
        rating = max(1, rating - 1)
    return rating
