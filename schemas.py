"""Pydantic schemas for catalog entries, assessment results and learner state."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Literal, Mapping, Tuple

from pydantic import BaseModel, Field

from skills import ContentType, DifficultyLevel, ProgressStatus, QuestionType, SkillCategory

__all__ = [
    "QuestionOption",
    "ToleranceRule",
    "AssessmentQuestion",
    "SafeQuestion",
    "ContentItem",
    "UserAnswer",
    "SectionResult",
    "AssessmentResult",
    "SkillRatingHistory",
    "SkillRating",
    "LearningPlanItem",
    "LearningPlan",
    "User",
    "SkillRatingSummary",
    "PlanSummary",
    "ActivityEntry",
    "UserDashboard",
    "utcnow",
    "parse_parameter_tokens",
]

SkillTrend = Literal["improving", "stable", "declining"]

# Metadata keys that reveal the expected answer of interactive questions.
HIDDEN_METADATA_KEYS = frozenset({"targetFreq", "targetGain", "targetQ", "targetLevels", "tolerance"})

_TOKEN_SPLIT = re.compile(r"[,;\s]+")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_parameter_tokens(value: Any) -> Dict[str, float] | None:
    """Parse ``"param:value"`` tokens into a ``{param: number}`` mapping.

    Accepts either a sequence of tokens (``["freq:2000", "gain:+3"]``) or a
    single string holding several tokens separated by commas, semicolons or
    whitespace. Returns ``None`` when anything cannot be parsed or a parameter
    repeats, so callers can treat the answer as incorrect.
    """

    if isinstance(value, str):
        tokens: Iterable[Any] = [tok for tok in _TOKEN_SPLIT.split(value.strip()) if tok]
    elif isinstance(value, (list, tuple)):
        tokens = value
    else:
        return None

    parsed: Dict[str, float] = {}
    for token in tokens:
        if not isinstance(token, str) or ":" not in token:
            return None
        name, _, raw = token.partition(":")
        name = name.strip().lower()
        if not name or name in parsed:
            return None
        try:
            parsed[name] = float(raw.strip())
        except ValueError:
            return None
    return parsed or None


class QuestionOption(BaseModel):
    model_config = {"frozen": True}

    id: str
    text: str
    audio_url: str | None = None


class ToleranceRule(BaseModel):
    """Structured form of a fuzzy-matched question's expected parameter values."""

    model_config = {"frozen": True}

    targets: Dict[str, float] = Field(description="Expected value per parameter name.")
    per_parameter: Dict[str, float] = Field(
        default_factory=dict,
        description="Allowed absolute deviation per parameter name.",
    )
    default: float = Field(
        default=0.0,
        ge=0.0,
        description="Deviation allowed for parameters without their own entry (0 = exact).",
    )

    @classmethod
    def from_question(cls, correct_answer: Any, tolerance: Any) -> "ToleranceRule":
        targets = parse_parameter_tokens(correct_answer)
        if targets is None:
            raise ValueError("correct answer must be a list of 'param:value' tokens")
        if isinstance(tolerance, Mapping):
            per_parameter = {str(k).lower(): float(v) for k, v in tolerance.items()}
            if any(v < 0 for v in per_parameter.values()):
                raise ValueError("tolerance values may not be negative")
            return cls(targets=targets, per_parameter=per_parameter)
        if isinstance(tolerance, bool) or not isinstance(tolerance, (int, float)):
            raise ValueError("tolerance must be a number or a mapping of parameter to number")
        # A bare number names no parameter, so every parameter stays exact.
        return cls(targets=targets)

    def tolerance_for(self, parameter: str) -> float:
        return self.per_parameter.get(parameter, self.default)

    def matches(self, submitted: Mapping[str, float]) -> bool:
        if set(submitted) != set(self.targets):
            return False
        return all(
            abs(submitted[name] - target) <= self.tolerance_for(name)
            for name, target in self.targets.items()
        )


class AssessmentQuestion(BaseModel):
    model_config = {"frozen": True}

    id: str
    category: SkillCategory
    question_type: QuestionType
    difficulty: DifficultyLevel
    prompt: str
    audio_url: str | None = None
    options: Tuple[QuestionOption, ...] | None = None
    correct_answer: str | Tuple[str, ...] = Field(
        description="A single value, or an ordered sequence when exact order is required.",
    )
    points: float = Field(gt=0)
    time_limit: int | None = Field(default=None, description="Optional time limit in seconds.")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tolerance_rule: ToleranceRule | None = Field(
        default=None,
        exclude=True,
        description="Parsed tolerance metadata, populated when the bank is loaded.",
    )

    def safe_view(self) -> "SafeQuestion":
        """Return a copy suitable for learners: no answer, no target values."""

        metadata = {k: v for k, v in self.metadata.items() if k not in HIDDEN_METADATA_KEYS}
        return SafeQuestion(
            id=self.id,
            category=self.category,
            question_type=self.question_type,
            difficulty=self.difficulty,
            prompt=self.prompt,
            audio_url=self.audio_url,
            options=self.options,
            points=self.points,
            time_limit=self.time_limit,
            metadata=metadata or None,
        )


class SafeQuestion(BaseModel):
    model_config = {"frozen": True}

    id: str
    category: SkillCategory
    question_type: QuestionType
    difficulty: DifficultyLevel
    prompt: str
    audio_url: str | None = None
    options: Tuple[QuestionOption, ...] | None = None
    points: float
    time_limit: int | None = None
    metadata: Dict[str, Any] | None = None


class ContentItem(BaseModel):
    model_config = {"frozen": True}

    id: str
    title: str
    description: str
    category: SkillCategory
    content_type: ContentType
    difficulty: DifficultyLevel
    estimated_duration: int = Field(ge=0, description="Estimated duration in minutes.")
    prerequisites: Tuple[str, ...] = ()
    objectives: Tuple[str, ...] = ()
    content_data: Dict[str, Any] = Field(default_factory=dict)


class UserAnswer(BaseModel):
    model_config = {"frozen": True}

    question_id: str
    answer: str | Tuple[str, ...]
    time_taken: float = Field(default=0.0, description="Seconds spent; 0 when not tracked.")
    is_correct: bool
    points_earned: float


class SectionResult(BaseModel):
    model_config = {"frozen": True}

    category: SkillCategory
    total_questions: int
    correct_answers: int
    total_points: float
    earned_points: float
    percentage_score: float
    calculated_rating: int = Field(ge=1, le=5)
    answers: Tuple[UserAnswer, ...] = ()


class AssessmentResult(BaseModel):
    model_config = {"frozen": True}

    id: str
    user_id: str
    started_at: datetime
    completed_at: datetime = Field(default_factory=utcnow)
    sections: Tuple[SectionResult, ...] = ()
    overall_score: float = 0.0
    recommendations: Tuple[str, ...] = ()


class SkillRatingHistory(BaseModel):
    model_config = {"frozen": True}

    rating: float
    assessed_at: datetime
    source: str = Field(description="Origin of the rating, e.g. initial_test, quiz, mini_game.")


class SkillRating(BaseModel):
    category: SkillCategory
    rating: float = Field(description="Current 1-5 proficiency estimate.")
    last_assessed: datetime
    history: list[SkillRatingHistory] = Field(default_factory=list)


class LearningPlanItem(BaseModel):
    id: str
    content_id: str
    order: int
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    started_at: datetime | None = None
    completed_at: datetime | None = None
    score: float | None = None
    attempts: int = 0


class LearningPlan(BaseModel):
    id: str
    user_id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    items: list[LearningPlanItem] = Field(default_factory=list)
    focus_areas: list[SkillCategory] = Field(default_factory=list)
    current_item_index: int = 0
    is_active: bool = True


class User(BaseModel):
    id: str
    email: str
    display_name: str
    created_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)
    has_completed_initial_assessment: bool = False
    skill_ratings: list[SkillRating] = Field(default_factory=list)
    current_learning_plan_id: str | None = None


class SkillRatingSummary(BaseModel):
    category: SkillCategory
    category_name: str
    rating: float
    max_rating: int = 5
    trend: SkillTrend


class PlanSummary(BaseModel):
    id: str
    progress: float
    current_item: ContentItem | None = None
    next_items: list[ContentItem] = Field(default_factory=list)


class ActivityEntry(BaseModel):
    date: datetime
    activity: str
    score: float | None = None


class UserDashboard(BaseModel):
    user: User
    skill_ratings: list[SkillRatingSummary] = Field(default_factory=list)
    current_plan: PlanSummary | None = None
    recent_activity: list[ActivityEntry] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
