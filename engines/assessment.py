"""Placement assessment: balanced question sampling, scoring and section ratings."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence
from uuid import uuid4

from question_bank import DEFAULT_QUESTIONS_PER_CATEGORY, QuestionBank, get_default_bank
from schemas import (
    AssessmentQuestion,
    AssessmentResult,
    SafeQuestion,
    SectionResult,
    UserAnswer,
    parse_parameter_tokens,
    utcnow,
)
from skills import CATEGORY_ORDER, SkillCategory, category_display_name, rating_from_percentage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeneratedAssessment:
    assessment_id: str
    questions: List[AssessmentQuestion]


def _coerce_answer(value: Any) -> str | tuple[str, ...]:
    """Normalise a submitted value into the shape stored on ``UserAnswer``."""

    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return tuple(str(part) for part in value)
    return str(value)


class AssessmentEngine:
    """Generate placement assessments and turn submissions into skill ratings.

    Scoring never raises for learner input: missing or malformed answers simply
    earn no points.
    """

    def __init__(self, question_bank: Optional[QuestionBank] = None) -> None:
        self.question_bank = question_bank or get_default_bank()

    # ------------------------------------------------------------------
    # generation
    # ------------------------------------------------------------------
    def generate_assessment(
        self, questions_per_category: int = DEFAULT_QUESTIONS_PER_CATEGORY
    ) -> GeneratedAssessment:
        questions = self.question_bank.balanced_assessment(questions_per_category)
        assessment = GeneratedAssessment(assessment_id=str(uuid4()), questions=questions)
        logger.info(
            "Generated assessment %s with %d questions", assessment.assessment_id, len(questions)
        )
        return assessment

    @staticmethod
    def safe_questions(questions: Sequence[AssessmentQuestion]) -> List[SafeQuestion]:
        return [question.safe_view() for question in questions]

    # ------------------------------------------------------------------
    # scoring
    # ------------------------------------------------------------------
    def score_assessment(
        self,
        assessment_id: str,
        user_id: str,
        answers: Optional[Mapping[str, Any]],
        questions: Sequence[AssessmentQuestion],
        started_at: datetime,
        *,
        completed_at: Optional[datetime] = None,
    ) -> AssessmentResult:
        if not isinstance(answers, Mapping):
            answers = {}

        grouped: Dict[SkillCategory, List[UserAnswer]] = defaultdict(list)
        for question in questions:
            grouped[question.category].append(self.score_answer(question, answers.get(question.id)))

        sections: List[SectionResult] = []
        for category in CATEGORY_ORDER:
            category_answers = grouped.get(category)
            if not category_answers:
                continue
            category_questions = [q for q in questions if q.category == category]
            sections.append(self._section_result(category, category_answers, category_questions))

        result = AssessmentResult(
            id=assessment_id,
            user_id=user_id,
            started_at=started_at,
            completed_at=completed_at or utcnow(),
            sections=tuple(sections),
            overall_score=self.overall_score(sections),
            recommendations=tuple(self.recommendations(sections)),
        )
        logger.info(
            "Scored assessment %s for user %s: overall %.1f%% across %d sections",
            assessment_id,
            user_id,
            result.overall_score,
            len(sections),
        )
        return result

    def score_answer(self, question: AssessmentQuestion, submitted: Any) -> UserAnswer:
        correct = self.is_correct(question, submitted)
        return UserAnswer(
            question_id=question.id,
            answer=_coerce_answer(submitted),
            is_correct=correct,
            points_earned=question.points if correct else 0.0,
        )

    @staticmethod
    def is_correct(question: AssessmentQuestion, submitted: Any) -> bool:
        if submitted is None:
            return False
        if question.tolerance_rule is not None:
            parsed = parse_parameter_tokens(submitted)
            return parsed is not None and question.tolerance_rule.matches(parsed)
        expected = question.correct_answer
        if isinstance(expected, tuple):
            if not isinstance(submitted, (list, tuple)):
                return False
            return tuple(submitted) == expected
        return isinstance(submitted, str) and submitted == expected

    @staticmethod
    def _section_result(
        category: SkillCategory,
        answers: Sequence[UserAnswer],
        questions: Sequence[AssessmentQuestion],
    ) -> SectionResult:
        total_points = sum(q.points for q in questions)
        earned_points = sum(a.points_earned for a in answers)
        correct_answers = sum(1 for a in answers if a.is_correct)
        percentage = (earned_points / total_points) * 100 if total_points > 0 else 0.0
        average_difficulty = sum(int(q.difficulty) for q in questions) / len(questions)
        return SectionResult(
            category=category,
            total_questions=len(answers),
            correct_answers=correct_answers,
            total_points=total_points,
            earned_points=earned_points,
            percentage_score=percentage,
            calculated_rating=rating_from_percentage(percentage, average_difficulty),
            answers=tuple(answers),
        )

    @staticmethod
    def overall_score(sections: Sequence[SectionResult]) -> float:
        total_possible = sum(s.total_points for s in sections)
        if total_possible <= 0:
            return 0.0
        return sum(s.earned_points for s in sections) / total_possible * 100

    @staticmethod
    def recommendations(sections: Sequence[SectionResult]) -> List[str]:
        """Weakest-first advice per section, preceded by one overall message."""

        messages: List[str] = []
        for section in sorted(sections, key=lambda s: s.calculated_rating):
            name = category_display_name(section.category)
            if section.calculated_rating <= 2:
                messages.append(
                    f"Focus on {name} fundamentals - start with beginner lessons and practice games."
                )
            elif section.calculated_rating == 3:
                messages.append(
                    f"Build on your {name} skills with intermediate content and targeted practice."
                )
            elif section.calculated_rating == 4:
                messages.append(
                    f"Challenge yourself with advanced {name} techniques to reach mastery."
                )

        average = (
            sum(s.calculated_rating for s in sections) / len(sections) if sections else 0.0
        )
        if average >= 4:
            overall = "Great overall performance! Focus on refining your weakest areas."
        elif average >= 2.5:
            overall = "Solid foundation! Your personalized plan will help strengthen key areas."
        else:
            overall = "Welcome to your learning journey! We'll build your skills step by step."
        return [overall, *messages]
