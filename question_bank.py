"""Static assessment question bank with a category index built at load time."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from content_catalog import DATA_DIR, CatalogValidationError, describe_validation_error, load_json_entries
from schemas import AssessmentQuestion, ToleranceRule
from skills import CATEGORY_ORDER, SkillCategory

logger = logging.getLogger(__name__)

DEFAULT_QUESTIONS_PATH = DATA_DIR / "question_bank.json"
DEFAULT_QUESTIONS_PER_CATEGORY = 3


class QuestionBank:
    """Immutable question bank; lookups by category are O(1)."""

    def __init__(self, path: str | Path | None = None) -> None:
        if path is None:
            path = os.getenv("QUESTION_BANK_PATH") or DEFAULT_QUESTIONS_PATH
        self.path = Path(path)
        entries = load_json_entries(self.path, "Question bank")
        self._index(self._validate(entries))
        logger.info("Loaded %d assessment questions from %s", len(self._questions), self.path)

    # ------------------------------------------------------------------
    # loading & validation
    # ------------------------------------------------------------------
    @staticmethod
    def _validate(entries: Iterable[Mapping[str, Any]]) -> List[AssessmentQuestion]:
        questions: List[AssessmentQuestion] = []
        seen_ids: set[str] = set()
        for entry in entries:
            entry_id = entry.get("id")
            payload = dict(entry)
            metadata = payload.get("metadata") or {}
            if not isinstance(metadata, dict):
                raise CatalogValidationError(f"Question {entry_id!r} metadata must be an object")
            if "tolerance" in metadata:
                try:
                    payload["tolerance_rule"] = ToleranceRule.from_question(
                        payload.get("correct_answer"), metadata["tolerance"]
                    )
                except (TypeError, ValueError) as exc:
                    raise CatalogValidationError(
                        f"Question {entry_id!r} has invalid tolerance metadata: {exc}"
                    ) from exc
            try:
                question = AssessmentQuestion.model_validate(payload)
            except ValidationError as exc:
                raise CatalogValidationError(
                    f"Question {entry_id!r} is invalid: {describe_validation_error(exc)}"
                ) from exc

            if question.id in seen_ids:
                raise CatalogValidationError(f"Duplicate question id detected: {question.id}")
            seen_ids.add(question.id)

            if isinstance(question.correct_answer, tuple) and not question.correct_answer:
                raise CatalogValidationError(f"Question {question.id} has an empty answer sequence")
            if question.options and question.tolerance_rule is None:
                option_ids = {option.id for option in question.options}
                expected = (
                    question.correct_answer
                    if isinstance(question.correct_answer, tuple)
                    else (question.correct_answer,)
                )
                stray = [answer for answer in expected if answer not in option_ids]
                if stray:
                    raise CatalogValidationError(
                        f"Question {question.id} answer references unknown options: {', '.join(stray)}"
                    )
            questions.append(question)

        covered = {question.category for question in questions}
        missing = [category.value for category in CATEGORY_ORDER if category not in covered]
        if missing:
            raise CatalogValidationError(
                f"Question bank has no questions for categories: {', '.join(missing)}"
            )
        return questions

    def _index(self, questions: Sequence[AssessmentQuestion]) -> None:
        self._questions: Tuple[AssessmentQuestion, ...] = tuple(questions)
        self._by_id: Mapping[str, AssessmentQuestion] = MappingProxyType({q.id: q for q in questions})
        by_category: Dict[SkillCategory, Tuple[AssessmentQuestion, ...]] = {}
        for category in CATEGORY_ORDER:
            by_category[category] = tuple(q for q in questions if q.category == category)
        self._by_category: Mapping[SkillCategory, Tuple[AssessmentQuestion, ...]] = MappingProxyType(by_category)

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    @property
    def questions(self) -> Tuple[AssessmentQuestion, ...]:
        return self._questions

    def get(self, question_id: str) -> Optional[AssessmentQuestion]:
        return self._by_id.get(question_id)

    def by_category(self, category: SkillCategory | str) -> Tuple[AssessmentQuestion, ...]:
        """Return the same backing tuple on every call for a given category."""

        try:
            return self._by_category[SkillCategory(category)]
        except ValueError:
            return ()

    def balanced_assessment(
        self, questions_per_category: int = DEFAULT_QUESTIONS_PER_CATEGORY
    ) -> List[AssessmentQuestion]:
        """Pick the easiest ``questions_per_category`` questions from every category.

        Categories are concatenated in their fixed order; within a category the
        sort by difficulty is stable, so ties keep catalog order.
        """

        if isinstance(questions_per_category, bool) or not isinstance(questions_per_category, int):
            raise TypeError("questions_per_category must be an integer")
        if questions_per_category <= 0:
            raise ValueError("questions_per_category must be positive")

        selected: List[AssessmentQuestion] = []
        for category in CATEGORY_ORDER:
            ranked = sorted(self.by_category(category), key=lambda q: q.difficulty)
            picked = ranked[:questions_per_category]
            if ranked and not picked:
                raise CatalogValidationError(f"No questions sampled for category {category.value}")
            selected.extend(picked)
        return selected

    # ------------------------------------------------------------------
    # alternative constructors
    # ------------------------------------------------------------------
    @classmethod
    def from_entries(cls, entries: Sequence[Mapping[str, Any]]) -> "QuestionBank":
        bank = cls.__new__(cls)
        bank.path = Path("<in-memory>")
        bank._index(cls._validate(entries))
        return bank


_DEFAULT_BANK: Optional[QuestionBank] = None


def get_default_bank() -> QuestionBank:
    global _DEFAULT_BANK
    if _DEFAULT_BANK is None:
        _DEFAULT_BANK = QuestionBank()
    return _DEFAULT_BANK
