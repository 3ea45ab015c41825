"""Adaptive learning plans: curriculum synthesis, plan repair and rating updates."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from time import perf_counter
from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from content_catalog import ContentCatalog, get_default_catalog
from schemas import (
    AssessmentResult,
    ContentItem,
    LearningPlan,
    LearningPlanItem,
    SkillRating,
    SkillRatingHistory,
    SkillTrend,
    utcnow,
)
from skills import (
    ACTIONABLE_STATUSES,
    CONTENT_TYPE_PRIORITY,
    FINISHED_STATUSES,
    ContentType,
    DifficultyLevel,
    ProgressStatus,
    SkillCategory,
    clamp_rating,
    max_difficulty_for_rating,
)


_LOGGER = logging.getLogger(__name__)


INITIAL_TEST_SOURCE = "initial_test"


def _log_json(event: str, payload: Dict[str, Any]) -> None:
    """Emit one structured JSON log line per planner decision."""

    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True, default=str)
    except (TypeError, ValueError):
        fallback = {
            "event": event,
            "error": "serialization_failed",
            "payload_repr": repr(payload),
        }
        message = json.dumps(fallback, ensure_ascii=False, sort_keys=True)
    _LOGGER.info(message)


def next_actionable_index(items: Sequence[LearningPlanItem]) -> int:
    """Index of the first NOT_STARTED/IN_PROGRESS item, or ``len(items)``."""

    for idx, item in enumerate(items):
        if item.status in ACTIONABLE_STATUSES:
            return idx
    return len(items)


def _renumber(items: Iterable[LearningPlanItem]) -> List[LearningPlanItem]:
    return [item.model_copy(update={"order": idx}) for idx, item in enumerate(items)]


class AdaptiveLearningPlanner:
    """Rule-based planner turning 1-5 skill ratings into an ordered curriculum.

    Weak categories (focus areas) receive every lesson, mini-game and quiz up
    to the difficulty their rating allows; strong categories receive a single
    item of each type so the learner keeps some variety. After each completed
    item the plan is repaired in place of a full rebuild: low scores splice in
    easier lessons from the same category right after the attempted item.

    The planner only computes next-state values. Callers persist them.
    """

    def __init__(
        self,
        catalog: Optional[ContentCatalog] = None,
        *,
        focus_threshold: float = 3.0,
        fallback_focus_count: int = 2,
        completion_threshold: float = 70.0,
        remedial_threshold: float = 50.0,
        max_remedial_items: int = 2,
    ) -> None:
        if not 0 <= remedial_threshold <= completion_threshold <= 100:
            raise ValueError("Thresholds must satisfy 0 <= remedial <= completion <= 100")
        if fallback_focus_count < 1:
            raise ValueError("fallback_focus_count must be at least 1")
        self.catalog = catalog or get_default_catalog()
        self.focus_threshold = focus_threshold
        self.fallback_focus_count = fallback_focus_count
        self.completion_threshold = completion_threshold
        self.remedial_threshold = remedial_threshold
        self.max_remedial_items = max_remedial_items

    # ------------------------------------------------------------------
    # ratings
    # ------------------------------------------------------------------
    @staticmethod
    def generate_skill_ratings(result: AssessmentResult) -> List[SkillRating]:
        """One rating per assessed section, seeded with an ``initial_test`` entry."""

        return [
            SkillRating(
                category=section.category,
                rating=float(section.calculated_rating),
                last_assessed=result.completed_at,
                history=[
                    SkillRatingHistory(
                        rating=float(section.calculated_rating),
                        assessed_at=result.completed_at,
                        source=INITIAL_TEST_SOURCE,
                    )
                ],
            )
            for section in result.sections
        ]

    @staticmethod
    def update_skill_rating(
        current: SkillRating,
        content_type: ContentType,
        score: float,
        content_difficulty: DifficultyLevel | int,
        *,
        now: Optional[datetime] = None,
    ) -> SkillRating:
        """Return a new rating nudged by one scored completion.

        Good results on content at or above the learner's level raise the
        rating; poor results on content at or below it lower the rating.
        Quizzes count one and a half times as much as other content.
        """

        if score >= 90 and content_difficulty >= current.rating:
            adjustment = 0.5
        elif score >= 70 and content_difficulty >= current.rating:
            adjustment = 0.25
        elif score < 50 and content_difficulty <= current.rating:
            adjustment = -0.25
        else:
            adjustment = 0.0

        content_type = ContentType(content_type)
        if content_type == ContentType.QUIZ:
            adjustment *= 1.5

        timestamp = now or utcnow()
        new_rating = clamp_rating(current.rating + adjustment)
        updated = current.model_copy(
            update={
                "rating": new_rating,
                "last_assessed": timestamp,
                "history": [
                    *current.history,
                    SkillRatingHistory(
                        rating=new_rating,
                        assessed_at=timestamp,
                        source=content_type.value.lower(),
                    ),
                ],
            }
        )
        _log_json(
            "skill_rating_updated",
            {
                "category": current.category.value,
                "content_type": content_type.value,
                "score": score,
                "content_difficulty": int(content_difficulty),
                "rating_before": current.rating,
                "rating_after": new_rating,
                "adjustment": adjustment,
            },
        )
        return updated

    @staticmethod
    def get_skill_trend(rating: SkillRating) -> SkillTrend:
        if len(rating.history) < 2:
            return "stable"
        recent = rating.history[-3:]
        first = recent[0].rating
        last = recent[-1].rating
        if last - first >= 0.5:
            return "improving"
        if first - last >= 0.5:
            return "declining"
        return "stable"

    # ------------------------------------------------------------------
    # plan creation
    # ------------------------------------------------------------------
    def focus_areas(self, skill_ratings: Sequence[SkillRating]) -> List[SkillCategory]:
        ordered = sorted(skill_ratings, key=lambda r: r.rating)
        focus = [r.category for r in ordered if r.rating <= self.focus_threshold]
        if not focus:
            # Every skill is strong: push the relatively weakest ones further.
            focus = [r.category for r in ordered[: self.fallback_focus_count]]
        return focus

    def select_content(
        self,
        category: SkillCategory,
        rating: float,
        *,
        is_focus_area: bool,
    ) -> List[ContentItem]:
        ceiling = max_difficulty_for_rating(rating)
        available = self.catalog.for_skill_level(category, ceiling)
        if not available:
            return []

        lessons = [c for c in available if c.content_type == ContentType.LESSON]
        games = [c for c in available if c.content_type == ContentType.MINI_GAME]
        quizzes = [c for c in available if c.content_type == ContentType.QUIZ]

        if is_focus_area:
            return [*lessons, *games, *quizzes]

        selected: List[ContentItem] = []
        for group in (lessons, games, quizzes):
            if group:
                selected.append(min(group, key=lambda c: c.difficulty))
        return selected

    def create_learning_plan(
        self,
        user_id: str,
        skill_ratings: Sequence[SkillRating],
    ) -> LearningPlan:
        timer_start = perf_counter()
        ordered = sorted(skill_ratings, key=lambda r: r.rating)
        focus_areas = self.focus_areas(ordered) if ordered else []

        items: List[LearningPlanItem] = []
        seen_categories: set[SkillCategory] = set()
        for rating in ordered:
            if rating.category in seen_categories:
                continue
            seen_categories.add(rating.category)
            for content in self.select_content(
                rating.category,
                rating.rating,
                is_focus_area=rating.category in focus_areas,
            ):
                items.append(
                    LearningPlanItem(id=str(uuid4()), content_id=content.id, order=len(items))
                )

        now = utcnow()
        plan = LearningPlan(
            id=str(uuid4()),
            user_id=user_id,
            created_at=now,
            updated_at=now,
            items=self._optimise_order(items),
            focus_areas=focus_areas,
            current_item_index=0,
            is_active=True,
        )
        _log_json(
            "learning_plan_created",
            {
                "user_id": user_id,
                "plan_id": plan.id,
                "focus_areas": [category.value for category in focus_areas],
                "item_count": len(plan.items),
                "ratings": {r.category.value: r.rating for r in ordered},
                "latency_ms": round((perf_counter() - timer_start) * 1000.0, 3),
            },
        )
        return plan

    def _optimise_order(self, items: Sequence[LearningPlanItem]) -> List[LearningPlanItem]:
        """Lessons, then practice, then mini-games, then quizzes; easier first."""

        def sort_key(item: LearningPlanItem) -> tuple[int, int, int]:
            content = self.catalog.get(item.content_id)
            if content is None:
                return (len(CONTENT_TYPE_PRIORITY) + 1, int(DifficultyLevel.MASTER) + 1, item.order)
            return (CONTENT_TYPE_PRIORITY[content.content_type], int(content.difficulty), item.order)

        return _renumber(sorted(items, key=sort_key))

    # ------------------------------------------------------------------
    # plan updates
    # ------------------------------------------------------------------
    def update_learning_plan(
        self,
        plan: LearningPlan,
        skill_ratings: Sequence[SkillRating],
        completed_content_id: str,
        score: float,
        *,
        now: Optional[datetime] = None,
    ) -> LearningPlan:
        """Record a completion and repair the plan around it.

        Unknown content ids leave the plan untouched. Finished items never move
        back to IN_PROGRESS; a low score on them still records the attempt and
        may insert remedial lessons.
        """

        item_index = next(
            (idx for idx, item in enumerate(plan.items) if item.content_id == completed_content_id),
            None,
        )
        if item_index is None:
            return plan

        timestamp = now or utcnow()
        items = [item.model_copy() for item in plan.items]
        previous = items[item_index]
        if previous.status in FINISHED_STATUSES:
            status = previous.status
        elif score >= self.completion_threshold:
            status = ProgressStatus.COMPLETED
        else:
            status = ProgressStatus.IN_PROGRESS
        items[item_index] = previous.model_copy(
            update={
                "status": status,
                "started_at": previous.started_at or timestamp,
                "completed_at": timestamp,
                "score": score,
                "attempts": previous.attempts + 1,
            }
        )

        remedial: List[ContentItem] = []
        content = self.catalog.get(completed_content_id)
        if score < self.remedial_threshold and content is not None:
            remedial = self.remedial_content(content)
            if remedial:
                inserted = [
                    LearningPlanItem(id=str(uuid4()), content_id=c.id, order=item_index + offset)
                    for offset, c in enumerate(remedial, start=1)
                ]
                items[item_index + 1 : item_index + 1] = inserted
                _log_json(
                    "remedial_content_inserted",
                    {
                        "plan_id": plan.id,
                        "after_content_id": completed_content_id,
                        "content_ids": [c.id for c in remedial],
                    },
                )

        items = _renumber(items)
        updated = plan.model_copy(
            update={
                "items": items,
                "current_item_index": next_actionable_index(items),
                "updated_at": timestamp,
            }
        )

        category_rating = None
        if content is not None:
            category_rating = next(
                (r.rating for r in skill_ratings if r.category == content.category), None
            )
        _log_json(
            "learning_plan_updated",
            {
                "plan_id": plan.id,
                "user_id": plan.user_id,
                "content_id": completed_content_id,
                "score": score,
                "status": status.value,
                "category_rating": category_rating,
                "remedial_count": len(remedial),
                "current_item_index": updated.current_item_index,
            },
        )
        return updated

    def remedial_content(self, content: ContentItem) -> List[ContentItem]:
        """Easier lessons in the same category that ``content`` does not already require."""

        prerequisites = set(content.prerequisites)
        candidates = [
            c
            for c in self.catalog.by_category(content.category)
            if c.difficulty < content.difficulty
            and c.content_type == ContentType.LESSON
            and c.id not in prerequisites
        ]
        return candidates[: self.max_remedial_items]

    # ------------------------------------------------------------------
    # read helpers
    # ------------------------------------------------------------------
    def get_next_recommendations(self, plan: LearningPlan, count: int = 3) -> List[ContentItem]:
        recommendations: List[ContentItem] = []
        if count <= 0:
            return recommendations
        for item in plan.items:
            if item.status not in ACTIONABLE_STATUSES:
                continue
            content = self.catalog.get(item.content_id)
            if content is None:
                continue
            recommendations.append(content)
            if len(recommendations) >= count:
                break
        return recommendations

    @staticmethod
    def calculate_plan_progress(plan: LearningPlan) -> float:
        if not plan.items:
            return 0.0
        finished = sum(1 for item in plan.items if item.status in FINISHED_STATUSES)
        return finished / len(plan.items) * 100
