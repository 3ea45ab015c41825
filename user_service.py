"""Learner accounts, placement assessments and progress tracking."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from content_catalog import ContentCatalog, get_default_catalog
from engines.assessment import AssessmentEngine
from env_validation import get_env_int
from learning_path import AdaptiveLearningPlanner
from question_bank import DEFAULT_QUESTIONS_PER_CATEGORY
from schemas import (
    ActivityEntry,
    AssessmentQuestion,
    AssessmentResult,
    LearningPlan,
    PlanSummary,
    SkillRatingSummary,
    User,
    UserDashboard,
    utcnow,
)
from skills import category_display_name
from store import InMemoryStore, Store

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_LIMIT = 10
DASHBOARD_RECOMMENDATION_LIMIT = 5
INITIAL_ASSESSMENT_ACTIVITY = "Completed initial skill assessment"
ACTIVE_ASSESSMENT_TTL = timedelta(hours=2)


def _log_json(event: str, payload: Dict[str, Any]) -> None:
    record = {"event": event, **payload}
    logger.info(json.dumps(record, ensure_ascii=False, sort_keys=True, default=str))


class AssessmentAlreadyCompletedError(ValueError):
    """Raised when a learner who already has a placement result starts another."""


@dataclass(frozen=True)
class ActiveAssessment:
    assessment_id: str
    user_id: str
    questions: Tuple[AssessmentQuestion, ...]
    started_at: datetime


@dataclass(frozen=True)
class AssessmentSubmission:
    result: AssessmentResult
    user: User
    learning_plan: LearningPlan


class UserService:
    """Coordinates the store, the assessment engine and the planner.

    Every read-modify-write on a learner runs under ``store.locked(user_id)``
    so concurrent progress updates for one learner cannot lose writes.
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        engine: Optional[AssessmentEngine] = None,
        planner: Optional[AdaptiveLearningPlanner] = None,
        catalog: Optional[ContentCatalog] = None,
        *,
        questions_per_category: Optional[int] = None,
        assessment_ttl: timedelta = ACTIVE_ASSESSMENT_TTL,
    ) -> None:
        self.store = store or InMemoryStore()
        self.catalog = catalog or (planner.catalog if planner else get_default_catalog())
        self.engine = engine or AssessmentEngine()
        self.planner = planner or AdaptiveLearningPlanner(self.catalog)
        if questions_per_category is None:
            questions_per_category = get_env_int("QUESTIONS_PER_CATEGORY", DEFAULT_QUESTIONS_PER_CATEGORY)
        self.questions_per_category = questions_per_category
        self.assessment_ttl = assessment_ttl
        self._active: Dict[str, ActiveAssessment] = {}
        self._active_lock = threading.Lock()

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------
    def create_user(self, email: str, display_name: str) -> User:
        user = User(id=str(uuid4()), email=email, display_name=display_name)
        self.store.put_user(user, expected_version=0)
        logger.info("Created user %s", user.id)
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        return self.store.get_user(user_id)

    def list_users(self) -> List[User]:
        return self.store.list_users()

    def get_assessment_history(self, user_id: str) -> List[AssessmentResult]:
        return self.store.list_assessments(user_id)

    def get_learning_plan(self, user_id: str) -> Optional[LearningPlan]:
        user = self.store.get_user(user_id)
        if user is None or not user.current_learning_plan_id:
            return None
        return self.store.get_plan(user.current_learning_plan_id)

    def clear_all(self) -> None:
        self.store.clear()
        with self._active_lock:
            self._active.clear()

    # ------------------------------------------------------------------
    # placement assessment
    # ------------------------------------------------------------------
    def start_assessment(self, user_id: str) -> Optional[ActiveAssessment]:
        """Generate a balanced assessment for ``user_id``; ``None`` for unknown users."""

        user = self.store.get_user(user_id)
        if user is None:
            return None
        if user.has_completed_initial_assessment:
            raise AssessmentAlreadyCompletedError(
                f"User {user_id} has already completed the initial assessment"
            )

        generated = self.engine.generate_assessment(self.questions_per_category)
        active = ActiveAssessment(
            assessment_id=generated.assessment_id,
            user_id=user_id,
            questions=tuple(generated.questions),
            started_at=utcnow(),
        )
        with self._active_lock:
            self._prune_active(active.started_at)
            # Only the latest assessment per learner can be submitted.
            for stale_id in [k for k, v in self._active.items() if v.user_id == user_id]:
                del self._active[stale_id]
            self._active[active.assessment_id] = active
        _log_json(
            "assessment_generated",
            {
                "assessment_id": active.assessment_id,
                "user_id": user_id,
                "question_count": len(active.questions),
            },
        )
        return active

    def get_active_assessment(self, assessment_id: str) -> Optional[ActiveAssessment]:
        with self._active_lock:
            self._prune_active(utcnow())
            return self._active.get(assessment_id)

    def _prune_active(self, now: datetime) -> None:
        expired = [k for k, v in self._active.items() if now - v.started_at > self.assessment_ttl]
        for assessment_id in expired:
            del self._active[assessment_id]
        if expired:
            logger.info("Dropped %d expired assessments", len(expired))

    def submit_assessment(
        self,
        assessment_id: str,
        answers: Optional[Mapping[str, Any]],
    ) -> Optional[AssessmentSubmission]:
        """Score a started assessment and build the learner's first plan.

        Returns ``None`` when the assessment id is unknown, has expired, or its
        learner no longer exists. A scored assessment cannot be submitted twice.
        """

        with self._active_lock:
            self._prune_active(utcnow())
            active = self._active.pop(assessment_id, None)
        if active is None:
            return None

        result = self.engine.score_assessment(
            active.assessment_id,
            active.user_id,
            answers,
            active.questions,
            active.started_at,
        )
        _log_json(
            "assessment_scored",
            {
                "assessment_id": result.id,
                "user_id": result.user_id,
                "overall_score": round(result.overall_score, 2),
                "ratings": {s.category.value: s.calculated_rating for s in result.sections},
            },
        )
        completed = self.complete_initial_assessment(active.user_id, result)
        if completed is None:
            return None
        user, plan = completed
        return AssessmentSubmission(result=result, user=user, learning_plan=plan)

    def complete_initial_assessment(
        self, user_id: str, result: AssessmentResult
    ) -> Optional[Tuple[User, LearningPlan]]:
        with self.store.locked(user_id):
            user = self.store.get_user(user_id)
            if user is None:
                return None
            version = self.store.user_version(user_id)

            skill_ratings = self.planner.generate_skill_ratings(result)
            plan = self.planner.create_learning_plan(user_id, skill_ratings)
            updated = user.model_copy(
                update={
                    "has_completed_initial_assessment": True,
                    "skill_ratings": skill_ratings,
                    "current_learning_plan_id": plan.id,
                    "last_active_at": utcnow(),
                }
            )

            self.store.put_plan(plan, expected_version=0)
            self.store.append_assessment(result)
            self.store.put_user(updated, expected_version=version)

        _log_json(
            "initial_assessment_completed",
            {
                "user_id": user_id,
                "assessment_id": result.id,
                "plan_id": plan.id,
                "focus_areas": [category.value for category in plan.focus_areas],
            },
        )
        return updated, plan

    # ------------------------------------------------------------------
    # progress
    # ------------------------------------------------------------------
    def update_progress(
        self, user_id: str, content_id: str, score: float
    ) -> Optional[Tuple[User, LearningPlan]]:
        """Record a scored completion; ``None`` for unknown user, plan or content."""

        content = self.catalog.get(content_id)
        if content is None:
            return None

        with self.store.locked(user_id):
            user = self.store.get_user(user_id)
            if user is None or not user.current_learning_plan_id:
                return None
            plan = self.store.get_plan(user.current_learning_plan_id)
            if plan is None:
                return None
            user_version = self.store.user_version(user_id)
            plan_version = self.store.plan_version(plan.id)

            updated_plan = self.planner.update_learning_plan(
                plan, user.skill_ratings, content_id, score
            )
            skill_ratings = [
                self.planner.update_skill_rating(
                    rating, content.content_type, score, content.difficulty
                )
                if rating.category == content.category
                else rating
                for rating in user.skill_ratings
            ]
            updated_user = user.model_copy(
                update={"skill_ratings": skill_ratings, "last_active_at": utcnow()}
            )

            self.store.put_plan(updated_plan, expected_version=plan_version)
            self.store.put_user(updated_user, expected_version=user_version)

        _log_json(
            "progress_updated",
            {
                "user_id": user_id,
                "content_id": content_id,
                "score": score,
                "plan_progress": round(self.planner.calculate_plan_progress(updated_plan), 2),
            },
        )
        return updated_user, updated_plan

    # ------------------------------------------------------------------
    # dashboard
    # ------------------------------------------------------------------
    def get_dashboard(self, user_id: str) -> Optional[UserDashboard]:
        user = self.store.get_user(user_id)
        if user is None:
            return None
        plan = self.store.get_plan(user.current_learning_plan_id) if user.current_learning_plan_id else None

        skill_ratings = [
            SkillRatingSummary(
                category=rating.category,
                category_name=category_display_name(rating.category),
                rating=round(rating.rating, 1),
                trend=self.planner.get_skill_trend(rating),
            )
            for rating in user.skill_ratings
        ]

        current_plan = None
        if plan is not None:
            upcoming = self.planner.get_next_recommendations(plan, 3)
            current_plan = PlanSummary(
                id=plan.id,
                progress=self.planner.calculate_plan_progress(plan),
                current_item=upcoming[0] if upcoming else None,
                next_items=upcoming[1:],
            )

        return UserDashboard(
            user=user,
            skill_ratings=skill_ratings,
            current_plan=current_plan,
            recent_activity=self._recent_activity(self.store.list_assessments(user_id), plan),
            recommendations=self._dashboard_recommendations(user, plan),
        )

    def _recent_activity(
        self, assessments: Sequence[AssessmentResult], plan: Optional[LearningPlan]
    ) -> List[ActivityEntry]:
        activity = [
            ActivityEntry(
                date=assessment.completed_at,
                activity=INITIAL_ASSESSMENT_ACTIVITY,
                score=assessment.overall_score,
            )
            for assessment in assessments
        ]
        if plan is not None:
            for item in plan.items:
                if item.completed_at is None:
                    continue
                content = self.catalog.get(item.content_id)
                title = content.title if content else "Unknown content"
                activity.append(
                    ActivityEntry(date=item.completed_at, activity=f"Completed: {title}", score=item.score)
                )
        activity.sort(key=lambda entry: entry.date, reverse=True)
        return activity[:RECENT_ACTIVITY_LIMIT]

    def _dashboard_recommendations(self, user: User, plan: Optional[LearningPlan]) -> List[str]:
        if not user.has_completed_initial_assessment:
            return ["Complete your initial assessment to get a personalized learning plan!"]

        recommendations: List[str] = []
        if user.skill_ratings:
            weakest = min(user.skill_ratings, key=lambda r: r.rating)
            if weakest.rating <= 3:
                recommendations.append(
                    f"Focus on improving your {category_display_name(weakest.category)} skills "
                    f"({weakest.rating:g}/5)"
                )

        if plan is not None:
            progress = self.planner.calculate_plan_progress(plan)
            if progress < 25:
                recommendations.append("You're just getting started! Complete a few lessons to build momentum.")
            elif progress < 75:
                recommendations.append("Great progress! Keep up the consistent practice.")
            else:
                recommendations.append("Almost there! Finish your current plan to unlock advanced content.")

        improving = next(
            (r for r in user.skill_ratings if self.planner.get_skill_trend(r) == "improving"), None
        )
        if improving is not None:
            recommendations.append(
                f"Your {category_display_name(improving.category)} skills are improving - great job!"
            )
        return recommendations[:DASHBOARD_RECOMMENDATION_LIMIT]
