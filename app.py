# app.py - Mixing Mastery API v1.0.0
# - Placement assessment, adaptive learning plans, learner dashboard
# - Thin HTTP shell over user_service; all rules live in the engines

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from content_catalog import get_default_catalog
from question_bank import get_default_bank
from schemas import ContentItem, LearningPlan, SkillRating, utcnow
from skills import ContentType, SkillCategory, category_display_name
from store import create_store
from user_service import AssessmentAlreadyCompletedError, UserService

logger = logging.getLogger(__name__)

API_NAME = "Mixing Mastery API"
API_VERSION = "1.0.0"
ESTIMATED_ASSESSMENT_TIME = "15-20 minutes"
PRACTICE_QUESTIONS_PER_CATEGORY = 5

_SERVICE: Optional[UserService] = None


def get_service() -> UserService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = UserService(create_store())
    return _SERVICE


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        # Validate environment variables first
        from env_validation import validate_environment
        validate_environment()

        get_default_catalog()
        get_default_bank()
        get_service()
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title=f"{API_NAME} v{API_VERSION}", version=API_VERSION, lifespan=_lifespan)


# ---------- Schemas ----------
class CreateUserBody(BaseModel):
    email: Optional[str] = None
    display_name: Optional[str] = None

class StartAssessmentBody(BaseModel):
    user_id: Optional[str] = None

class SubmitAssessmentBody(BaseModel):
    assessment_id: Optional[str] = None
    answers: Optional[Dict[str, Any]] = None

class ProgressBody(BaseModel):
    content_id: Optional[str] = None
    score: Optional[float] = Field(default=None, ge=0, le=100)


# ---------- Serializers ----------
def _content_summary(content: ContentItem) -> Dict[str, Any]:
    return {
        "id": content.id,
        "title": content.title,
        "description": content.description,
        "category": content.category.value,
        "content_type": content.content_type.value,
        "difficulty": int(content.difficulty),
        "estimated_duration": content.estimated_duration,
        "objectives": list(content.objectives),
    }

def _rating_payload(rating: SkillRating) -> Dict[str, Any]:
    return {
        "category": rating.category.value,
        "rating": rating.rating,
        "last_assessed": rating.last_assessed.isoformat(),
    }

def _plan_progress(plan: LearningPlan) -> int:
    return round(get_service().planner.calculate_plan_progress(plan))


# ---------- Meta ----------
@app.get("/health")
def health():
    return {"status": "healthy", "timestamp": utcnow().isoformat()}

@app.get("/api")
def api_info():
    return {
        "name": API_NAME,
        "version": API_VERSION,
        "description": "Skill assessment and adaptive learning platform for mixing and mastering",
        "endpoints": {
            "users": {
                "POST /api/users": "Create new user",
                "GET /api/users/{id}": "Get user by ID",
                "GET /api/users/{id}/dashboard": "Get user dashboard",
                "GET /api/users/{id}/learning-plan": "Get user learning plan",
                "POST /api/users/{id}/progress": "Update learning progress",
                "GET /api/users/{id}/history": "Get assessment history",
            },
            "assessment": {
                "POST /api/assessment/start": "Start new assessment",
                "POST /api/assessment/submit": "Submit assessment answers",
                "GET /api/assessment/questions/{category}": "Practice questions for one category",
            },
            "content": {
                "GET /api/content": "Get all learning content",
                "GET /api/content/{id}": "Get content by ID",
                "GET /api/content/categories/summary": "Get content summary by category",
            },
        },
    }


# ---------- Users ----------
@app.post("/api/users", status_code=201)
def create_user(body: CreateUserBody):
    email = (body.email or "").strip()
    display_name = (body.display_name or "").strip()
    if not email or not display_name:
        raise HTTPException(status_code=400, detail="email and display_name are required")
    user = get_service().create_user(email, display_name)
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "has_completed_initial_assessment": user.has_completed_initial_assessment,
        "created_at": user.created_at.isoformat(),
    }

@app.get("/api/users/{user_id}")
def get_user(user_id: str):
    user = get_service().get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "has_completed_initial_assessment": user.has_completed_initial_assessment,
        "skill_ratings": [_rating_payload(r) for r in user.skill_ratings],
        "created_at": user.created_at.isoformat(),
        "last_active_at": user.last_active_at.isoformat(),
    }

@app.get("/api/users/{user_id}/dashboard")
def get_dashboard(user_id: str):
    dashboard = get_service().get_dashboard(user_id)
    if dashboard is None:
        raise HTTPException(status_code=404, detail="User not found")

    current_plan = None
    if dashboard.current_plan is not None:
        summary = dashboard.current_plan
        current = summary.current_item
        current_plan = {
            "id": summary.id,
            "progress": round(summary.progress),
            "current_item": {
                "id": current.id,
                "title": current.title,
                "description": current.description,
                "content_type": current.content_type.value,
                "difficulty": int(current.difficulty),
                "estimated_duration": current.estimated_duration,
            } if current else None,
            "next_items": [
                {
                    "id": item.id,
                    "title": item.title,
                    "content_type": item.content_type.value,
                    "difficulty": int(item.difficulty),
                }
                for item in summary.next_items
            ],
        }

    return {
        "user": {
            "id": dashboard.user.id,
            "display_name": dashboard.user.display_name,
            "has_completed_initial_assessment": dashboard.user.has_completed_initial_assessment,
        },
        "skill_ratings": [s.model_dump(mode="json") for s in dashboard.skill_ratings],
        "current_plan": current_plan,
        "recent_activity": [
            {
                "date": entry.date.isoformat(),
                "activity": entry.activity,
                "score": round(entry.score) if entry.score is not None else None,
            }
            for entry in dashboard.recent_activity
        ],
        "recommendations": dashboard.recommendations,
    }

@app.get("/api/users/{user_id}/learning-plan")
def get_learning_plan(user_id: str):
    plan = get_service().get_learning_plan(user_id)
    if plan is None:
        raise HTTPException(status_code=404, detail="Learning plan not found")
    return {
        "id": plan.id,
        "focus_areas": [category.value for category in plan.focus_areas],
        "current_item_index": plan.current_item_index,
        "items": [
            {
                "id": item.id,
                "content_id": item.content_id,
                "order": item.order,
                "status": item.status.value,
                "score": item.score,
                "attempts": item.attempts,
            }
            for item in plan.items
        ],
        "created_at": plan.created_at.isoformat(),
        "updated_at": plan.updated_at.isoformat(),
    }

@app.post("/api/users/{user_id}/progress")
def update_progress(user_id: str, body: ProgressBody):
    if not body.content_id or body.score is None:
        raise HTTPException(status_code=400, detail="content_id and score are required")
    result = get_service().update_progress(user_id, body.content_id, body.score)
    if result is None:
        raise HTTPException(status_code=404, detail="User, learning plan or content not found")
    user, plan = result
    return {
        "success": True,
        "updated_skill_ratings": [
            {"category": r.category.value, "rating": round(r.rating, 1)} for r in user.skill_ratings
        ],
        "plan_progress": _plan_progress(plan),
    }

@app.get("/api/users/{user_id}/history")
def get_history(user_id: str):
    service = get_service()
    if service.get_user(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {
        "assessments": [
            {
                "id": result.id,
                "completed_at": result.completed_at.isoformat(),
                "overall_score": round(result.overall_score),
                "sections": [
                    {
                        "category": section.category.value,
                        "rating": section.calculated_rating,
                        "percentage_score": round(section.percentage_score),
                    }
                    for section in result.sections
                ],
            }
            for result in service.get_assessment_history(user_id)
        ]
    }


# ---------- Assessment ----------
@app.post("/api/assessment/start")
def start_assessment(body: StartAssessmentBody):
    if not body.user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    service = get_service()
    try:
        active = service.start_assessment(body.user_id)
    except AssessmentAlreadyCompletedError:
        raise HTTPException(status_code=400, detail="User has already completed initial assessment")
    if active is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {
        "assessment_id": active.assessment_id,
        "questions": [q.model_dump(mode="json") for q in service.engine.safe_questions(active.questions)],
        "total_questions": len(active.questions),
        "estimated_time": ESTIMATED_ASSESSMENT_TIME,
    }

@app.post("/api/assessment/submit")
def submit_assessment(body: SubmitAssessmentBody):
    if not body.assessment_id or body.answers is None:
        raise HTTPException(status_code=400, detail="assessment_id and answers are required")
    submission = get_service().submit_assessment(body.assessment_id, body.answers)
    if submission is None:
        raise HTTPException(status_code=404, detail="Assessment not found or expired")
    result = submission.result
    plan = submission.learning_plan
    return {
        "result": {
            "id": result.id,
            "overall_score": result.overall_score,
            "sections": [
                {
                    "category": section.category.value,
                    "category_name": category_display_name(section.category),
                    "total_questions": section.total_questions,
                    "correct_answers": section.correct_answers,
                    "percentage_score": section.percentage_score,
                    "rating": section.calculated_rating,
                }
                for section in result.sections
            ],
            "recommendations": list(result.recommendations),
        },
        "learning_plan": {
            "id": plan.id,
            "focus_areas": [category.value for category in plan.focus_areas],
            "total_items": len(plan.items),
        },
    }

@app.get("/api/assessment/questions/{category}")
def practice_questions(category: str):
    if category not in {c.value for c in SkillCategory}:
        raise HTTPException(status_code=404, detail="Invalid category")
    sample = get_service().engine.question_bank.balanced_assessment(PRACTICE_QUESTIONS_PER_CATEGORY)
    questions = [q for q in sample if q.category == category]
    return {"questions": [q.safe_view().model_dump(mode="json") for q in questions]}


# ---------- Content ----------
@app.get("/api/content")
def list_content(
    category: Optional[str] = None,
    type: Optional[str] = None,
    difficulty: Optional[str] = None,
):
    # Unrecognised filter values are ignored rather than rejected.
    catalog = get_service().catalog
    filters: Dict[str, Any] = {}
    if category in {c.value for c in SkillCategory}:
        filters["category"] = category
    if type in {t.value for t in ContentType}:
        filters["content_type"] = type
    if difficulty is not None:
        try:
            level = int(difficulty)
        except ValueError:
            level = None
        if level is not None and 1 <= level <= 5:
            filters["difficulty"] = level
    content: List[ContentItem] = catalog.filter_items(**filters)
    return {"content": [_content_summary(c) for c in content], "total": len(content)}

@app.get("/api/content/categories/summary")
def content_summary():
    return {"categories": get_service().catalog.category_summary()}

@app.get("/api/content/{content_id}")
def get_content(content_id: str):
    content = get_service().catalog.get(content_id)
    if content is None:
        raise HTTPException(status_code=404, detail="Content not found")
    return {
        **_content_summary(content),
        "prerequisites": list(content.prerequisites),
        "content_data": content.content_data,
    }
