import logging
import threading
from datetime import timedelta

import pytest

import user_service as user_service_module
from schemas import SkillRating, SkillRatingHistory, utcnow
from skills import CATEGORY_ORDER, ProgressStatus, SkillCategory
from user_service import AssessmentAlreadyCompletedError, UserService


def _all_wrong(questions):
    return {q.id: "zzz" for q in questions}


def _assessed_user(user_service, answers_for=_all_wrong):
    user = user_service.create_user("learner@example.com", "Learner")
    active = user_service.start_assessment(user.id)
    submission = user_service.submit_assessment(active.assessment_id, answers_for(active.questions))
    return submission


def test_create_and_get_user(user_service):
    user = user_service.create_user("a@example.com", "Alice")
    assert user.id
    assert not user.has_completed_initial_assessment
    assert user.skill_ratings == []
    assert user_service.get_user(user.id) == user
    assert user_service.get_user("unknown") is None
    assert [u.id for u in user_service.list_users()] == [user.id]


def test_start_assessment_for_unknown_user(user_service):
    assert user_service.start_assessment("ghost") is None


def test_start_assessment_registers_active_assessment(user_service):
    user = user_service.create_user("a@example.com", "Alice")
    active = user_service.start_assessment(user.id)
    assert len(active.questions) == 15
    assert active.user_id == user.id
    assert user_service.get_active_assessment(active.assessment_id) is active


def test_submit_builds_ratings_and_plan(user_service):
    submission = _assessed_user(user_service)
    user = submission.user

    assert user.has_completed_initial_assessment
    assert [r.category for r in user.skill_ratings] == list(CATEGORY_ORDER)
    assert all(r.rating == 1.0 for r in user.skill_ratings)
    assert all(r.history[0].source == "initial_test" for r in user.skill_ratings)
    assert user.current_learning_plan_id == submission.learning_plan.id

    stored_plan = user_service.get_learning_plan(user.id)
    assert stored_plan == submission.learning_plan
    assert stored_plan.focus_areas == list(CATEGORY_ORDER)
    assert [r.id for r in user_service.get_assessment_history(user.id)] == [submission.result.id]
    assert user_service.get_active_assessment(submission.result.id) is None


def test_submission_cannot_be_replayed(user_service):
    user = user_service.create_user("a@example.com", "Alice")
    active = user_service.start_assessment(user.id)
    assert user_service.submit_assessment(active.assessment_id, {}) is not None
    assert user_service.submit_assessment(active.assessment_id, {}) is None


def test_restarting_replaces_unsubmitted_assessment(user_service):
    user = user_service.create_user("a@example.com", "Alice")
    first = user_service.start_assessment(user.id)
    second = user_service.start_assessment(user.id)
    assert user_service.get_active_assessment(first.assessment_id) is None
    assert user_service.get_active_assessment(second.assessment_id) is second
    assert user_service.submit_assessment(first.assessment_id, {}) is None


def test_abandoned_assessments_expire(user_service, monkeypatch):
    user = user_service.create_user("a@example.com", "Alice")
    active = user_service.start_assessment(user.id)
    later = active.started_at + user_service.assessment_ttl + timedelta(seconds=1)
    monkeypatch.setattr(user_service_module, "utcnow", lambda: later)

    assert user_service.submit_assessment(active.assessment_id, {}) is None
    assert user_service._active == {}
    assert not user_service.get_user(user.id).has_completed_initial_assessment


def test_assessed_user_cannot_restart(user_service):
    submission = _assessed_user(user_service)
    with pytest.raises(AssessmentAlreadyCompletedError):
        user_service.start_assessment(submission.user.id)


def test_complete_initial_assessment_for_unknown_user(user_service, assessment_engine, question_bank):
    result = assessment_engine.score_assessment(
        "a1", "ghost", {}, question_bank.balanced_assessment(1), utcnow()
    )
    assert user_service.complete_initial_assessment("ghost", result) is None


def test_update_progress_updates_plan_and_rating(user_service):
    submission = _assessed_user(user_service)
    user_id = submission.user.id

    updated_user, plan = user_service.update_progress(user_id, "comp-lesson-basics", 95)

    item = next(i for i in plan.items if i.content_id == "comp-lesson-basics")
    assert item.status == ProgressStatus.COMPLETED
    assert item.attempts == 1

    compression = next(r for r in updated_user.skill_ratings if r.category == SkillCategory.COMPRESSION)
    assert compression.rating == pytest.approx(1.5)
    assert compression.history[-1].source == "lesson"
    others = [r for r in updated_user.skill_ratings if r.category != SkillCategory.COMPRESSION]
    assert all(r.rating == 1.0 for r in others)

    assert user_service.get_learning_plan(user_id) == plan
    assert user_service.get_user(user_id) == updated_user


def test_update_progress_unknown_content(user_service):
    submission = _assessed_user(user_service)
    assert user_service.update_progress(submission.user.id, "no-such-content", 80) is None


def test_update_progress_without_plan(user_service):
    user = user_service.create_user("a@example.com", "Alice")
    assert user_service.update_progress(user.id, "eq-lesson-basics", 80) is None
    assert user_service.update_progress("ghost", "eq-lesson-basics", 80) is None


def test_concurrent_progress_updates_are_not_lost(user_service):
    submission = _assessed_user(user_service)
    user_id = submission.user.id

    def complete(content_id):
        user_service.update_progress(user_id, content_id, 100)

    content_ids = ["freq-lesson-basics", "eq-lesson-basics", "bal-lesson-basics", "comp-lesson-basics"]
    threads = [threading.Thread(target=complete, args=(cid,)) for cid in content_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    plan = user_service.get_learning_plan(user_id)
    completed = {i.content_id for i in plan.items if i.status == ProgressStatus.COMPLETED}
    assert completed == set(content_ids)
    ratings = {r.category: r.rating for r in user_service.get_user(user_id).skill_ratings}
    assert ratings[SkillCategory.SONG_STRUCTURE] == 1.0
    assert ratings[SkillCategory.EQ_SKILL] == pytest.approx(1.5)


def test_dashboard_before_assessment(user_service):
    user = user_service.create_user("a@example.com", "Alice")
    dashboard = user_service.get_dashboard(user.id)
    assert dashboard.current_plan is None
    assert dashboard.skill_ratings == []
    assert dashboard.recent_activity == []
    assert dashboard.recommendations == [
        "Complete your initial assessment to get a personalized learning plan!"
    ]
    assert user_service.get_dashboard("ghost") is None


def test_dashboard_after_assessment_and_progress(user_service):
    submission = _assessed_user(user_service)
    user_id = submission.user.id
    user_service.update_progress(user_id, "comp-lesson-basics", 95)

    dashboard = user_service.get_dashboard(user_id)
    ratings = {s.category: s for s in dashboard.skill_ratings}
    assert ratings[SkillCategory.COMPRESSION].rating == 1.5
    assert ratings[SkillCategory.COMPRESSION].trend == "improving"
    assert ratings[SkillCategory.EQ_SKILL].trend == "stable"
    assert ratings[SkillCategory.EQ_SKILL].category_name == "EQ Skills"

    plan = dashboard.current_plan
    assert plan.id == submission.learning_plan.id
    assert 0 < plan.progress < 25
    assert plan.current_item is not None
    assert len(plan.next_items) == 2

    activities = [entry.activity for entry in dashboard.recent_activity]
    assert activities[0] == "Completed: " + user_service.catalog.get("comp-lesson-basics").title
    assert "Completed initial skill assessment" in activities

    assert dashboard.recommendations == [
        "Focus on improving your Frequency Finder skills (1/5)",
        "You're just getting started! Complete a few lessons to build momentum.",
        "Your Compression skills are improving - great job!",
    ]


def test_dashboard_rounds_ratings(user_service, store):
    user = user_service.create_user("a@example.com", "Alice")
    stored = store.get_user(user.id)
    stored.skill_ratings = [
        SkillRating(
            category=SkillCategory.BALANCING,
            rating=2.625,
            last_assessed=stored.created_at,
            history=[SkillRatingHistory(rating=2.625, assessed_at=stored.created_at, source="quiz")],
        )
    ]
    stored.has_completed_initial_assessment = True
    store.put_user(stored)

    dashboard = user_service.get_dashboard(user.id)
    assert dashboard.skill_ratings[0].rating == 2.6
    assert dashboard.recommendations[0] == "Focus on improving your Mix Balancing skills (2.625/5)"


def test_recent_activity_limited_to_ten(user_service):
    submission = _assessed_user(user_service)
    user_id = submission.user.id
    plan = submission.learning_plan
    for item in plan.items:
        user_service.update_progress(user_id, item.content_id, 80)

    dashboard = user_service.get_dashboard(user_id)
    assert len(dashboard.recent_activity) == 10
    dates = [entry.date for entry in dashboard.recent_activity]
    assert dates == sorted(dates, reverse=True)


def test_service_emits_structured_events(user_service, caplog):
    caplog.set_level(logging.INFO, logger="learning_path")
    caplog.set_level(logging.INFO, logger="user_service")
    submission = _assessed_user(user_service)
    user_service.update_progress(submission.user.id, "eq-lesson-basics", 30)

    messages = " ".join(record.getMessage() for record in caplog.records)
    for event in (
        "assessment_generated",
        "assessment_scored",
        "learning_plan_created",
        "initial_assessment_completed",
        "learning_plan_updated",
        "skill_rating_updated",
        "progress_updated",
    ):
        assert f'"event": "{event}"' in messages


def test_clear_all(user_service):
    user = user_service.create_user("a@example.com", "Alice")
    active = user_service.start_assessment(user.id)
    user_service.clear_all()
    assert user_service.list_users() == []
    assert user_service.get_active_assessment(active.assessment_id) is None


def test_service_over_sqlite_store(sqlite_store, assessment_engine, planner, catalog):
    service = UserService(sqlite_store, assessment_engine, planner, catalog, questions_per_category=2)
    user = service.create_user("b@example.com", "Bob")
    active = service.start_assessment(user.id)
    assert len(active.questions) == 10
    submission = service.submit_assessment(active.assessment_id, {})
    assert submission is not None

    service.update_progress(user.id, "freq-lesson-basics", 100)
    plan = service.get_learning_plan(user.id)
    assert any(i.status == ProgressStatus.COMPLETED for i in plan.items)
    assert len(service.get_assessment_history(user.id)) == 1
