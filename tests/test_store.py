import threading
from datetime import datetime, timezone

import pytest

from env_validation import EnvironmentError
from schemas import AssessmentResult, LearningPlan, LearningPlanItem, SkillRating, User
from skills import SkillCategory
from store import ConcurrentModificationError, InMemoryStore, SQLiteStore, create_store

WHEN = datetime(2026, 4, 1, 8, 30, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, store, sqlite_store):
    return store if request.param == "memory" else sqlite_store


def make_user(user_id: str = "u1") -> User:
    return User(
        id=user_id,
        email=f"{user_id}@example.com",
        display_name=user_id.upper(),
        created_at=WHEN,
        last_active_at=WHEN,
        skill_ratings=[SkillRating(category=SkillCategory.EQ_SKILL, rating=2.5, last_assessed=WHEN)],
    )


def make_plan(plan_id: str = "p1", user_id: str = "u1") -> LearningPlan:
    return LearningPlan(
        id=plan_id,
        user_id=user_id,
        created_at=WHEN,
        updated_at=WHEN,
        items=[LearningPlanItem(id="i1", content_id="eq-lesson-basics", order=0)],
        focus_areas=[SkillCategory.EQ_SKILL],
    )


def make_result(result_id: str, user_id: str = "u1") -> AssessmentResult:
    return AssessmentResult(id=result_id, user_id=user_id, started_at=WHEN, completed_at=WHEN, overall_score=40)


def test_user_round_trip(any_store):
    assert any_store.get_user("u1") is None
    assert any_store.user_version("u1") == 0

    user = make_user()
    assert any_store.put_user(user) == 1
    loaded = any_store.get_user("u1")
    assert loaded == user
    assert loaded.skill_ratings[0].category == SkillCategory.EQ_SKILL
    assert any_store.user_version("u1") == 1


def test_list_users_keeps_insertion_order(any_store):
    for user_id in ("a", "b", "c"):
        any_store.put_user(make_user(user_id))
    any_store.put_user(make_user("a").model_copy(update={"display_name": "renamed"}))
    users = any_store.list_users()
    assert [u.id for u in users] == ["a", "b", "c"]
    assert users[0].display_name == "renamed"


def test_plan_round_trip(any_store):
    plan = make_plan()
    any_store.put_plan(plan)
    assert any_store.get_plan("p1") == plan
    assert any_store.get_plan("missing") is None


def test_versions_detect_conflicting_writes(any_store):
    any_store.put_user(make_user(), expected_version=0)
    with pytest.raises(ConcurrentModificationError) as excinfo:
        any_store.put_user(make_user(), expected_version=0)
    assert excinfo.value.actual == 1

    assert any_store.put_plan(make_plan(), expected_version=0) == 1
    assert any_store.put_plan(make_plan(), expected_version=1) == 2
    with pytest.raises(ConcurrentModificationError):
        any_store.put_plan(make_plan(), expected_version=1)
    assert any_store.plan_version("p1") == 2


def test_assessments_are_appended_per_user(any_store):
    any_store.append_assessment(make_result("r1"))
    any_store.append_assessment(make_result("r2", user_id="other"))
    any_store.append_assessment(make_result("r3"))
    assert [r.id for r in any_store.list_assessments("u1")] == ["r1", "r3"]
    assert any_store.list_assessments("nobody") == []


def test_clear_removes_everything(any_store):
    any_store.put_user(make_user())
    any_store.put_plan(make_plan())
    any_store.append_assessment(make_result("r1"))
    any_store.clear()
    assert any_store.list_users() == []
    assert any_store.get_plan("p1") is None
    assert any_store.list_assessments("u1") == []


def test_in_memory_store_returns_copies(store):
    store.put_user(make_user())
    loaded = store.get_user("u1")
    loaded.skill_ratings[0].rating = 5.0
    assert store.get_user("u1").skill_ratings[0].rating == 2.5


def test_locked_serialises_read_modify_write(any_store):
    any_store.put_user(make_user())

    def bump():
        for _ in range(20):
            with any_store.locked("u1"):
                user = any_store.get_user("u1")
                version = any_store.user_version("u1")
                user.skill_ratings[0].rating += 0.125
                any_store.put_user(user, expected_version=version)

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert any_store.user_version("u1") == 81
    assert any_store.get_user("u1").skill_ratings[0].rating == pytest.approx(2.5 + 80 * 0.125)


def test_locked_is_reentrant(store):
    with store.locked("u1"):
        with store.locked("u1"):
            store.put_user(make_user())
    assert store.user_version("u1") == 1


def test_locks_are_released_after_use(any_store):
    for n in range(50):
        with any_store.locked(f"user-{n}"):
            with any_store.locked(f"user-{n}"):
                assert f"user-{n}" in any_store._locks
    assert any_store._locks == {}

    with pytest.raises(RuntimeError):
        with any_store.locked("u1"):
            raise RuntimeError("boom")
    assert any_store._locks == {}


def test_sqlite_store_persists_across_instances(tmp_path):
    path = str(tmp_path / "persist.db")
    first = SQLiteStore(path)
    first.put_user(make_user())
    first.close()

    second = SQLiteStore(path)
    assert second.get_user("u1") == make_user()
    second.close()


def test_create_store_selects_backend(monkeypatch, tmp_path):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    assert isinstance(create_store(), InMemoryStore)

    monkeypatch.setenv("STORE_BACKEND", "sqlite")
    monkeypatch.setenv("DB_PATH", str(tmp_path / "env.db"))
    sqlite_store = create_store()
    assert isinstance(sqlite_store, SQLiteStore)
    assert sqlite_store.database == str(tmp_path / "env.db")
    sqlite_store.close()

    with pytest.raises(EnvironmentError):
        create_store("redis")
