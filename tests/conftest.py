import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def catalog():
    from content_catalog import ContentCatalog

    return ContentCatalog()


@pytest.fixture
def question_bank():
    from question_bank import QuestionBank

    return QuestionBank()


@pytest.fixture
def assessment_engine(question_bank):
    from engines.assessment import AssessmentEngine

    return AssessmentEngine(question_bank)


@pytest.fixture
def planner(catalog):
    from learning_path import AdaptiveLearningPlanner

    return AdaptiveLearningPlanner(catalog)


@pytest.fixture
def store():
    from store import InMemoryStore

    return InMemoryStore()


@pytest.fixture
def sqlite_store(tmp_path):
    from store import SQLiteStore

    db_store = SQLiteStore(str(tmp_path / "test.db"))
    yield db_store
    db_store.close()


@pytest.fixture
def user_service(store, assessment_engine, planner, catalog):
    from user_service import UserService

    return UserService(store, assessment_engine, planner, catalog, questions_per_category=3)


@pytest.fixture
def all_correct_answers(question_bank):
    """Correct submission for every question, in the shape learners send it."""

    answers = {}
    for question in question_bank.questions:
        expected = question.correct_answer
        answers[question.id] = list(expected) if isinstance(expected, tuple) else expected
    return answers
