import os

import pytest

from env_validation import EnvironmentError, get_env_int, validate_environment


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in (
        "STORE_BACKEND",
        "DB_PATH",
        "CONTENT_LIBRARY_PATH",
        "QUESTION_BANK_PATH",
        "QUESTIONS_PER_CATEGORY",
    ):
        monkeypatch.delenv(var, raising=False)


def test_defaults_are_applied(monkeypatch):
    # validate_environment writes into os.environ; register the keys so they are undone.
    monkeypatch.setenv("STORE_BACKEND", "")
    monkeypatch.setenv("DB_PATH", "")
    validate_environment()
    assert os.environ["STORE_BACKEND"] == "memory"
    assert os.environ["DB_PATH"] == "data.db"


def test_unknown_backend_rejected(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "postgres")
    monkeypatch.setenv("DB_PATH", "x.db")
    with pytest.raises(EnvironmentError, match="Invalid STORE_BACKEND"):
        validate_environment()


def test_missing_catalog_path_rejected(monkeypatch, tmp_path):
    monkeypatch.setenv("STORE_BACKEND", "sqlite")
    monkeypatch.setenv("DB_PATH", str(tmp_path / "x.db"))
    monkeypatch.setenv("CONTENT_LIBRARY_PATH", str(tmp_path / "missing.json"))
    with pytest.raises(EnvironmentError, match="CONTENT_LIBRARY_PATH"):
        validate_environment()


@pytest.mark.parametrize("value", ["0", "-2", "three"])
def test_questions_per_category_must_be_positive_int(monkeypatch, value):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("DB_PATH", "x.db")
    monkeypatch.setenv("QUESTIONS_PER_CATEGORY", value)
    with pytest.raises(EnvironmentError, match="QUESTIONS_PER_CATEGORY"):
        validate_environment()


def test_get_env_int(monkeypatch):
    assert get_env_int("QUESTIONS_PER_CATEGORY", 3) == 3
    monkeypatch.setenv("QUESTIONS_PER_CATEGORY", " ")
    assert get_env_int("QUESTIONS_PER_CATEGORY", 3) == 3
    monkeypatch.setenv("QUESTIONS_PER_CATEGORY", "4")
    assert get_env_int("QUESTIONS_PER_CATEGORY", 3) == 4

