"""Persistence for learners, learning plans and assessment results.

Two interchangeable backends share one interface: :class:`InMemoryStore` for
tests and single-process development, and :class:`SQLiteStore`, which keeps
each entity as a JSON document in SQLite through :class:`SQLiteConnectionPool`.

Every write bumps a per-record version. ``put_*`` accepts an
``expected_version`` for optimistic concurrency; callers that wrap their
read-modify-write in :meth:`Store.locked` never observe a conflict.
"""
from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from db_pool import SQLiteConnectionPool
from env_validation import EnvironmentError, STORE_BACKENDS
from schemas import AssessmentResult, LearningPlan, User

logger = logging.getLogger(__name__)


class ConcurrentModificationError(RuntimeError):
    """Raised when a record changed since the version the caller read."""

    def __init__(self, kind: str, key: str, expected: int, actual: int) -> None:
        super().__init__(f"{kind} {key} is at version {actual}, expected {expected}")
        self.kind = kind
        self.key = key
        self.expected = expected
        self.actual = actual


class Store(ABC):
    def __init__(self) -> None:
        self._locks_guard = threading.Lock()
        # key -> [lock, holders and waiters]; dropped when the count reaches 0.
        self._locks: Dict[str, List[Any]] = {}

    @contextmanager
    def locked(self, key: str) -> Iterator[None]:
        """Serialise read-modify-write sequences on ``key`` within this process."""

        with self._locks_guard:
            entry = self._locks.setdefault(key, [threading.RLock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    # ------------------------------------------------------------------
    # users
    # ------------------------------------------------------------------
    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    def user_version(self, user_id: str) -> int:
        """Current version of ``user_id``; 0 when the user does not exist."""

    @abstractmethod
    def put_user(self, user: User, *, expected_version: Optional[int] = None) -> int: ...

    @abstractmethod
    def list_users(self) -> List[User]: ...

    # ------------------------------------------------------------------
    # learning plans
    # ------------------------------------------------------------------
    @abstractmethod
    def get_plan(self, plan_id: str) -> Optional[LearningPlan]: ...

    @abstractmethod
    def plan_version(self, plan_id: str) -> int: ...

    @abstractmethod
    def put_plan(self, plan: LearningPlan, *, expected_version: Optional[int] = None) -> int: ...

    # ------------------------------------------------------------------
    # assessment results
    # ------------------------------------------------------------------
    @abstractmethod
    def append_assessment(self, result: AssessmentResult) -> None: ...

    @abstractmethod
    def list_assessments(self, user_id: str) -> List[AssessmentResult]:
        """Results for ``user_id`` in the order they were appended."""

    @abstractmethod
    def clear(self) -> None: ...


def _check_version(kind: str, key: str, expected: Optional[int], actual: int) -> None:
    if expected is not None and expected != actual:
        raise ConcurrentModificationError(kind, key, expected, actual)


class InMemoryStore(Store):
    """Dictionary-backed store; models are copied on the way in and out."""

    def __init__(self) -> None:
        super().__init__()
        self._guard = threading.Lock()
        self._users: Dict[str, Tuple[User, int]] = {}
        self._plans: Dict[str, Tuple[LearningPlan, int]] = {}
        self._assessments: List[AssessmentResult] = []

    def get_user(self, user_id: str) -> Optional[User]:
        with self._guard:
            record = self._users.get(user_id)
        return record[0].model_copy(deep=True) if record else None

    def user_version(self, user_id: str) -> int:
        with self._guard:
            record = self._users.get(user_id)
        return record[1] if record else 0

    def put_user(self, user: User, *, expected_version: Optional[int] = None) -> int:
        with self._guard:
            current = self._users.get(user.id)
            version = current[1] if current else 0
            _check_version("User", user.id, expected_version, version)
            self._users[user.id] = (user.model_copy(deep=True), version + 1)
            return version + 1

    def list_users(self) -> List[User]:
        with self._guard:
            return [user.model_copy(deep=True) for user, _ in self._users.values()]

    def get_plan(self, plan_id: str) -> Optional[LearningPlan]:
        with self._guard:
            record = self._plans.get(plan_id)
        return record[0].model_copy(deep=True) if record else None

    def plan_version(self, plan_id: str) -> int:
        with self._guard:
            record = self._plans.get(plan_id)
        return record[1] if record else 0

    def put_plan(self, plan: LearningPlan, *, expected_version: Optional[int] = None) -> int:
        with self._guard:
            current = self._plans.get(plan.id)
            version = current[1] if current else 0
            _check_version("LearningPlan", plan.id, expected_version, version)
            self._plans[plan.id] = (plan.model_copy(deep=True), version + 1)
            return version + 1

    def append_assessment(self, result: AssessmentResult) -> None:
        with self._guard:
            self._assessments.append(result)

    def list_assessments(self, user_id: str) -> List[AssessmentResult]:
        with self._guard:
            return [result for result in self._assessments if result.user_id == user_id]

    def clear(self) -> None:
        with self._guard:
            self._users.clear()
            self._plans.clear()
            self._assessments.clear()


class SQLiteStore(Store):
    """JSON documents in SQLite, one table per entity."""

    def __init__(self, database: str, max_connections: int = 5) -> None:
        super().__init__()
        self.database = database
        self._pool = SQLiteConnectionPool(database, max_connections=max_connections)
        self._init_tables()
        logger.info("SQLite store ready at %s", database)

    def _exec(self, sql: str, params: Tuple = ()) -> None:
        with self._pool.get_connection() as con:
            con.execute(sql, params)
            con.commit()

    def _query(self, sql: str, params: Tuple = ()) -> list:
        with self._pool.get_connection() as con:
            return con.execute(sql, params).fetchall()

    def _init_tables(self) -> None:
        self._exec(
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                version INTEGER NOT NULL,
                document TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        self._exec(
            """
            CREATE TABLE IF NOT EXISTS learning_plans (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                version INTEGER NOT NULL,
                document TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        self._exec(
            """
            CREATE TABLE IF NOT EXISTS assessment_results (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                document TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        self._exec(
            "CREATE INDEX IF NOT EXISTS idx_assessment_results_user ON assessment_results(user_id)"
        )

    def _version(self, table: str, key: str) -> int:
        rows = self._query(f"SELECT version FROM {table} WHERE id = ?", (key,))
        return int(rows[0]["version"]) if rows else 0

    def _put_document(
        self,
        table: str,
        kind: str,
        key: str,
        columns: Dict[str, str],
        document: str,
        expected_version: Optional[int],
    ) -> int:
        names = ["id", "version", "document", *columns]
        placeholders = ", ".join("?" for _ in names)
        updates = ", ".join(f"{name} = excluded.{name}" for name in names[1:])
        with self._pool.get_connection() as con:
            con.execute("BEGIN IMMEDIATE")
            row = con.execute(f"SELECT version FROM {table} WHERE id = ?", (key,)).fetchone()
            version = int(row["version"]) if row else 0
            _check_version(kind, key, expected_version, version)
            con.execute(
                f"""
                INSERT INTO {table} ({", ".join(names)}) VALUES ({placeholders})
                ON CONFLICT(id) DO UPDATE SET {updates}, updated_at = CURRENT_TIMESTAMP
                """,
                (key, version + 1, document, *columns.values()),
            )
            con.commit()
        return version + 1

    def get_user(self, user_id: str) -> Optional[User]:
        rows = self._query("SELECT document FROM users WHERE id = ?", (user_id,))
        return User.model_validate_json(rows[0]["document"]) if rows else None

    def user_version(self, user_id: str) -> int:
        return self._version("users", user_id)

    def put_user(self, user: User, *, expected_version: Optional[int] = None) -> int:
        return self._put_document("users", "User", user.id, {}, user.model_dump_json(), expected_version)

    def list_users(self) -> List[User]:
        rows = self._query("SELECT document FROM users ORDER BY rowid")
        return [User.model_validate_json(row["document"]) for row in rows]

    def get_plan(self, plan_id: str) -> Optional[LearningPlan]:
        rows = self._query("SELECT document FROM learning_plans WHERE id = ?", (plan_id,))
        return LearningPlan.model_validate_json(rows[0]["document"]) if rows else None

    def plan_version(self, plan_id: str) -> int:
        return self._version("learning_plans", plan_id)

    def put_plan(self, plan: LearningPlan, *, expected_version: Optional[int] = None) -> int:
        return self._put_document(
            "learning_plans",
            "LearningPlan",
            plan.id,
            {"user_id": plan.user_id},
            plan.model_dump_json(),
            expected_version,
        )

    def append_assessment(self, result: AssessmentResult) -> None:
        self._exec(
            "INSERT INTO assessment_results (id, user_id, document) VALUES (?, ?, ?)",
            (result.id, result.user_id, result.model_dump_json()),
        )

    def list_assessments(self, user_id: str) -> List[AssessmentResult]:
        rows = self._query(
            "SELECT document FROM assessment_results WHERE user_id = ? ORDER BY seq",
            (user_id,),
        )
        return [AssessmentResult.model_validate_json(row["document"]) for row in rows]

    def clear(self) -> None:
        for table in ("users", "learning_plans", "assessment_results"):
            self._exec(f"DELETE FROM {table}")

    def close(self) -> None:
        self._pool.close_all()


def create_store(backend: Optional[str] = None, db_path: Optional[str] = None) -> Store:
    """Build the store selected by ``STORE_BACKEND`` (``memory`` or ``sqlite``)."""

    backend = (backend or os.getenv("STORE_BACKEND") or "memory").strip().lower()
    if backend not in STORE_BACKENDS:
        raise EnvironmentError(f"Unknown store backend: {backend}")
    if backend == "sqlite":
        return SQLiteStore(db_path or os.getenv("DB_PATH") or "data.db")
    return InMemoryStore()
