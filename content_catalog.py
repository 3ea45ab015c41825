"""Read-only catalog of lessons, mini-games, practice sets and quizzes."""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from schemas import ContentItem
from skills import CATEGORY_ORDER, ContentType, DifficultyLevel, SkillCategory

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_CONTENT_PATH = DATA_DIR / "content_library.json"


class CatalogValidationError(ValueError):
    """Raised when a static catalog file fails validation at load time."""


def load_json_entries(path: str | Path, label: str) -> List[Dict[str, Any]]:
    """Read a JSON list of objects from ``path``, failing loudly on bad shape."""

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"{label} file not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            raw = json.load(fh)
        except json.JSONDecodeError as exc:
            raise CatalogValidationError(f"{label} file is not valid JSON: {exc}") from exc

    if not isinstance(raw, list):
        raise CatalogValidationError(f"{label} root must be a JSON list")
    for idx, entry in enumerate(raw, start=1):
        if not isinstance(entry, dict):
            raise CatalogValidationError(f"{label} entry #{idx} must be an object")
    return raw


def describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


class ContentCatalog:
    """Validated, immutable content library with precomputed lookups."""

    def __init__(self, path: str | Path | None = None) -> None:
        if path is None:
            path = os.getenv("CONTENT_LIBRARY_PATH") or DEFAULT_CONTENT_PATH
        self.path = Path(path)
        entries = load_json_entries(self.path, "Content library")
        self._index(self._validate(entries))
        logger.info("Loaded %d content items from %s", len(self._items), self.path)

    # ------------------------------------------------------------------
    # loading & validation
    # ------------------------------------------------------------------
    @staticmethod
    def _validate(entries: Iterable[Mapping[str, Any]]) -> List[ContentItem]:
        items: List[ContentItem] = []
        seen_ids: set[str] = set()
        for entry in entries:
            entry_id = entry.get("id")
            try:
                item = ContentItem.model_validate(entry)
            except ValidationError as exc:
                raise CatalogValidationError(
                    f"Content {entry_id!r} is invalid: {describe_validation_error(exc)}"
                ) from exc

            if not item.id.strip():
                raise CatalogValidationError("Content entries require a non-empty 'id'")
            if item.id in seen_ids:
                raise CatalogValidationError(f"Duplicate content id detected: {item.id}")
            seen_ids.add(item.id)
            items.append(item)

        for item in items:
            unknown = [pre for pre in item.prerequisites if pre not in seen_ids]
            if unknown:
                raise CatalogValidationError(
                    f"Content {item.id} lists unknown prerequisites: {', '.join(unknown)}"
                )
            if item.id in item.prerequisites:
                raise CatalogValidationError(f"Content {item.id} lists itself as a prerequisite")

        covered = {item.category for item in items}
        missing = [category.value for category in CATEGORY_ORDER if category not in covered]
        if missing:
            raise CatalogValidationError(
                f"Content library has no content for categories: {', '.join(missing)}"
            )
        return items

    def _index(self, items: Sequence[ContentItem]) -> None:
        self._items: Tuple[ContentItem, ...] = tuple(items)
        self._by_id: Mapping[str, ContentItem] = MappingProxyType({item.id: item for item in items})
        by_category: Dict[SkillCategory, Tuple[ContentItem, ...]] = {}
        for category in CATEGORY_ORDER:
            by_category[category] = tuple(item for item in items if item.category == category)
        self._by_category: Mapping[SkillCategory, Tuple[ContentItem, ...]] = MappingProxyType(by_category)

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    @property
    def items(self) -> Tuple[ContentItem, ...]:
        return self._items

    def get(self, content_id: str) -> Optional[ContentItem]:
        return self._by_id.get(content_id)

    def by_category(self, category: SkillCategory | str) -> Tuple[ContentItem, ...]:
        try:
            return self._by_category[SkillCategory(category)]
        except ValueError:
            return ()

    def by_type(self, content_type: ContentType | str) -> List[ContentItem]:
        content_type = ContentType(content_type)
        return [item for item in self._items if item.content_type == content_type]

    def by_difficulty(self, difficulty: DifficultyLevel | int) -> List[ContentItem]:
        return [item for item in self._items if item.difficulty == difficulty]

    def for_skill_level(
        self,
        category: SkillCategory | str,
        max_difficulty: DifficultyLevel | int,
    ) -> List[ContentItem]:
        """Content in ``category`` at or below ``max_difficulty``, in catalog order."""

        return [item for item in self.by_category(category) if item.difficulty <= max_difficulty]

    def filter_items(
        self,
        *,
        category: SkillCategory | str | None = None,
        content_type: ContentType | str | None = None,
        difficulty: int | None = None,
    ) -> List[ContentItem]:
        results: Sequence[ContentItem] = self._items
        if category is not None:
            results = self.by_category(category)
        if content_type is not None:
            wanted = ContentType(content_type)
            results = [item for item in results if item.content_type == wanted]
        if difficulty is not None:
            results = [item for item in results if item.difficulty == difficulty]
        return list(results)

    def category_summary(self) -> List[Dict[str, Any]]:
        """Per-category counts by content type and difficulty."""

        summary: List[Dict[str, Any]] = []
        for category in CATEGORY_ORDER:
            content = self.by_category(category)
            by_type = {content_type: 0 for content_type in ContentType}
            by_difficulty = {level: 0 for level in DifficultyLevel}
            for item in content:
                by_type[item.content_type] += 1
                by_difficulty[item.difficulty] += 1
            summary.append(
                {
                    "category": category.value,
                    "total_content": len(content),
                    "lessons": by_type[ContentType.LESSON],
                    "mini_games": by_type[ContentType.MINI_GAME],
                    "quizzes": by_type[ContentType.QUIZ],
                    "practice": by_type[ContentType.PRACTICE],
                    "difficulties": {level.name.lower(): count for level, count in by_difficulty.items()},
                }
            )
        return summary

    # ------------------------------------------------------------------
    # alternative constructors
    # ------------------------------------------------------------------
    @classmethod
    def from_entries(cls, entries: Sequence[Mapping[str, Any]]) -> "ContentCatalog":
        catalog = cls.__new__(cls)
        catalog.path = Path("<in-memory>")
        catalog._index(cls._validate(entries))
        return catalog


_DEFAULT_CATALOG: Optional[ContentCatalog] = None


def get_default_catalog() -> ContentCatalog:
    global _DEFAULT_CATALOG
    if _DEFAULT_CATALOG is None:
        _DEFAULT_CATALOG = ContentCatalog()
    return _DEFAULT_CATALOG
