"""Offline validator for the content library and assessment question bank."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Mapping, Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from content_catalog import CatalogValidationError, ContentCatalog
from question_bank import QuestionBank
from skills import CATEGORY_ORDER, category_display_name

# Every category needs at least one of each for a usable learning plan.
REQUIRED_CONTENT_KEYS: tuple[str, ...] = ("lessons", "quizzes")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--content",
        type=str,
        default=None,
        help="Path to the content library JSON (default: CONTENT_LIBRARY_PATH or data/content_library.json)",
    )
    parser.add_argument(
        "--questions",
        type=str,
        default=None,
        help="Path to the question bank JSON (default: QUESTION_BANK_PATH or data/question_bank.json)",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Optional path to write the JSON report",
    )
    return parser


def _write_output(report: dict, output_path: str | None) -> None:
    payload = json.dumps(report, indent=2, ensure_ascii=False)
    if output_path:
        Path(output_path).write_text(payload + "\n", encoding="utf-8")
    print(payload)


def _print_coverage(categories: Mapping[str, Mapping[str, int]]) -> None:
    print("Category coverage:")
    for category, stats in categories.items():
        print(
            f"  {category}: {stats['total_content']} content "
            f"({stats['lessons']} lessons, {stats['mini_games']} mini-games, {stats['quizzes']} quizzes), "
            f"{stats['questions']} questions"
        )


def compute_report(catalog: ContentCatalog, bank: QuestionBank) -> dict:
    categories: dict[str, dict] = {}
    for summary in catalog.category_summary():
        category = summary["category"]
        categories[category] = {
            **summary,
            "name": category_display_name(category),
            "questions": len(bank.by_category(category)),
        }
    return {
        "content_items": len(catalog.items),
        "questions": len(bank.questions),
        "categories": categories,
    }


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        catalog = ContentCatalog(args.content)
        bank = QuestionBank(args.questions)
    except (FileNotFoundError, CatalogValidationError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    report = compute_report(catalog, bank)

    failures: list[str] = []
    for category in CATEGORY_ORDER:
        stats = report["categories"][category.value]
        for key in REQUIRED_CONTENT_KEYS:
            if stats[key] == 0:
                failures.append(f"Category '{category.value}' has no {key}.")

    if failures:
        for message in failures:
            print(message, file=sys.stderr)

    _print_coverage(report["categories"])
    _write_output(report, args.output)
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
