import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from content_catalog import DEFAULT_CONTENT_PATH
from scripts import validate_catalog


def test_validator_passes_with_defaults(capsys):
    exit_code = validate_catalog.main([])
    captured = capsys.readouterr()
    assert exit_code == 0
    lines = captured.out.splitlines()
    assert lines[0] == "Category coverage:"
    assert lines[1] == "  FREQUENCY_FINDER: 6 content (3 lessons, 2 mini-games, 1 quizzes), 5 questions"
    assert any(line.strip().startswith('"categories"') for line in lines)
    assert captured.err == ""


def test_validator_writes_report(tmp_path, capsys):
    output = tmp_path / "report.json"
    assert validate_catalog.main(["--output", str(output)]) == 0
    capsys.readouterr()

    report = json.loads(output.read_text(encoding="utf-8"))
    assert report["content_items"] == 28
    assert report["questions"] == 25
    assert report["categories"]["EQ_SKILL"]["name"] == "EQ Skills"


def test_validator_fails_on_invalid_content(tmp_path, capsys):
    broken = tmp_path / "content.json"
    broken.write_text(json.dumps([{"id": "x"}]), encoding="utf-8")
    assert validate_catalog.main(["--content", str(broken)]) == 1
    assert "invalid" in capsys.readouterr().err


def test_validator_fails_on_missing_file(tmp_path, capsys):
    assert validate_catalog.main(["--questions", str(tmp_path / "missing.json")]) == 1
    assert "not found" in capsys.readouterr().err


def test_validator_flags_category_without_quiz(tmp_path, capsys):
    entries = json.loads(DEFAULT_CONTENT_PATH.read_text(encoding="utf-8"))
    entries = [e for e in entries if e["id"] != "bal-quiz-comprehensive"]
    trimmed = tmp_path / "content.json"
    trimmed.write_text(json.dumps(entries), encoding="utf-8")

    assert validate_catalog.main(["--content", str(trimmed)]) == 1
    assert "Category 'BALANCING' has no quizzes." in capsys.readouterr().err
