"""
Tests for the command-line interface.

The grading oracle is replaced with the in-memory fake; everything else
(settings, quota store, controller, renderer) runs for real.
"""

import json
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from corrector.config import get_settings
from corrector.errors import OracleUnavailable
from corrector.main import app

from conftest import FakeOracle

runner = CliRunner()


@pytest.fixture
def cli_env(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Point the settings at a temporary directory and a fast debounce."""
    monkeypatch.setenv("ORACLE_API_KEY", "test-api-key-for-testing")
    monkeypatch.setenv("OUTPUT_DIRECTORY", str(temp_dir / "output"))
    monkeypatch.setenv("SUMMARY_DEBOUNCE_MS", "10")
    monkeypatch.setenv("INITIAL_QUOTA", "1")
    get_settings.cache_clear()
    yield temp_dir
    get_settings.cache_clear()


@pytest.fixture
def exam_path(cli_env: Path) -> Path:
    path = cli_env / "exam.png"
    path.write_bytes(b"\x89PNG fake image")
    return path


class TestPackagesCommand:
    """Tests for the packages command."""

    def test_lists_packages(self) -> None:
        result = runner.invoke(app, ["packages"])

        assert result.exit_code == 0
        for label in ("Basic", "Popular", "Pro", "School"):
            assert label in result.output


class TestGradeCommand:
    """Tests for the grade command."""

    def test_grade_and_export(self, exam_path: Path, cli_env: Path, fake_oracle: FakeOracle) -> None:
        with patch("corrector.main.LLMGradingOracle", MagicMock(return_value=fake_oracle)):
            result = runner.invoke(
                app,
                ["grade", str(exam_path), "-c", "1) b", "-r", "2", "-o", str(cli_env), "-f", "json"],
            )

        assert result.exit_code == 0, result.output
        # Item 2 re-evaluated from 0 to 10 points
        assert "15.5 / 10" in result.output

        reports = list(cli_env.glob("correction_ana_souza_*.json"))
        assert len(reports) == 1
        data = json.loads(reports[0].read_text(encoding="utf-8"))
        assert data["items"][2]["verdict"]["score"] == 10
        assert data["summary"] == "Updated summary"
        assert fake_oracle.grade_calls[0][2] == "1) b"

    def test_context_file(self, exam_path: Path, cli_env: Path, fake_oracle: FakeOracle) -> None:
        context_file = cli_env / "key.txt"
        context_file.write_text("Answer key from file", encoding="utf-8")

        with patch("corrector.main.LLMGradingOracle", MagicMock(return_value=fake_oracle)):
            result = runner.invoke(app, ["grade", str(exam_path), "--context-file", str(context_file)])

        assert result.exit_code == 0, result.output
        assert fake_oracle.grade_calls[0][2] == "Answer key from file"

    def test_missing_exam_file(self, cli_env: Path) -> None:
        result = runner.invoke(app, ["grade", str(cli_env / "missing.png")])

        assert result.exit_code == 1
        assert "Exam File Error" in result.output

    def test_oracle_failure(self, exam_path: Path, fake_oracle: FakeOracle) -> None:
        fake_oracle.grade_error = OracleUnavailable("service down")

        with patch("corrector.main.LLMGradingOracle", MagicMock(return_value=fake_oracle)):
            result = runner.invoke(app, ["grade", str(exam_path)])

        assert result.exit_code == 1
        assert "Grading Service Error" in result.output

    def test_no_quota(
        self, exam_path: Path, fake_oracle: FakeOracle, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("INITIAL_QUOTA", "0")
        get_settings.cache_clear()

        with patch("corrector.main.LLMGradingOracle", MagicMock(return_value=fake_oracle)):
            result = runner.invoke(app, ["grade", str(exam_path)])

        assert result.exit_code == 1
        assert "Insufficient Quota" in result.output
        assert fake_oracle.grade_calls == []

    def test_reevaluate_context_row(self, exam_path: Path, fake_oracle: FakeOracle) -> None:
        """A rejected re-evaluation is reported but the graded exam is still shown."""
        with patch("corrector.main.LLMGradingOracle", MagicMock(return_value=fake_oracle)):
            result = runner.invoke(app, ["grade", str(exam_path), "-r", "0"])

        assert result.exit_code == 0, result.output
        assert "Re-evaluation of item 0 failed" in result.output
        assert "Final Score" in result.output
        assert "5.5 / 10" in result.output

    def test_reevaluation_failure_keeps_graded_result(
        self, exam_path: Path, cli_env: Path, fake_oracle: FakeOracle
    ) -> None:
        """The oracle failing on a re-evaluation doesn't discard the paid-for grading."""
        fake_oracle.reevaluate_error = OracleUnavailable("transient")

        with patch("corrector.main.LLMGradingOracle", MagicMock(return_value=fake_oracle)):
            result = runner.invoke(
                app, ["grade", str(exam_path), "-r", "2", "-o", str(cli_env), "-f", "json"]
            )

        assert result.exit_code == 0, result.output
        assert "Re-evaluation of item 2 failed" in result.output
        assert "Final Score" in result.output

        reports = list(cli_env.glob("correction_ana_souza_*.json"))
        assert len(reports) == 1
        data = json.loads(reports[0].read_text(encoding="utf-8"))
        assert data["items"][2]["verdict"]["score"] == 0
        assert data["total_score"] == 5.5

    def test_partial_reevaluation_failure(self, exam_path: Path, fake_oracle: FakeOracle) -> None:
        """Successful re-evaluations are applied even when another one is rejected."""
        with patch("corrector.main.LLMGradingOracle", MagicMock(return_value=fake_oracle)):
            result = runner.invoke(app, ["grade", str(exam_path), "-r", "0", "-r", "2"])

        assert result.exit_code == 0, result.output
        assert "Re-evaluation of item 0 failed" in result.output
        assert "Re-evaluation of item 2 failed" not in result.output
        assert "15.5 / 10" in result.output
