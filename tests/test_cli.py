"""
Tests for the CLI interface.
"""

import json
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from claudelytics.cli.main import EXIT_CODE_FAIL, EXIT_CODE_PASS, app

runner = CliRunner()

HAIKU = "claude-3-5-haiku-20241022"
NOW = datetime(2024, 1, 1, 9, tzinfo=timezone.utc)


def _line(timestamp, input_tokens, output_tokens, model=HAIKU):
    return json.dumps({
        "timestamp": timestamp,
        "message": {"usage": {"input_tokens": input_tokens, "output_tokens": output_tokens}, "model": model},
    })


@pytest.fixture
def log_root():
    """Create a log tree with one session and two events."""
    root = Path(tempfile.mkdtemp())
    session = root / "projects" / "p" / "s"
    session.mkdir(parents=True)
    (session / "x.jsonl").write_text(
        "\n".join([
            _line("2024-01-01T02:30:00Z", 100, 200),
            _line("2024-01-01T07:45:00Z", 150, 250),
        ]) + "\n",
        encoding="utf-8",
    )
    yield root
    shutil.rmtree(root, ignore_errors=True)


@pytest.fixture
def empty_root():
    root = Path(tempfile.mkdtemp())
    (root / "projects").mkdir()
    yield root
    shutil.rmtree(root, ignore_errors=True)


@pytest.fixture(autouse=True)
def fixed_now():
    """Pin wall-clock time and keep the user's config file out of tests."""
    with patch('claudelytics.cli.main._now', return_value=NOW), \
            patch('claudelytics.config.loader.DEFAULT_CONFIG_PATH', Path("/nonexistent/config.yaml")):
        yield


@pytest.fixture(autouse=True)
def pricing_cache():
    """Replace the on-disk pricing cache for both the CLI and the engine."""
    with patch('claudelytics.cli.main.PricingCache') as mock_cache:
        mock_cache.return_value.load.return_value = None
        with patch('claudelytics.ingest.driver.PricingCache', mock_cache):
            yield mock_cache


def _invoke(root, *args):
    return runner.invoke(app, ["--path", str(root), "--json", *args])


class TestReportCommands:
    """Test report commands against a real log tree."""

    def test_daily_json(self, log_root):
        result = _invoke(log_root, "daily")
        assert result.exit_code == EXIT_CODE_PASS
        data = json.loads(result.output)
        assert data["daily"][0]["date"] == "2024-01-01"
        assert data["totals"]["total_tokens"] == 700
        assert data["totals"]["total_cost"] == pytest.approx(0.002)

    def test_daily_table(self, log_root):
        result = runner.invoke(app, ["--path", str(log_root), "daily"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Daily Usage" in result.output
        assert "2024-01-01" in result.output

    def test_session_json(self, log_root):
        data = json.loads(_invoke(log_root, "session").output)
        assert data["sessions"][0]["project_path"] == "p"
        assert data["sessions"][0]["session_id"] == "s"

    def test_monthly_sorting_option(self, log_root):
        result = _invoke(log_root, "monthly", "--sort-by", "cost", "--sort-order", "asc")
        assert result.exit_code == EXIT_CODE_PASS
        assert json.loads(result.output)["monthly"][0]["month"] == "January"

    def test_blocks_json(self, log_root):
        data = json.loads(_invoke(log_root, "blocks").output)
        assert [b["time_range"] for b in data["blocks"]] == ["00:00-05:00", "05:00-10:00"]
        assert data["peak_block"]["total_tokens"] == 400

    def test_session_blocks_json(self, log_root):
        result = _invoke(log_root, "session-blocks", "--block-hours", "4", "--token-limit", "10000")
        assert result.exit_code == EXIT_CODE_PASS
        data = json.loads(result.output)
        assert data["config"]["block_hours"] == 4
        # 08:00-12:00 has no usage, so no block is active at 09:00
        assert data["active_blocks"] == 0
        assert data["total_blocks"] == 2

    def test_session_blocks_bad_hours(self, log_root):
        result = _invoke(log_root, "session-blocks", "--block-hours", "30")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "between 1 and 24" in result.output

    def test_burn_rate_json(self, log_root):
        data = json.loads(_invoke(log_root, "burn-rate", "--hours", "8").output)
        assert data["tokens_per_hour"] == pytest.approx(700 / 8)
        assert data["is_approximation"] is False

    def test_burn_rate_bad_hours(self, log_root):
        assert _invoke(log_root, "burn-rate", "--hours", "0").exit_code == EXIT_CODE_FAIL

    def test_projections_json(self, log_root):
        data = json.loads(_invoke(log_root, "projections", "--days", "3").output)
        assert len(data["cost"]["projections"]) == 3
        assert data["tokens"]["daily_average_tokens"] == 700

    def test_analytics_json(self, log_root):
        result = _invoke(log_root, "analytics", "--daily-budget", "5")
        assert result.exit_code == EXIT_CODE_PASS
        data = json.loads(result.output)
        assert data["budget_projections"]["daily_projection"]["budget_limit"] == 5.0
        assert "alerts" in data

    def test_analytics_bad_budget(self, log_root):
        assert _invoke(log_root, "analytics", "--daily-budget", "-1").exit_code == EXIT_CODE_FAIL

    def test_patterns_json(self, log_root):
        data = json.loads(_invoke(log_root, "patterns").output)
        assert data["time_of_day"]["peak_hour"] == 7
        assert data["frequency"]["current_streak"] == 1

    def test_model_filter(self, log_root):
        data = json.loads(_invoke(log_root, "--model", "opus", "daily").output)
        assert data["daily"] == []

    def test_today_flag(self, log_root):
        data = json.loads(runner.invoke(app, ["--path", str(log_root), "--json", "--today", "daily"]).output)
        assert data["totals"]["total_tokens"] == 700


class TestErrorsAndEmptyData:
    """Test exit codes for fatal errors and empty inputs."""

    def test_missing_directory(self, empty_root):
        result = runner.invoke(app, ["--path", str(empty_root / "missing"), "daily"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Directory not found" in result.output

    def test_empty_projects_is_not_an_error(self, empty_root):
        result = runner.invoke(app, ["--path", str(empty_root), "daily"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "No usage data found" in result.output

    def test_bad_since(self, log_root):
        result = runner.invoke(app, ["--path", str(log_root), "--since", "2024-01-01", "daily"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "YYYYMMDD" in result.output

    def test_bad_workers(self, log_root):
        result = runner.invoke(app, ["--path", str(log_root), "--workers", "0", "daily"])
        assert result.exit_code == EXIT_CODE_FAIL

    def test_missing_config_file(self, log_root):
        result = runner.invoke(app, ["--config", str(log_root / "nope.yaml"), "daily"])
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Config file not found" in result.output

    def test_no_command(self):
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_PASS
        assert "--help" in result.output


class TestExportCommand:
    """Test the export command."""

    def test_export_all(self, log_root):
        base = log_root / "out" / "usage"
        result = runner.invoke(app, ["--path", str(log_root), "export", "-o", str(base)])
        assert result.exit_code == EXIT_CODE_PASS
        assert (log_root / "out" / "usage.daily.csv").exists()
        assert (log_root / "out" / "usage.sessions.csv").exists()
        assert (log_root / "out" / "usage.summary.csv").exists()

    def test_export_summary_only(self, log_root):
        base = log_root / "usage"
        result = runner.invoke(app, ["--path", str(log_root), "export", "--summary", "-o", str(base)])
        assert result.exit_code == EXIT_CODE_PASS
        assert (log_root / "usage.summary.csv").exists()
        assert not (log_root / "usage.daily.csv").exists()


class TestPricingCommand:
    """Test the pricing command."""

    def test_table(self):
        result = runner.invoke(app, ["pricing"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "claude-3-5-haiku-20241022" in result.output

    def test_single_model(self):
        result = runner.invoke(app, ["pricing", "--model", "sonnet-4"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "$3.00" in result.output

    def test_unknown_model(self):
        result = runner.invoke(app, ["pricing", "--model", "gpt-4"])
        assert result.exit_code == EXIT_CODE_FAIL

    def test_write_cache(self, pricing_cache):
        pricing_cache.return_value.save.return_value = Path("/tmp/pricing_cache.json")
        result = runner.invoke(app, ["pricing", "--write-cache"])
        assert result.exit_code == EXIT_CODE_PASS
        pricing_cache.return_value.save.assert_called_once()

    def test_clear_cache(self, pricing_cache):
        pricing_cache.return_value.clear.return_value = True
        result = runner.invoke(app, ["pricing", "--clear-cache"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "cleared" in result.output
