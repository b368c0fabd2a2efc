"""
Tests for the CLI interface.
"""
import os
import shutil
import tempfile
from datetime import timedelta
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from skill_tracker.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from skill_tracker.core.ingest import ingest_event
from skill_tracker.storage.repository import initialize_schema, utc_now

runner = CliRunner()


@pytest.fixture
def workspace():
    """Temporary directory holding a config file and its database."""
    temp_dir = tempfile.mkdtemp()
    db_path = os.path.join(temp_dir, "usage.db")
    config_path = os.path.join(temp_dir, "tracker.yaml")
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump({"database": {"path": db_path}}, f)
    yield config_path, db_path
    shutil.rmtree(temp_dir, ignore_errors=True)


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self):
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_PASS
        assert "--help" in result.output

    def test_init_creates_database(self, workspace):
        config_path, db_path = workspace

        result = runner.invoke(app, ["init", "--config", config_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized" in result.output
        assert os.path.exists(db_path)

    def test_init_with_bad_config_fails(self, workspace):
        config_path, _ = workspace
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump({"database": {"path": 5}}, f)

        result = runner.invoke(app, ["init", "--config", config_path])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error initializing database" in result.output

    def test_report_without_table(self, workspace):
        config_path, _ = workspace

        result = runner.invoke(app, ["report", "--config", config_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "No usage data found" in result.output

    def test_report_with_data(self, workspace):
        config_path, db_path = workspace
        initialize_schema(db_path)
        recorded_at = utc_now() - timedelta(hours=1)
        ingest_event({"tool_name": "query_data", "status": "success", "duration_ms": 40},
                     "u1", db_path=db_path, recorded_at=recorded_at)
        ingest_event({"tool_name": "query_data", "status": "error", "duration_ms": 60,
                      "error_type": "ValueError", "error_message": "Missing required field"},
                     "u2", db_path=db_path, recorded_at=recorded_at)

        result = runner.invoke(app, ["report", "--config", config_path, "--days", "7"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Total invocations: 2" in result.output
        assert "Success rate: 50.00%" in result.output
        assert "query_data" in result.output
        assert "Weekly active users: 2" in result.output
        assert "ValueError" in result.output

    def test_report_prints_bracketed_text_literally(self, workspace):
        config_path, db_path = workspace
        initialize_schema(db_path)
        ingest_event({"tool_name": "[red]lookup", "status": "error",
                      "error_type": "KeyError", "error_message": "bad key [/]"},
                     "u1", db_path=db_path, recorded_at=utc_now() - timedelta(hours=1))

        result = runner.invoke(app, ["report", "--config", config_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "bad key [/]" in result.output
        assert "[red]lookup" in result.output

    def test_report_empty_store(self, workspace):
        config_path, db_path = workspace
        initialize_schema(db_path)

        result = runner.invoke(app, ["report", "--config", config_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Total invocations: 0" in result.output
        assert "No recent errors" in result.output

    def test_serve_runs_uvicorn_with_config(self, workspace):
        config_path, _ = workspace

        with patch("uvicorn.run") as mock_run:
            result = runner.invoke(app, ["serve", "--config", config_path, "--port", "9001"])

        assert result.exit_code == EXIT_CODE_PASS
        mock_run.assert_called_once()
        _, kwargs = mock_run.call_args
        assert kwargs["port"] == 9001
        assert kwargs["host"] == "127.0.0.1"

    def test_serve_with_missing_config_fails(self, workspace):
        config_path, _ = workspace

        result = runner.invoke(app, ["serve", "--config", config_path + ".missing"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error loading configuration" in result.output
