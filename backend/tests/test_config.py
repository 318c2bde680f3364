"""Tests for config.py -- settings validation and logging setup."""

import json

import pytest
import structlog
from pydantic import ValidationError

from config import Settings, configure_logging

# =========================================================================
# Settings
# =========================================================================


class TestSettings:
    """Field validation and list parsing."""

    def test_comma_separated_lists(self) -> None:
        s = Settings(cors_origins="http://a, http://b", output_dir_exempt_agents="os,")
        assert s.cors_origins == ["http://a", "http://b"]
        assert s.output_dir_exempt_agents == ["os"]

    def test_negative_retries_rejected(self) -> None:
        with pytest.raises(ValidationError, match="max_task_retries"):
            Settings(max_task_retries=-1)

    def test_retained_runs_must_be_positive(self) -> None:
        with pytest.raises(ValidationError, match="max_retained_runs"):
            Settings(max_retained_runs=0)
        assert Settings(max_retained_runs=1).max_retained_runs == 1


# =========================================================================
# configure_logging
# =========================================================================


class TestConfigureLogging:
    """Log output stays off stdout so command output can be piped."""

    def test_logs_written_to_stderr(self, capsys: pytest.CaptureFixture[str]) -> None:
        previous = structlog.get_config()
        try:
            configure_logging("INFO", "json")
            structlog.get_logger().info("stderr_check", run_id="run_1")
            captured = capsys.readouterr()
        finally:
            structlog.configure(**previous)

        assert captured.out == ""
        line = json.loads(captured.err.strip().splitlines()[-1])
        assert line["event"] == "stderr_check"
        assert line["run_id"] == "run_1"
