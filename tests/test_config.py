"""Tests for autopilot_enforcer.config."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from autopilot_enforcer.config import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_STATE_DIRNAME,
    AutopilotConfig,
    ConfigError,
    load_config,
    log_level,
)
from autopilot_enforcer.types import IterationPolicy


class TestLoadConfig:
    def test_defaults(self) -> None:
        cfg = load_config({})
        assert cfg.state_dirname == DEFAULT_STATE_DIRNAME
        assert cfg.claude_dir == Path.home() / ".claude"
        assert cfg.max_iterations == DEFAULT_MAX_ITERATIONS
        assert cfg.max_qa_cycles == 5
        assert cfg.max_validation_rounds == 3
        assert cfg.iteration_policy == IterationPolicy.PER_PHASE

    def test_overrides(self, tmp_path: Path) -> None:
        cfg = load_config(
            {
                "AUTOPILOT_STATE_DIR": ".ap",
                "CLAUDE_CONFIG_DIR": str(tmp_path),
                "AUTOPILOT_MAX_ITERATIONS": "50",
                "AUTOPILOT_MAX_QA_CYCLES": "2",
                "AUTOPILOT_MAX_VALIDATION_ROUNDS": "4",
                "AUTOPILOT_ITERATION_POLICY": "per_run",
            }
        )
        assert cfg.state_dirname == ".ap"
        assert cfg.claude_dir == tmp_path
        assert cfg.max_iterations == 50
        assert cfg.max_qa_cycles == 2
        assert cfg.max_validation_rounds == 4
        assert cfg.iteration_policy == IterationPolicy.PER_RUN

    def test_empty_values_fall_back_to_defaults(self) -> None:
        cfg = load_config({"AUTOPILOT_MAX_ITERATIONS": "", "AUTOPILOT_STATE_DIR": ""})
        assert cfg.max_iterations == DEFAULT_MAX_ITERATIONS
        assert cfg.state_dirname == DEFAULT_STATE_DIRNAME

    def test_reads_os_environ_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTOPILOT_MAX_ITERATIONS", "7")
        assert load_config().max_iterations == 7

    @pytest.mark.parametrize("raw", ["ten", "1.5", "0", "-3"])
    def test_invalid_integer(self, raw: str) -> None:
        with pytest.raises(ConfigError, match="AUTOPILOT_MAX_ITERATIONS"):
            load_config({"AUTOPILOT_MAX_ITERATIONS": raw})

    def test_invalid_policy_lists_valid_values(self) -> None:
        with pytest.raises(ConfigError, match="per_phase"):
            load_config({"AUTOPILOT_ITERATION_POLICY": "forever"})

    def test_config_error_is_value_error(self) -> None:
        assert issubclass(ConfigError, ValueError)


class TestAutopilotConfig:
    def test_default_artifact_paths_follow_state_dir(self) -> None:
        cfg = AutopilotConfig(state_dirname=".ap")
        assert cfg.default_spec_path == ".ap/spec.md"
        assert cfg.default_plan_path == ".ap/plan.md"


class TestLogLevel:
    @pytest.mark.parametrize(
        "name,level",
        [("debug", logging.DEBUG), ("INFO", logging.INFO), ("Error", logging.ERROR)],
    )
    def test_known_names(self, name: str, level: int) -> None:
        assert log_level(name) == level

    @pytest.mark.parametrize("name", [None, "", "verbose", "10"])
    def test_unknown_names_fall_back_to_warning(self, name: str | None) -> None:
        assert log_level(name) == logging.WARNING
