"""Runtime configuration for the autopilot enforcer.

Configuration is resolved from environment variables with built-in
defaults. Entry points expose the same knobs as CLI flags whose argparse
defaults come from here, so the priority is (highest → lowest):

    1. Explicit CLI flag
    2. Environment variable
    3. Built-in default

Environment variables:
    AUTOPILOT_STATE_DIR              state directory name under the working dir (default: ".autopilot")
    CLAUDE_CONFIG_DIR                host config dir holding transcripts      (default: "~/.claude")
    AUTOPILOT_MAX_ITERATIONS         safety ceiling for new runs              (default: 10)
    AUTOPILOT_MAX_QA_CYCLES          QA cycles recorded on the qa substate    (default: 5)
    AUTOPILOT_MAX_VALIDATION_ROUNDS  validation rounds before giving up       (default: 3)
    AUTOPILOT_ITERATION_POLICY       "per_phase" or "per_run"                 (default: "per_phase")
    AUTOPILOT_LOG_LEVEL              stderr log level for the bin scripts     (default: "WARNING")
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from autopilot_enforcer.types import IterationPolicy


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value.

    The message names the variable and the accepted values so the user can
    fix their environment without reading source.
    """


DEFAULT_STATE_DIRNAME = ".autopilot"
DEFAULT_MAX_ITERATIONS = 10
DEFAULT_MAX_QA_CYCLES = 5
DEFAULT_MAX_VALIDATION_ROUNDS = 3


@dataclass(frozen=True)
class AutopilotConfig:
    state_dirname: str = DEFAULT_STATE_DIRNAME
    claude_dir: Path = Path.home() / ".claude"
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_qa_cycles: int = DEFAULT_MAX_QA_CYCLES
    max_validation_rounds: int = DEFAULT_MAX_VALIDATION_ROUNDS
    iteration_policy: IterationPolicy = IterationPolicy.PER_PHASE

    @property
    def default_spec_path(self) -> str:
        return f"{self.state_dirname}/spec.md"

    @property
    def default_plan_path(self) -> str:
        return f"{self.state_dirname}/plan.md"


def _positive_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name, "")
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name}={raw!r} is not an integer") from None
    if value < 1:
        raise ConfigError(f"{name}={raw!r} must be >= 1")
    return value


def load_config(environ: Mapping[str, str] | None = None) -> AutopilotConfig:
    """Build an AutopilotConfig from environment variables.

    Args:
        environ: Mapping to read from. Defaults to os.environ; tests pass a
            plain dict.

    Raises:
        ConfigError: if any variable is set to an invalid value.
    """
    env = os.environ if environ is None else environ

    claude_dir_raw = env.get("CLAUDE_CONFIG_DIR", "")
    claude_dir = Path(claude_dir_raw).expanduser() if claude_dir_raw else Path.home() / ".claude"

    policy_raw = env.get("AUTOPILOT_ITERATION_POLICY", "") or IterationPolicy.PER_PHASE.value
    try:
        policy = IterationPolicy(policy_raw)
    except ValueError:
        raise ConfigError(
            f"AUTOPILOT_ITERATION_POLICY={policy_raw!r} is invalid. "
            f"Valid values: {sorted(p.value for p in IterationPolicy)}"
        ) from None

    return AutopilotConfig(
        state_dirname=env.get("AUTOPILOT_STATE_DIR", "") or DEFAULT_STATE_DIRNAME,
        claude_dir=claude_dir,
        max_iterations=_positive_int(env, "AUTOPILOT_MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS),
        max_qa_cycles=_positive_int(env, "AUTOPILOT_MAX_QA_CYCLES", DEFAULT_MAX_QA_CYCLES),
        max_validation_rounds=_positive_int(
            env, "AUTOPILOT_MAX_VALIDATION_ROUNDS", DEFAULT_MAX_VALIDATION_ROUNDS
        ),
        iteration_policy=policy,
    )


def log_level(name: str | None) -> int:
    """Resolve a level name such as "info"; unknown or empty names give WARNING."""
    level = logging.getLevelName((name or "").upper())
    return level if isinstance(level, int) else logging.WARNING
