"""Tests for bin/autopilot.py — run lifecycle command handlers.

BDD Acceptance Criteria:
    AC1: Given no subcommand, help is printed and exit code is 0.
    AC2: Given `start IDEA`, a run is created in --directory at phase expansion.
    AC3: Given a refused command (no run, already active, wrong phase), the
         error is printed to stderr prefixed "autopilot:" and exit code is 1.
    AC4: Given progress/qa/verdict, the matching substate is updated.

DI approach:
    - build_parser() and main(argv): importlib-loaded module, stdout via capsys.
    - One subprocess smoke test against the actual script.
"""

from __future__ import annotations

import importlib.util
import json
import os
import subprocess
import sys
from pathlib import Path
from types import ModuleType

import pytest

from autopilot_enforcer.state_store import JSONStateStore
from autopilot_enforcer.types import CheckStatus, Phase, VerdictType

from conftest import _make_record

# ─── Constants ─────────────────────────────────────────────────────────────────

CLI_PATH = Path(__file__).resolve().parent.parent / "bin" / "autopilot.py"
SCRIPTS_DIR = Path(__file__).resolve().parent.parent / "scripts"
PYTHON = sys.executable

SUBCOMMANDS = ["start", "cancel", "resume", "clear", "status", "progress", "qa", "verdict"]


def _load_cli() -> ModuleType:
    spec = importlib.util.spec_from_file_location("autopilot_cli", CLI_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)  # type: ignore[union-attr]
    return module


@pytest.fixture(scope="module")
def cli() -> ModuleType:
    return _load_cli()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("AUTOPILOT_STATE_DIR", "AUTOPILOT_MAX_ITERATIONS", "AUTOPILOT_ITERATION_POLICY"):
        monkeypatch.delenv(name, raising=False)


def _run(cli: ModuleType, workdir: Path, *argv: str) -> int:
    return cli.main(["--directory", str(workdir), *argv])


# ─── Parser ───────────────────────────────────────────────────────────────────


class TestParser:
    def test_prog(self, cli) -> None:
        assert cli.build_parser().prog == "autopilot"

    @pytest.mark.parametrize("sub", ["cancel", "resume", "clear", "status"])
    def test_bare_subcommands(self, cli, sub: str) -> None:
        assert cli.build_parser().parse_args([sub]).subcommand == sub

    def test_verdict_collects_issues(self, cli) -> None:
        args = cli.build_parser().parse_args(
            ["verdict", "security", "NEEDS_FIX", "--issue", "xss", "--issue", "csrf"]
        )
        assert args.issues == ["xss", "csrf"]

    def test_qa_rejects_unknown_status(self, cli) -> None:
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["qa", "--build", "green"])

    def test_no_subcommand_prints_help(self, cli, capsys) -> None:
        """AC1."""
        assert cli.main([]) == 0
        out = capsys.readouterr().out
        for sub in SUBCOMMANDS:
            assert sub in out


# ─── Lifecycle ────────────────────────────────────────────────────────────────


class TestStartCancelResume:
    def test_start(self, cli, workdir: Path, capsys) -> None:
        """AC2."""
        assert _run(cli, workdir, "start", "Build a todo CLI", "--session-id", "s1") == 0

        assert "phase: expansion" in capsys.readouterr().out
        record = JSONStateStore().load(workdir)
        assert record.original_idea == "Build a todo CLI"
        assert record.session_id == "s1"
        assert record.max_iterations == 10

    def test_start_max_iterations_flag(self, cli, workdir: Path) -> None:
        _run(cli, workdir, "start", "idea", "--max-iterations", "25")
        assert JSONStateStore().load(workdir).max_iterations == 25

    def test_start_twice_refused(self, cli, workdir: Path, capsys) -> None:
        """AC3."""
        _run(cli, workdir, "start", "first")
        assert _run(cli, workdir, "start", "second") == 1
        assert capsys.readouterr().err.startswith("autopilot: An autopilot run is already active")

    def test_start_force(self, cli, workdir: Path) -> None:
        _run(cli, workdir, "start", "first")
        assert _run(cli, workdir, "start", "second", "--force") == 0
        assert JSONStateStore().load(workdir).original_idea == "second"

    def test_start_blank_idea(self, cli, workdir: Path, capsys) -> None:
        assert _run(cli, workdir, "start", "   ") == 1
        assert "non-empty idea" in capsys.readouterr().err

    def test_cancel_and_resume(self, cli, workdir: Path, capsys) -> None:
        _run(cli, workdir, "start", "idea")

        assert _run(cli, workdir, "cancel") == 0
        assert JSONStateStore().load(workdir).active is False
        assert _run(cli, workdir, "resume") == 0
        assert JSONStateStore().load(workdir).active is True

        out = capsys.readouterr().out
        assert "Autopilot cancelled at phase expansion" in out
        assert "Autopilot resumed at phase expansion" in out

    def test_cancel_without_run(self, cli, workdir: Path, capsys) -> None:
        assert _run(cli, workdir, "cancel") == 1
        assert "No autopilot run found" in capsys.readouterr().err

    def test_clear(self, cli, workdir: Path) -> None:
        _run(cli, workdir, "start", "idea")
        assert _run(cli, workdir, "clear") == 0
        assert JSONStateStore().load(workdir) is None

    def test_status(self, cli, workdir: Path, capsys) -> None:
        _run(cli, workdir, "start", "idea", "--session-id", "s1")
        capsys.readouterr()

        assert _run(cli, workdir, "status") == 0

        data = json.loads(capsys.readouterr().out)
        assert data["originalIdea"] == "idea"
        assert data["phase"] == "expansion"
        assert data["session_id"] == "s1"

    def test_status_without_run(self, cli, workdir: Path, capsys) -> None:
        assert _run(cli, workdir, "status") == 1
        assert "No autopilot run" in capsys.readouterr().err

    def test_invalid_env_reported(self, cli, workdir: Path, monkeypatch, capsys) -> None:
        monkeypatch.setenv("AUTOPILOT_MAX_ITERATIONS", "zero")
        assert _run(cli, workdir, "status") == 1
        assert "AUTOPILOT_MAX_ITERATIONS" in capsys.readouterr().err


# ─── Progress ─────────────────────────────────────────────────────────────────


class TestProgressCommands:
    """AC4."""

    def test_progress(self, cli, workdir: Path, capsys) -> None:
        _run(cli, workdir, "start", "idea")

        code = _run(
            cli, workdir, "progress",
            "--spec-path", "docs/spec.md", "--plan-path", "docs/plan.md",
            "--tasks-completed", "2", "--tasks-total", "6",
        )

        assert code == 0
        assert "Tasks: 2/6" in capsys.readouterr().out
        record = JSONStateStore().load(workdir)
        assert record.expansion.spec_path == "docs/spec.md"
        assert record.planning.plan_path == "docs/plan.md"
        assert record.execution.tasks_total == 6

    def test_qa(self, cli, workdir: Path, capsys) -> None:
        store = JSONStateStore()
        record = _make_record(Phase.QA)
        record.qa.cycle = 1
        store.save(workdir, record)

        assert _run(cli, workdir, "qa", "--build", "passing", "--test", "failing") == 0

        assert "QA cycle 2/5: pending" in capsys.readouterr().out
        stored = store.load(workdir)
        assert stored.qa.build_status == CheckStatus.PASSING
        assert stored.qa.test_status == CheckStatus.FAILING

    def test_qa_wrong_phase(self, cli, workdir: Path, capsys) -> None:
        _run(cli, workdir, "start", "idea")
        assert _run(cli, workdir, "qa", "--build", "passing") == 1
        assert "qa phase" in capsys.readouterr().err

    def test_verdict(self, cli, workdir: Path, capsys) -> None:
        store = JSONStateStore()
        record = _make_record(Phase.VALIDATION)
        record.validation.round = 1
        store.save(workdir, record)

        assert _run(cli, workdir, "verdict", "architect", "APPROVED") == 0
        assert "Round 1/3: all approved: yes" in capsys.readouterr().out

        assert _run(cli, workdir, "verdict", "security", "REJECTED", "--issue", "xss") == 0
        assert "all approved: no" in capsys.readouterr().out
        verdicts = store.load(workdir).validation.verdicts
        assert [v.verdict for v in verdicts] == [VerdictType.APPROVED, VerdictType.REJECTED]
        assert verdicts[1].issues == ("xss",)


# ─── Integration (subprocess) ─────────────────────────────────────────────────


class TestCLIIntegration:
    def test_file_has_python3_shebang(self) -> None:
        assert CLI_PATH.read_text().splitlines()[0] == "#!/usr/bin/env python3"

    def test_start_then_status(self, workdir: Path) -> None:
        env = {**os.environ, "PYTHONPATH": str(SCRIPTS_DIR)}
        env.pop("AUTOPILOT_STATE_DIR", None)

        start = subprocess.run(
            [PYTHON, str(CLI_PATH), "--directory", str(workdir), "start", "idea"],
            capture_output=True, text=True, env=env, timeout=30,
        )
        assert start.returncode == 0, start.stderr

        status = subprocess.run(
            [PYTHON, str(CLI_PATH), "--directory", str(workdir), "status"],
            capture_output=True, text=True, env=env, timeout=30,
        )
        assert status.returncode == 0
        assert json.loads(status.stdout)["phase"] == "expansion"
