"""Run lifecycle commands: start, cancel, resume, clear and progress updates.

These are the command-handler entry points around the enforcement core.
Unlike EnforcementController.check(), they are user-initiated and report
problems by raising an AutopilotError subclass whose message says what to
do next. The CLI turns those into exit code 1.

Cancel vs clear:
    cancel_autopilot() deactivates the run but keeps the record, so a
    non-terminal run can be picked up again with resume_autopilot().
    clear_autopilot() deletes the record outright.
"""

from __future__ import annotations

import logging
from pathlib import Path

from autopilot_enforcer.config import AutopilotConfig
from autopilot_enforcer.state_store import StateStore
from autopilot_enforcer.transitions import TransitionEngine
from autopilot_enforcer.types import (
    CheckStatus,
    EnforcementRecord,
    Phase,
    QAStatus,
    ValidationVerdict,
    VerdictType,
)

logger = logging.getLogger(__name__)


# ─── Errors ───────────────────────────────────────────────────────────────────


class AutopilotError(Exception):
    """Base class for lifecycle command failures."""


class AutopilotAlreadyActiveError(AutopilotError):
    pass


class AutopilotNotFoundError(AutopilotError):
    pass


class SessionMismatchError(AutopilotError):
    pass


class ResumeError(AutopilotError):
    pass


# ─── Queries ──────────────────────────────────────────────────────────────────


def is_autopilot_active(store: StateStore, directory: str | Path) -> bool:
    record = store.load(directory)
    return record is not None and record.active


def can_resume_autopilot(store: StateStore, directory: str | Path) -> bool:
    """True for a cancelled run that has not reached a terminal phase."""
    record = store.load(directory)
    return record is not None and not record.active and not record.phase.is_terminal


def _require_record(store: StateStore, directory: str | Path) -> EnforcementRecord:
    record = store.load(directory)
    if record is None:
        raise AutopilotNotFoundError(
            f"No autopilot run found in {directory}. Start one with `autopilot start`."
        )
    return record


# ─── Start / Stop ─────────────────────────────────────────────────────────────


def init_autopilot(
    store: StateStore,
    directory: str | Path,
    idea: str,
    *,
    session_id: str | None = None,
    config: AutopilotConfig | None = None,
    force: bool = False,
) -> EnforcementRecord:
    """Create and persist a new run in the expansion phase.

    Args:
        idea: The task description; stored once and never changed.
        session_id: Bind the run to this host session immediately.
        force: Replace an existing active run instead of refusing.

    Raises:
        ValueError: if idea is blank.
        AutopilotAlreadyActiveError: if an active run exists and force is False.
    """
    if not idea.strip():
        raise ValueError("Autopilot needs a non-empty idea to work on.")
    cfg = config if config is not None else AutopilotConfig()

    existing = store.load(directory)
    if existing is not None and existing.active and not force:
        raise AutopilotAlreadyActiveError(
            f"An autopilot run is already active in {directory} "
            f"(phase {existing.phase.value!r}). Cancel it first or pass --force."
        )

    record = EnforcementRecord(
        original_idea=idea,
        session_id=session_id,
        max_iterations=cfg.max_iterations,
    )
    record.qa.max_cycles = cfg.max_qa_cycles
    record.validation.max_rounds = cfg.max_validation_rounds
    store.save(directory, record)
    logger.info("Autopilot started in %s (session=%s)", directory, session_id)
    return record


def bind_session(store: StateStore, directory: str | Path, session_id: str) -> EnforcementRecord:
    """Bind an unbound run to session_id. Re-binding the same id is a no-op.

    Raises:
        AutopilotNotFoundError: if there is no record.
        SessionMismatchError: if the run is already bound to another session.
    """
    record = _require_record(store, directory)
    if record.session_id == session_id:
        return record
    if record.session_id is not None:
        raise SessionMismatchError(
            f"Autopilot run in {directory} belongs to session {record.session_id}; "
            f"refusing to rebind it to {session_id}."
        )
    record.session_id = session_id
    store.save(directory, record)
    return record


def cancel_autopilot(store: StateStore, directory: str | Path) -> EnforcementRecord:
    """Deactivate the run, keeping its record for resume_autopilot()."""
    record = _require_record(store, directory)
    record.active = False
    store.save(directory, record)
    logger.info("Autopilot cancelled in %s at phase %s", directory, record.phase.value)
    return record


def clear_autopilot(store: StateStore, directory: str | Path) -> None:
    """Delete the run's record. Safe to call when there is none."""
    store.delete(directory)
    logger.info("Autopilot state cleared in %s", directory)


def resume_autopilot(store: StateStore, directory: str | Path) -> EnforcementRecord:
    """Reactivate a cancelled, non-terminal run.

    Raises:
        AutopilotNotFoundError: if there is no record.
        ResumeError: if the run is already active or has finished.
    """
    record = _require_record(store, directory)
    if record.active:
        raise ResumeError(f"Autopilot run in {directory} is already active.")
    if record.phase.is_terminal:
        raise ResumeError(
            f"Autopilot run in {directory} ended in phase {record.phase.value!r}; "
            "start a new run instead."
        )
    record.active = True
    store.save(directory, record)
    logger.info("Autopilot resumed in %s at phase %s", directory, record.phase.value)
    return record


# ─── Progress updates ─────────────────────────────────────────────────────────


def update_expansion(
    store: StateStore, directory: str | Path, *, spec_path: str
) -> EnforcementRecord:
    record = _require_record(store, directory)
    record.expansion.spec_path = spec_path
    store.save(directory, record)
    return record


def update_planning(
    store: StateStore, directory: str | Path, *, plan_path: str
) -> EnforcementRecord:
    record = _require_record(store, directory)
    record.planning.plan_path = plan_path
    store.save(directory, record)
    return record


def update_execution(
    store: StateStore,
    directory: str | Path,
    *,
    tasks_completed: int | None = None,
    tasks_total: int | None = None,
) -> EnforcementRecord:
    """Record execution progress. Counts are clamped to 0 <= completed <= total."""
    record = _require_record(store, directory)
    execution = record.execution
    if tasks_total is not None:
        execution.tasks_total = max(0, tasks_total)
    if tasks_completed is not None:
        execution.tasks_completed = max(0, tasks_completed)
    if execution.tasks_total:
        execution.tasks_completed = min(execution.tasks_completed, execution.tasks_total)
    store.save(directory, record)
    return record


def update_qa(
    store: StateStore,
    directory: str | Path,
    *,
    build: CheckStatus | None = None,
    lint: CheckStatus | None = None,
    test: CheckStatus | None = None,
) -> EnforcementRecord:
    """Record QA check results for the current cycle.

    A report containing any FAILING check while every cycle is used up marks
    the QA loop FAILED and fails the run; otherwise a failing report starts
    the next cycle. The returned record is the stored one after the update.
    """
    record = _require_record(store, directory)
    if record.phase != Phase.QA:
        raise AutopilotError(
            f"QA results can only be recorded in the qa phase (current: {record.phase.value!r})."
        )
    qa = record.qa
    if build is not None:
        qa.build_status = build
    if lint is not None:
        qa.lint_status = lint
    if test is not None:
        qa.test_status = test

    statuses = (qa.build_status, qa.lint_status, qa.test_status)
    if CheckStatus.FAILING in statuses:
        if qa.cycle >= qa.max_cycles:
            qa.status = QAStatus.FAILED
        else:
            qa.cycle += 1
    store.save(directory, record)

    if qa.status == QAStatus.FAILED:
        TransitionEngine(store).transition_to_failed(
            directory, f"QA failed after {qa.cycle} of {qa.max_cycles} cycle(s)"
        )
        return _require_record(store, directory)
    return record


def record_validation_verdict(
    store: StateStore,
    directory: str | Path,
    *,
    reviewer: str,
    verdict: VerdictType,
    issues: tuple[str, ...] = (),
) -> EnforcementRecord:
    """Record one reviewer's verdict for the current validation round.

    A later verdict from the same reviewer replaces the earlier one.
    all_approved is recomputed after every verdict.
    """
    record = _require_record(store, directory)
    if record.phase != Phase.VALIDATION:
        raise AutopilotError(
            "Verdicts can only be recorded in the validation phase "
            f"(current: {record.phase.value!r})."
        )
    validation = record.validation
    validation.verdicts = [v for v in validation.verdicts if v.reviewer != reviewer]
    validation.verdicts.append(ValidationVerdict(reviewer=reviewer, verdict=verdict, issues=issues))
    validation.all_approved = all(v.verdict == VerdictType.APPROVED for v in validation.verdicts)
    store.save(directory, record)
    return record
