"""Phase transition engine for the autopilot run.

Defines the canonical successor table and the operations that move a
persisted record from one phase to the next. Edges fall into three kinds:

    plain     — expansion→planning, planning→execution: set_phase() field write
    compound  — execution→qa, qa→validation: side-effecting setup that checks
                preconditions and may fail; on failure the phase is unchanged
    finalize  — validation→complete: transition_to_complete(), gated on the
                current round's verdicts

plus the forced edge to FAILED from any non-terminal phase. Two failed
preconditions take that edge themselves: an exhausted QA loop at
qa→validation, and a rejection in the last validation round at finalize.
Callers must reload the record after a failed transition.

Compound and finalize operations return TransitionResult and never raise for
a failed precondition. Asking set_phase() for an edge that is not plain is a
programming error and raises TransitionError.

Key types:
    TransitionError  — exception raised for an illegal set_phase() request
    TransitionEngine — store-backed transition operations
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from autopilot_enforcer.config import DEFAULT_MAX_QA_CYCLES, DEFAULT_MAX_VALIDATION_ROUNDS
from autopilot_enforcer.state_store import StateStore
from autopilot_enforcer.types import (
    CheckStatus,
    EnforcementRecord,
    Phase,
    QAState,
    QAStatus,
    TransitionResult,
    ValidationState,
    utc_now,
)

logger = logging.getLogger(__name__)


# ─── Transition Table ─────────────────────────────────────────────────────────

NEXT_PHASE: dict[Phase, Phase] = {
    Phase.EXPANSION: Phase.PLANNING,
    Phase.PLANNING: Phase.EXECUTION,
    Phase.EXECUTION: Phase.QA,
    Phase.QA: Phase.VALIDATION,
    Phase.VALIDATION: Phase.COMPLETE,
}

# Edges that require side-effecting setup; values are operation names.
COMPOUND_EDGES: dict[tuple[Phase, Phase], str] = {
    (Phase.EXECUTION, Phase.QA): "execution_to_qa",
    (Phase.QA, Phase.VALIDATION): "qa_to_validation",
}

PLAIN_EDGES: frozenset[tuple[Phase, Phase]] = frozenset(
    {
        (Phase.EXPANSION, Phase.PLANNING),
        (Phase.PLANNING, Phase.EXECUTION),
    }
)


def next_phase(current: Phase) -> Phase | None:
    """Canonical successor of current; None for COMPLETE and FAILED."""
    return NEXT_PHASE.get(current)


def is_compound(from_phase: Phase, to_phase: Phase) -> bool:
    return (from_phase, to_phase) in COMPOUND_EDGES


# ─── Exception ────────────────────────────────────────────────────────────────


class TransitionError(Exception):
    """Raised when set_phase() is asked for an edge it does not own.

    violations is the list of human-readable reasons. Always non-empty.
    """

    def __init__(self, violations: list[str]) -> None:
        self.violations: list[str] = violations
        super().__init__("; ".join(violations))


# ─── Substate stamping ────────────────────────────────────────────────────────


def _stamp_phase_completed(record: EnforcementRecord, phase: Phase, when: str) -> None:
    """Set completed_at on the substate block of phase, if it has one."""
    substate = {
        Phase.EXPANSION: record.expansion,
        Phase.PLANNING: record.planning,
        Phase.EXECUTION: record.execution,
        Phase.QA: record.qa,
        Phase.VALIDATION: record.validation,
    }.get(phase)
    if substate is not None:
        substate.completed_at = when


# ─── Engine ───────────────────────────────────────────────────────────────────


class TransitionEngine:
    """Applies phase transitions to records held in a StateStore.

    Every operation loads the current record itself, so callers never hand
    in stale state. Nothing here touches record.iteration.
    """

    def __init__(
        self,
        store: StateStore,
        *,
        max_qa_cycles: int = DEFAULT_MAX_QA_CYCLES,
        max_validation_rounds: int = DEFAULT_MAX_VALIDATION_ROUNDS,
    ) -> None:
        self._store = store
        self._max_qa_cycles = max_qa_cycles
        self._max_validation_rounds = max_validation_rounds

    # ── Generic ───────────────────────────────────────────────────────────────

    def set_phase(self, directory: str | Path, new_phase: Phase) -> TransitionResult:
        """Plain field update for a PLAIN_EDGES edge.

        Returns ok=False if there is no active record.

        Raises:
            TransitionError: if current → new_phase is not a plain edge.
        """
        record = self._store.load(directory)
        if record is None or not record.active:
            return TransitionResult(ok=False, reason="No active autopilot run")

        edge = (record.phase, new_phase)
        if edge not in PLAIN_EDGES:
            raise TransitionError(self._edge_violations(record.phase, new_phase))

        now = utc_now()
        _stamp_phase_completed(record, record.phase, now)
        record.phase = new_phase
        self._store.save(directory, record)
        logger.info("Autopilot %s: %s → %s", directory, edge[0].value, new_phase.value)
        return TransitionResult(ok=True, to_phase=new_phase)

    def _edge_violations(self, current: Phase, requested: Phase) -> list[str]:
        if current.is_terminal:
            return [f"Phase {current.value!r} is terminal; no further transitions are possible."]
        if (current, requested) in COMPOUND_EDGES:
            op = COMPOUND_EDGES[(current, requested)]
            return [
                f"{current.value!r} → {requested.value!r} is a compound transition; "
                f"call {op}() instead of set_phase()."
            ]
        if requested == Phase.COMPLETE:
            return ["Entering 'complete' requires transition_to_complete()."]
        if requested == Phase.FAILED:
            return ["Entering 'failed' requires transition_to_failed()."]
        return [
            f"Transition {current.value!r} → {requested.value!r} is not in the transition table. "
            f"Valid successor: {NEXT_PHASE[current].value!r}"
        ]

    # ── Compound ──────────────────────────────────────────────────────────────

    def execution_to_qa(
        self, directory: str | Path, session_id: str | None = None
    ) -> TransitionResult:
        """Close out execution and start the QA loop.

        Preconditions: an active record in EXECUTION, and when a task total
        is known, every task completed.
        """
        record, failure = self._load_in_phase(directory, Phase.EXECUTION)
        if failure is not None:
            return failure

        execution = record.execution
        if execution.tasks_total > 0 and execution.tasks_completed < execution.tasks_total:
            remaining = execution.tasks_total - execution.tasks_completed
            return TransitionResult(
                ok=False,
                reason=(
                    f"{remaining} of {execution.tasks_total} execution task(s) still open; "
                    "finish them before QA."
                ),
            )

        now = utc_now()
        execution.completed_at = now
        record.qa = QAState(
            status=QAStatus.RUNNING,
            cycle=1,
            max_cycles=self._max_qa_cycles,
        )
        record.phase = Phase.QA
        self._store.save(directory, record)
        logger.info("Autopilot %s: execution → qa (session=%s)", directory, session_id)
        return TransitionResult(ok=True, to_phase=Phase.QA)

    def qa_to_validation(
        self, directory: str | Path, session_id: str | None = None
    ) -> TransitionResult:
        """Close out QA and open the first validation round.

        Preconditions: an active record in QA with no FAILING check. A QA
        loop that already used up its cycles (status FAILED) fails the run.
        """
        record, failure = self._load_in_phase(directory, Phase.QA)
        if failure is not None:
            return failure

        if record.qa.status == QAStatus.FAILED:
            reason = (
                f"QA failed after {record.qa.cycle} of {record.qa.max_cycles} cycle(s)"
            )
            self.transition_to_failed(directory, reason)
            return TransitionResult(ok=False, reason=reason)

        failing = [
            name
            for name in ("build", "lint", "test")
            if getattr(record.qa, f"{name}_status") == CheckStatus.FAILING
        ]
        if failing:
            return TransitionResult(
                ok=False,
                reason=f"QA checks still failing: {', '.join(failing)}",
            )

        now = utc_now()
        record.qa.status = QAStatus.PASSED
        record.qa.completed_at = now
        record.validation = ValidationState(round=1, max_rounds=self._max_validation_rounds)
        record.phase = Phase.VALIDATION
        self._store.save(directory, record)
        logger.info("Autopilot %s: qa → validation (session=%s)", directory, session_id)
        return TransitionResult(ok=True, to_phase=Phase.VALIDATION)

    def start_validation_round(self, directory: str | Path) -> TransitionResult:
        """Open the next validation round, carrying the last round's issues.

        The phase stays VALIDATION; the result's to_phase is None.
        """
        record, failure = self._load_in_phase(directory, Phase.VALIDATION)
        if failure is not None:
            return failure

        validation = record.validation
        if validation.round >= validation.max_rounds:
            return TransitionResult(
                ok=False,
                reason=f"All {validation.max_rounds} validation round(s) used",
            )
        validation.open_issues = validation.issues_to_fix()
        validation.verdicts = []
        validation.all_approved = False
        validation.round += 1
        self._store.save(directory, record)
        logger.info(
            "Autopilot %s: validation round %d of %d (%d open issue(s))",
            directory, validation.round, validation.max_rounds, len(validation.open_issues),
        )
        return TransitionResult(ok=True)

    # ── Terminal ──────────────────────────────────────────────────────────────

    def transition_to_complete(self, directory: str | Path) -> TransitionResult:
        """Finalize a run whose validation phase has signalled completion.

        Refused while any verdict of the current round is not APPROVED. A
        rejected round starts the next one, or fails the run once round has
        reached max_rounds. After a rejection, the new round needs at least
        one verdict before the run can finish.
        """
        record, failure = self._load_in_phase(directory, Phase.VALIDATION)
        if failure is not None:
            return failure

        validation = record.validation
        if validation.has_rejection:
            if validation.round >= validation.max_rounds:
                reason = (
                    f"Validation rejected in round {validation.round} "
                    f"of {validation.max_rounds}"
                )
                self.transition_to_failed(directory, reason)
                return TransitionResult(ok=False, reason=reason)
            self.start_validation_round(directory)
            return TransitionResult(
                ok=False,
                reason=(
                    f"Validation round {validation.round} rejected; "
                    f"starting round {validation.round + 1}"
                ),
            )
        if validation.round > 1 and not validation.verdicts:
            return TransitionResult(
                ok=False,
                reason=f"Validation round {validation.round} has no verdicts yet",
            )

        now = utc_now()
        record.validation.completed_at = now
        record.completed_at = now
        record.phase = Phase.COMPLETE
        self._store.save(directory, record)
        logger.info("Autopilot %s: validation → complete", directory)
        return TransitionResult(ok=True, to_phase=Phase.COMPLETE)

    def transition_to_failed(self, directory: str | Path, reason: str) -> TransitionResult:
        """Jump to FAILED from any non-terminal phase, recording reason."""
        record = self._store.load(directory)
        if record is None or not record.active:
            return TransitionResult(ok=False, reason="No active autopilot run")
        if record.phase.is_terminal:
            return TransitionResult(
                ok=False, reason=f"Phase {record.phase.value!r} is already terminal"
            )

        from_phase = record.phase
        record.phase = Phase.FAILED
        record.failure_reason = reason
        record.completed_at = utc_now()
        self._store.save(directory, record)
        logger.warning("Autopilot %s: %s → failed (%s)", directory, from_phase.value, reason)
        return TransitionResult(ok=True, to_phase=Phase.FAILED)

    # ── Dispatch ──────────────────────────────────────────────────────────────

    def advance(
        self, directory: str | Path, current: Phase, session_id: str | None = None
    ) -> TransitionResult:
        """Move from current to its canonical successor using the right operation."""
        target = next_phase(current)
        if target is None:
            return TransitionResult(
                ok=False, reason=f"Phase {current.value!r} has no successor"
            )

        operations: dict[str, Callable[..., TransitionResult]] = {
            "execution_to_qa": self.execution_to_qa,
            "qa_to_validation": self.qa_to_validation,
        }
        op_name = COMPOUND_EDGES.get((current, target))
        if op_name is not None:
            result = operations[op_name](directory, session_id)
            if not result.ok:
                logger.info(
                    "Autopilot %s: %s failed, staying in %s: %s",
                    directory, op_name, current.value, result.reason,
                )
            return result
        if target == Phase.COMPLETE:
            return self.transition_to_complete(directory)
        try:
            return self.set_phase(directory, target)
        except TransitionError as e:
            # The stored phase moved since the caller loaded it.
            return TransitionResult(ok=False, reason=str(e))

    # ── Private Helpers ───────────────────────────────────────────────────────

    def _load_in_phase(
        self, directory: str | Path, expected: Phase
    ) -> tuple[EnforcementRecord, None] | tuple[None, TransitionResult]:
        record = self._store.load(directory)
        if record is None or not record.active:
            return None, TransitionResult(ok=False, reason="No active autopilot run")
        if record.phase != expected:
            return None, TransitionResult(
                ok=False,
                reason=f"Expected phase {expected.value!r}, found {record.phase.value!r}",
            )
        return record, None
