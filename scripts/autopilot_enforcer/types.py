"""Type definitions for the autopilot enforcer.

All enums are str Enums so values round-trip through the JSON state file
unchanged. The record is a mutable dataclass (like a runtime state object);
results and specs are frozen.

Key types:
    Phase             — 5 working phases + COMPLETE and FAILED terminals
    Signal            — completion markers searched for in transcripts
    Outcome           — tag on every EnforcementResult
    IterationPolicy   — whether the iteration counter resets per phase
    EnforcementRecord — the persisted per-directory run state
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ─── Enums ────────────────────────────────────────────────────────────────────


class Phase(str, Enum):
    """Enforcement phases in canonical order, plus the two terminals."""

    EXPANSION = "expansion"
    PLANNING = "planning"
    EXECUTION = "execution"
    QA = "qa"
    VALIDATION = "validation"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.COMPLETE, Phase.FAILED)


class Signal(str, Enum):
    """Completion markers. Values are the literal tokens matched in transcripts."""

    EXPANSION_COMPLETE = "EXPANSION_COMPLETE"
    PLANNING_COMPLETE = "PLANNING_COMPLETE"
    EXECUTION_COMPLETE = "EXECUTION_COMPLETE"
    QA_COMPLETE = "QA_COMPLETE"
    VALIDATION_COMPLETE = "VALIDATION_COMPLETE"
    AUTOPILOT_COMPLETE = "AUTOPILOT_COMPLETE"
    TRANSITION_TO_QA = "TRANSITION_TO_QA"
    TRANSITION_TO_VALIDATION = "TRANSITION_TO_VALIDATION"


class Outcome(str, Enum):
    """Which branch of the enforcement decision produced a result."""

    FORCED_FAILURE = "forced_failure"
    COMPLETE = "complete"
    FAILED = "failed"
    TRANSITIONED = "transitioned"
    CONTINUATION = "continuation"


class IterationPolicy(str, Enum):
    """How the iteration counter behaves across phase boundaries.

    PER_PHASE resets the counter when a new phase is entered, so
    max_iterations bounds each phase. PER_RUN accumulates for the whole run.
    """

    PER_PHASE = "per_phase"
    PER_RUN = "per_run"


class CheckStatus(str, Enum):
    """Status of a single QA check (build, lint, tests)."""

    PENDING = "pending"
    PASSING = "passing"
    FAILING = "failing"


class QAStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"


class VerdictType(str, Enum):
    """Validation verdict recorded by a reviewing agent."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    NEEDS_FIX = "NEEDS_FIX"


# ─── Helpers ──────────────────────────────────────────────────────────────────


def utc_now() -> str:
    """ISO-8601 UTC timestamp used for every *_at field."""
    return datetime.now(tz=timezone.utc).isoformat()


def _as_int(value: Any, name: str) -> int:
    """Coerce an int or numeric string; anything else raises TypeError/ValueError."""
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise TypeError(f"{name} must be an integer, got {type(value).__name__}")
    return int(value)


def _as_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"{name} must be a boolean, got {type(value).__name__}")
    return value


def _coerce_ints(raw: dict[str, Any], prefix: str, names: tuple[str, ...]) -> None:
    for name in names:
        if name in raw:
            raw[name] = _as_int(raw[name], f"{prefix}.{name}")


# ─── Substates ────────────────────────────────────────────────────────────────


@dataclass
class ExpansionState:
    spec_path: str | None = None
    completed_at: str | None = None


@dataclass
class PlanningState:
    plan_path: str | None = None
    completed_at: str | None = None


@dataclass
class ExecutionState:
    tasks_completed: int = 0
    tasks_total: int = 0
    completed_at: str | None = None


@dataclass
class QAState:
    """QA loop progress.

    build_status, lint_status and test_status hold CheckStatus values;
    any FAILING check blocks the qa → validation transition.
    """

    status: QAStatus = QAStatus.PENDING
    cycle: int = 0
    max_cycles: int = 5
    build_status: CheckStatus = CheckStatus.PENDING
    lint_status: CheckStatus = CheckStatus.PENDING
    test_status: CheckStatus = CheckStatus.PENDING
    completed_at: str | None = None


@dataclass(frozen=True)
class ValidationVerdict:
    """One reviewer's verdict for one validation round."""

    reviewer: str
    verdict: VerdictType
    issues: tuple[str, ...] = ()


@dataclass
class ValidationState:
    """Validation round progress.

    verdicts belong to the current round only. When a round ends with a
    rejection, the issues it raised move to open_issues and the next round
    starts with no verdicts.
    """

    round: int = 0
    max_rounds: int = 3
    verdicts: list[ValidationVerdict] = field(default_factory=list)
    all_approved: bool = False
    open_issues: list[str] = field(default_factory=list)
    completed_at: str | None = None

    @property
    def has_rejection(self) -> bool:
        return any(v.verdict != VerdictType.APPROVED for v in self.verdicts)

    def issues_to_fix(self) -> list[str]:
        """Issues raised by every non-approving verdict, tagged with the reviewer."""
        issues: list[str] = []
        for v in self.verdicts:
            if v.verdict == VerdictType.APPROVED:
                continue
            if v.issues:
                issues.extend(f"[{v.reviewer}] {issue}" for issue in v.issues)
            else:
                issues.append(f"[{v.reviewer}] {v.verdict.value}")
        return issues


# ─── EnforcementRecord ────────────────────────────────────────────────────────


@dataclass
class EnforcementRecord:
    """Persisted run state, one per working directory.

    session_id binds the run to the host session that started it. It is set
    once (at init or first bind) and never reassigned.
    """

    original_idea: str
    phase: Phase = Phase.EXPANSION
    active: bool = True
    session_id: str | None = None
    iteration: int = 0
    max_iterations: int = 10
    started_at: str = field(default_factory=utc_now)
    completed_at: str | None = None
    failure_reason: str | None = None
    expansion: ExpansionState = field(default_factory=ExpansionState)
    planning: PlanningState = field(default_factory=PlanningState)
    execution: ExecutionState = field(default_factory=ExecutionState)
    qa: QAState = field(default_factory=QAState)
    validation: ValidationState = field(default_factory=ValidationState)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict.

        Enums collapse to their values; original_idea is stored as
        "originalIdea" to match the on-disk format.
        """
        data = asdict(self)
        data["originalIdea"] = data.pop("original_idea")
        data["phase"] = self.phase.value
        data["qa"]["status"] = self.qa.status.value
        for check in ("build_status", "lint_status", "test_status"):
            data["qa"][check] = getattr(self.qa, check).value
        data["validation"]["verdicts"] = [
            {"reviewer": v.reviewer, "verdict": v.verdict.value, "issues": list(v.issues)}
            for v in self.validation.verdicts
        ]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnforcementRecord:
        """Inverse of to_dict.

        Raises:
            KeyError, TypeError, ValueError: if the payload is malformed.
                StateStore implementations treat all three as "no record".
        """
        if not isinstance(data, dict):
            raise TypeError(f"Expected a JSON object, got {type(data).__name__}")

        execution_raw = dict(data.get("execution") or {})
        _coerce_ints(execution_raw, "execution", ("tasks_completed", "tasks_total"))

        qa_raw = dict(data.get("qa") or {})
        _coerce_ints(qa_raw, "qa", ("cycle", "max_cycles"))
        for check in ("build_status", "lint_status", "test_status"):
            if check in qa_raw:
                qa_raw[check] = CheckStatus(qa_raw[check])
        if "status" in qa_raw:
            qa_raw["status"] = QAStatus(qa_raw["status"])

        validation_raw = dict(data.get("validation") or {})
        _coerce_ints(validation_raw, "validation", ("round", "max_rounds"))
        if "all_approved" in validation_raw:
            validation_raw["all_approved"] = _as_bool(
                validation_raw["all_approved"], "validation.all_approved"
            )
        for name in ("verdicts", "open_issues"):
            if not isinstance(validation_raw.get(name, []), list):
                raise TypeError(f"validation.{name} must be a list")
        validation_raw["verdicts"] = [
            ValidationVerdict(
                reviewer=v["reviewer"],
                verdict=VerdictType(v["verdict"]),
                issues=tuple(v.get("issues", ())),
            )
            for v in validation_raw.get("verdicts", [])
        ]

        return cls(
            original_idea=data["originalIdea"],
            phase=Phase(data["phase"]),
            active=_as_bool(data["active"], "active"),
            session_id=data.get("session_id"),
            iteration=_as_int(data["iteration"], "iteration"),
            max_iterations=_as_int(data["max_iterations"], "max_iterations"),
            started_at=data.get("started_at") or utc_now(),
            completed_at=data.get("completed_at"),
            failure_reason=data.get("failure_reason"),
            expansion=ExpansionState(**(data.get("expansion") or {})),
            planning=PlanningState(**(data.get("planning") or {})),
            execution=ExecutionState(**execution_raw),
            qa=QAState(**qa_raw),
            validation=ValidationState(**validation_raw),
        )


# ─── Results ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a transition operation.

    ok=False means the phase was NOT advanced; reason says why. Transition
    operations never raise for a failed precondition.
    """

    ok: bool
    reason: str | None = None
    to_phase: Phase | None = None


@dataclass(frozen=True)
class EnforcementMetadata:
    iteration: int
    max_iterations: int
    tasks_completed: int
    tasks_total: int


@dataclass(frozen=True)
class EnforcementResult:
    """Decision returned to the host for one stop event.

    should_block=True: suppress the stop and feed message back as context.
    should_block=False: permit the stop; message is a user-visible notice.
    """

    should_block: bool
    message: str
    phase: Phase
    outcome: Outcome
    metadata: EnforcementMetadata | None = None
