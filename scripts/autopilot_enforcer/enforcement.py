"""Stop-event enforcement for an autopilot run.

The controller is called once per host stop/idle event. It decides whether
the session may stop (should_block=False) or must keep working, in which
case the returned message is fed back to the session as a continuation.

Decision order (first match wins):
    1. No active record for the directory           → None
    2. Record bound to a different session          → None (record untouched)
    3. Non-terminal and iteration >= max_iterations → forced FAILED, stop allowed
    4. phase == COMPLETE                            → success notice, stop allowed
    5. phase == FAILED                              → failure notice, stop allowed
    6. Expected signal detected                     → advance one phase, then
                                                      re-decide on the reloaded record
    7. Otherwise                                    → continuation for the current phase

Guards 3-5 are an ordered tuple of methods, each returning a result or None.
The ceiling guard leaves terminal records to guards 4 and 5, so the reported
phase is always the stored one. After any transition attempt the decision is
re-run on the reloaded record without signal detection: a failed attempt
usually ends in step 7 for the unchanged phase, but may land in step 5 when
the failed precondition itself failed the run. One tick advances at most one
phase.

Key types:
    EnforcementController — the per-tick decision, with injected collaborators
    check_autopilot()     — convenience wrapper that builds a file-backed controller
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Sequence
from pathlib import Path

from autopilot_enforcer.config import AutopilotConfig, load_config
from autopilot_enforcer.prompts import (
    PhasePromptProvider,
    TemplatePhasePrompts,
    render_continuation,
)
from autopilot_enforcer.signals import (
    SignalDetector,
    TranscriptSignalDetector,
    expected_signal,
)
from autopilot_enforcer.state_store import JSONStateStore, StateStore
from autopilot_enforcer.transitions import TransitionEngine, next_phase
from autopilot_enforcer.types import (
    EnforcementMetadata,
    EnforcementRecord,
    EnforcementResult,
    IterationPolicy,
    Outcome,
    Phase,
)

logger = logging.getLogger(__name__)


COMPLETE_MESSAGE = "[AUTOPILOT COMPLETE] All phases finished successfully!"
FAILED_MESSAGE = "[AUTOPILOT FAILED] Session ended in failure state."


def max_iterations_message(max_iterations: int) -> str:
    return (
        f"[AUTOPILOT STOPPED] Max iterations ({max_iterations}) reached. "
        "Consider reviewing progress."
    )


class EnforcementController:
    """Per-tick enforcement decision over injected collaborators.

    All I/O goes through store, detector and transitions, so the decision
    logic runs unchanged against InMemoryStateStore and a fake detector.
    """

    def __init__(
        self,
        store: StateStore,
        detector: SignalDetector,
        transitions: TransitionEngine,
        prompts: PhasePromptProvider,
        config: AutopilotConfig | None = None,
    ) -> None:
        self._store = store
        self._detector = detector
        self._transitions = transitions
        self._prompts = prompts
        self._config = config if config is not None else AutopilotConfig()

        self._guards: tuple[
            Callable[[EnforcementRecord, Path], EnforcementResult | None], ...
        ] = (
            self._guard_iteration_limit,
            self._guard_complete,
            self._guard_failed,
        )

    # ── Public API ────────────────────────────────────────────────────────────

    def check(
        self,
        session_id: str | None = None,
        directory: str | Path | None = None,
    ) -> EnforcementResult | None:
        """Decide what the host should do with a stop event.

        Args:
            session_id: The host session that is trying to stop. Required for
                signal detection; a bound record ignores callers without it.
            directory: Working directory of the run. Defaults to os.getcwd().

        Returns:
            None when no run applies to this caller, otherwise an
            EnforcementResult.
        """
        workdir = Path(directory) if directory is not None else Path(os.getcwd())
        return self._decide(session_id, workdir, detect=True, entered_phase=False)

    # ── Decision ──────────────────────────────────────────────────────────────

    def _decide(
        self,
        session_id: str | None,
        directory: Path,
        *,
        detect: bool,
        entered_phase: bool,
    ) -> EnforcementResult | None:
        record = self._store.load(directory)
        if record is None or not record.active:
            return None

        if record.session_id is not None and record.session_id != session_id:
            logger.debug(
                "Autopilot %s bound to session %s; ignoring session %s",
                directory, record.session_id, session_id,
            )
            return None

        for guard in self._guards:
            result = guard(record, directory)
            if result is not None:
                return result

        if detect and session_id is not None:
            result = self._try_advance(record, session_id, directory)
            if result is not None:
                return result

        return self._continuation(record, directory, entered_phase=entered_phase)

    def _try_advance(
        self, record: EnforcementRecord, session_id: str, directory: Path
    ) -> EnforcementResult | None:
        """Advance on a detected signal; None means fall through to continuation."""
        signal = expected_signal(record.phase)
        if signal is None or not self._detector.detect(session_id, signal):
            return None

        target = next_phase(record.phase)
        if target is None:
            return None

        logger.info(
            "Autopilot %s: %s detected in phase %s", directory, signal.value, record.phase.value
        )
        transition = self._transitions.advance(directory, record.phase, session_id)
        if not transition.ok:
            # A failed precondition may still have moved the run to FAILED
            # or opened a new validation round.
            return self._decide(session_id, directory, detect=False, entered_phase=False)

        if target == Phase.COMPLETE:
            return EnforcementResult(
                should_block=False,
                message=COMPLETE_MESSAGE,
                phase=Phase.COMPLETE,
                outcome=Outcome.COMPLETE,
            )

        result = self._decide(session_id, directory, detect=False, entered_phase=True)
        if result is not None and result.outcome == Outcome.CONTINUATION:
            return EnforcementResult(
                should_block=result.should_block,
                message=result.message,
                phase=result.phase,
                outcome=Outcome.TRANSITIONED,
                metadata=result.metadata,
            )
        return result

    # ── Guards ────────────────────────────────────────────────────────────────

    def _guard_iteration_limit(
        self, record: EnforcementRecord, directory: Path
    ) -> EnforcementResult | None:
        if record.iteration < record.max_iterations or record.phase.is_terminal:
            return None
        message = max_iterations_message(record.max_iterations)
        self._transitions.transition_to_failed(directory, message)
        return EnforcementResult(
            should_block=False,
            message=message,
            phase=Phase.FAILED,
            outcome=Outcome.FORCED_FAILURE,
        )

    def _guard_complete(
        self, record: EnforcementRecord, directory: Path
    ) -> EnforcementResult | None:
        if record.phase != Phase.COMPLETE:
            return None
        return EnforcementResult(
            should_block=False,
            message=COMPLETE_MESSAGE,
            phase=Phase.COMPLETE,
            outcome=Outcome.COMPLETE,
        )

    def _guard_failed(
        self, record: EnforcementRecord, directory: Path
    ) -> EnforcementResult | None:
        if record.phase != Phase.FAILED:
            return None
        return EnforcementResult(
            should_block=False,
            message=FAILED_MESSAGE,
            phase=Phase.FAILED,
            outcome=Outcome.FAILED,
        )

    # ── Continuation ──────────────────────────────────────────────────────────

    def _continuation(
        self, record: EnforcementRecord, directory: Path, *, entered_phase: bool
    ) -> EnforcementResult:
        """Count one more iteration, persist it and build the continuation."""
        if entered_phase and self._config.iteration_policy == IterationPolicy.PER_PHASE:
            record.iteration = 0
        record.iteration += 1
        self._store.save(directory, record)

        phase_prompt = self._prompts.get_phase_prompt(
            record.phase,
            idea=record.original_idea,
            spec_path=record.expansion.spec_path or self._config.default_spec_path,
            plan_path=record.planning.plan_path or self._config.default_plan_path,
        )
        message = render_continuation(
            phase=record.phase,
            iteration=record.iteration,
            max_iterations=record.max_iterations,
            phase_prompt=phase_prompt,
            open_issues=(
                record.validation.open_issues if record.phase == Phase.VALIDATION else ()
            ),
        )
        return EnforcementResult(
            should_block=True,
            message=message,
            phase=record.phase,
            outcome=Outcome.CONTINUATION,
            metadata=EnforcementMetadata(
                iteration=record.iteration,
                max_iterations=record.max_iterations,
                tasks_completed=record.execution.tasks_completed,
                tasks_total=record.execution.tasks_total,
            ),
        )


# ─── Convenience ──────────────────────────────────────────────────────────────


def build_controller(
    config: AutopilotConfig | None = None,
    *,
    transcript_paths: Sequence[str | Path] = (),
) -> EnforcementController:
    """Wire a file-backed controller from config.

    Args:
        config: Defaults to load_config() (environment variables).
        transcript_paths: Extra transcript candidates searched before the
            standard locations, e.g. the path the host hands to the hook.
    """
    cfg = config if config is not None else load_config()
    store = JSONStateStore(cfg.state_dirname)
    return EnforcementController(
        store=store,
        detector=TranscriptSignalDetector(cfg.claude_dir, extra_candidates=transcript_paths),
        transitions=TransitionEngine(
            store,
            max_qa_cycles=cfg.max_qa_cycles,
            max_validation_rounds=cfg.max_validation_rounds,
        ),
        prompts=TemplatePhasePrompts(),
        config=cfg,
    )


def check_autopilot(
    session_id: str | None = None,
    directory: str | Path | None = None,
    *,
    config: AutopilotConfig | None = None,
) -> EnforcementResult | None:
    """check() against the file-backed store described by config."""
    return build_controller(config).check(session_id, directory)
