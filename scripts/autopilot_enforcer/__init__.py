"""Autopilot enforcer: public API.

Keeps a long-running coding session working through a fixed sequence of
phases (expansion → planning → execution → qa → validation → complete),
blocking each stop until the current phase prints its completion marker.
Progress lives in a JSON record per working directory, so every stop event
can be handled by a fresh process.

Public API (re-exported from submodules):

Enums (from types.py):
    Phase, Signal, Outcome, IterationPolicy, CheckStatus, QAStatus, VerdictType

Dataclasses (from types.py):
    EnforcementRecord     — mutable persisted run state
    TransitionResult      — frozen ok/reason result of a transition operation
    EnforcementResult     — frozen decision returned for one stop event
    EnforcementMetadata   — iteration and task counters attached to continuations

Configuration (from config.py):
    AutopilotConfig, ConfigError, load_config(environ)

State Store (from state_store.py):
    StateStore (Protocol), JSONStateStore, InMemoryStateStore

Signal Detection (from signals.py):
    SignalDetector (Protocol), TranscriptSignalDetector, expected_signal(phase),
    DETECTION_ORDER

Prompts (from prompts.py):
    PhasePromptProvider (Protocol), TemplatePhasePrompts, render_continuation()

Transitions (from transitions.py):
    TransitionEngine, TransitionError, next_phase(phase), is_compound(a, b)

Enforcement (from enforcement.py):
    EnforcementController, build_controller(), check_autopilot()

Lifecycle (from lifecycle.py):
    init_autopilot, cancel_autopilot, clear_autopilot, resume_autopilot,
    can_resume_autopilot, is_autopilot_active, bind_session,
    update_expansion, update_planning, update_execution, update_qa,
    record_validation_verdict, AutopilotError and subclasses
"""

from autopilot_enforcer.config import (
    AutopilotConfig,
    ConfigError,
    load_config,
)
from autopilot_enforcer.enforcement import (
    EnforcementController,
    build_controller,
    check_autopilot,
)
from autopilot_enforcer.lifecycle import (
    AutopilotAlreadyActiveError,
    AutopilotError,
    AutopilotNotFoundError,
    ResumeError,
    SessionMismatchError,
    bind_session,
    can_resume_autopilot,
    cancel_autopilot,
    clear_autopilot,
    init_autopilot,
    is_autopilot_active,
    record_validation_verdict,
    resume_autopilot,
    update_execution,
    update_expansion,
    update_planning,
    update_qa,
)
from autopilot_enforcer.prompts import (
    PhasePromptProvider,
    TemplatePhasePrompts,
    render_continuation,
)
from autopilot_enforcer.signals import (
    DETECTION_ORDER,
    SignalDetector,
    TranscriptSignalDetector,
    expected_signal,
)
from autopilot_enforcer.state_store import (
    InMemoryStateStore,
    JSONStateStore,
    StateStore,
)
from autopilot_enforcer.transitions import (
    TransitionEngine,
    TransitionError,
    is_compound,
    next_phase,
)
from autopilot_enforcer.types import (
    CheckStatus,
    EnforcementMetadata,
    EnforcementRecord,
    EnforcementResult,
    IterationPolicy,
    Outcome,
    Phase,
    QAStatus,
    Signal,
    TransitionResult,
    VerdictType,
)

__all__ = [
    # Enums
    "Phase",
    "Signal",
    "Outcome",
    "IterationPolicy",
    "CheckStatus",
    "QAStatus",
    "VerdictType",
    # Dataclasses
    "EnforcementRecord",
    "TransitionResult",
    "EnforcementResult",
    "EnforcementMetadata",
    # Configuration
    "AutopilotConfig",
    "ConfigError",
    "load_config",
    # State store
    "StateStore",
    "JSONStateStore",
    "InMemoryStateStore",
    # Signal detection
    "SignalDetector",
    "TranscriptSignalDetector",
    "expected_signal",
    "DETECTION_ORDER",
    # Prompts
    "PhasePromptProvider",
    "TemplatePhasePrompts",
    "render_continuation",
    # Transitions
    "TransitionEngine",
    "TransitionError",
    "next_phase",
    "is_compound",
    # Enforcement
    "EnforcementController",
    "build_controller",
    "check_autopilot",
    # Lifecycle
    "AutopilotError",
    "AutopilotAlreadyActiveError",
    "AutopilotNotFoundError",
    "SessionMismatchError",
    "ResumeError",
    "init_autopilot",
    "bind_session",
    "cancel_autopilot",
    "clear_autopilot",
    "resume_autopilot",
    "can_resume_autopilot",
    "is_autopilot_active",
    "update_expansion",
    "update_planning",
    "update_execution",
    "update_qa",
    "record_validation_verdict",
]
