"""Shared pytest fixtures and helpers for the autopilot_enforcer test suite.

Provides:
- Module-level helpers (_make_record, FakeSignalDetector, _make_controller)
  importable directly by any test module.
- pytest fixtures for the common in-memory wiring.
- Module-level _SCENARIO_FIXTURE singleton for YAML-driven scenario tests.

Module-level helpers (import directly):
    _make_record(phase, **kwargs)   — construct an EnforcementRecord
    FakeSignalDetector              — SignalDetector backed by a dict of sets
    _make_controller(store, ...)    — controller over the given store/detector

pytest fixtures:
    workdir      — a temporary working directory
    store        — fresh InMemoryStateStore
    detector     — fresh FakeSignalDetector
    controller   — EnforcementController wired to store + detector
    claude_dir   — temporary host config dir for transcript files
"""

from __future__ import annotations

from pathlib import Path

import pytest

from autopilot_enforcer.config import AutopilotConfig
from autopilot_enforcer.enforcement import EnforcementController
from autopilot_enforcer.prompts import TemplatePhasePrompts
from autopilot_enforcer.signals import DETECTION_ORDER
from autopilot_enforcer.state_store import InMemoryStateStore, StateStore
from autopilot_enforcer.transitions import TransitionEngine
from autopilot_enforcer.types import EnforcementRecord, IterationPolicy, Phase, Signal

# Import after production imports so pythonpath=scripts:tests resolves fixtures/
from fixtures.fixture_loader import ScenarioFixture


_SCENARIO_FIXTURE = ScenarioFixture()


# ─── Module-Level Helpers ─────────────────────────────────────────────────────


def _make_record(
    phase: Phase = Phase.EXPANSION,
    *,
    session_id: str | None = "s1",
    iteration: int = 0,
    max_iterations: int = 10,
    **kwargs,
) -> EnforcementRecord:
    """Return an active EnforcementRecord at the given phase."""
    return EnforcementRecord(
        original_idea=kwargs.pop("original_idea", "Build a todo CLI"),
        phase=phase,
        session_id=session_id,
        iteration=iteration,
        max_iterations=max_iterations,
        **kwargs,
    )


class FakeSignalDetector:
    """SignalDetector that reports whatever signals a test puts in it.

    calls records every (session_id, signal) pair passed to detect().
    """

    def __init__(self) -> None:
        self.signals: dict[str, set[Signal]] = {}
        self.calls: list[tuple[str, Signal]] = []

    def emit(self, session_id: str, *signals: Signal) -> None:
        self.signals.setdefault(session_id, set()).update(signals)

    def detect(self, session_id: str, signal: Signal) -> bool:
        self.calls.append((session_id, signal))
        return signal in self.signals.get(session_id, set())

    def detect_any(self, session_id: str) -> Signal | None:
        present = self.signals.get(session_id, set())
        return next((s for s in DETECTION_ORDER if s in present), None)


def _make_controller(
    store: StateStore,
    detector: FakeSignalDetector,
    *,
    policy: IterationPolicy = IterationPolicy.PER_PHASE,
    transitions: TransitionEngine | None = None,
) -> EnforcementController:
    return EnforcementController(
        store=store,
        detector=detector,
        transitions=transitions if transitions is not None else TransitionEngine(store),
        prompts=TemplatePhasePrompts(),
        config=AutopilotConfig(iteration_policy=policy),
    )


# ─── pytest Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def detector() -> FakeSignalDetector:
    return FakeSignalDetector()


@pytest.fixture
def controller(store: InMemoryStateStore, detector: FakeSignalDetector) -> EnforcementController:
    return _make_controller(store, detector)


@pytest.fixture
def claude_dir(tmp_path: Path) -> Path:
    path = tmp_path / "claude"
    path.mkdir()
    return path


@pytest.fixture
def scenario_fixture() -> ScenarioFixture:
    return _SCENARIO_FIXTURE
