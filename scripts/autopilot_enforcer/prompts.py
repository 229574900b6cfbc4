"""Phase instruction and continuation message rendering.

Templates live next to this module in templates/<phase>.j2 plus
continuation.j2, the envelope injected back into the session when a stop is
blocked. Rendering uses Jinja2 StrictUndefined, so a template that references
a variable the caller did not supply fails loudly instead of emitting blanks.

Protocol:
    PhasePromptProvider — phase → instruction text; injected into the controller

Implementation:
    TemplatePhasePrompts — Jinja2-backed provider (the default)

Functions:
    render_continuation() — the envelope, independent of the provider in use
"""

from __future__ import annotations

import pathlib
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from autopilot_enforcer.signals import PHASE_SIGNALS
from autopilot_enforcer.types import Phase

_TEMPLATES_DIR = pathlib.Path(__file__).parent / "templates"

# Display names for the signal reminder in the continuation envelope.
_PHASE_TITLES: dict[Phase, str] = {
    Phase.EXPANSION: "Expansion",
    Phase.PLANNING: "Planning",
    Phase.EXECUTION: "Execution",
    Phase.QA: "QA",
    Phase.VALIDATION: "Validation",
}


def _make_environment(template_dir: pathlib.Path | str | None) -> Environment:
    return Environment(
        loader=FileSystemLoader(str(template_dir or _TEMPLATES_DIR)),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


@runtime_checkable
class PhasePromptProvider(Protocol):
    """Composes the working instructions for a phase."""

    def get_phase_prompt(
        self,
        phase: Phase,
        *,
        idea: str,
        spec_path: str,
        plan_path: str,
    ) -> str:
        ...


class TemplatePhasePrompts:
    """Renders phase instructions from templates/<phase>.j2."""

    def __init__(self, template_dir: pathlib.Path | str | None = None) -> None:
        self._env = _make_environment(template_dir)

    def get_phase_prompt(
        self,
        phase: Phase,
        *,
        idea: str,
        spec_path: str,
        plan_path: str,
    ) -> str:
        """Render the instructions for phase.

        Raises:
            ValueError: for terminal phases, which have no instructions.
        """
        if phase.is_terminal:
            raise ValueError(f"Phase {phase.value!r} is terminal and has no instructions")
        template = self._env.get_template(f"{phase.value}.j2")
        return template.render(idea=idea, spec_path=spec_path, plan_path=plan_path).strip()


def render_continuation(
    *,
    phase: Phase,
    iteration: int,
    max_iterations: int,
    phase_prompt: str,
    open_issues: Sequence[str] = (),
    template_dir: pathlib.Path | str | None = None,
) -> str:
    """Wrap phase_prompt in the <autopilot-continuation> envelope.

    The envelope reminds the session of every phase's completion signal,
    taken from PHASE_SIGNALS so the reminder cannot drift from detection.
    open_issues, when given, are listed after the phase instructions.
    """
    template = _make_environment(template_dir).get_template("continuation.j2")
    return template.render(
        phase=phase.value,
        iteration=iteration,
        max_iterations=max_iterations,
        phase_prompt=phase_prompt,
        open_issues=list(open_issues),
        phase_signals=[(_PHASE_TITLES[p], signal.value) for p, signal in PHASE_SIGNALS.items()],
    )
