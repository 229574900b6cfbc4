"""Phase-completion signal detection in session transcripts.

Detection is plain data: SIGNAL_PATTERNS maps each Signal to a compiled
case-insensitive pattern, PHASE_SIGNALS maps each working phase to the
signal that ends it, and DETECTION_ORDER fixes the tie-break order used by
detect_any().

Transcripts are read in full on every call. A live session may still be
appending, so a marker written after the read is picked up on the next tick.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from autopilot_enforcer.types import Phase, Signal

logger = logging.getLogger(__name__)


SIGNAL_PATTERNS: dict[Signal, re.Pattern[str]] = {
    signal: re.compile(re.escape(signal.value), re.IGNORECASE) for signal in Signal
}

PHASE_SIGNALS: dict[Phase, Signal] = {
    Phase.EXPANSION: Signal.EXPANSION_COMPLETE,
    Phase.PLANNING: Signal.PLANNING_COMPLETE,
    Phase.EXECUTION: Signal.EXECUTION_COMPLETE,
    Phase.QA: Signal.QA_COMPLETE,
    Phase.VALIDATION: Signal.VALIDATION_COMPLETE,
}

# Explicit order; detect_any() returns the first match in this sequence.
DETECTION_ORDER: tuple[Signal, ...] = (
    Signal.EXPANSION_COMPLETE,
    Signal.PLANNING_COMPLETE,
    Signal.EXECUTION_COMPLETE,
    Signal.QA_COMPLETE,
    Signal.VALIDATION_COMPLETE,
    Signal.AUTOPILOT_COMPLETE,
    Signal.TRANSITION_TO_QA,
    Signal.TRANSITION_TO_VALIDATION,
)


def expected_signal(phase: Phase) -> Signal | None:
    """Return the signal that completes phase, or None for terminal phases."""
    return PHASE_SIGNALS.get(phase)


@runtime_checkable
class SignalDetector(Protocol):
    """Anything the controller can ask whether a session emitted a signal."""

    def detect(self, session_id: str, signal: Signal) -> bool:
        ...

    def detect_any(self, session_id: str) -> Signal | None:
        ...


class TranscriptSignalDetector:
    """Searches a session's transcript files for completion markers.

    Candidate locations, in order:
        1. extra_candidates (e.g. the transcript_path the host passed to the hook)
        2. <claude_dir>/sessions/<session_id>/transcript.md
        3. <claude_dir>/sessions/<session_id>/messages.json
        4. <claude_dir>/transcripts/<session_id>.md
    """

    def __init__(
        self,
        claude_dir: str | Path,
        extra_candidates: Sequence[str | Path] = (),
    ) -> None:
        self._claude_dir = Path(claude_dir)
        self._extra = tuple(Path(p) for p in extra_candidates)

    def candidate_paths(self, session_id: str) -> list[Path]:
        return [
            *self._extra,
            self._claude_dir / "sessions" / session_id / "transcript.md",
            self._claude_dir / "sessions" / session_id / "messages.json",
            self._claude_dir / "transcripts" / f"{session_id}.md",
        ]

    def _read_candidates(self, session_id: str) -> list[str]:
        texts: list[str] = []
        for path in self.candidate_paths(session_id):
            try:
                texts.append(path.read_text(encoding="utf-8", errors="replace"))
            except FileNotFoundError:
                continue
            except OSError as e:
                # Directories and paths under unsearchable parents land here.
                logger.debug("Skipping unreadable transcript %s: %s", path, e)
        return texts

    def detect(self, session_id: str, signal: Signal) -> bool:
        """True if ANY existing candidate contains signal (case-insensitive)."""
        pattern = SIGNAL_PATTERNS[signal]
        return any(pattern.search(text) for text in self._read_candidates(session_id))

    def detect_any(self, session_id: str) -> Signal | None:
        """Return the first signal in DETECTION_ORDER present in any candidate."""
        texts = self._read_candidates(session_id)
        for signal in DETECTION_ORDER:
            pattern = SIGNAL_PATTERNS[signal]
            if any(pattern.search(text) for text in texts):
                return signal
        return None
