"""Durable per-directory storage for the autopilot EnforcementRecord.

Protocol:
    StateStore — @runtime_checkable interface for load/save/delete

Implementations:
    JSONStateStore     — one JSON file per working directory at <dir>/.autopilot/state.json
    InMemoryStateStore — dict-backed store for tests and dry runs

load() never raises: a missing, unreadable or corrupt file is reported as
None, which callers treat as "no active run". save() is a full overwrite made
atomic via .tmp + rename, so a concurrent load sees either the old record or
the new one, never a partial write.
"""

from __future__ import annotations

import copy
import json
import logging
import secrets
from pathlib import Path
from typing import Protocol, runtime_checkable

from autopilot_enforcer.config import DEFAULT_STATE_DIRNAME
from autopilot_enforcer.types import EnforcementRecord

logger = logging.getLogger(__name__)

STATE_FILENAME = "state.json"


# ─── StateStore Protocol ──────────────────────────────────────────────────────


@runtime_checkable
class StateStore(Protocol):
    """Interface for the enforcement record store.

    Keyed by working directory. Implementations are not required to be
    safe for concurrent writers; the host serializes checks per directory.
    """

    def load(self, directory: str | Path) -> EnforcementRecord | None:
        """Return the record for directory, or None if absent or corrupt."""
        ...

    def save(self, directory: str | Path, record: EnforcementRecord) -> None:
        """Overwrite the record for directory atomically."""
        ...

    def delete(self, directory: str | Path) -> None:
        """Remove the record for directory. No-op if absent."""
        ...


# ─── JSONStateStore ───────────────────────────────────────────────────────────


class JSONStateStore:
    """File-backed store: <directory>/<state_dirname>/state.json."""

    def __init__(self, state_dirname: str = DEFAULT_STATE_DIRNAME) -> None:
        self._state_dirname = state_dirname

    def path_for(self, directory: str | Path) -> Path:
        return Path(directory) / self._state_dirname / STATE_FILENAME

    def load(self, directory: str | Path) -> EnforcementRecord | None:
        path = self.path_for(directory)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Unreadable autopilot state at %s: %s", path, e)
            return None
        try:
            return EnforcementRecord.from_dict(json.loads(text))
        except (ValueError, KeyError, TypeError) as e:
            # json.JSONDecodeError is a ValueError.
            logger.warning("Corrupt autopilot state at %s: %s", path, e)
            return None

    def save(self, directory: str | Path, record: EnforcementRecord) -> None:
        path = self.path_for(directory)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._atomic_write(path, json.dumps(record.to_dict(), indent=2) + "\n")

    def delete(self, directory: str | Path) -> None:
        try:
            self.path_for(directory).unlink()
        except FileNotFoundError:
            pass

    def _atomic_write(self, path: Path, content: str) -> None:
        """Write content atomically via .tmp + rename."""
        tmp_path = path.with_suffix(f".tmp.{secrets.token_hex(4)}")
        try:
            tmp_path.write_text(content, encoding="utf-8")
            tmp_path.replace(path)
        except BaseException:
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
            raise


# ─── InMemoryStateStore ───────────────────────────────────────────────────────


class InMemoryStateStore:
    """Dict-backed StateStore keyed by resolved directory string.

    Stores deep copies so callers cannot mutate persisted state without
    calling save(), matching the file-backed semantics. Does NOT persist
    across processes.
    """

    def __init__(self) -> None:
        self._records: dict[str, EnforcementRecord] = {}
        self.save_count = 0

    @staticmethod
    def _key(directory: str | Path) -> str:
        return str(Path(directory))

    def load(self, directory: str | Path) -> EnforcementRecord | None:
        record = self._records.get(self._key(directory))
        return copy.deepcopy(record) if record is not None else None

    def save(self, directory: str | Path, record: EnforcementRecord) -> None:
        self._records[self._key(directory)] = copy.deepcopy(record)
        self.save_count += 1

    def delete(self, directory: str | Path) -> None:
        self._records.pop(self._key(directory), None)
