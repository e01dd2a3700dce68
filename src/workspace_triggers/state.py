"""
Trigger state persistence.

This module persists the per-trigger cursor and seen set between polls so
that a trigger never re-fires on items it already handed to the host and
never skips items across poll boundaries.

State files are stored as JSON, one per trigger instance, and contain:
- The cursor and seen set of every polled resource
- Consecutive transient failure counts per resource (health only)
- The time of the last save

The host must serialize polls of one trigger instance; the stores only
guarantee that a single save is atomic.
"""

from __future__ import annotations

import contextlib
import copy
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List
from urllib.parse import quote, unquote

from .models import TriggerState
from .time_utils import utc_now_iso


class StateStoreError(Exception):
    """Raised when persisted trigger state cannot be read or written."""


class StateStore:
    """
    Abstract base class for trigger state storage.

    Subclasses implement load/save of the TriggerState plus the failure
    counters used for escalation of repeated transient errors.
    """

    def load(self, trigger_id: str) -> TriggerState:  # pragma: no cover - interface
        """
        Load the state of a trigger.

        Args:
            trigger_id: Identifier of the trigger instance.

        Returns:
            The persisted state, or an empty TriggerState if never saved.
        """
        raise NotImplementedError

    def save(self, trigger_id: str, state: TriggerState) -> None:  # pragma: no cover - interface
        """
        Atomically replace the state of a trigger.

        Args:
            trigger_id: Identifier of the trigger instance.
            state: State to persist.
        """
        raise NotImplementedError

    def load_failures(self, trigger_id: str) -> Dict[str, int]:  # pragma: no cover - interface
        raise NotImplementedError

    def save_failures(self, trigger_id: str, failures: Dict[str, int]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def list_triggers(self) -> List[str]:  # pragma: no cover - interface
        raise NotImplementedError

    def reset(self, trigger_id: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class InMemoryStateStore(StateStore):
    """State store kept in process memory, used for tests and dry runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: Dict[str, dict] = {}
        self._failures: Dict[str, Dict[str, int]] = {}

    def load(self, trigger_id: str) -> TriggerState:
        with self._lock:
            raw = self._states.get(trigger_id)
        return TriggerState.from_dict(raw) if raw else TriggerState()

    def save(self, trigger_id: str, state: TriggerState) -> None:
        # Stored serialized so callers cannot mutate persisted state by reference
        with self._lock:
            self._states[trigger_id] = copy.deepcopy(state.to_dict())

    def load_failures(self, trigger_id: str) -> Dict[str, int]:
        with self._lock:
            return dict(self._failures.get(trigger_id, {}))

    def save_failures(self, trigger_id: str, failures: Dict[str, int]) -> None:
        with self._lock:
            self._failures[trigger_id] = dict(failures)

    def list_triggers(self) -> List[str]:
        with self._lock:
            return sorted(set(self._states) | set(self._failures))

    def reset(self, trigger_id: str) -> None:
        with self._lock:
            self._states.pop(trigger_id, None)
            self._failures.pop(trigger_id, None)


class JsonFileStateStore(StateStore):
    """
    Persist trigger state to JSON files under a state directory.

    Writes go to a temporary file in the same directory that is then renamed
    over the target, so readers see either the old or the new document.

    Args:
        directory: Directory holding one `<trigger_id>.json` per trigger.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = directory
        self._directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        """Return the state directory."""
        return self._directory

    def path_for(self, trigger_id: str) -> Path:
        """Return the state file path of a trigger.

        The id is percent-encoded, so distinct ids never share a file and
        path separators cannot leave the state directory.
        """
        return self._directory / f"{quote(trigger_id, safe='')}.json"

    def _read(self, trigger_id: str) -> dict:
        path = self.path_for(trigger_id)
        if not path.exists():
            return {}
        try:
            with path.open("r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise StateStoreError(f"Failed to read trigger state {path}: {exc}") from exc
        if not isinstance(document, dict):
            raise StateStoreError(f"Trigger state {path} must be a JSON object")
        return document

    def _write(self, trigger_id: str, document: dict) -> None:
        path = self.path_for(trigger_id)
        document["trigger_id"] = trigger_id
        document["updated_at"] = utc_now_iso()
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=str(self._directory))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise StateStoreError(f"Failed to write trigger state {path}: {exc}") from exc

    def load(self, trigger_id: str) -> TriggerState:
        resources = self._read(trigger_id).get("resources") or {}
        if not isinstance(resources, dict):
            raise StateStoreError(f"Trigger state for '{trigger_id}' has invalid 'resources'")
        try:
            return TriggerState.from_dict(resources)
        except (TypeError, IndexError, ValueError) as exc:
            raise StateStoreError(f"Trigger state for '{trigger_id}' is corrupt: {exc}") from exc

    def save(self, trigger_id: str, state: TriggerState) -> None:
        with self._lock:
            document = self._read(trigger_id)
            document["resources"] = state.to_dict()
            self._write(trigger_id, document)

    def load_failures(self, trigger_id: str) -> Dict[str, int]:
        failures = self._read(trigger_id).get("failures") or {}
        return {str(resource_id): int(count) for resource_id, count in failures.items()}

    def save_failures(self, trigger_id: str, failures: Dict[str, int]) -> None:
        with self._lock:
            document = self._read(trigger_id)
            document["failures"] = dict(failures)
            self._write(trigger_id, document)

    def list_triggers(self) -> List[str]:
        trigger_ids = []
        for path in sorted(self._directory.glob("*.json")):
            trigger_id = self._read_trigger_id(path)
            trigger_ids.append(trigger_id or unquote(path.stem))
        return trigger_ids

    def _read_trigger_id(self, path: Path) -> str:
        try:
            with path.open("r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError):
            return ""
        return str(document.get("trigger_id") or "") if isinstance(document, dict) else ""

    def reset(self, trigger_id: str) -> None:
        with self._lock:
            path = self.path_for(trigger_id)
            if path.exists():
                path.unlink()
