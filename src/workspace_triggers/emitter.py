"""Execution emitters hand fired payloads to whatever runs the workflow."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, TextIO
from urllib.parse import quote

from .config import OnMatchConfig
from .models import ExecutionPayload

_LOG = logging.getLogger(__name__)


class EmissionError(Exception):
    """Raised when an execution payload could not be handed over."""


class ExecutionEmitter:
    """Interface for delivering an execution payload to the host."""

    def emit(self, payload: ExecutionPayload) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class CollectingEmitter(ExecutionEmitter):
    """Keeps every payload in memory; the caller reads them back."""

    def __init__(self) -> None:
        self.payloads: List[ExecutionPayload] = []

    def emit(self, payload: ExecutionPayload) -> None:
        self.payloads.append(payload)


class StdoutEmitter(ExecutionEmitter):
    """Prints each payload as a JSON document, one per line."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream

    def emit(self, payload: ExecutionPayload) -> None:
        stream = self._stream or sys.stdout
        stream.write(json.dumps(payload.to_dict(), sort_keys=True) + "\n")
        stream.flush()


class ScriptEmitter(ExecutionEmitter):
    """Runs a bash script when a trigger fires.

    The script receives these environment variables:
    - TRIGGER_ID: the trigger instance id
    - TRIGGER_PROVIDER: e.g. "gmail"
    - TRIGGER_ITEM_COUNT: number of fired items
    - TRIGGER_RESOURCES: comma-separated resource ids that fired
    - TRIGGER_CURSOR: cursor in effect at fire time (single-resource triggers)
    - TRIGGER_PAYLOAD_FILE: JSON file holding the full execution payload
    - Any additional vars from on_match.env
    """

    def __init__(self, config: OnMatchConfig, workdir: Optional[Path] = None):
        """Initialize the emitter.

        Args:
            config: Script path and extra env vars.
            workdir: Working directory for script execution.
                     Defaults to current directory.
        """
        self._config = config
        self._workdir = workdir or Path.cwd()

    def _script_path(self) -> Path:
        script_path = Path(self._config.script).expanduser()
        # Resolve relative paths against workdir
        if not script_path.is_absolute():
            script_path = self._workdir / script_path
        return script_path

    def _environment(self, payload: ExecutionPayload, payload_file: str) -> Dict[str, str]:
        env = os.environ.copy()
        env["TRIGGER_ID"] = payload.trigger_id
        env["TRIGGER_PROVIDER"] = payload.provider
        env["TRIGGER_ITEM_COUNT"] = str(payload.count)
        env["TRIGGER_RESOURCES"] = ",".join(resource["resource_id"] for resource in payload.resources)
        if len(payload.resources) == 1:
            env["TRIGGER_CURSOR"] = payload.resources[0]["cursor"] or ""
        env["TRIGGER_PAYLOAD_FILE"] = payload_file
        # Add user-configured variables
        env.update(self._config.env)
        return env

    def emit(self, payload: ExecutionPayload) -> None:
        script_path = self._script_path()
        if not script_path.exists():
            raise EmissionError(f"Script not found: {script_path}")

        fd, payload_file = tempfile.mkstemp(prefix=f"{quote(payload.trigger_id, safe='')}.", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload.to_dict(), f, indent=2)

            _LOG.info("Executing trigger script: %s", script_path)
            _LOG.debug("Environment: TRIGGER_ID=%s, TRIGGER_ITEM_COUNT=%d", payload.trigger_id, payload.count)
            try:
                result = subprocess.run(
                    ["bash", str(script_path)],
                    cwd=str(self._workdir),
                    env=self._environment(payload, payload_file),
                )
            except OSError as exc:
                raise EmissionError(f"Failed to execute script {script_path}: {exc}") from exc
        finally:
            Path(payload_file).unlink(missing_ok=True)

        if result.returncode != 0:
            raise EmissionError(f"Trigger script {script_path} failed with exit code {result.returncode}")
        _LOG.info("Trigger script succeeded for %s (%d item(s))", payload.trigger_id, payload.count)
