"""Host glue: load state, poll, emit, then persist."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config import PollConfig
from .emitter import EmissionError, ExecutionEmitter, ScriptEmitter, StdoutEmitter
from .engine import PollEngine, PollOutcome
from .models import ExecutionPayload
from .providers import ProviderAdapter, build_provider
from .state import StateStore, StateStoreError

_LOG = logging.getLogger(__name__)


def build_emitter(config: PollConfig, workdir: Optional[Path] = None) -> ExecutionEmitter:
    """Run the trigger's script when configured, otherwise print payloads."""
    if config.on_match is not None:
        return ScriptEmitter(config.on_match, workdir=workdir)
    return StdoutEmitter()


class TriggerRunner:
    """Runs poll cycles of one trigger against a state store and an emitter.

    State is saved only after the emitter accepted the payload: if emission
    fails the next poll starts again from the previous cursor and the same
    items fire again.
    """

    def __init__(
        self,
        config: PollConfig,
        store: StateStore,
        emitter: ExecutionEmitter,
        provider: Optional[ProviderAdapter] = None,
        engine: Optional[PollEngine] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._emitter = emitter
        self._engine = engine or PollEngine(config, provider or build_provider(config))

    @classmethod
    def from_config(
        cls,
        config: PollConfig,
        store: StateStore,
        workdir: Optional[Path] = None,
        session: Optional[Any] = None,
    ) -> TriggerRunner:
        return cls(config, store, build_emitter(config, workdir), provider=build_provider(config, session=session))

    @property
    def config(self) -> PollConfig:
        return self._config

    def run_once(self, dry_run: bool = False) -> PollOutcome:
        """Run a single poll cycle.

        Args:
            dry_run: Poll and log what would fire, without emitting or saving.

        Raises:
            StateStoreError: If the state cannot be loaded or saved.
            EmissionError: If the emitter failed; no state was saved.
        """
        trigger_id = self._config.id
        state = self._store.load(trigger_id)
        failures = self._store.load_failures(trigger_id)

        outcome = self._engine.poll(state, failures)

        if dry_run:
            for fired in outcome.result.items:
                _LOG.info(
                    "[DRY RUN] Would fire %s for %s item %s",
                    trigger_id,
                    fired.resource_id,
                    fired.item.item_id,
                )
            return outcome

        if outcome.fired:
            payload = ExecutionPayload.from_result(trigger_id, self._config.provider, outcome.result)
            self._emitter.emit(payload)

        self._store.save(trigger_id, outcome.state)
        if outcome.failures != failures:
            self._store.save_failures(trigger_id, outcome.failures)
        return outcome


def watch(
    runners: Sequence[TriggerRunner],
    iterations: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
    monotonic: Callable[[], float] = time.monotonic,
) -> int:
    """Poll each trigger on its own interval until interrupted.

    Runs are sequential so at most one poll per trigger is in flight. A
    failed run is logged and retried at the trigger's next interval.

    Args:
        runners: One runner per trigger.
        iterations: Stop after this many poll runs (all triggers combined).
        sleep: Sleep function, injectable for tests.
        monotonic: Clock used for scheduling, injectable for tests.

    Returns:
        Number of poll runs performed.
    """
    if not runners:
        return 0

    due: Dict[str, float] = {runner.config.id: monotonic() for runner in runners}
    runs = 0
    while iterations is None or runs < iterations:
        now = monotonic()
        ready: List[TriggerRunner] = [runner for runner in runners if due[runner.config.id] <= now]
        if not ready:
            sleep(max(min(due.values()) - now, 0.0))
            continue

        for runner in ready:
            if iterations is not None and runs >= iterations:
                break
            trigger_id = runner.config.id
            try:
                runner.run_once()
            except EmissionError as exc:
                _LOG.error("Emission failed for trigger %s, state not saved: %s", trigger_id, exc)
            except StateStoreError as exc:
                _LOG.error("State store failure for trigger %s: %s", trigger_id, exc)
            runs += 1
            due[trigger_id] = monotonic() + runner.config.interval.total_seconds()
    return runs
