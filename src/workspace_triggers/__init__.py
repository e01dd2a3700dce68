"""Polling triggers for workspace mail, calendar, spreadsheet and drive resources."""

from .config import PollConfig, TriggerConfigError, TriggersConfig, load_triggers_config
from .emitter import CollectingEmitter, EmissionError, ExecutionEmitter, ScriptEmitter
from .engine import PollEngine, PollOutcome
from .models import CandidateItem, ExecutionPayload, PollResult, SeenSet, TriggerState
from .providers import PermanentProviderError, ProviderError, TransientProviderError
from .runner import TriggerRunner
from .state import InMemoryStateStore, JsonFileStateStore, StateStoreError

__all__ = [
    "CandidateItem",
    "CollectingEmitter",
    "EmissionError",
    "ExecutionEmitter",
    "ExecutionPayload",
    "InMemoryStateStore",
    "JsonFileStateStore",
    "PermanentProviderError",
    "PollConfig",
    "PollEngine",
    "PollOutcome",
    "PollResult",
    "ProviderError",
    "ScriptEmitter",
    "SeenSet",
    "StateStoreError",
    "TransientProviderError",
    "TriggerConfigError",
    "TriggerRunner",
    "TriggerState",
    "TriggersConfig",
    "load_triggers_config",
]
