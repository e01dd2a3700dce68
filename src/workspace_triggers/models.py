"""Data models for polling triggers.

This module defines the core data structures shared by the poll engine,
the state stores and the provider adapters:
    - Candidate items reported by providers
    - Per-resource and per-trigger persisted state (cursor + seen set)
    - Poll results and the execution payload handed to the host

Persisted structures expose `to_dict()` / `from_dict()` so a save/load cycle
through JSON round-trips exactly.
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .time_utils import utc_now_iso

Cursor = Optional[str]

DEFAULT_MAX_SEEN = 1000


def cursor_max(left: Cursor, right: Cursor) -> Cursor:
    """Return the later of two cursors; ``None`` sorts before everything."""
    if left is None:
        return right
    if right is None:
        return left
    return right if right > left else left


@dataclass(frozen=True)
class CandidateItem:
    """A unit of change reported by a provider for one poll cycle.

    Attributes:
        item_id: Identifier, unique within provider and resource.
        ordering_key: Provider ordering marker, same encoding as the cursor.
        payload: Provider-native representation, passed through unmodified.
        fields: Filter-relevant attributes (text, sender, status, labels).
    """

    item_id: str
    ordering_key: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    fields: Mapping[str, Any] = field(default_factory=dict)


class SeenSet:
    """Bounded mapping of recently fired item ids to the cursor they fired at.

    Only consulted for items sharing the current cursor value, which happens
    when the provider cursor is coarser than a single item. Insertion order is
    kept so the oldest entries are evicted first when the bound is exceeded.
    """

    def __init__(
        self,
        entries: Optional[Iterable[Tuple[str, str]]] = None,
        max_size: int = DEFAULT_MAX_SEEN,
    ) -> None:
        if max_size < 1:
            raise ValueError("SeenSet max_size must be at least 1")
        self._max_size = max_size
        self._entries: "OrderedDict[str, str]" = OrderedDict()
        for item_id, cursor in entries or ():
            self._entries[item_id] = cursor
        self._enforce_bound()

    @property
    def max_size(self) -> int:
        return self._max_size

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SeenSet):
            return NotImplemented
        return list(self._entries.items()) == list(other._entries.items())

    def __repr__(self) -> str:
        return f"SeenSet({list(self._entries.items())!r})"

    def cursor_of(self, item_id: str) -> Optional[str]:
        return self._entries.get(item_id)

    def items(self) -> List[Tuple[str, str]]:
        return list(self._entries.items())

    def merge(self, item_ids: Iterable[str], cursor: str) -> SeenSet:
        """Return a new set with `item_ids` recorded at `cursor`.

        Entries strictly older than `cursor` are evicted first since they can
        never collide again, then the size bound is enforced.
        """
        merged = SeenSet(
            ((item_id, seen_at) for item_id, seen_at in self._entries.items() if seen_at >= cursor),
            max_size=self._max_size,
        )
        for item_id in item_ids:
            merged._entries.pop(item_id, None)
            merged._entries[item_id] = cursor
        merged._enforce_bound()
        return merged

    def _enforce_bound(self) -> None:
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)


@dataclass
class ResourceState:
    """Cursor and seen set for a single polled resource."""

    cursor: Cursor = None
    seen: SeenSet = field(default_factory=SeenSet)

    def to_dict(self) -> Dict[str, object]:
        return {
            "cursor": self.cursor,
            "seen": [[item_id, cursor] for item_id, cursor in self.seen.items()],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], max_seen: Optional[int] = None) -> ResourceState:
        """Rebuild a resource state from its serialized form.

        Without `max_seen` every persisted entry is kept; the engine applies
        the trigger's configured bound on the next poll.
        """
        seen_raw = data.get("seen") or []
        entries = [(str(entry[0]), str(entry[1])) for entry in seen_raw]
        if max_seen is None:
            max_seen = max(DEFAULT_MAX_SEEN, len(entries))
        return cls(cursor=data.get("cursor"), seen=SeenSet(entries, max_size=max_seen))


@dataclass
class TriggerState:
    """Persisted state of one trigger instance, keyed by resource id.

    A single-resource trigger holds exactly one entry; fan-out triggers hold
    one independent sub-cursor per resource.
    """

    resources: Dict[str, ResourceState] = field(default_factory=dict)

    def resource(self, resource_id: str) -> ResourceState:
        """Return the state for `resource_id`, or a fresh one if never polled."""
        return self.resources.get(resource_id) or ResourceState()

    def with_resource(self, resource_id: str, state: ResourceState) -> TriggerState:
        resources = dict(self.resources)
        resources[resource_id] = state
        return TriggerState(resources=resources)

    def to_dict(self) -> Dict[str, object]:
        return {resource_id: state.to_dict() for resource_id, state in self.resources.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], max_seen: Optional[int] = None) -> TriggerState:
        return cls(
            resources={
                str(resource_id): ResourceState.from_dict(raw or {}, max_seen=max_seen)
                for resource_id, raw in data.items()
            }
        )


class ErrorKind(str, Enum):
    """Classification of a failed resource poll.

    Attributes:
        TRANSIENT: Network failure, rate limit or outage; retried next interval.
        PERMANENT: Resource missing or permission revoked; needs a human fix.
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class FiredItem:
    """A candidate item selected for execution, tagged with its resource."""

    resource_id: str
    item: CandidateItem


@dataclass(frozen=True)
class ResourceError:
    """Failure attached to one resource of a poll."""

    resource_id: str
    kind: ErrorKind
    message: str
    consecutive_failures: int = 1
    escalated: bool = False

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


@dataclass
class PollResult:
    """Outcome of one poll cycle across every resource of a trigger.

    Attributes:
        items: Fired items in provider order, grouped by resource.
        cursors: Cursor in effect per resource after the poll.
        errors: Per-resource failures (resources absent here succeeded).
    """

    items: List[FiredItem] = field(default_factory=list)
    cursors: Dict[str, Cursor] = field(default_factory=dict)
    errors: List[ResourceError] = field(default_factory=list)

    @property
    def fired(self) -> bool:
        return bool(self.items)

    @property
    def permanent_errors(self) -> List[ResourceError]:
        return [error for error in self.errors if error.kind is ErrorKind.PERMANENT]

    def items_for(self, resource_id: str) -> List[CandidateItem]:
        return [fired.item for fired in self.items if fired.resource_id == resource_id]


@dataclass
class ExecutionPayload:
    """Event payload handed to the host scheduler to materialize a workflow run."""

    trigger_id: str
    provider: str
    resources: List[Dict[str, Any]]
    fired_at: str = field(default_factory=utc_now_iso)

    @property
    def count(self) -> int:
        return sum(len(resource["items"]) for resource in self.resources)

    @classmethod
    def from_result(cls, trigger_id: str, provider: str, result: PollResult) -> ExecutionPayload:
        resources: List[Dict[str, Any]] = []
        for resource_id, cursor in result.cursors.items():
            items = result.items_for(resource_id)
            if not items:
                continue
            resources.append(
                {
                    "resource_id": resource_id,
                    "cursor": cursor,
                    "items": [dict(item.payload) for item in items],
                }
            )
        return cls(trigger_id=trigger_id, provider=provider, resources=resources)

    def to_dict(self) -> Dict[str, object]:
        return {
            "trigger_id": self.trigger_id,
            "provider": self.provider,
            "fired_at": self.fired_at,
            "count": self.count,
            "resources": self.resources,
        }
