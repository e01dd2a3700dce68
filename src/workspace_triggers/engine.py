"""Poll engine: one fetch/filter/dedup/fire cycle for a trigger instance.

The engine holds no timer and performs no I/O of its own besides calling
the provider adapter. Given the persisted state it returns the items to fire
and the next state; persisting that state is left to the caller, so a
failed emission never advances the cursor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .config import PollConfig, TriggerConfigError, validate_poll_config
from .filters import ItemFilter
from .models import (
    CandidateItem,
    Cursor,
    ErrorKind,
    FiredItem,
    PollResult,
    ResourceError,
    ResourceState,
    SeenSet,
    TriggerState,
    cursor_max,
)
from .providers.base import ProviderAdapter, ProviderError
from .time_utils import utc_now

_LOG = logging.getLogger(__name__)


@dataclass
class PollOutcome:
    """Result of a poll together with the state to persist afterwards.

    Attributes:
        result: Fired items, per-resource cursors and errors.
        state: Next trigger state; failed resources keep their previous entry.
        failures: Consecutive failure count per resource.
    """

    result: PollResult
    state: TriggerState
    failures: Dict[str, int] = field(default_factory=dict)

    @property
    def fired(self) -> bool:
        return self.result.fired


class PollEngine:
    """Runs poll cycles for one trigger instance.

    The configuration is validated on construction so that a bad trigger
    fails before any provider call is made.
    """

    def __init__(
        self,
        config: PollConfig,
        provider: ProviderAdapter,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        validate_poll_config(config)
        if provider.NAME != config.provider:
            raise TriggerConfigError(
                f"Trigger '{config.id}' is configured for provider '{config.provider}' "
                f"but was given '{provider.NAME}'"
            )
        self._config = config
        self._provider = provider
        self._clock = clock
        self._filter = ItemFilter(config.filter)

    @property
    def config(self) -> PollConfig:
        return self._config

    def poll(self, state: TriggerState, failures: Optional[Mapping[str, int]] = None) -> PollOutcome:
        """Poll every configured resource once.

        Each resource advances independently. A provider failure on one
        resource leaves that resource's state untouched and is reported in
        the result; the remaining resources are still polled. Exceptions
        other than ProviderError propagate.
        """
        result = PollResult()
        next_state = TriggerState(resources=dict(state.resources))
        counts: Dict[str, int] = dict(failures or {})

        for resource_id in self._config.resources:
            previous = state.resource(resource_id)
            try:
                resource_state, fired = self._poll_resource(resource_id, previous)
            except ProviderError as exc:
                error = self._record_failure(resource_id, exc, counts)
                result.errors.append(error)
                result.cursors[resource_id] = previous.cursor
                continue

            if counts.pop(resource_id, 0):
                _LOG.info("Trigger %s recovered on resource %s", self._config.id, resource_id)
            next_state = next_state.with_resource(resource_id, resource_state)
            result.cursors[resource_id] = resource_state.cursor
            result.items.extend(FiredItem(resource_id=resource_id, item=item) for item in fired)

        if result.fired:
            _LOG.info("Trigger %s fired with %d item(s)", self._config.id, len(result.items))
        else:
            _LOG.info("Trigger %s: no new items", self._config.id)
        return PollOutcome(result=result, state=next_state, failures=counts)

    def _start_cursor(self, previous: ResourceState) -> Cursor:
        if previous.cursor is not None:
            return previous.cursor
        return self._provider.initial_cursor(self._clock() - self._config.lookback)

    def _poll_resource(
        self,
        resource_id: str,
        previous: ResourceState,
    ) -> Tuple[ResourceState, List[CandidateItem]]:
        config = self._config
        cursor = self._start_cursor(previous)
        seen = SeenSet(previous.seen.items(), max_size=config.max_seen)
        max_items = config.max_items_per_poll

        fetched = self._provider.fetch_since(resource_id, cursor, config.filter, max_items + len(seen))

        fresh: List[CandidateItem] = []
        batch_ids = set()
        for item in fetched.items:
            if cursor is not None and item.ordering_key < cursor:
                _LOG.debug("Skipped %s: before cursor %s", item.item_id, cursor)
                continue
            if not self._filter.matches(item):
                _LOG.debug("Skipped %s: filtered out", item.item_id)
                continue
            if item.item_id in seen or item.item_id in batch_ids:
                _LOG.debug("Skipped %s: already fired", item.item_id)
                continue
            batch_ids.add(item.item_id)
            fresh.append(item)

        fire = fresh[:max_items]
        if len(fresh) > max_items:
            # Items after the last fired one are picked up next poll
            new_cursor = fire[-1].ordering_key
        else:
            new_cursor = fetched.new_cursor
        new_cursor = cursor_max(cursor, new_cursor)

        if new_cursor is not None:
            sharing = len(fire) + sum(1 for _, seen_at in seen.items() if seen_at == new_cursor)
            if sharing > config.max_seen:
                _LOG.warning(
                    "Trigger %s resource %s: %d items share ordering key %s, above max_seen %d; oldest may refire",
                    config.id,
                    resource_id,
                    sharing,
                    new_cursor,
                    config.max_seen,
                )
            seen = seen.merge((item.item_id for item in fire), new_cursor)

        _LOG.info(
            "Trigger %s resource %s: %d candidate(s), %d fired, cursor %s -> %s",
            config.id,
            resource_id,
            len(fetched.items),
            len(fire),
            previous.cursor,
            new_cursor,
        )
        return ResourceState(cursor=new_cursor, seen=seen), fire

    def _record_failure(self, resource_id: str, exc: ProviderError, counts: Dict[str, int]) -> ResourceError:
        count = counts.get(resource_id, 0) + 1
        counts[resource_id] = count
        escalated = exc.kind is ErrorKind.PERMANENT or count >= self._config.escalate_after

        if escalated:
            _LOG.error(
                "Trigger %s resource %s failed (%s, %d consecutive): %s",
                self._config.id,
                resource_id,
                exc.kind.value,
                count,
                exc,
            )
        else:
            _LOG.warning(
                "Trigger %s resource %s failed (%s, attempt %d of %d before escalation): %s",
                self._config.id,
                resource_id,
                exc.kind.value,
                count,
                self._config.escalate_after,
                exc,
            )
        return ResourceError(
            resource_id=resource_id,
            kind=exc.kind,
            message=str(exc),
            consecutive_failures=count,
            escalated=escalated,
        )
