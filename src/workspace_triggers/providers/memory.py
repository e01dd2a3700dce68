"""In-memory provider adapter used as a test double and for local dry runs."""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Tuple

from ..config import FilterConfig, PollConfig, TriggerConfigError
from ..models import CandidateItem, Cursor, cursor_max
from .base import FetchResult, ProviderAdapter, ProviderError

_LOG = logging.getLogger(__name__)


def _item_from_mapping(raw: Mapping[str, Any]) -> CandidateItem:
    return CandidateItem(
        item_id=str(raw["id"]),
        ordering_key=str(raw["ordering_key"]),
        payload=dict(raw.get("payload") or {"id": str(raw["id"])}),
        fields=dict(raw.get("fields") or {}),
    )


class InMemoryProvider(ProviderAdapter):
    """Serves items held in memory, one ordered list per resource.

    Items can be preloaded from the trigger's `options.items` list, each an
    object with `id`, `ordering_key` and optional `payload` and `fields`.
    Failures can be queued per resource to exercise error handling.
    """

    NAME = "memory"
    MAX_ITEMS_PER_POLL = 2500
    DEFAULT_RESOURCE = "default"
    REQUIRES_CREDENTIALS = False
    OPTIONS = frozenset({"items"})

    def __init__(self, config: Optional[PollConfig] = None) -> None:
        super().__init__(config)  # type: ignore[arg-type]
        self._items: Dict[str, List[CandidateItem]] = defaultdict(list)
        self._failures: Dict[str, Deque[ProviderError]] = defaultdict(deque)
        self.calls: List[Tuple[str, Cursor, int]] = []
        if config is not None:
            resource_id = config.resources[0] if config.resources else self.DEFAULT_RESOURCE
            for raw in config.options.get("items") or ():
                self._items[str(raw.get("resource") or resource_id)].append(_item_from_mapping(raw))

    @classmethod
    def validate_options(cls, config: PollConfig) -> None:
        super().validate_options(config)
        items = config.options.get("items")
        if items is None:
            return
        if not isinstance(items, list):
            raise TriggerConfigError(f"Trigger '{config.id}' option 'items' must be a list")
        for index, raw in enumerate(items):
            if not isinstance(raw, dict) or "id" not in raw or "ordering_key" not in raw:
                raise TriggerConfigError(
                    f"Trigger '{config.id}' item #{index} must define 'id' and 'ordering_key'"
                )

    def add(self, resource_id: str, *items: CandidateItem) -> None:
        self._items[resource_id].extend(items)

    def replace(self, resource_id: str, items: Iterable[CandidateItem]) -> None:
        self._items[resource_id] = list(items)

    def fail_next(self, resource_id: str, error: ProviderError) -> None:
        """Make the next fetch of `resource_id` raise `error`."""
        self._failures[resource_id].append(error)

    def initial_cursor(self, since: datetime) -> Cursor:
        return None

    def fetch_since(
        self,
        resource_id: str,
        cursor: Cursor,
        filters: FilterConfig,
        max_items: int,
    ) -> FetchResult:
        self.calls.append((resource_id, cursor, max_items))
        if self._failures[resource_id]:
            raise self._failures[resource_id].popleft()

        items: List[CandidateItem] = []
        new_cursor = cursor
        for item in self._items[resource_id]:
            if cursor is not None and item.ordering_key < cursor:
                continue
            items.append(item)
            new_cursor = cursor_max(new_cursor, item.ordering_key)
            if len(items) >= max_items:
                break

        _LOG.debug("Memory provider returned %d item(s) for %s", len(items), resource_id)
        return FetchResult(items=items, new_cursor=new_cursor)
