"""
Stateless item filters.

Each configured filter is an independent predicate over a candidate's
filter fields; the effective filter is their conjunction. A filter option
that is not configured always matches.

The provider-native `query` is never evaluated here: providers receive it
verbatim and apply their own search semantics.
"""

from __future__ import annotations

from typing import Callable, Iterable, List

from .config import FilterConfig
from .models import CandidateItem

Predicate = Callable[[CandidateItem], bool]


def keyword_filter(keyword: str) -> Predicate:
    """Substring containment over the item text."""

    def _match(item: CandidateItem) -> bool:
        return keyword in str(item.fields.get("text") or "")

    return _match


def sender_filter(sender: str) -> Predicate:
    """Sender or organizer address equality; mail addresses compare without case."""
    expected = sender.strip().lower()

    def _match(item: CandidateItem) -> bool:
        actual = item.fields.get("sender")
        return isinstance(actual, str) and actual.strip().lower() == expected

    return _match


def status_filter(status: str) -> Predicate:
    """Exact, case-sensitive status equality."""

    def _match(item: CandidateItem) -> bool:
        return item.fields.get("status") == status

    return _match


def labels_filter(labels: Iterable[str]) -> Predicate:
    """Every required label must be present on the item."""
    required = set(labels)

    def _match(item: CandidateItem) -> bool:
        return required.issubset(set(item.fields.get("labels") or ()))

    return _match


def exclude_labels_filter(labels: Iterable[str]) -> Predicate:
    """None of the excluded labels may be present on the item."""
    excluded = set(labels)

    def _match(item: CandidateItem) -> bool:
        return not excluded.intersection(item.fields.get("labels") or ())

    return _match


class ItemFilter:
    """Conjunction of the predicates configured in a FilterConfig."""

    def __init__(self, config: FilterConfig) -> None:
        self._predicates: List[Predicate] = []
        if config.keyword:
            self._predicates.append(keyword_filter(config.keyword))
        if config.sender:
            self._predicates.append(sender_filter(config.sender))
        if config.status:
            self._predicates.append(status_filter(config.status))
        if config.labels:
            self._predicates.append(labels_filter(config.labels))
        if config.exclude_labels:
            self._predicates.append(exclude_labels_filter(config.exclude_labels))

    def __len__(self) -> int:
        return len(self._predicates)

    def matches(self, item: CandidateItem) -> bool:
        return all(predicate(item) for predicate in self._predicates)

    def apply(self, items: Iterable[CandidateItem]) -> List[CandidateItem]:
        """Keep matching items, preserving their order."""
        return [item for item in items if self.matches(item)]
