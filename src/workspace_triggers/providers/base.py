"""Abstract base class for provider adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar, FrozenSet, List, Optional

from ..config import FilterConfig, PollConfig, TriggerConfigError
from ..models import CandidateItem, Cursor, ErrorKind
from ..time_utils import format_timestamp


class ProviderError(Exception):
    """Base class for failures reported by a provider adapter."""

    kind: ClassVar[ErrorKind] = ErrorKind.TRANSIENT

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class TransientProviderError(ProviderError):
    """Network failure, rate limit or outage; the poll is retried next interval."""

    kind = ErrorKind.TRANSIENT


class PermanentProviderError(ProviderError):
    """Resource missing or access revoked; needs a human fix before polling resumes."""

    kind = ErrorKind.PERMANENT


@dataclass
class FetchResult:
    """Candidates at or after the requested cursor, plus the cursor covering them."""

    items: List[CandidateItem] = field(default_factory=list)
    new_cursor: Cursor = None


class ProviderAdapter(ABC):
    """Abstract base class for provider adapters.

    Implement this class to add support for a new resource type. An adapter
    paginates internally and reports candidates in provider order; the poll
    engine filters, deduplicates and decides what fires.
    """

    NAME: ClassVar[str] = ""
    # Largest max_items_per_poll the provider API can serve in one poll
    MAX_ITEMS_PER_POLL: ClassVar[int] = 2500
    # Resource polled when the trigger names none; None means one is required
    DEFAULT_RESOURCE: ClassVar[Optional[str]] = None
    REQUIRES_CREDENTIALS: ClassVar[bool] = True
    OPTIONS: ClassVar[FrozenSet[str]] = frozenset()

    def __init__(self, config: PollConfig) -> None:
        self._config = config

    @property
    def config(self) -> PollConfig:
        return self._config

    @classmethod
    def validate_options(cls, config: PollConfig) -> None:
        """Reject provider options this adapter does not understand.

        Raises:
            TriggerConfigError: If an unknown option is configured.
        """
        unknown = sorted(set(config.options) - cls.OPTIONS)
        if unknown:
            raise TriggerConfigError(
                f"Trigger '{config.id}' has unknown options for provider '{cls.NAME}': {', '.join(unknown)}"
            )

    def initial_cursor(self, since: datetime) -> Cursor:
        """Cursor used on the very first poll of a resource."""
        return format_timestamp(since)

    @abstractmethod
    def fetch_since(
        self,
        resource_id: str,
        cursor: Cursor,
        filters: FilterConfig,
        max_items: int,
    ) -> FetchResult:
        """Fetch candidate items at or after `cursor`.

        Args:
            resource_id: The resource to poll (mailbox, calendar, spreadsheet...).
            cursor: Position reached by the previous poll.
            filters: Trigger filters; adapters apply only the provider-native
                `query` (and may use other filters to narrow the request).
            max_items: Upper bound on the number of items to return.

        Returns:
            FetchResult with items in provider order and the cursor that covers
            every returned item.

        Raises:
            TransientProviderError: The call may succeed on a later poll.
            PermanentProviderError: The resource cannot be polled until fixed.
        """
        pass
