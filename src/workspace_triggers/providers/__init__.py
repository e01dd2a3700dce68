"""Provider adapters for the resources a trigger can poll."""

from typing import Any, Dict, Optional, Type

from ..config import PollConfig
from .base import (
    FetchResult,
    PermanentProviderError,
    ProviderAdapter,
    ProviderError,
    TransientProviderError,
)
from .calendar import CalendarProvider
from .drive import DriveProvider
from .gmail import GmailProvider
from .google import GoogleApiProvider, classify_http_error
from .memory import InMemoryProvider
from .sheets import SheetsProvider

# Registry of available providers
PROVIDERS: Dict[str, Type[ProviderAdapter]] = {
    "gmail": GmailProvider,
    "calendar": CalendarProvider,
    "sheets": SheetsProvider,
    "drive": DriveProvider,
    "memory": InMemoryProvider,
}


def get_provider_class(name: str) -> Type[ProviderAdapter]:
    """Get a provider adapter class by name.

    Raises:
        ValueError: If the provider is not registered.
    """
    if name not in PROVIDERS:
        available = ", ".join(PROVIDERS.keys())
        raise ValueError(f"Unknown provider: {name}. Available: {available}")
    return PROVIDERS[name]


def build_provider(config: PollConfig, session: Optional[Any] = None) -> ProviderAdapter:
    """Instantiate the adapter configured for a trigger.

    Args:
        config: The trigger configuration.
        session: HTTP session to use instead of one built from credentials.
    """
    provider_cls = get_provider_class(config.provider)
    if issubclass(provider_cls, GoogleApiProvider):
        return provider_cls(config, session=session)
    return provider_cls(config)


__all__ = [
    "CalendarProvider",
    "DriveProvider",
    "FetchResult",
    "GmailProvider",
    "GoogleApiProvider",
    "InMemoryProvider",
    "PROVIDERS",
    "PermanentProviderError",
    "ProviderAdapter",
    "ProviderError",
    "SheetsProvider",
    "TransientProviderError",
    "build_provider",
    "classify_http_error",
    "get_provider_class",
]
