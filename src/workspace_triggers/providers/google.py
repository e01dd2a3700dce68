"""Shared HTTP plumbing for the Google workspace provider adapters."""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Dict, Iterator, Mapping, Optional, Tuple

import requests
from google.auth import exceptions as auth_exceptions

from ..config import PollConfig, TriggerConfigError
from ..credentials import build_session
from ..time_utils import normalize_timestamp
from .base import PermanentProviderError, ProviderAdapter, ProviderError, TransientProviderError

_LOG = logging.getLogger(__name__)

TRANSIENT_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
# Google reports some throttling as 403 instead of 429
RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"})


def _error_details(response: Any) -> Tuple[str, str]:
    """Extract (reason, message) from a Google API error body."""
    try:
        body = response.json()
    except ValueError:
        return "", (getattr(response, "text", "") or "")[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return "", str(error or "")
    reason = ""
    errors = error.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        reason = str(errors[0].get("reason") or "")
    return reason, str(error.get("message") or "")


def classify_http_error(response: Any) -> ProviderError:
    """Map an HTTP error response to a transient or permanent provider error."""
    status = int(response.status_code)
    reason, message = _error_details(response)
    text = f"HTTP {status} from {getattr(response, 'url', '?')}: {message or reason or 'no details'}"
    if status in TRANSIENT_STATUSES or (status == 403 and reason in RATE_LIMIT_REASONS):
        return TransientProviderError(text, status=status)
    return PermanentProviderError(text, status=status)


class GoogleApiProvider(ProviderAdapter):
    """Base class for adapters talking to Google REST APIs.

    Requests go through an authorized `requests` session using the trigger's
    `(connect_timeout, read_timeout)` pair. The session can be injected,
    which is how the tests substitute a fake transport.
    """

    SCOPES: ClassVar[Tuple[str, ...]] = ()
    OPTIONS = frozenset()

    def __init__(self, config: PollConfig, session: Optional[Any] = None) -> None:
        super().__init__(config)
        self._session = session

    @property
    def session(self) -> Any:
        if self._session is None:
            if self.config.credentials is None:
                raise PermanentProviderError(f"Provider '{self.NAME}' has no credentials configured")
            try:
                self._session = build_session(self.config.credentials, self.SCOPES)
            except TriggerConfigError as exc:
                raise PermanentProviderError(str(exc)) from exc
        return self._session

    def _get_json(self, url: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = self.session.get(url, params=params, timeout=self.config.timeouts)
        except auth_exceptions.RefreshError as exc:
            raise PermanentProviderError(f"Credentials were rejected: {exc}") from exc
        except auth_exceptions.TransportError as exc:
            raise TransientProviderError(f"Token refresh failed: {exc}") from exc
        except requests.Timeout as exc:
            raise TransientProviderError(f"Request to {url} timed out: {exc}") from exc
        except requests.RequestException as exc:
            raise TransientProviderError(f"Request to {url} failed: {exc}") from exc

        if response.status_code >= 400:
            raise classify_http_error(response)

        try:
            data = response.json()
        except ValueError as exc:
            raise TransientProviderError(f"Invalid JSON from {url}: {exc}") from exc
        if not isinstance(data, dict):
            raise TransientProviderError(f"Expected a JSON object from {url}, got {type(data).__name__}")
        return data

    @staticmethod
    def _ordering_key(value: Any, item_id: str) -> Optional[str]:
        """Normalize an API timestamp into cursor form, or None if unusable."""
        if not value:
            return None
        try:
            return normalize_timestamp(str(value))
        except ValueError:
            _LOG.warning("Ignoring item %s with malformed timestamp %r", item_id, value)
            return None

    def _paginate(self, url: str, params: Mapping[str, Any], items_key: str) -> Iterator[Dict[str, Any]]:
        """Yield the items of every page, following `nextPageToken`."""
        page_token: Optional[str] = None
        pages = 0
        while True:
            page_params = dict(params)
            if page_token:
                page_params["pageToken"] = page_token
            data = self._get_json(url, page_params)
            pages += 1
            for item in data.get(items_key) or []:
                if isinstance(item, dict):
                    yield item
            page_token = data.get("nextPageToken")
            if not page_token:
                _LOG.debug("Fetched %d page(s) from %s", pages, url)
                return
