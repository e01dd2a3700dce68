"""Gmail poll source: fires on messages received since the last poll."""

from __future__ import annotations

import logging
from email.utils import parseaddr
from typing import Any, Dict, List, Optional

from ..config import FilterConfig, PollConfig, TriggerConfigError
from ..models import CandidateItem, Cursor, cursor_max
from ..time_utils import parse_timestamp, timestamp_from_epoch_millis
from .base import FetchResult
from .google import GoogleApiProvider

_LOG = logging.getLogger(__name__)

GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users"
METADATA_HEADERS = ["From", "To", "Cc", "Bcc", "Subject", "Date"]


def build_search_query(query: Optional[str], cursor: Cursor) -> str:
    """Combine the user query with a coarse `after:` bound derived from the cursor.

    Gmail's `after:` works on whole seconds, so the bound is widened by one
    second and the exact cut is made on `internalDate` afterwards.
    """
    parts: List[str] = []
    if query:
        parts.append(query)
    if cursor:
        seconds = int(parse_timestamp(cursor).timestamp())
        parts.append(f"after:{max(seconds - 1, 0)}")
    return " ".join(parts)


def _headers(message: Dict[str, Any]) -> Dict[str, str]:
    headers = (message.get("payload") or {}).get("headers") or []
    return {str(h.get("name", "")).lower(): str(h.get("value", "")) for h in headers if isinstance(h, dict)}


class GmailProvider(GoogleApiProvider):
    """Polls a Gmail mailbox for received messages.

    The resource is the mailbox user id (`me` by default). Messages are
    listed newest first by Gmail, so ids are collected for the whole window
    and then inspected oldest first; ordering key is `internalDate`.
    """

    NAME = "gmail"
    MAX_ITEMS_PER_POLL = 500
    DEFAULT_RESOURCE = "me"
    OPTIONS = frozenset({"include_spam_trash"})
    SCOPES = ("https://www.googleapis.com/auth/gmail.readonly",)

    @classmethod
    def validate_options(cls, config: PollConfig) -> None:
        super().validate_options(config)
        value = config.options.get("include_spam_trash", False)
        if not isinstance(value, bool):
            raise TriggerConfigError(f"Trigger '{config.id}' option 'include_spam_trash' must be a boolean")

    def _list_message_ids(self, user_id: str, cursor: Cursor, filters: FilterConfig) -> List[str]:
        params: Dict[str, Any] = {
            "maxResults": 500,
            "includeSpamTrash": "true" if self.config.options.get("include_spam_trash") else "false",
        }
        query = build_search_query(filters.query, cursor)
        if query:
            params["q"] = query
        if filters.labels:
            params["labelIds"] = list(filters.labels)

        _LOG.debug("Gmail search query for %s: %s", user_id, query)
        return [
            str(message["id"])
            for message in self._paginate(f"{GMAIL_API}/{user_id}/messages", params, "messages")
            if message.get("id")
        ]

    def fetch_since(
        self,
        resource_id: str,
        cursor: Cursor,
        filters: FilterConfig,
        max_items: int,
    ) -> FetchResult:
        message_ids = self._list_message_ids(resource_id, cursor, filters)
        _LOG.debug("Listed %d message id(s) in the window for %s", len(message_ids), resource_id)
        message_ids.reverse()

        items: List[CandidateItem] = []
        new_cursor = cursor
        for message_id in message_ids:
            if len(items) >= max_items:
                _LOG.debug("Reached max items (%d) for mailbox %s", max_items, resource_id)
                break
            message = self._get_json(
                f"{GMAIL_API}/{resource_id}/messages/{message_id}",
                {"format": "metadata", "metadataHeaders": METADATA_HEADERS},
            )
            try:
                ordering_key = timestamp_from_epoch_millis(message["internalDate"])
            except (KeyError, TypeError, ValueError):
                _LOG.warning("Message %s has no usable internalDate, skipping", message_id)
                continue
            if cursor is not None and ordering_key < cursor:
                _LOG.debug("Skipped message %s (too old: %s)", message_id, ordering_key)
                continue

            headers = _headers(message)
            items.append(
                CandidateItem(
                    item_id=message_id,
                    ordering_key=ordering_key,
                    payload=message,
                    fields={
                        "text": f"{headers.get('subject', '')}\n{message.get('snippet') or ''}",
                        "sender": parseaddr(headers.get("from", ""))[1],
                        "labels": list(message.get("labelIds") or []),
                    },
                )
            )
            new_cursor = cursor_max(new_cursor, ordering_key)

        return FetchResult(items=items, new_cursor=new_cursor)
