"""Google Calendar poll source: fires on events created since the last poll."""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import quote

from ..config import FilterConfig
from ..models import CandidateItem, Cursor, cursor_max
from .base import FetchResult
from .google import GoogleApiProvider

_LOG = logging.getLogger(__name__)

CALENDAR_API = "https://www.googleapis.com/calendar/v3/calendars"


def _event_text(event: Dict[str, Any]) -> str:
    return "\n".join(str(event.get(key) or "") for key in ("summary", "description", "location"))


class CalendarProvider(GoogleApiProvider):
    """Polls one or more calendars for newly created events.

    Events are listed by `updated` time, the only ordering the API offers,
    and events whose `created` time predates the cursor are skipped as
    updates to older events. The cursor still advances over them.
    """

    NAME = "calendar"
    MAX_ITEMS_PER_POLL = 2500
    DEFAULT_RESOURCE = "primary"
    SCOPES = ("https://www.googleapis.com/auth/calendar.readonly",)

    def fetch_since(
        self,
        resource_id: str,
        cursor: Cursor,
        filters: FilterConfig,
        max_items: int,
    ) -> FetchResult:
        params: Dict[str, Any] = {
            "orderBy": "updated",
            "singleEvents": "true",
            "maxResults": min(max_items, self.MAX_ITEMS_PER_POLL),
            "showDeleted": "true" if filters.status == "cancelled" else "false",
        }
        if cursor:
            params["updatedMin"] = cursor
        if filters.query:
            params["q"] = filters.query

        url = f"{CALENDAR_API}/{quote(resource_id, safe='@')}/events"
        items: List[CandidateItem] = []
        new_cursor = cursor
        for event in self._paginate(url, params, "items"):
            if len(items) >= max_items:
                _LOG.debug("Reached max items (%d) for calendar %s", max_items, resource_id)
                break
            event_id = str(event.get("id") or "")
            updated = self._ordering_key(event.get("updated"), event_id)
            if not event_id or updated is None:
                continue
            if cursor is not None and updated < cursor:
                continue

            created = self._ordering_key(event.get("created"), event_id)
            if cursor is not None and created is not None and created < cursor:
                # Update to an event created before this window
                new_cursor = cursor_max(new_cursor, updated)
                continue

            organizer = event.get("organizer") or {}
            items.append(
                CandidateItem(
                    item_id=event_id,
                    ordering_key=updated,
                    payload=event,
                    fields={
                        "text": _event_text(event),
                        "sender": organizer.get("email") or "",
                        "status": event.get("status") or "",
                    },
                )
            )
            new_cursor = cursor_max(new_cursor, updated)

        return FetchResult(items=items, new_cursor=new_cursor)
