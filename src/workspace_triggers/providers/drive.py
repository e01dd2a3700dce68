"""Google Drive poll source: fires on files created since the last poll."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from ..config import FilterConfig, PollConfig, TriggerConfigError
from ..models import CandidateItem, Cursor, cursor_max
from .base import FetchResult
from .google import GoogleApiProvider

_LOG = logging.getLogger(__name__)

DRIVE_FILES_API = "https://www.googleapis.com/drive/v3/files"
ANY_FOLDER = "*"
FILE_FIELDS = "id,name,mimeType,createdTime,modifiedTime,parents,size,webViewLink,owners(displayName,emailAddress)"


def _quote_literal(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_files_query(
    folder_id: Optional[str],
    mime_types: Sequence[str],
    cursor: Cursor,
    query: Optional[str],
) -> str:
    """Build the Drive `q` expression for files created at or after the cursor."""
    clauses = ["trashed = false"]
    if folder_id and folder_id != ANY_FOLDER:
        clauses.append(f"'{_quote_literal(folder_id)}' in parents")
    if mime_types:
        alternatives = " or ".join(f"mimeType = '{_quote_literal(mime)}'" for mime in mime_types)
        clauses.append(f"({alternatives})")
    if cursor:
        clauses.append(f"createdTime >= '{cursor}'")
    if query:
        clauses.append(f"({query})")
    return " and ".join(clauses)


class DriveProvider(GoogleApiProvider):
    """Polls Drive folders for newly created files.

    The resource is a folder id; `*` watches every file visible to the
    credentials. The `mime_types` option restricts the file types.
    """

    NAME = "drive"
    MAX_ITEMS_PER_POLL = 1000
    DEFAULT_RESOURCE = ANY_FOLDER
    OPTIONS = frozenset({"mime_types"})
    SCOPES = ("https://www.googleapis.com/auth/drive.metadata.readonly",)

    @classmethod
    def validate_options(cls, config: PollConfig) -> None:
        super().validate_options(config)
        mime_types = config.options.get("mime_types")
        if mime_types is None:
            return
        if not isinstance(mime_types, list) or not all(isinstance(m, str) and m for m in mime_types):
            raise TriggerConfigError(f"Trigger '{config.id}' option 'mime_types' must be a list of strings")

    def fetch_since(
        self,
        resource_id: str,
        cursor: Cursor,
        filters: FilterConfig,
        max_items: int,
    ) -> FetchResult:
        query = build_files_query(resource_id, self.config.options.get("mime_types") or [], cursor, filters.query)
        params: Dict[str, Any] = {
            "q": query,
            "orderBy": "createdTime",
            "pageSize": min(max_items, self.MAX_ITEMS_PER_POLL),
            "fields": f"nextPageToken,files({FILE_FIELDS})",
            "supportsAllDrives": "true",
            "includeItemsFromAllDrives": "true",
        }
        _LOG.debug("Drive query for %s: %s", resource_id, query)

        items: List[CandidateItem] = []
        new_cursor = cursor
        for drive_file in self._paginate(DRIVE_FILES_API, params, "files"):
            if len(items) >= max_items:
                _LOG.debug("Reached max items (%d) for folder %s", max_items, resource_id)
                break
            file_id = str(drive_file.get("id") or "")
            created = self._ordering_key(drive_file.get("createdTime"), file_id)
            if not file_id or created is None:
                continue
            if cursor is not None and created < cursor:
                continue

            owners = drive_file.get("owners") or [{}]
            items.append(
                CandidateItem(
                    item_id=file_id,
                    ordering_key=created,
                    payload=drive_file,
                    fields={
                        "text": drive_file.get("name") or "",
                        "sender": owners[0].get("emailAddress") or "",
                    },
                )
            )
            new_cursor = cursor_max(new_cursor, created)

        return FetchResult(items=items, new_cursor=new_cursor)
