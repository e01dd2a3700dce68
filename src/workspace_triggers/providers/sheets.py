"""Google Sheets poll source: fires on new revisions of a spreadsheet.

Changes are tracked through the Drive revision history of the spreadsheet,
which covers cell edits, row or column changes and tab additions alike.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from ..config import FilterConfig, PollConfig, TriggerConfigError
from ..models import CandidateItem, Cursor, cursor_max
from .base import FetchResult, PermanentProviderError, ProviderError
from .google import GoogleApiProvider

_LOG = logging.getLogger(__name__)

DRIVE_FILES_API = "https://www.googleapis.com/drive/v3/files"
SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"


def build_range(sheet_name: Optional[str], cell_range: Optional[str]) -> Optional[str]:
    """Combine a tab name and an A1 range into a single A1 reference."""
    if sheet_name and cell_range:
        return f"{sheet_name}!{cell_range}"
    return sheet_name or cell_range


class SheetsProvider(GoogleApiProvider):
    """Polls spreadsheets (the resources) for new revisions.

    Options:
        sheet_name: Tab that must exist in the spreadsheet.
        range: A1 range inspected when details are requested.
        include_details: Attach row/column counts of the watched range.
    """

    NAME = "sheets"
    MAX_ITEMS_PER_POLL = 1000
    DEFAULT_RESOURCE = None
    OPTIONS = frozenset({"sheet_name", "range", "include_details"})
    SCOPES = (
        "https://www.googleapis.com/auth/spreadsheets.readonly",
        "https://www.googleapis.com/auth/drive.metadata.readonly",
    )

    @classmethod
    def validate_options(cls, config: PollConfig) -> None:
        super().validate_options(config)
        for key in ("sheet_name", "range"):
            value = config.options.get(key)
            if value is not None and (not isinstance(value, str) or not value.strip()):
                raise TriggerConfigError(f"Trigger '{config.id}' option '{key}' must be a non-empty string")
        if not isinstance(config.options.get("include_details", False), bool):
            raise TriggerConfigError(f"Trigger '{config.id}' option 'include_details' must be a boolean")

    def _spreadsheet(self, spreadsheet_id: str) -> Dict[str, Any]:
        return self._get_json(
            f"{SHEETS_API}/{quote(spreadsheet_id)}",
            {"fields": "spreadsheetId,properties.title,sheets.properties.title"},
        )

    def _change_details(self, spreadsheet_id: str) -> Optional[Dict[str, Any]]:
        cell_range = build_range(self.config.options.get("sheet_name"), self.config.options.get("range"))
        if not cell_range:
            # A bare column span reads the first tab
            cell_range = "A:ZZZ"
        try:
            data = self._get_json(f"{SHEETS_API}/{quote(spreadsheet_id)}/values/{quote(cell_range, safe='!:')}")
        except ProviderError as exc:
            _LOG.warning("Failed to fetch change details for %s: %s", spreadsheet_id, exc)
            return None

        values = data.get("values") or []
        row_count = len(values)
        column_count = max((len(row) for row in values), default=0)
        return {
            "affectedRange": data.get("range"),
            "rowCount": row_count,
            "columnCount": column_count,
            "hasData": row_count > 0,
        }

    def fetch_since(
        self,
        resource_id: str,
        cursor: Cursor,
        filters: FilterConfig,
        max_items: int,
    ) -> FetchResult:
        params = {
            "pageSize": 1000,
            "fields": "nextPageToken,revisions(id,modifiedTime,lastModifyingUser)",
        }
        revisions: List[Dict[str, Any]] = []
        new_cursor = cursor
        for revision in self._paginate(f"{DRIVE_FILES_API}/{quote(resource_id)}/revisions", params, "revisions"):
            if len(revisions) >= max_items:
                break
            revision_id = str(revision.get("id") or "")
            modified = self._ordering_key(revision.get("modifiedTime"), revision_id)
            if not revision_id or modified is None:
                continue
            if cursor is not None and modified < cursor:
                continue
            revisions.append(dict(revision, modifiedTime=modified))
            new_cursor = cursor_max(new_cursor, modified)

        if not revisions:
            return FetchResult(items=[], new_cursor=new_cursor)

        _LOG.info("Found %d revision(s) for spreadsheet %s", len(revisions), resource_id)
        spreadsheet = self._spreadsheet(resource_id)
        title = (spreadsheet.get("properties") or {}).get("title")
        sheet_name = self.config.options.get("sheet_name")
        if sheet_name:
            tabs = [(sheet.get("properties") or {}).get("title") for sheet in spreadsheet.get("sheets") or []]
            if sheet_name not in tabs:
                raise PermanentProviderError(f"Sheet '{sheet_name}' not found in spreadsheet {resource_id}")

        details = self._change_details(resource_id) if self.config.options.get("include_details") else None

        items: List[CandidateItem] = []
        for revision in revisions:
            user = revision.get("lastModifyingUser") or {}
            payload: Dict[str, Any] = {
                "revisionId": revision["id"],
                "modifiedTime": revision["modifiedTime"],
                "spreadsheetId": resource_id,
                "spreadsheetTitle": title,
                "sheetName": sheet_name,
                "lastModifyingUser": user.get("displayName"),
            }
            if details is not None:
                payload["changeDetails"] = details
            items.append(
                CandidateItem(
                    item_id=str(revision["id"]),
                    ordering_key=revision["modifiedTime"],
                    payload=payload,
                    fields={
                        "text": title or "",
                        "sender": user.get("emailAddress") or "",
                    },
                )
            )
        return FetchResult(items=items, new_cursor=new_cursor)
