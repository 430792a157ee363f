"""
Google Sheets renderer (REST v4 over ``requests``).

Each project owns one tab named after the project. Rendering clears the previous rows,
writes the table column-major from ``A1``, replaces the status color rules and header
shading, and replaces the three per-status filter views. Rules and views from earlier runs
are deleted first, so rendering the same report twice leaves the same sheet.

The bearer token is supplied by the caller; minting it is out of scope here.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Final
from urllib.parse import quote

import requests
import structlog

from archdrift.integration.base import (
    AuthorizationError,
    RenderError,
    SheetNotFoundError,
    classify_http_status,
)
from archdrift.integration.structurizr import USER_AGENT
from archdrift.reconciliation.report import PathReport

logger = structlog.get_logger(__name__)

SHEETS_API_URL: Final[str] = "https://sheets.googleapis.com/v4/spreadsheets"
SHEETS_SCOPE: Final[str] = "https://www.googleapis.com/auth/spreadsheets"
OAUTH_AUTHORIZE_URL: Final[str] = "https://accounts.google.com/o/oauth2/v2/auth"
DEFAULT_CLEAR_ROWS: Final[int] = 1000
_SPREADSHEET_FIELDS: Final[str] = "spreadsheetId,sheets(properties,conditionalFormats,filterViews)"


def _rgb(color: tuple[float, float, float]) -> dict[str, float]:
    red, green, blue = color
    return {"red": red, "green": green, "blue": blue}


def _a1(title: str, cells: str) -> str:
    escaped = title.replace("'", "''")
    return f"'{escaped}'!{cells}"


def _is_status_color_rule(rule: Mapping[str, Any], report: PathReport) -> bool:
    """A rule this renderer adds: one status name matched on the status column only."""

    condition = (rule.get("booleanRule") or {}).get("condition") or {}
    values = [value.get("userEnteredValue") for value in condition.get("values") or []]
    statuses = {status.value for status in report.formatting.status_colors}
    if condition.get("type") != "TEXT_EQ" or len(values) != 1 or values[0] not in statuses:
        return False
    column = report.formatting.status_column
    ranges = rule.get("ranges") or []
    return bool(ranges) and all(
        cells.get("startColumnIndex") == column and cells.get("endColumnIndex") == column + 1
        for cells in ranges
    )


def authorization_url(client_id: str, redirect_uri: str) -> str:
    """Consent URL for an offline Sheets token; exchanging the code happens elsewhere."""

    prepared = requests.Request(
        "GET",
        OAUTH_AUTHORIZE_URL,
        params={
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "access_type": "offline",
            "scope": SHEETS_SCOPE,
        },
    ).prepare()
    if prepared.url is None:
        raise ValueError("could not build authorization URL")
    return prepared.url


class SheetsRenderer:
    """Render ``PathReport`` objects into one spreadsheet."""

    def __init__(
        self,
        spreadsheet_id: str,
        token: str | None,
        *,
        timeout_seconds: float = 10.0,
        clear_rows: int = DEFAULT_CLEAR_ROWS,
        api_url: str = SHEETS_API_URL,
        session: requests.Session | None = None,
    ) -> None:
        if not spreadsheet_id:
            raise AuthorizationError("report document id is not configured", source="sheets")
        if not token:
            raise AuthorizationError("no Sheets access token available", source="sheets")
        self._spreadsheet_id = spreadsheet_id
        self._token = token
        self._timeout_seconds = timeout_seconds
        self._clear_rows = clear_rows
        self._base_url = f"{api_url.rstrip('/')}/{spreadsheet_id}"
        self._session = session or requests.Session()

    def render(self, report: PathReport, *, create_if_missing: bool = True) -> str:
        """Write ``report`` into the tab titled ``report.title``. Returns the sheet URL."""

        spreadsheet = self.get_spreadsheet()
        sheet = self.find_sheet(spreadsheet, report.title, allow_missing=create_if_missing)
        if sheet is None:
            self.create_sheet(report.title)
            sheet = self.find_sheet(self.get_spreadsheet(), report.title, allow_missing=False)
        if sheet is None:
            raise SheetNotFoundError(f"no sheet titled {report.title!r}")
        sheet_id = int(sheet["properties"]["sheetId"])

        self.clear_values(report.title, max(self._clear_rows, report.row_count + 1))
        self.write_values(report)
        self._batch_update(self._stale_format_requests(sheet, report))
        self._batch_update(self._format_requests(report, sheet_id))
        self._batch_update(self._filter_view_requests(report, sheet_id))
        url = f"https://docs.google.com/spreadsheets/d/{self._spreadsheet_id}/edit#gid={sheet_id}"
        logger.info("sheet_rendered", title=report.title, rows=report.row_count, url=url)
        return url

    def get_spreadsheet(self) -> dict[str, Any]:
        return self._request("GET", "", params={"fields": _SPREADSHEET_FIELDS})

    def find_sheet(
        self,
        spreadsheet: Mapping[str, Any],
        title: str,
        *,
        allow_missing: bool,
    ) -> dict[str, Any] | None:
        sheets = spreadsheet.get("sheets") or []
        if not sheets:
            raise SheetNotFoundError(f"spreadsheet {self._spreadsheet_id} has no sheets")
        for sheet in sheets:
            properties = sheet.get("properties") or {}
            if properties.get("title") == title:
                return dict(sheet)
        if allow_missing:
            return None
        raise SheetNotFoundError(f"no sheet titled {title!r} in spreadsheet {self._spreadsheet_id}")

    def create_sheet(self, title: str) -> None:
        self._batch_update([{"addSheet": {"properties": {"title": title}}}])
        logger.info("sheet_created", title=title)

    def clear_values(self, title: str, rows: int) -> None:
        self._request(
            "POST",
            "/values:batchClear",
            json={"ranges": [_a1(title, f"A2:C{rows}")]},
        )

    def write_values(self, report: PathReport) -> None:
        target = _a1(report.title, "A1")
        self._request(
            "PUT",
            f"/values/{quote(target, safe='')}",
            params={"valueInputOption": "RAW"},
            json={"range": target, "majorDimension": "COLUMNS", "values": report.columns()},
        )

    def close(self) -> None:
        self._session.close()

    def _stale_format_requests(
        self,
        sheet: Mapping[str, Any],
        report: PathReport,
    ) -> list[dict[str, Any]]:
        sheet_id = int(sheet["properties"]["sheetId"])
        rules = sheet.get("conditionalFormats") or []
        owned_rules = [
            index for index, rule in enumerate(rules) if _is_status_color_rule(rule, report)
        ]
        # Delete from the highest index so the remaining indices stay valid.
        requests_out: list[dict[str, Any]] = [
            {"deleteConditionalFormatRule": {"sheetId": sheet_id, "index": index}}
            for index in reversed(owned_rules)
        ]
        owned_titles = {view.title for view in report.formatting.filter_views}
        for view in sheet.get("filterViews") or []:
            if view.get("title") in owned_titles and "filterViewId" in view:
                requests_out.append({"deleteFilterView": {"filterId": view["filterViewId"]}})
        return requests_out

    def _format_requests(self, report: PathReport, sheet_id: int) -> list[dict[str, Any]]:
        status_column = report.formatting.status_column
        status_range = {
            "sheetId": sheet_id,
            "startRowIndex": 1,
            "endRowIndex": report.row_count + 1,
            "startColumnIndex": status_column,
            "endColumnIndex": status_column + 1,
        }
        requests_out: list[dict[str, Any]] = [
            {
                "addConditionalFormatRule": {
                    "rule": {
                        "ranges": [status_range],
                        "booleanRule": {
                            "condition": {
                                "type": "TEXT_EQ",
                                "values": [{"userEnteredValue": status.value}],
                            },
                            "format": {"backgroundColor": _rgb(color)},
                        },
                    },
                    "index": 0,
                }
            }
            for status, color in report.formatting.status_colors.items()
        ]
        requests_out.append(
            {
                "repeatCell": {
                    "range": {"sheetId": sheet_id, "startRowIndex": 0, "endRowIndex": 1},
                    "cell": {
                        "userEnteredFormat": {
                            "backgroundColor": _rgb(report.formatting.header_shade),
                        }
                    },
                    "fields": "userEnteredFormat(backgroundColor)",
                }
            }
        )
        return requests_out

    def _filter_view_requests(self, report: PathReport, sheet_id: int) -> list[dict[str, Any]]:
        status_column = str(report.formatting.status_column)
        requests_out: list[dict[str, Any]] = []
        for view in report.formatting.filter_views:
            start, end = view.column_span
            requests_out.append(
                {
                    "addFilterView": {
                        "filter": {
                            "title": view.title,
                            "range": {
                                "sheetId": sheet_id,
                                "startColumnIndex": start,
                                "endColumnIndex": end,
                            },
                            "criteria": {
                                status_column: {
                                    "condition": {
                                        "type": "TEXT_EQ",
                                        "values": [{"userEnteredValue": view.status.value}],
                                    }
                                }
                            },
                        }
                    }
                }
            )
        return requests_out

    def _batch_update(self, batch: list[dict[str, Any]]) -> None:
        if not batch:
            return
        self._request("POST", ":batchUpdate", json={"requests": batch})

    def _request(
        self,
        method: str,
        suffix: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        }
        try:
            response = self._session.request(
                method,
                f"{self._base_url}{suffix}",
                headers=headers,
                params=params,
                json=json,
                timeout=self._timeout_seconds,
            )
        except requests.exceptions.Timeout as exc:
            raise RenderError(
                f"sheets {method} timed out after {self._timeout_seconds}s",
                code="timeout",
                retryable=True,
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise RenderError(
                f"sheets {method} failed: {exc}",
                code="network",
                retryable=True,
            ) from exc

        if response.status_code >= 400:
            code, retryable = classify_http_status(response.status_code)
            detail = f"sheets {method} {suffix or '/'} returned HTTP {response.status_code}"
            if code == "auth":
                raise AuthorizationError(detail, source="sheets", http_status=response.status_code)
            if code == "not_found":
                raise SheetNotFoundError(f"spreadsheet {self._spreadsheet_id} not found")
            raise RenderError(
                detail,
                code=code,
                retryable=retryable,
                http_status=response.status_code,
            )
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise RenderError(
                f"sheets {method} returned invalid JSON",
                code="invalid_response",
            ) from exc
        return payload if isinstance(payload, dict) else {}


__all__ = [
    "SHEETS_API_URL",
    "SHEETS_SCOPE",
    "SheetsRenderer",
    "authorization_url",
]
