"""
archdrift unit tests for the Google Sheets renderer

Purpose
- Validate the request sequence sent to the Sheets REST API with a recording fake session.

What this test file should cover
- Clear, column-major write, stale rule and filter view removal, formatting and filter views.
- Tab creation when the project has no tab yet.
- HTTP failure normalization and credential preconditions.
"""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import parse_qs, urlparse

import pytest

from archdrift.domain.models import PathNode
from archdrift.integration.base import (
    AcquisitionError,
    AuthorizationError,
    RenderError,
    SheetNotFoundError,
)
from archdrift.integration.sheets import SHEETS_SCOPE, SheetsRenderer, authorization_url
from archdrift.reconciliation.report import PathReport, build_report

_BASE = "https://sheets.googleapis.com/v4/spreadsheets/doc-1"


class _FakeResponse:
    def __init__(self, status_code: int = 200, payload: dict[str, Any] | None = None) -> None:
        self.status_code = status_code
        self._payload = payload or {}
        self.content = json.dumps(self._payload).encode("utf-8") if payload is not None else b""

    def json(self) -> dict[str, Any]:
        return self._payload


class _RecordingSession:
    def __init__(self, *responses: _FakeResponse) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> _FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if self._responses:
            return self._responses.pop(0)
        return _FakeResponse()

    def close(self) -> None:
        return None


def _report() -> PathReport:
    return build_report(
        [
            PathNode(project="shop-model", full_path="shop"),
            PathNode(project="shop-model", full_path="shop/src", visited=True, note="ok"),
        ],
        title="shop-model",
    )


def _sheet(sheet_id: int, title: str, **extra: Any) -> dict[str, Any]:
    return {"properties": {"sheetId": sheet_id, "title": title}, **extra}


def _text_rule(value: str, *, column: int = 1, kind: str = "TEXT_EQ") -> dict[str, Any]:
    return {
        "ranges": [{"sheetId": 7, "startColumnIndex": column, "endColumnIndex": column + 1}],
        "booleanRule": {"condition": {"type": kind, "values": [{"userEnteredValue": value}]}},
    }


def _renderer(session: _RecordingSession, **kwargs: Any) -> SheetsRenderer:
    return SheetsRenderer("doc-1", "tok-123", session=session, **kwargs)  # type: ignore[arg-type]


def test_render_into_existing_tab_sends_expected_sequence() -> None:
    existing = _sheet(
        7,
        "shop-model",
        conditionalFormats=[_text_rule("Valid"), _text_rule("Invalid")],
        filterViews=[
            {"filterViewId": 11, "title": "Valid Paths shop-model"},
            {"filterViewId": 12, "title": "Someone else's view"},
        ],
    )
    session = _RecordingSession(_FakeResponse(payload={"sheets": [existing]}))

    url = _renderer(session).render(_report())

    assert url == "https://docs.google.com/spreadsheets/d/doc-1/edit#gid=7"
    assert [(call["method"], call["url"].removeprefix(_BASE)) for call in session.calls] == [
        ("GET", ""),
        ("POST", "/values:batchClear"),
        ("PUT", "/values/%27shop-model%27%21A1"),
        ("POST", ":batchUpdate"),
        ("POST", ":batchUpdate"),
        ("POST", ":batchUpdate"),
    ]
    assert all(call["headers"]["Authorization"] == "Bearer tok-123" for call in session.calls)

    clear, write, stale, formats, views = session.calls[1:]
    assert clear["json"] == {"ranges": ["'shop-model'!A2:C1000"]}
    assert write["params"] == {"valueInputOption": "RAW"}
    assert write["json"]["majorDimension"] == "COLUMNS"
    assert write["json"]["values"] == [
        ["Full Path", "shop", "shop/src"],
        ["Status", "Invalid", "Valid"],
        ["Notes", "ERROR", "ok"],
    ]
    assert stale["json"]["requests"] == [
        {"deleteConditionalFormatRule": {"sheetId": 7, "index": 1}},
        {"deleteConditionalFormatRule": {"sheetId": 7, "index": 0}},
        {"deleteFilterView": {"filterId": 11}},
    ]
    rules = formats["json"]["requests"]
    conditions = [
        rule["addConditionalFormatRule"]["rule"]["booleanRule"]["condition"] for rule in rules[:3]
    ]
    assert [condition["values"] for condition in conditions] == [
        [{"userEnteredValue": "Valid"}],
        [{"userEnteredValue": "Excluded"}],
        [{"userEnteredValue": "Invalid"}],
    ]
    assert rules[0]["addConditionalFormatRule"]["rule"]["ranges"][0] == {
        "sheetId": 7,
        "startRowIndex": 1,
        "endRowIndex": 3,
        "startColumnIndex": 1,
        "endColumnIndex": 2,
    }
    assert rules[3]["repeatCell"]["range"] == {"sheetId": 7, "startRowIndex": 0, "endRowIndex": 1}
    filter_views = [item["addFilterView"]["filter"] for item in views["json"]["requests"]]
    assert [view["title"] for view in filter_views] == [
        "Excluded Paths shop-model",
        "Invalid Paths shop-model",
        "Valid Paths shop-model",
    ]
    assert filter_views[0]["range"] == {"sheetId": 7, "startColumnIndex": 1, "endColumnIndex": 3}
    assert filter_views[0]["criteria"]["1"]["condition"]["values"] == [
        {"userEnteredValue": "Excluded"}
    ]


def test_user_conditional_formats_survive_a_rerender() -> None:
    existing = _sheet(
        7,
        "shop-model",
        conditionalFormats=[
            _text_rule("Valid", column=0),
            _text_rule("Excluded"),
            _text_rule("Valid", kind="TEXT_CONTAINS"),
            _text_rule("Deprecated"),
            {"booleanRule": {"condition": {"type": "NOT_BLANK"}}},
            _text_rule("Invalid"),
        ],
    )
    session = _RecordingSession(_FakeResponse(payload={"sheets": [existing]}))

    _renderer(session).render(_report())

    stale = session.calls[3]
    assert stale["json"]["requests"] == [
        {"deleteConditionalFormatRule": {"sheetId": 7, "index": 5}},
        {"deleteConditionalFormatRule": {"sheetId": 7, "index": 1}},
    ]


def test_missing_tab_is_created_first() -> None:
    session = _RecordingSession(
        _FakeResponse(payload={"sheets": [_sheet(0, "Sheet1")]}),
        _FakeResponse(payload={"replies": [{}]}),
        _FakeResponse(payload={"sheets": [_sheet(0, "Sheet1"), _sheet(9, "shop-model")]}),
    )

    url = _renderer(session).render(_report())

    assert url.endswith("#gid=9")
    assert session.calls[1]["json"] == {
        "requests": [{"addSheet": {"properties": {"title": "shop-model"}}}]
    }
    # No stale rules on a fresh tab, so only the format and filter view batches follow.
    assert [call["method"] for call in session.calls] == [
        "GET",
        "POST",
        "GET",
        "POST",
        "PUT",
        "POST",
        "POST",
    ]


def test_missing_tab_without_create_raises() -> None:
    session = _RecordingSession(_FakeResponse(payload={"sheets": [_sheet(0, "Sheet1")]}))

    with pytest.raises(SheetNotFoundError, match="shop-model"):
        _renderer(session).render(_report(), create_if_missing=False)


def test_spreadsheet_without_tabs_raises() -> None:
    session = _RecordingSession(_FakeResponse(payload={"sheets": []}))

    with pytest.raises(SheetNotFoundError):
        _renderer(session).render(_report())


def test_clear_range_grows_with_the_report() -> None:
    session = _RecordingSession(_FakeResponse(payload={"sheets": [_sheet(1, "shop-model")]}))

    _renderer(session, clear_rows=1).render(_report())

    assert session.calls[1]["json"] == {"ranges": ["'shop-model'!A2:C3"]}


@pytest.mark.parametrize(
    ("status", "error_type", "retryable"),
    [
        (403, AuthorizationError, False),
        (404, SheetNotFoundError, False),
        (429, RenderError, True),
        (500, RenderError, True),
    ],
)
def test_http_errors_are_normalized(
    status: int, error_type: type[AcquisitionError], retryable: bool
) -> None:
    session = _RecordingSession(_FakeResponse(status_code=status, payload={"error": {}}))

    with pytest.raises(error_type) as excinfo:
        _renderer(session).render(_report())

    assert excinfo.value.retryable is retryable


@pytest.mark.parametrize(("document_id", "token"), [("", "tok"), ("doc-1", None), ("doc-1", "")])
def test_missing_credentials_fail_fast(document_id: str, token: str | None) -> None:
    with pytest.raises(AuthorizationError):
        SheetsRenderer(document_id, token)


def test_authorization_url_requests_offline_sheets_scope() -> None:
    url = authorization_url("client-1", "http://localhost:8080/callback")

    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert parsed.netloc == "accounts.google.com"
    assert query["client_id"] == ["client-1"]
    assert query["redirect_uri"] == ["http://localhost:8080/callback"]
    assert query["access_type"] == ["offline"]
    assert query["scope"] == [SHEETS_SCOPE]
