"""Google Sheets persistence for urgent cases, callbacks and the call log.

Sheets is best-effort storage: every public method returns a fallback value
instead of raising, so a missing credential or an API outage never reaches
the caller.  gspread is synchronous, so calls run in a worker thread.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional

import gspread
from google.oauth2.service_account import Credentials

from hotline.resilience import CircuitBreaker, attempt
from hotline.session import (
    BUSINESS_ADDRESS,
    CALLBACK_TIME,
    DETAILED_MESSAGE,
    TIMESTAMP,
)
from hotline.state_machine import CompletionEvent

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
]

URGENT_SHEET = "Urgent Cases"
URGENT_HEADERS = [
    "Date", "Time", "Reference", "Phone", "Problem", "Business Address",
    "Status", "Handled By", "Resolved At", "Notes",
]

CALLBACK_SHEET = "Callbacks"
CALLBACK_HEADERS = [
    "Date", "Time", "Reference", "Phone", "Inquiry", "Preferred Time",
    "Status", "Handled By", "Completed At", "Notes",
]

CALL_LOG_SHEET = "Call Log"
CALL_LOG_HEADERS = [
    "Date", "Time", "Call SID", "Phone", "Duration (s)", "Status", "Type",
    "Confidence", "Transcript",
]

# 1-based column positions shared by both case sheets
REFERENCE_COL = 3
STATUS_COL = 7
DONE_AT_COL = 9
NOTES_COL = 10

NEW_CASE_STATUS = "New"
NEW_CALLBACK_STATUS = "Scheduled"
RESOLVED_STATUSES = {"resolved", "done", "completed", "closed"}

UNAVAILABLE = {"success": False, "error": "Google Sheets not available"}


def _unavailable() -> dict:
    return dict(UNAVAILABLE)


def _stamp() -> tuple[str, str]:
    now = datetime.now()
    return now.strftime("%Y-%m-%d"), now.strftime("%H:%M:%S")


class SheetsStore:
    """Completion sink and admin data source backed by one spreadsheet."""

    def __init__(
        self,
        sheet_id: str = "",
        credentials_file: str = "",
        spreadsheet: Optional[gspread.Spreadsheet] = None,
    ):
        self.sheet_id = sheet_id
        self.credentials_file = credentials_file
        self._spreadsheet = spreadsheet
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="Google Sheets",
        )

    @property
    def enabled(self) -> bool:
        return self._spreadsheet is not None or bool(self.sheet_id and self.credentials_file)

    @property
    def connected(self) -> bool:
        return bool(self._worksheets)

    def _open(self) -> gspread.Spreadsheet:
        credentials = Credentials.from_service_account_file(self.credentials_file, scopes=SCOPES)
        client = gspread.authorize(credentials)
        spreadsheet = client.open_by_key(self.sheet_id)
        logger.info("Connected to Google Sheet: %s", spreadsheet.title)
        return spreadsheet

    def _connect(self) -> None:
        if self._spreadsheet is None:
            self._spreadsheet = self._open()
        for title, headers in (
            (URGENT_SHEET, URGENT_HEADERS),
            (CALLBACK_SHEET, CALLBACK_HEADERS),
            (CALL_LOG_SHEET, CALL_LOG_HEADERS),
        ):
            self._worksheets[title] = self._get_or_create(title, headers)

    def _get_or_create(self, title: str, headers: list[str]) -> gspread.Worksheet:
        try:
            ws = self._spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            ws = self._spreadsheet.add_worksheet(title=title, rows=1000, cols=len(headers))
            logger.info("Created worksheet: %s", title)
        if not ws.row_values(1):
            ws.append_row(headers)
        return ws

    async def initialize(self) -> bool:
        if self.connected:
            return True
        if not self.enabled:
            return False

        async def connect() -> bool:
            await asyncio.to_thread(self._connect)
            logger.info("Google Sheets initialized")
            return True

        return await attempt(connect, False, label="Google Sheets initialize", circuit=self._circuit)

    async def _run(self, fn: Callable[[], Any], fallback: Any, label: str) -> Any:
        """Run a blocking gspread call off the loop; ``fallback`` may be a factory."""
        if not self.connected and not await self.initialize():
            logger.debug("%s skipped: Google Sheets not available", label)
            return fallback() if callable(fallback) else fallback
        return await attempt(
            lambda: asyncio.to_thread(fn),
            fallback,
            label=label,
            circuit=self._circuit,
        )

    def _sheet(self, title: str) -> gspread.Worksheet:
        return self._worksheets[title]

    # ── Writes ──

    async def persist(self, event: CompletionEvent) -> dict:
        """Store a completed urgent case or callback."""
        if event.kind == "urgent_case":
            return await self.save_urgent_case(event)
        if event.kind == "callback":
            return await self.save_callback_request(event)
        logger.warning("Unknown completion kind %r for %s", event.kind, event.reference_number)
        return {"success": False, "error": f"Unknown completion kind {event.kind}"}

    async def save_urgent_case(self, event: CompletionEvent) -> dict:
        def write():
            date, time_ = _stamp()
            row = [
                date, time_,
                event.reference_number,
                event.caller or "Unknown",
                event.fields.get(DETAILED_MESSAGE) or "No details",
                event.fields.get(BUSINESS_ADDRESS) or "No address",
                NEW_CASE_STATUS, "", "",
                f"Created by phone agent - {event.fields.get(TIMESTAMP, '')}",
            ]
            self._sheet(URGENT_SHEET).append_row(row, value_input_option="USER_ENTERED")
            logger.info("Urgent case saved to sheets: %s", event.reference_number)
            return {"success": True, "data": row}

        return await self._run(write, _unavailable, f"Save urgent case {event.reference_number}")

    async def save_callback_request(self, event: CompletionEvent) -> dict:
        def write():
            date, time_ = _stamp()
            row = [
                date, time_,
                event.reference_number,
                event.caller or "Unknown",
                event.fields.get("inquiry") or "General inquiry",
                event.fields.get(CALLBACK_TIME) or "Not specified",
                NEW_CALLBACK_STATUS, "", "",
                f"Created by phone agent - {event.fields.get(TIMESTAMP, '')}",
            ]
            self._sheet(CALLBACK_SHEET).append_row(row, value_input_option="USER_ENTERED")
            logger.info("Callback request saved to sheets: %s", event.reference_number)
            return {"success": True, "data": row}

        return await self._run(write, _unavailable, f"Save callback {event.reference_number}")

    async def log_call(self, call: dict) -> dict:
        def write():
            date, time_ = _stamp()
            row = [
                date, time_,
                call.get("call_sid", ""),
                call.get("phone") or "Unknown",
                call.get("duration") or 0,
                call.get("status") or "Completed",
                call.get("type") or "Incoming",
                call.get("confidence") or 0,
                call.get("transcript", ""),
            ]
            self._sheet(CALL_LOG_SHEET).append_row(row, value_input_option="USER_ENTERED")
            logger.info("Call logged: %s", call.get("call_sid", ""))
            return {"success": True}

        return await self._run(write, _unavailable, f"Log call {call.get('call_sid', '')}")

    async def update_case_status(self, reference_number: str, status: str, notes: str = "") -> dict:
        return await self._update_status(URGENT_SHEET, reference_number, status, notes, "Case")

    async def update_callback_status(self, reference_number: str, status: str, notes: str = "") -> dict:
        return await self._update_status(CALLBACK_SHEET, reference_number, status, notes, "Callback")

    async def _update_status(self, title: str, reference_number: str, status: str, notes: str, noun: str) -> dict:
        def write():
            ws = self._sheet(title)
            cell = ws.find(reference_number, in_column=REFERENCE_COL)
            if cell is None:
                return {"success": False, "error": f"{noun} not found"}
            ws.update_cell(cell.row, STATUS_COL, status)
            ws.update_cell(cell.row, DONE_AT_COL, datetime.now().strftime("%Y-%m-%d %H:%M:%S"))
            if notes:
                values = ws.row_values(cell.row)
                existing = values[NOTES_COL - 1] if len(values) >= NOTES_COL else ""
                ws.update_cell(cell.row, NOTES_COL, f"{existing} | {notes}" if existing else notes)
            logger.info("Updated %s %s to status: %s", noun.lower(), reference_number, status)
            return {"success": True}

        return await self._run(write, _unavailable, f"Update {noun.lower()} {reference_number}")

    # ── Reads ──

    def _records(self, title: str) -> list[dict]:
        records = self._sheet(title).get_all_records()
        return [{**record, "rowNumber": i + 2} for i, record in enumerate(records)]

    async def get_urgent_cases(self) -> list[dict]:
        return await self._run(lambda: self._records(URGENT_SHEET), [], "Read urgent cases")

    async def get_callback_requests(self) -> list[dict]:
        return await self._run(lambda: self._records(CALLBACK_SHEET), [], "Read callbacks")

    async def get_statistics(self) -> dict:
        def count():
            cases = self._records(URGENT_SHEET)
            callbacks = self._records(CALLBACK_SHEET)
            today = datetime.now().strftime("%Y-%m-%d")

            def resolved(row: dict) -> bool:
                return str(row.get("Status", "")).lower() in RESOLVED_STATUSES

            return {
                "totalUrgentCases": len(cases),
                "todayUrgentCases": sum(1 for r in cases if r.get("Date") == today),
                "resolvedUrgentCases": sum(1 for r in cases if resolved(r)),
                "totalCallbacks": len(callbacks),
                "todayCallbacks": sum(1 for r in callbacks if r.get("Date") == today),
                "completedCallbacks": sum(1 for r in callbacks if resolved(r)),
                "lastUpdated": datetime.now().isoformat(),
                "googleSheetsStatus": "Connected",
            }

        return await self._run(count, None, "Read statistics")
