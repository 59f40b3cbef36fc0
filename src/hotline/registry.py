"""Admin read path over completed calls.

Urgent cases and scheduled callbacks are projections of the sessions held in
the ``SessionStore``; nothing is cached here, so every listing reflects the
store at call time.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

from hotline.session import (
    BUSINESS_ADDRESS,
    CALLBACK_TIME,
    COMPLETED_AT,
    DETAILED_MESSAGE,
    ESTIMATED_RESPONSE,
    NOTES,
    STATUS,
    TIMESTAMP,
    UPDATED_AT,
    CallSession,
)
from hotline.session_store import SessionStore
from hotline.stages import Stage
from hotline.state_machine import STATUS_CALLBACK_SCHEDULED, URGENT_PREFIX

logger = logging.getLogger(__name__)

RESOLVED_STATUSES = {"resolved", "done", "completed", "closed"}


@dataclass(frozen=True)
class UrgentCase:
    reference_number: str
    call_id: str
    caller: str
    detailed_message: str
    business_address: str
    status: str
    estimated_response: str
    timestamp: str
    completed_at: str
    notes: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ScheduledCallback:
    reference_number: str
    call_id: str
    caller: str
    callback_time: str
    status: str
    timestamp: str
    completed_at: str
    notes: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def _urgent_case(session: CallSession) -> UrgentCase:
    f = session.fields
    return UrgentCase(
        reference_number=session.reference_number,
        call_id=session.call_id,
        caller=session.caller,
        detailed_message=f.get(DETAILED_MESSAGE, ""),
        business_address=f.get(BUSINESS_ADDRESS, ""),
        status=f.get(STATUS, ""),
        estimated_response=f.get(ESTIMATED_RESPONSE, ""),
        timestamp=f.get(TIMESTAMP, ""),
        completed_at=f.get(COMPLETED_AT, ""),
        notes=f.get(NOTES, ""),
    )


def _scheduled_callback(session: CallSession) -> ScheduledCallback:
    f = session.fields
    return ScheduledCallback(
        reference_number=session.reference_number,
        call_id=session.call_id,
        caller=session.caller,
        callback_time=f.get(CALLBACK_TIME, ""),
        status=f.get(STATUS, ""),
        timestamp=f.get(TIMESTAMP, ""),
        completed_at=f.get(COMPLETED_AT, ""),
        notes=f.get(NOTES, ""),
    )


def _is_urgent_case(session: CallSession) -> bool:
    return session.reference_number.startswith(f"{URGENT_PREFIX}-")


def _completion_key(session: CallSession) -> tuple:
    return (session.fields.get(COMPLETED_AT, ""), session.created_at)


class CaseRegistry:
    def __init__(self, store: SessionStore):
        self.store = store

    def _urgent_sessions(self) -> list[CallSession]:
        # Completed escalations plus partial cases logged at the re-prompt limit
        found = [s for s in self.store.sessions() if _is_urgent_case(s)]
        return sorted(found, key=_completion_key)

    def _callback_sessions(self) -> list[CallSession]:
        found = [s for s in self.store.sessions() if s.status == STATUS_CALLBACK_SCHEDULED]
        return sorted(found, key=_completion_key)

    def list_urgent_cases(self) -> list[UrgentCase]:
        return [_urgent_case(s) for s in self._urgent_sessions()]

    def list_scheduled_callbacks(self) -> list[ScheduledCallback]:
        return [_scheduled_callback(s) for s in self._callback_sessions()]

    def find(self, reference_number: str) -> Optional[CallSession]:
        for session in self.store.sessions():
            if session.reference_number and session.reference_number == reference_number:
                return session
        return None

    def update_case_status(self, reference_number: str, status: str, notes: str = "") -> dict:
        """Set the status of an urgent case, appending notes."""
        session = self.find(reference_number)
        if session is None or not _is_urgent_case(session):
            logger.warning("Status update for unknown case %s", reference_number)
            return {"success": False, "error": "Case not found"}
        self._apply_update(session, status, notes)
        logger.info("Updated case %s to status: %s", reference_number, status)
        return {"success": True}

    def update_callback_status(self, reference_number: str, status: str, notes: str = "") -> dict:
        session = self.find(reference_number)
        if session is None or session.stage is not Stage.CALLBACK_COMPLETE:
            logger.warning("Status update for unknown callback %s", reference_number)
            return {"success": False, "error": "Callback not found"}
        self._apply_update(session, status, notes)
        logger.info("Updated callback %s to status: %s", reference_number, status)
        return {"success": True}

    def _apply_update(self, session: CallSession, status: str, notes: str) -> None:
        session.fields[STATUS] = status
        session.fields[UPDATED_AT] = datetime.now(timezone.utc).isoformat()
        if notes:
            existing = session.fields.get(NOTES, "")
            session.fields[NOTES] = f"{existing} | {notes}" if existing else notes
        session.touch()

    def statistics(self) -> dict:
        today = datetime.now(timezone.utc).date().isoformat()
        cases = self._urgent_sessions()
        callbacks = [s for s in self.store.sessions() if s.stage is Stage.CALLBACK_COMPLETE]

        def completed_today(s: CallSession) -> bool:
            return s.fields.get(COMPLETED_AT, "").startswith(today)

        def resolved(s: CallSession) -> bool:
            return s.status.lower() in RESOLVED_STATUSES

        return {
            "totalUrgentCases": len(cases),
            "todayUrgentCases": sum(1 for s in cases if completed_today(s)),
            "resolvedUrgentCases": sum(1 for s in cases if resolved(s)),
            "totalCallbacks": len(callbacks),
            "todayCallbacks": sum(1 for s in callbacks if completed_today(s)),
            "completedCallbacks": sum(1 for s in callbacks if resolved(s)),
            "activeSessions": len(self.store),
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
        }
