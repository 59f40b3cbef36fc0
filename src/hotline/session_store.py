"""In-process store of per-call sessions.

Keyed by the call identifier supplied by the telephony layer.  Each call owns
exactly one entry, so distinct calls never contend for the same key and no
cross-key locking is needed.  Entries expire individually after ``ttl_seconds``
of inactivity; expired entries are swept whenever the store grows past its
high-water mark, or explicitly when a call ends.
"""

import logging
import time
from typing import Iterator, Optional

from hotline.session import CallSession
from hotline.stages import InvalidTransition, Stage

__all__ = ["SessionStore", "InvalidTransition"]

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600.0
DEFAULT_HIGH_WATER = 1000


class SessionStore:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        high_water: int = DEFAULT_HIGH_WATER,
    ):
        self.ttl_seconds = ttl_seconds
        self.high_water = high_water
        self._sessions: dict[str, CallSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._sessions

    def get(self, call_id: str) -> Optional[CallSession]:
        return self._sessions.get(call_id)

    def get_or_create(self, call_id: str, caller: str = "") -> CallSession:
        session = self._sessions.get(call_id)
        if session is None:
            if len(self._sessions) >= self.high_water:
                self.sweep()
            session = CallSession(call_id=call_id, caller=caller)
            self._sessions[call_id] = session
            logger.debug("Session created for %s", call_id)
        elif caller and not session.caller:
            session.caller = caller
        return session

    def get_stage(self, call_id: str) -> Stage:
        session = self._sessions.get(call_id)
        return session.stage if session else Stage.INITIAL

    def advance(self, call_id: str, new_stage: Stage) -> None:
        self.get_or_create(call_id).advance(new_stage)

    def set_field(self, call_id: str, key: str, value: str) -> None:
        session = self.get_or_create(call_id)
        session.fields[key] = value
        session.touch()

    def get_fields(self, call_id: str) -> dict:
        session = self._sessions.get(call_id)
        return dict(session.fields) if session else {}

    def sessions(self) -> Iterator[CallSession]:
        # Snapshot so callers can iterate while new calls arrive
        return iter(list(self._sessions.values()))

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop sessions idle for longer than the TTL. Returns the count removed."""
        now = time.time() if now is None else now
        expired = [
            call_id for call_id, session in list(self._sessions.items())
            if now - session.updated_at >= self.ttl_seconds
        ]
        for call_id in expired:
            self._sessions.pop(call_id, None)
        if expired:
            logger.info("Swept %d expired sessions (%d remain)", len(expired), len(self._sessions))
        return len(expired)

    def clear(self) -> None:
        self._sessions.clear()
