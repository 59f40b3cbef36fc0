import json
import logging
from typing import Optional

from hotline.session import CallSession
from hotline.stages import Stage
from hotline.state_machine import STATUS_URGENT_INCOMPLETE
from hotline.transcript import average_confidence, to_plain_text, to_timestamped_dump

logger = logging.getLogger(__name__)

MAX_TRANSCRIPT_CHARS = 5000
MAX_LOG_LINE_BYTES = 3500


def derive_outcome(session: Optional[CallSession]) -> str:
    """Map the final stage to a short outcome label for the call log."""
    if session is None:
        return "no_speech"
    if session.stage is Stage.URGENT_COMPLETE:
        return "urgent_escalated"
    if session.stage is Stage.CALLBACK_COMPLETE:
        return "callback_scheduled"
    if session.status == STATUS_URGENT_INCOMPLETE:
        return "urgent_incomplete"
    return f"abandoned_{session.stage.value}"


def build_call_log(
    call_sid: str,
    session: Optional[CallSession],
    status: str,
    duration: int = 0,
    phone: str = "",
) -> dict:
    log = session.transcript_log if session else []
    return {
        "call_sid": call_sid,
        "phone": (session.caller if session and session.caller else phone) or "Unknown",
        "duration": duration,
        "status": status,
        "type": derive_outcome(session),
        "confidence": average_confidence(log),
        "reference": session.reference_number if session else "",
        "transcript": to_plain_text(log)[:MAX_TRANSCRIPT_CHARS],
    }


def dump_lines(dump: dict, max_bytes: int = MAX_LOG_LINE_BYTES) -> list[str]:
    """Split a transcript dump into "TRANSCRIPT_DUMP|i/n|{json}" log lines.

    The first line carries the header fields; every line stays under
    max_bytes unless a single entry is larger on its own.
    """
    header = {k: v for k, v in dump.items() if k != "entries"}
    groups: list[list[dict]] = [[]]
    size = len(json.dumps({**header, "entries": []}).encode("utf-8"))
    for entry in dump.get("entries", []):
        entry_size = len(json.dumps(entry).encode("utf-8")) + 2
        if groups[-1] and size + entry_size > max_bytes:
            groups.append([])
            size = len(b'{"entries": []}')
        groups[-1].append(entry)
        size += entry_size

    lines = []
    for i, entries in enumerate(groups):
        body = {**header, "entries": entries} if i == 0 else {"entries": entries}
        lines.append(f"TRANSCRIPT_DUMP|{i + 1}/{len(groups)}|{json.dumps(body)}")
    return lines


async def handle_call_ended(
    sheets,
    call_sid: str,
    session: Optional[CallSession],
    status: str = "Completed",
    duration: int = 0,
    phone: str = "",
) -> dict:
    """Post-call: log the transcript dump, then write the call log row. Never raises."""
    payload = build_call_log(call_sid, session, status, duration, phone)
    if session is not None:
        for line in dump_lines(to_timestamped_dump(session.transcript_log, call_sid, payload["type"])):
            logger.info(line)
    try:
        result = await sheets.log_call(payload)
    except Exception as e:
        logger.error(f"Call log for {call_sid} failed: {e}")
        result = {"success": False, "error": str(e)}
    logger.info(
        f"Post-call complete for {call_sid}: outcome={payload['type']}, "
        f"reference={payload['reference'] or '-'}, duration={duration}s"
    )
    return result
