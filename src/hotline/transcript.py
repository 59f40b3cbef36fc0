SPEAKER_LABELS = {"agent": "Agent", "user": "Caller"}


def to_plain_text(log: list[dict]) -> str:
    """Render the call as "Agent: ..." / "Caller: ..." lines for the call log sheet."""
    return "\n".join(
        f"{SPEAKER_LABELS[entry['role']]}: {entry['content']}"
        for entry in log or []
        if entry.get("role") in SPEAKER_LABELS
    )


def average_confidence(log: list[dict]) -> float:
    """Mean speech-recognition confidence over caller turns, 0.0 if none."""
    scores = [e["confidence"] for e in log or [] if e.get("role") == "user" and "confidence" in e]
    if not scores:
        return 0.0
    return round(sum(scores) / len(scores), 2)


def to_timestamped_dump(log: list[dict], call_sid: str, outcome: str) -> dict:
    """Structured transcript for the end-of-call log line.

    Offsets are seconds since the first timestamped entry; entries without a
    timestamp are left out.
    """
    stamped = [e for e in log or [] if "timestamp" in e]
    base = stamped[0]["timestamp"] if stamped else 0.0
    return {
        "call_sid": call_sid,
        "outcome": outcome,
        "entries": [
            {
                "t": round(e["timestamp"] - base, 1),
                "role": e.get("role", ""),
                "stage": e.get("stage", ""),
                "content": e.get("content", ""),
            }
            for e in stamped
        ],
    }
