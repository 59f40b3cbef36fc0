import re
from typing import Optional

MIN_TRANSCRIPT_CHARS = 3
MAX_TRANSCRIPT_CHARS = 500
MIN_RECOGNITION_CONFIDENCE = 0.4


URGENT_KEYWORDS = frozenset({
    # Outages
    "down", "completely down", "is down", "went down", "outage", "offline",
    "crashed", "crash", "crashing", "not loading", "not working",
    "stopped working", "broken", "error page",
    # Access
    "can't access", "cannot access", "can't log in", "cannot log in",
    "can't login", "locked out",
    # Data
    "data loss", "lost data", "lost all", "deleted", "corrupted", "corruption",
    # Security
    "hacked", "breach", "security", "suspicious", "ransomware", "virus", "phishing",
    # Payments and orders
    "payment", "payments", "can't pay", "cannot pay", "checkout",
    "billing system", "can't process", "cannot process", "orders",
    # Infrastructure
    "server", "database",
    # Caller says so
    "emergency", "urgent", "asap", "immediately", "right now",
})

NON_URGENT_KEYWORDS = frozenset({
    "question", "questions", "how do i", "how can i", "how to",
    "account settings", "settings", "change my", "update my",
    "training", "tutorial", "feature", "feature request", "suggestion", "idea",
    "documentation", "docs", "manual",
    "minor", "small issue", "cosmetic", "typo",
    "general inquiry", "inquiry", "information", "pricing", "planning", "upgrade",
    "not urgent", "no rush", "whenever", "when you get a chance",
    "call me back", "callback",
})

NOISE_PATTERN = re.compile(
    r"^(?:(?:uh+|um+|uhm|hm+|er+|ah+|oh+|hello|hi|hey|yes|yeah|yep|no|nope|"
    r"okay|ok|sure|thanks|thank you|bye|what)[\s,.!?]*)+$"
)


def check_transcript(text: Optional[str]) -> Optional[str]:
    """Return why a transcript is unusable, or ``None`` when it can be processed.

    Reasons: ``empty``, ``too_short``, ``too_long``, ``noise``.
    """
    cleaned = (text or "").strip()
    if not cleaned:
        return "empty"
    if len(cleaned) < MIN_TRANSCRIPT_CHARS:
        return "too_short"
    if len(cleaned) > MAX_TRANSCRIPT_CHARS:
        return "too_long"
    if NOISE_PATTERN.match(cleaned.lower()):
        return "noise"
    return None


def is_confident(transcript: Optional[str], confidence: float) -> bool:
    """Speech-recognition gate applied before any verdict-producing call."""
    cleaned = (transcript or "").strip()
    return confidence >= MIN_RECOGNITION_CONFIDENCE and len(cleaned) >= MIN_TRANSCRIPT_CHARS


def count_keywords(text: str) -> tuple[int, int]:
    """Count urgent and non-urgent keyword hits in text.

    Longer phrases win over the shorter phrases they contain, so "not urgent"
    counts once as non-urgent rather than also as "urgent".

    Returns (urgent_hits, non_urgent_hits).
    """
    remaining = text.lower()
    labelled = [(kw, True) for kw in URGENT_KEYWORDS] + [(kw, False) for kw in NON_URGENT_KEYWORDS]
    labelled.sort(key=lambda item: (-len(item[0]), item[0]))

    urgent = non_urgent = 0
    for kw, is_urgent in labelled:
        pattern = rf'\b{re.escape(kw)}\b'
        hits = len(re.findall(pattern, remaining))
        if not hits:
            continue
        if is_urgent:
            urgent += hits
        else:
            non_urgent += hits
        # Mask matched spans so shorter overlapping phrases don't double count
        remaining = re.sub(pattern, "|", remaining)
    return urgent, non_urgent
