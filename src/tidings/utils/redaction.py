"""Log redaction for notification content and command lines."""

import os
import re

DEFAULT_LOG_LIMIT = 120
MAX_LOG_LIMIT = 512

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]+")


def diagnostic_mode() -> bool:
    """True when TIDINGS_DIAGNOSTIC asks for content snippets in logs."""
    value = os.environ.get("TIDINGS_DIAGNOSTIC", "")
    return value.strip().lower() in ("1", "true", "yes", "on")


def log_limit() -> int:
    raw = os.environ.get("TIDINGS_LOG_LIMIT", "")
    try:
        limit = int(raw)
    except ValueError:
        return DEFAULT_LOG_LIMIT
    return max(1, min(limit, MAX_LOG_LIMIT))


def log_snippet(text: str) -> str:
    """Return a log-safe rendition of user content.

    Outside diagnostic mode only the length is reported. In diagnostic mode
    the text is stripped of control characters and capped at log_limit().
    """
    if text is None:
        return "<none>"
    if not diagnostic_mode():
        return f"<{len(text)} chars>"
    cleaned = _CONTROL_CHARS_RE.sub(" ", text).strip()
    limit = log_limit()
    if len(cleaned) > limit:
        return cleaned[:limit] + "…"
    return cleaned
