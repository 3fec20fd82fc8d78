"""Message text cleanup and the question heuristic."""

import html
import re

QUESTION_WORDS = ("who", "what", "when", "where", "why", "how")

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def strip_markup(text: str | None) -> str:
    """Remove tags, decode entities and collapse whitespace."""
    if not text:
        return ""
    cleaned = _TAG_RE.sub(" ", text)
    cleaned = html.unescape(cleaned)
    return _WS_RE.sub(" ", cleaned).strip()


def is_question(text: str | None) -> bool:
    """Ends with '?' or opens with an interrogative word.

    Expects text already passed through ``strip_markup``.
    """
    if not text:
        return False
    lowered = text.lower().strip()
    if lowered.endswith("?"):
        return True
    return any(lowered.startswith(f"{word} ") for word in QUESTION_WORDS)
