# scribe/batch/service/sanitizer.py
"""
Post-processing for batch section output.

``sanitize_content`` only removes text, so running it on its own output
changes nothing. ``finalize_section`` adds the length gate and the
fallback heading on top of it.
"""

import re
from typing import Optional, Tuple

SECTION_HEADING = "# Section Content\n\n"

_META_PATTERNS = [
    re.compile(
        r"\b(Would you like me to continue|Should I continue|Do you want me to proceed|"
        r"Let me know if you'd like me to continue)\??",
        re.IGNORECASE,
    ),
    re.compile(r"\[Note:.*?\]"),
    re.compile(r"\[This section represents.*?\]"),
    re.compile(r"\[Would you like me to continue.*?\]"),
    re.compile(r"\b(Note:|Disclaimer:|Please note:).*?(?=\n|$)", re.IGNORECASE),
    re.compile(r"\b(CRITICAL:|IMPORTANT:|Remember:|Keep in mind:).*?(?=\n|$)", re.IGNORECASE),
    re.compile(r"\b(This section represents approximately \d+%? of the requested length)\b", re.IGNORECASE),
    re.compile(r"\b(Would you like me to continue with additional sections\?)", re.IGNORECASE),
]

_EXTRA_BLANK_LINES = re.compile(r"\n\s*\n\s*\n")


def sanitize_content(content: str) -> str:
    cleaned = content or ""
    for pattern in _META_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return _EXTRA_BLANK_LINES.sub("\n\n", cleaned).strip()


def finalize_section(content: str, min_chars: int = 100) -> Tuple[Optional[str], Optional[str]]:
    """
    Returns ``(text, None)`` for usable content or ``(None, reason)`` when
    the cleaned text is too short to count as a section.
    """
    cleaned = sanitize_content(content)
    if len(cleaned) < min_chars:
        return None, f"Generated content too short ({len(cleaned)} characters)"
    if "#" not in cleaned:
        cleaned = SECTION_HEADING + cleaned
    return cleaned, None


def error_placeholder(index: int, error: str) -> str:
    return f"# Section {index}: Error\n\n[Error processing section: {error}]"
