"""
Text clean-up for free-text fields coming from the upstream jobs feed.

The feed re-encodes its text inconsistently: some postings carry HTML
entities, some carry UTF-8 that was decoded as Windows-1252 somewhere along
the way ("â€™" instead of "’"), and some carry both. This module provides:

* ``normalize``: decode entities, repair mojibake, fold typographic quotes
  and collapse whitespace. Safe to call repeatedly on its own output.
* ``format_description``: ``normalize`` plus line-item and section-header
  layout for long job descriptions.

Mojibake repair tries two strategies in order. ``repair_by_roundtrip``
reverses the bad decode byte for byte and is exact when the whole string was
garbled the same way. ``repair_by_table`` replaces the garbled sequences we
know about and is the fallback for strings mixing clean and garbled text.
"""

from __future__ import annotations

import re
from typing import Dict, Optional

PARAGRAPH_BREAK = "\n\n"

HTML_ENTITIES: Dict[str, str] = {
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
    "&apos;": "'",
    "&nbsp;": " ",
    "&mdash;": "—",
    "&ndash;": "–",
    "&hellip;": "…",
    "&ldquo;": '"',
    "&rdquo;": '"',
    "&lsquo;": "'",
    "&rsquo;": "'",
    "&bull;": "•",
    "&bullet;": "•",
}

# Curly quotes are displayed as plain ASCII quotes
QUOTE_FOLDS: Dict[str, str] = {
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "\u00a0": " ",
}

_ENTITY_RE = re.compile(r"&[a-zA-Z0-9#]+;")
_MOJIBAKE_HINT_RE = re.compile("[ÂÃâ]")
_WHITESPACE_RUN_RE = re.compile(r"\s{2,}")
_MARKER_END_RE = re.compile(r"(?:[•\-–*]|(?:^|\n)[ \t]*\d+\.)$")
_MARKER_START_RE = re.compile(r"(?:[•\-–*]|\d+\.(?!\d))")

SECTION_HEADERS = (
    "Work Location:",
    "Additional Information:",
    "To Apply:",
    "Hours/Shift:",
)
_SECTION_RE = re.compile("(" + "|".join(re.escape(h) for h in SECTION_HEADERS) + ")")
_HOURS_RE = re.compile(r"(\d+ Hours/)")
_EXTRA_NEWLINES_RE = re.compile(r"\n(?:[ \t]*\n){2,}")


def _sloppy_encode(text: str) -> bytes:
    """Map each character back to the single byte it was decoded from.

    Windows-1252 first, then Latin-1 for the five control code points that
    Windows-1252 leaves undefined.
    """
    out = bytearray()
    for ch in text:
        try:
            out += ch.encode("cp1252")
        except UnicodeEncodeError:
            if ord(ch) > 0xFF:
                raise
            out.append(ord(ch))
    return bytes(out)


def _sloppy_decode(data: bytes) -> str:
    chars = []
    for byte in data:
        try:
            chars.append(bytes([byte]).decode("cp1252"))
        except UnicodeDecodeError:
            chars.append(chr(byte))
    return "".join(chars)


def _garble(ch: str) -> str:
    return _sloppy_decode(ch.encode("utf-8"))


def _build_repair_table() -> Dict[str, str]:
    table: Dict[str, str] = {}
    for correct in ("’", "‘", "“", "”", "–", "—", "…", "•", "\u00a0"):
        table[_garble(correct)] = QUOTE_FOLDS.get(correct, correct)
    # Partially garbled variants that have lost a byte upstream
    table["â¢"] = "•"
    table["â€"] = '"'
    return table


MOJIBAKE_REPAIRS: Dict[str, str] = _build_repair_table()
_REPAIR_RE = re.compile(
    "|".join(re.escape(k) for k in sorted(MOJIBAKE_REPAIRS, key=len, reverse=True))
)


def decode_entities(text: str) -> str:
    """Replace the named HTML entities we know about; leave the rest alone."""
    return _ENTITY_RE.sub(lambda m: HTML_ENTITIES.get(m.group(0), m.group(0)), text)


def repair_by_roundtrip(text: str) -> Optional[str]:
    """Undo a UTF-8-read-as-Windows-1252 decode.

    Returns:
        The repaired string, or ``None`` when the text shows no sign of
        mojibake, cannot be re-encoded, is not valid UTF-8 once re-encoded,
        or comes back unchanged.
    """
    if not _MOJIBAKE_HINT_RE.search(text):
        return None
    try:
        repaired = _sloppy_encode(text).decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return None
    if repaired == text:
        return None
    return repaired


def repair_by_table(text: str) -> str:
    """Replace known garbled multi-byte sequences with the intended character."""
    return _REPAIR_RE.sub(lambda m: MOJIBAKE_REPAIRS[m.group(0)], text)


def fold_quotes(text: str) -> str:
    for src, dst in QUOTE_FOLDS.items():
        text = text.replace(src, dst)
    return text


def repair_mojibake(text: str) -> str:
    # Doubly-encoded text needs more than one pass
    for _ in range(3):
        repaired = repair_by_roundtrip(text)
        if repaired is None:
            repaired = repair_by_table(text)
        repaired = fold_quotes(repaired)
        if repaired == text:
            break
        text = repaired
    return text


def collapse_whitespace(text: str) -> str:
    """Turn runs of 2+ whitespace characters into paragraph breaks.

    Runs touching a list marker (bullet, dash, or ``N.`` numbering at the
    start of a line) become a single separator instead so list layout
    survives. A number closing a sentence ("by 2024.") is not a marker.
    """

    def _replace(match: re.Match) -> str:
        run = match.group(0)
        if _MARKER_END_RE.search(text, 0, match.start()) or _MARKER_START_RE.match(text, match.end()):
            return "\n" if "\n" in run else " "
        return PARAGRAPH_BREAK

    return _WHITESPACE_RUN_RE.sub(_replace, text)


def normalize(raw: Optional[str]) -> Optional[str]:
    """Clean one free-text field from the feed.

    ``None`` and empty strings are returned unchanged. Non-string values
    (the feed occasionally sends numbers) are returned as-is.
    """
    if not raw or not isinstance(raw, str):
        return raw
    text = decode_entities(raw)
    text = repair_mojibake(text)
    text = collapse_whitespace(text)
    return text.strip()


def format_description(raw: Optional[str]) -> Optional[str]:
    """Normalize a job description and lay it out as paragraphs and list items."""
    if not raw or not isinstance(raw, str):
        return raw
    text = normalize(raw)
    text = text.replace("•", "\n- ")
    text = _HOURS_RE.sub(r"\n\1", text)
    text = _SECTION_RE.sub(r"\n\n\1", text)
    text = _EXTRA_NEWLINES_RE.sub("\n\n", text)
    return text.strip()
