"""
Cell text clean-up for text pulled out of PDF tables.

normalize_text() is total and idempotent: it only ever emits ASCII, so a
second pass finds nothing left to substitute.
"""
from __future__ import annotations

import logging
import re

log = logging.getLogger("narratives.textnorm")

# UTF-8 bytes that were decoded as cp1252 somewhere upstream. Checked before
# the single-character table because they contain characters from it.
MOJIBAKE = {
    "â€“": "-",
    "â€”": "-",
    "â€˜": "'",
    "â€™": "'",
    "â€œ": '"',
    "â€\x9d": '"',
    "â€¦": "...",
    "Ã©": "e",
    "Ã¨": "e",
    "Ã¡": "a",
    "Ã³": "o",
    "Ã¶": "o",
    "Ã¼": "u",
    "Ã±": "n",
    "Â\u00a0": " ",
}

CHAR_MAP = {
    "\u00a0": " ",  # no-break space
    "\u2009": " ",
    "–": "-",   # en dash
    "—": "-",   # em dash
    "‐": "-",
    "‑": "-",
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "…": "...",
    "à": "a", "á": "a", "â": "a", "ä": "a", "ã": "a", "å": "a",
    "À": "A", "Á": "A", "Â": "A", "Ä": "A",
    "ç": "c", "Ç": "C",
    "è": "e", "é": "e", "ê": "e", "ë": "e",
    "È": "E", "É": "E", "Ê": "E", "Ë": "E",
    "ì": "i", "í": "i", "î": "i", "ï": "i",
    "ñ": "n", "Ñ": "N",
    "ò": "o", "ó": "o", "ô": "o", "ö": "o", "õ": "o", "ø": "o",
    "Ó": "O", "Ö": "O",
    "ù": "u", "ú": "u", "û": "u", "ü": "u",
    "Ú": "U", "Ü": "U",
    "ā": "a", "ē": "e", "ī": "i", "ō": "o", "ū": "u",  # te reo macrons
    "Ā": "A", "Ē": "E", "Ī": "I", "Ō": "O", "Ū": "U",
}

# Transcription errors seen in the published diaries.
CORRECTIONS = [
    (re.compile(r"\bMinster\b"), "Minister"),
    (re.compile(r"\bMinsiter\b"), "Minister"),
    (re.compile(r"\bGovernmnet\b"), "Government"),
    (re.compile(r"\bAssociaton\b"), "Association"),
    (re.compile(r"\bMeeitng\b"), "Meeting"),
]

_WS = re.compile(r"\s+")


def _escape(ch: str) -> str:
    return ch.encode("ascii", "backslashreplace").decode("ascii")


def unrecognized_characters(value: str | None) -> set[str]:
    """Non-ASCII characters in `value` that the substitution tables do not cover."""
    if not value:
        return set()
    text = value
    for seq in MOJIBAKE:
        text = text.replace(seq, "")
    return {ch for ch in text if ord(ch) > 127 and ch not in CHAR_MAP}


def normalize_text(value: str | None) -> str | None:
    if value is None:
        return None
    text = str(value)
    for seq, repl in MOJIBAKE.items():
        if seq in text:
            text = text.replace(seq, repl)
    if not text.isascii():
        text = "".join(CHAR_MAP.get(ch, ch) if ord(ch) > 127 else ch for ch in text)
        if not text.isascii():
            text = "".join(_escape(ch) if ord(ch) > 127 else ch for ch in text)
    text = _WS.sub(" ", text).strip()
    if not text:
        return None
    for pattern, repl in CORRECTIONS:
        text = pattern.sub(repl, text)
    return text


def normalize_cells(values, warn: bool = True) -> list[str | None]:
    """Normalize a column of cells, logging any characters that needed escaping."""
    out: list[str | None] = []
    unknown: set[str] = set()
    for v in values:
        if v is not None and not isinstance(v, str):
            v = None if v != v else str(v)  # NaN from pandas
        if warn:
            unknown |= unrecognized_characters(v)
        out.append(normalize_text(v))
    if unknown:
        log.warning("Escaped %d unrecognized character(s): %s", len(unknown), " ".join(sorted(_escape(c) for c in unknown)))
    return out
