"""
Rebuild table rows from positioned words on PDF pages.

Two phases:
- derive_column_anchors(): find the header line (first token == sentinel) and take
  the x of each header label as that column's left edge.
- reconstruct_rows(): walk tokens in reading order; a token sitting on the leftmost
  anchor opens a new row, every token goes to the nearest anchor at or left of it.

merge_continuation_rows() then folds rows that only continue a hyphenated date
range into the row above.
"""
from __future__ import annotations

import logging
import pathlib
from dataclasses import dataclass, field
from typing import Iterable

import pandas as pd

from narratives.common import require_columns
from narratives.errors import StructuralError

log = logging.getLogger("narratives.layout")

HYPHENS = ("-", "–", "—")

TableRow = dict[str, "str | None"]


@dataclass(frozen=True)
class PositionedToken:
    page: int
    x: float
    y: float
    text: str


# (column name, header label) in the order they appear in the document.
DEFAULT_HEADER_LABELS: tuple[tuple[str, str], ...] = (
    ("date", "Date"),
    ("scheduled_time", "Time"),
    ("meeting", "Meeting"),
    ("location", "Location"),
    ("with", "With"),
    ("portfolio", "Portfolio"),
)


@dataclass(frozen=True)
class ReconstructorConfig:
    header_labels: tuple[tuple[str, str], ...] = DEFAULT_HEADER_LABELS
    sentinel: str = "Date"
    tolerance: float = 0.5
    columns: tuple[str, ...] = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "columns", tuple(name for name, _ in self.header_labels))

    @classmethod
    def with_sentinel(cls, sentinel: str, tolerance: float = 0.5) -> "ReconstructorConfig":
        """Default columns, with the first header cell (the date column) reading `sentinel`."""
        if not sentinel.strip():
            raise ValueError("sentinel must not be blank")
        sentinel = sentinel.strip()
        (date_column, _), *rest = DEFAULT_HEADER_LABELS
        return cls(header_labels=((date_column, sentinel), *rest), sentinel=sentinel, tolerance=tolerance)

# ---------- Token sources ----------

def load_tokens_csv(path: pathlib.Path) -> list[PositionedToken]:
    df = pd.read_csv(path, keep_default_na=False, dtype={"text": str})
    require_columns(df, ["page", "x", "y", "text"], f"token table {path}")
    return tokens_from_frame(df)


def tokens_from_frame(df: pd.DataFrame) -> list[PositionedToken]:
    return [
        PositionedToken(page=int(r.page), x=float(r.x), y=float(r.y), text=str(r.text))
        for r in df.itertuples(index=False)
        if str(r.text).strip()
    ]


def extract_tokens_pdf(path: pathlib.Path) -> list[PositionedToken]:
    """Word-level tokens for every page using PyMuPDF's word extraction."""
    import fitz  # PyMuPDF

    tokens: list[PositionedToken] = []
    with fitz.open(str(path)) as doc:
        for page_no, page in enumerate(doc, start=1):
            for x0, y0, _x1, _y1, word, *_ in page.get_text("words"):
                if word.strip():
                    tokens.append(PositionedToken(page=page_no, x=round(float(x0), 2), y=round(float(y0), 2), text=word))
        log.info("Extracted %d tokens from %d page(s) of %s", len(tokens), len(doc), path)
    return tokens

# ---------- Header detection ----------

def _reading_order(tokens: Iterable[PositionedToken]) -> list[PositionedToken]:
    return sorted(tokens, key=lambda t: (t.page, t.y, t.x))


def find_header_lines(tokens: list[PositionedToken], config: ReconstructorConfig) -> list[tuple[int, float]]:
    """(page, y) of every header line: a line that opens with the sentinel and holds at least one other label."""
    labels = {label.split()[0].lower() for _, label in config.header_labels}
    sentinel = config.sentinel.split()[0].lower()
    others = labels - {sentinel}
    found: list[tuple[int, float]] = []
    for tok in tokens:
        if tok.text.strip().lower() != sentinel:
            continue
        line = [t for t in tokens if t.page == tok.page and abs(t.y - tok.y) <= config.tolerance]
        if min(t.x for t in line) < tok.x:
            continue
        if not others or any(t.text.strip().lower() in others for t in line):
            key = (tok.page, tok.y)
            if not any(p == key[0] and abs(y - key[1]) <= config.tolerance for p, y in found):
                found.append(key)
    found.sort()
    return found


def derive_column_anchors(tokens: Iterable[PositionedToken], config: ReconstructorConfig = ReconstructorConfig()) -> dict[str, float]:
    ordered = _reading_order(tokens)
    headers = find_header_lines(ordered, config)
    if not headers:
        raise StructuralError(f"No header line starting with {config.sentinel!r} found in {len(ordered)} tokens")
    page, y = headers[0]
    line = [t for t in ordered if t.page == page and abs(t.y - y) <= config.tolerance]
    anchors: dict[str, float] = {}
    for name, label in config.header_labels:
        first_word = label.split()[0].lower()
        xs = [t.x for t in line if t.text.strip().lower() == first_word]
        if not xs:
            raise StructuralError(f"Header label {label!r} missing from header line on page {page} (y={y})")
        anchors[name] = min(xs)
    if len(set(anchors.values())) != len(anchors):
        raise StructuralError(f"Header labels share an x position: {anchors}")
    log.debug("Column anchors from page %d header: %s", page, anchors)
    return dict(sorted(anchors.items(), key=lambda kv: kv[1]))

# ---------- Row / column assignment ----------

def column_for_x(x: float, anchors: dict[str, float], tolerance: float = 0.0) -> str | None:
    """Name of the greatest anchor <= x, or None when x lies left of every anchor."""
    best: str | None = None
    best_x = float("-inf")
    for name, ax in anchors.items():
        if ax <= x + tolerance and ax > best_x:
            best, best_x = name, ax
    return best


def reconstruct_rows(
    tokens: Iterable[PositionedToken],
    anchors: dict[str, float],
    config: ReconstructorConfig = ReconstructorConfig(),
) -> list[TableRow]:
    ordered = _reading_order(tokens)
    headers = find_header_lines(ordered, config)
    if not headers:
        raise StructuralError(f"No header line starting with {config.sentinel!r}; refusing to emit preamble rows")
    tol = config.tolerance
    header_y_by_page: dict[int, list[float]] = {}
    for page, y in headers:
        header_y_by_page.setdefault(page, []).append(y)
    first_page = headers[0][0]
    leftmost = min(anchors.values())
    columns = list(config.columns) if set(config.columns) == set(anchors) else list(anchors)

    rows: list[dict[str, list[str]]] = []
    dropped_preamble = dropped_margin = dropped_orphan = 0
    for tok in ordered:
        if tok.page < first_page:
            dropped_preamble += 1
            continue
        page_headers = header_y_by_page.get(tok.page)
        if page_headers:
            top = min(page_headers)
            if tok.y < top - tol or any(abs(tok.y - hy) <= tol for hy in page_headers):
                dropped_preamble += 1
                continue
        if tok.x < leftmost - tol:
            dropped_margin += 1
            continue
        if abs(tok.x - leftmost) <= tol:
            rows.append({})
        if not rows:
            dropped_orphan += 1
            continue
        col = column_for_x(tok.x, anchors, tol)
        rows[-1].setdefault(col, []).append(tok.text.strip())

    if dropped_preamble or dropped_margin or dropped_orphan:
        log.debug(
            "Dropped %d header/preamble, %d left-margin and %d orphan token(s)",
            dropped_preamble, dropped_margin, dropped_orphan,
        )
    return [{c: (" ".join(r[c]) if r.get(c) else None) for c in columns} for r in rows]

# ---------- Continuation rows ----------

def is_continuation_row(previous: TableRow, row: TableRow, date_column: str = "date") -> bool:
    """A row holding only a date fragment that carries on a hyphenated range from the row above."""
    if any((v or "").strip() for c, v in row.items() if c != date_column):
        return False
    date = (row.get(date_column) or "").strip()
    prev_date = (previous.get(date_column) or "").strip()
    if not date or not prev_date:
        return False
    return prev_date.endswith(HYPHENS) or date.startswith(HYPHENS)


def merge_continuation_rows(rows: list[TableRow], date_column: str = "date") -> list[TableRow]:
    if not rows:
        return []
    logical_index: list[int] = []
    counter = -1
    for i, row in enumerate(rows):
        if i == 0 or not is_continuation_row(rows[i - 1], row, date_column):
            counter += 1
        logical_index.append(counter)

    columns = list(rows[0].keys())
    parts: list[dict[str, list[str]]] = [{c: [] for c in columns} for _ in range(counter + 1)]
    for idx, row in zip(logical_index, rows):
        for c in columns:
            v = row.get(c)
            if v:
                parts[idx][c].append(v)
    merged = [{c: (" ".join(p[c]) if p[c] else None) for c in columns} for p in parts]
    if len(merged) != len(rows):
        log.debug("Merged %d continuation row(s)", len(rows) - len(merged))
    return merged
