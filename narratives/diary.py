#!/usr/bin/env python3
"""
Ministerial diary narrative.

Pipeline:
- Positioned words (CSV export or straight from the PDF via PyMuPDF).
- Column anchors from the header line, rows from the leftmost anchor, continuation rows merged.
- Cells normalized into one DiaryEntry per calendar entry.
- Portfolio strings split into a clean entry -> portfolio relation.
- Meeting words counted per portfolio and scored with tf-idf.

Usage:
    python -m narratives.diary --tokens diary_tokens.csv [--base /path] [--top 10]
    python -m narratives.diary --pdf diary.pdf
"""
from __future__ import annotations

import argparse
import logging
import pathlib
import re
from dataclasses import dataclass
from typing import Any

import pandas as pd
from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS

from narratives.common import norm_space, resolve_paths, setup_logging
from narratives.errors import NarrativeError
from narratives.layout import (
    HYPHENS,
    PositionedToken,
    ReconstructorConfig,
    TableRow,
    derive_column_anchors,
    extract_tokens_pdf,
    load_tokens_csv,
    merge_continuation_rows,
    reconstruct_rows,
)
from narratives.plotting import PlotTheme, bar_chart, line_chart
from narratives.reporting import MarkdownReport, generated_at, persist_duckdb, write_summary
from narratives.textnorm import normalize_cells, normalize_text
from narratives.tfidf import bind_tf_idf, top_terms

log = logging.getLogger("narratives.diary")

ENTRY_COLUMNS = ["date", "scheduled_time", "meeting", "location", "with", "portfolio"]

# Words that describe the diary format rather than the meeting.
DIARY_STOPWORDS = {"meeting", "meet", "minister", "hon", "mp", "re", "catch", "call", "via", "phone", "zoom", "teams"}

_PORTFOLIO_SPLIT = re.compile(r"\s*(?:;|/|,|\n)\s*")
_MINISTER_PREFIX = re.compile(r"^(?:Associate\s+)?Minister\s+(?:for|of)\s+(?:the\s+)?", re.IGNORECASE)
_WORD = re.compile(r"[a-z][a-z'\-]+")


@dataclass(frozen=True)
class DiaryEntry:
    date: str | None
    scheduled_time: str | None
    meeting: str | None
    location: str | None
    with_: str | None
    portfolio: str | None

    @classmethod
    def from_row(cls, row: TableRow) -> "DiaryEntry":
        date = normalize_text(row.get("date"))
        return cls(
            date=tidy_date_range(date) if date else None,
            scheduled_time=normalize_text(row.get("scheduled_time")),
            meeting=normalize_text(row.get("meeting")),
            location=normalize_text(row.get("location")),
            with_=normalize_text(row.get("with")),
            portfolio=normalize_text(row.get("portfolio")),
        )

    def to_record(self) -> dict[str, str | None]:
        return {
            "date": self.date,
            "scheduled_time": self.scheduled_time,
            "meeting": self.meeting,
            "location": self.location,
            "with": self.with_,
            "portfolio": self.portfolio,
        }

# ---------- Entries ----------

def tidy_date_range(text: str) -> str:
    """'28 - 30 January 2019' -> '28-30 January 2019'."""
    for h in HYPHENS[1:]:
        text = text.replace(h, "-")
    return re.sub(r"\s*-\s*", "-", text).strip()


def parse_start_date(text: str | None) -> pd.Timestamp:
    """First calendar day of a date or date range; NaT when unparseable."""
    if not text:
        return pd.NaT
    text = tidy_date_range(text)
    candidate = text
    if "-" in text:
        first, rest = text.split("-", 1)
        first = first.strip()
        rest_parts = rest.split()
        if first.isdigit() and len(rest_parts) >= 2:
            # '28-30 January 2019': borrow month/year from the end of the range.
            candidate = " ".join([first] + rest_parts[1:])
        elif re.search(r"\b\d{4}\b", first):
            candidate = first
        else:
            # '30 December - 2 January 2019': the start falls in the year before the end.
            year = next((p for p in reversed(rest_parts) if re.fullmatch(r"\d{4}", p)), None)
            candidate = f"{first} {year}" if year else first
            end = pd.to_datetime(rest.strip(), dayfirst=True, errors="coerce")
            if year and not pd.isna(end):
                start = pd.to_datetime(f"{first} {end.year}", dayfirst=True, errors="coerce")
                if not pd.isna(start) and start > end:
                    start = pd.to_datetime(f"{first} {end.year - 1}", dayfirst=True, errors="coerce")
                return start
    return pd.to_datetime(candidate, dayfirst=True, errors="coerce")


def assemble_entries(rows: list[TableRow]) -> pd.DataFrame:
    merged = merge_continuation_rows(rows)
    # normalize_cells logs unknown characters once per column.
    frame = pd.DataFrame(merged, columns=ENTRY_COLUMNS)
    for col in ENTRY_COLUMNS:
        frame[col] = normalize_cells(frame[col].tolist())
    entries = [DiaryEntry.from_row(r) for r in frame.to_dict("records")]
    out = pd.DataFrame([e.to_record() for e in entries], columns=ENTRY_COLUMNS)
    out.insert(0, "entry_id", range(1, len(out) + 1))
    out["start_date"] = pd.to_datetime(pd.Series([parse_start_date(d) for d in out["date"]], dtype="object"), errors="coerce")
    unparsed = int(out["start_date"].isna().sum())
    if unparsed:
        log.warning("%d of %d entries have an unparseable date", unparsed, len(out))
    return out


def entries_from_tokens(tokens: list[PositionedToken], config: ReconstructorConfig = ReconstructorConfig()) -> pd.DataFrame:
    anchors = derive_column_anchors(tokens, config)
    rows = reconstruct_rows(tokens, anchors, config)
    log.info("Reconstructed %d raw rows from %d tokens", len(rows), len(tokens))
    return assemble_entries(rows)

# ---------- Portfolios ----------

def split_portfolios(text: str | None) -> list[str]:
    text = normalize_text(text)
    if not text:
        return []
    out: list[str] = []
    for part in _PORTFOLIO_SPLIT.split(text):
        part = _MINISTER_PREFIX.sub("", norm_space(part))
        part = part.strip(" .")
        if part and part not in out:
            out.append(part)
    return out


def portfolio_relation(entries: pd.DataFrame) -> pd.DataFrame:
    """One row per (entry_id, portfolio)."""
    pairs = [
        {"entry_id": int(eid), "portfolio": p}
        for eid, text in zip(entries["entry_id"], entries["portfolio"])
        for p in split_portfolios(text)
    ]
    rel = pd.DataFrame(pairs, columns=["entry_id", "portfolio"])
    missing = int(len(entries) - rel["entry_id"].nunique()) if len(entries) else 0
    if missing:
        log.info("%d entries carry no portfolio and are left out of portfolio counts", missing)
    return rel

# ---------- Words ----------

def tokenize_words(text: str | None) -> list[str]:
    out: list[str] = []
    for w in _WORD.findall((text or "").lower()):
        w = w.strip("'-")
        if len(w) >= 3 and w not in ENGLISH_STOP_WORDS and w not in DIARY_STOPWORDS:
            out.append(w)
    return out


def meeting_word_counts(entries: pd.DataFrame, relation: pd.DataFrame, text_column: str = "meeting") -> pd.DataFrame:
    words = pd.DataFrame(
        [{"entry_id": int(eid), "word": w} for eid, text in zip(entries["entry_id"], entries[text_column]) for w in tokenize_words(text)],
        columns=["entry_id", "word"],
    )
    joined = words.merge(relation, on="entry_id", how="inner")
    if joined.empty:
        return pd.DataFrame(columns=["portfolio", "word", "n"])
    counts = joined.groupby(["portfolio", "word"]).size().rename("n").reset_index()
    return counts.sort_values(["portfolio", "n", "word"], ascending=[True, False, True]).reset_index(drop=True)


def portfolio_tf_idf(entries: pd.DataFrame, relation: pd.DataFrame, k: int = 10) -> tuple[pd.DataFrame, pd.DataFrame]:
    counts = meeting_word_counts(entries, relation)
    scored = bind_tf_idf(counts, term="word", document="portfolio", n="n")
    return scored, top_terms(scored, document="portfolio", k=k)

# ---------- Descriptives ----------

def entries_per_month(entries: pd.DataFrame) -> pd.DataFrame:
    dated = entries.dropna(subset=["start_date"])
    if dated.empty:
        return pd.DataFrame(columns=["month", "entries"])
    months = dated["start_date"].dt.to_period("M")
    out = months.value_counts().sort_index()
    full = pd.period_range(out.index.min(), out.index.max(), freq="M")
    out = out.reindex(full, fill_value=0)
    return pd.DataFrame({"month": [str(p) for p in out.index], "entries": out.to_numpy(dtype=int)})


def top_counterparts(entries: pd.DataFrame, k: int = 15) -> pd.DataFrame:
    names = entries["with"].dropna()
    if names.empty:
        return pd.DataFrame(columns=["with", "entries"])
    counts = names.value_counts()
    out = counts.rename_axis("with").reset_index(name="entries")
    return out.sort_values(["entries", "with"], ascending=[False, True]).head(k).reset_index(drop=True)

# ---------- Report ----------

def build_diary_report(
    entries: pd.DataFrame,
    paths: dict[str, pathlib.Path],
    theme: PlotTheme,
    top_k: int = 10,
    db_path: pathlib.Path | None = None,
) -> dict[str, Any]:
    relation = portfolio_relation(entries)
    scored, top = portfolio_tf_idf(entries, relation, k=top_k)
    monthly = entries_per_month(entries)
    counterparts = top_counterparts(entries, k=15)
    figs = paths["figures_dir"]

    report = MarkdownReport("What fills a minister's diary?")
    report.paragraph(
        f"The diary lists {len(entries)} entries across {relation['portfolio'].nunique()} portfolio(s). "
        "Each entry was rebuilt from word positions on the published PDF, with wrapped date ranges "
        "folded back into the entry they belong to."
    )
    if not monthly.empty:
        fig = line_chart(monthly["month"], {"entries": monthly["entries"]}, figs / "diary_entries_per_month.svg", theme,
                         title="Diary entries per month", xlabel="month", ylabel="entries")
        report.heading("Entries over time").figure(fig, "Diary entries per month")
    if not counterparts.empty:
        report.heading("Who gets a meeting")
        fig = bar_chart(counterparts["with"], counterparts["entries"], figs / "diary_counterparts.svg", theme,
                        title="Most frequent counterparts", xlabel="entries")
        report.figure(fig, "Most frequent counterparts").table(counterparts, floatfmt=".0f")
    report.heading("Words that set each portfolio apart")
    report.paragraph(
        "Words are scored with tf-idf across portfolios: a word used in every portfolio's meetings scores zero, "
        "so the lists below show what is distinctive rather than what is common."
    )
    if top.empty:
        report.paragraph("No meeting text was available to score.")
    else:
        report.table(top[["portfolio", "word", "n", "tf", "idf", "tf_idf"]], floatfmt=".4f", max_rows=top_k * 12)
    report_path = report.write(paths["reports_dir"] / "diary.md")

    tables = {
        "diary_entries": entries,
        "diary_portfolios": relation,
        "diary_tf_idf": scored,
    }
    if db_path is not None:
        persist_duckdb(db_path, tables, parquet_dir=paths["output"] / "parquet")

    return {
        "generated_at": report.stamp,
        "entry_count": int(len(entries)),
        "portfolio_count": int(relation["portfolio"].nunique()),
        "undated_entries": int(entries["start_date"].isna().sum()),
        "top_terms": top.to_dict("records"),
        "entries_per_month": monthly.to_dict("records"),
        "report": str(report_path),
    }

# ---------- Main entry ----------

def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Rebuild the ministerial diary table and score portfolio words.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--tokens", help="CSV with page,x,y,text columns")
    src.add_argument("--pdf", help="Diary PDF (tokens extracted with PyMuPDF)")
    parser.add_argument("--base", help="Output root (defaults to the working directory)", default=None)
    parser.add_argument("--root", dest="base", help="Alias for --base", default=None)
    parser.add_argument("--db", help="DuckDB file path (default Output/narratives.duckdb)", default=None)
    parser.add_argument("--sentinel", default="Date", help="Text of the first header cell")
    parser.add_argument("--tolerance", type=float, default=0.5, help="x/y tolerance in points when matching anchors")
    parser.add_argument("--top", type=int, default=10, help="Words per portfolio in the tf-idf table")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--log-file", default=None)
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)
    paths = resolve_paths(args.base)
    db_path = pathlib.Path(args.db).expanduser() if args.db else paths["db_path"]
    try:
        config = ReconstructorConfig.with_sentinel(args.sentinel, tolerance=args.tolerance)
    except ValueError as e:
        parser.error(str(e))

    source = pathlib.Path(args.tokens or args.pdf).expanduser()
    if not source.exists():
        raise SystemExit(f"Input not found: {source}")
    try:
        tokens = load_tokens_csv(source) if args.tokens else extract_tokens_pdf(source)
        entries = entries_from_tokens(tokens, config)
        summary = build_diary_report(entries, paths, PlotTheme(), top_k=args.top, db_path=db_path)
    except NarrativeError as e:
        raise SystemExit(f"diary: {e}")
    summary["source"] = str(source)
    summary["written_at"] = generated_at()
    write_summary(paths["summaries_dir"], "diary", summary)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
