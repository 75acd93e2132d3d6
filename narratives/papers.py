#!/usr/bin/env python3
"""
Working-paper metadata package: a validated table of (number, year, month, title)
plus the derived artifacts people actually use: ids, BibTeX, CSV/JSON exports and a
short report on the series.

Usage:
    python -m narratives.papers --papers working_papers.csv --series "Working Paper" --institution "..."
"""
from __future__ import annotations

import argparse
import calendar
import json
import logging
import pathlib
from dataclasses import dataclass
from typing import Any

import pandas as pd

from narratives.common import require_columns, resolve_paths, setup_logging
from narratives.errors import NarrativeError, StructuralError
from narratives.plotting import PlotTheme, bar_chart
from narratives.reporting import MarkdownReport, generated_at, persist_duckdb, write_summary
from narratives.textnorm import normalize_text

log = logging.getLogger("narratives.papers")

PAPER_COLUMNS = ["number", "year", "month", "title"]

_BIBTEX_ESCAPES = {"\\": r"\textbackslash{}", "&": r"\&", "%": r"\%", "$": r"\$", "#": r"\#", "_": r"\_", "{": r"\{", "}": r"\}"}


@dataclass(frozen=True)
class WorkingPaper:
    number: int
    year: int
    month: int
    title: str

    @property
    def paper_id(self) -> str:
        return f"{self.year}-{self.number:02d}"

    def bibtex(self, series: str, institution: str = "", key_prefix: str = "wp") -> str:
        fields = [
            ("title", "{" + bibtex_escape(self.title) + "}"),
            ("type", bibtex_escape(series)),
            ("number", self.paper_id),
            ("year", str(self.year)),
            ("month", calendar.month_abbr[self.month].lower()),
        ]
        if institution:
            fields.append(("institution", bibtex_escape(institution)))
        body = ",\n".join(f"  {k} = {v}" if k == "month" else f"  {k} = {{{v}}}" for k, v in fields)
        return f"@techreport{{{key_prefix}{self.year}_{self.number:02d},\n{body}\n}}"


def bibtex_escape(text: str) -> str:
    return "".join(_BIBTEX_ESCAPES.get(ch, ch) for ch in text)

# ---------- Loading ----------

def load_working_papers(path: pathlib.Path) -> pd.DataFrame:
    path = pathlib.Path(path)
    if path.suffix.lower() in (".xlsx", ".xlsm"):
        raw = pd.read_excel(path, engine="openpyxl", dtype=object)
    else:
        raw = pd.read_csv(path, dtype=object, keep_default_na=False)
    raw.columns = [str(c).strip().lower() for c in raw.columns]
    return validate_working_papers(raw)


def _as_int(series: pd.Series, column: str) -> pd.Series:
    values = pd.to_numeric(series, errors="coerce")
    bad = values.isna() | (values % 1 != 0)
    if bad.any():
        rows = [int(i) + 2 for i in series.index[bad.to_numpy()][:5]]  # +2: header row, 1-based
        raise StructuralError(f"column {column!r} has non-integer values (rows {rows})")
    return values.astype(int)


def validate_working_papers(raw: pd.DataFrame) -> pd.DataFrame:
    require_columns(raw, PAPER_COLUMNS, "working papers")
    df = raw[PAPER_COLUMNS].copy()
    for col in ("number", "year", "month"):
        df[col] = _as_int(df[col], col)
    if not df["month"].between(1, 12).all():
        bad = df.loc[~df["month"].between(1, 12), "month"].unique().tolist()
        raise StructuralError(f"month outside 1..12: {bad}")
    if (df["number"] < 1).any():
        raise StructuralError("paper numbers start at 1")
    df["title"] = [normalize_text(t if isinstance(t, str) else None) for t in df["title"]]
    if df["title"].isna().any():
        raise StructuralError(f"{int(df['title'].isna().sum())} paper(s) without a title")
    dupes = df.duplicated(["year", "number"], keep=False)
    if dupes.any():
        ids = sorted({f"{y}-{n:02d}" for y, n in zip(df.loc[dupes, "year"], df.loc[dupes, "number"])})
        raise StructuralError(f"duplicate paper numbers: {ids}")
    df["paper_id"] = [f"{y}-{n:02d}" for y, n in zip(df["year"], df["number"])]
    df["date"] = pd.to_datetime(pd.DataFrame({"year": df["year"], "month": df["month"], "day": 1}))
    return df.sort_values(["year", "number"]).reset_index(drop=True)


def to_papers(df: pd.DataFrame) -> list[WorkingPaper]:
    return [WorkingPaper(int(r.number), int(r.year), int(r.month), str(r.title)) for r in df.itertuples(index=False)]

# ---------- Derived tables ----------

def papers_per_year(df: pd.DataFrame) -> pd.DataFrame:
    if df.empty:
        return pd.DataFrame(columns=["year", "papers"])
    counts = df.groupby("year").size()
    years = range(int(counts.index.min()), int(counts.index.max()) + 1)
    counts = counts.reindex(years, fill_value=0)
    return pd.DataFrame({"year": list(years), "papers": counts.to_numpy(dtype=int)})


def latest_papers(df: pd.DataFrame, k: int = 10) -> pd.DataFrame:
    return df.sort_values(["date", "number"], ascending=[False, False]).head(k)[["paper_id", "date", "title"]].reset_index(drop=True)


def to_bibtex(df: pd.DataFrame, series: str = "Working Paper", institution: str = "") -> str:
    return "\n\n".join(p.bibtex(series, institution) for p in to_papers(df)) + ("\n" if len(df) else "")


def write_package(df: pd.DataFrame, out_dir: pathlib.Path, series: str = "Working Paper", institution: str = "") -> dict[str, pathlib.Path]:
    """CSV, JSON and BibTeX renditions of the validated table."""
    out_dir = pathlib.Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    export = df.assign(date=df["date"].dt.strftime("%Y-%m"))
    paths = {
        "csv": out_dir / "working_papers.csv",
        "json": out_dir / "working_papers.json",
        "bibtex": out_dir / "working_papers.bib",
    }
    export.to_csv(paths["csv"], index=False)
    paths["json"].write_text(json.dumps(export.to_dict("records"), indent=2, ensure_ascii=False), encoding="utf-8")
    paths["bibtex"].write_text(to_bibtex(df, series, institution), encoding="utf-8")
    log.info("Wrote %d papers to %s", len(df), out_dir)
    return paths

# ---------- Report ----------

def build_papers_report(
    df: pd.DataFrame,
    paths: dict[str, pathlib.Path],
    theme: PlotTheme,
    series: str = "Working Paper",
    institution: str = "",
    db_path: pathlib.Path | None = None,
) -> dict[str, Any]:
    per_year = papers_per_year(df)
    latest = latest_papers(df, k=10)
    package = write_package(df, paths["output"] / "package", series, institution)

    report = MarkdownReport(f"{series} series at a glance")
    if df.empty:
        report.paragraph("The series has no papers yet.")
    else:
        busiest = per_year.sort_values(["papers", "year"], ascending=[False, True]).iloc[0]
        report.paragraph(
            f"The series holds {len(df)} papers from {int(df['year'].min())} to {int(df['year'].max())}. "
            f"The busiest year was {int(busiest['year'])} with {int(busiest['papers'])} papers."
        )
        fig = bar_chart([str(y) for y in per_year["year"]], per_year["papers"], paths["figures_dir"] / "papers_per_year.svg",
                        theme, title="Papers per year", xlabel="papers", horizontal=False)
        report.heading("Papers per year").figure(fig, "Papers per year")
        report.heading("Latest papers").table(latest, max_rows=None)
    report.heading("Files")
    report.bullets(f"`{p.name}`" for p in package.values())
    report_path = report.write(paths["reports_dir"] / "papers.md")

    if db_path is not None:
        persist_duckdb(db_path, {"working_papers": df}, parquet_dir=paths["output"] / "parquet")

    return {
        "generated_at": report.stamp,
        "paper_count": int(len(df)),
        "papers_per_year": per_year.to_dict("records"),
        "package": {k: str(v) for k, v in package.items()},
        "report": str(report_path),
    }

# ---------- Main entry ----------

def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Validate and package working-paper metadata.")
    parser.add_argument("--papers", required=True, help="CSV or Excel with number,year,month,title")
    parser.add_argument("--series", default="Working Paper")
    parser.add_argument("--institution", default="")
    parser.add_argument("--base", help="Output root (defaults to the working directory)", default=None)
    parser.add_argument("--root", dest="base", help="Alias for --base", default=None)
    parser.add_argument("--db", help="DuckDB file path (default Output/narratives.duckdb)", default=None)
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--log-file", default=None)
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)
    paths = resolve_paths(args.base)
    db_path = pathlib.Path(args.db).expanduser() if args.db else paths["db_path"]
    source = pathlib.Path(args.papers).expanduser()
    if not source.exists():
        raise SystemExit(f"Input not found: {source}")
    try:
        df = load_working_papers(source)
        summary = build_papers_report(df, paths, PlotTheme(), args.series, args.institution, db_path=db_path)
    except NarrativeError as e:
        raise SystemExit(f"papers: {e}")
    summary["source"] = str(source)
    summary["written_at"] = generated_at()
    write_summary(paths["summaries_dir"], "papers", summary)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
