"""
Report output: markdown narratives, JSON summaries and the DuckDB warehouse
(with Parquet snapshots) that every report writes its tables into.
"""
from __future__ import annotations

import datetime as dt
import json
import logging
import math
import os
import pathlib
from typing import Any, Iterable

import duckdb
import numpy as np
import pandas as pd

log = logging.getLogger("narratives.reporting")


def generated_at() -> str:
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

# ---------- Markdown ----------

def _fmt_cell(value: Any, floatfmt: str) -> str:
    if value is None:
        return ""
    if isinstance(value, (float, np.floating)):
        if math.isnan(value):
            return ""
        if math.isinf(value):
            return "inf" if value > 0 else "-inf"
        return format(float(value), floatfmt)
    if isinstance(value, (pd.Timestamp, dt.date)):
        return value.strftime("%Y-%m-%d")
    return str(value).replace("|", "\\|").replace("\n", " ")


def markdown_table(df: pd.DataFrame, floatfmt: str = ".3f", max_rows: int | None = None) -> list[str]:
    cols = [str(c) for c in df.columns]
    lines = ["| " + " | ".join(cols) + " |", "|" + "|".join("---" for _ in cols) + "|"]
    shown = df if max_rows is None else df.head(max_rows)
    for row in shown.itertuples(index=False):
        lines.append("| " + " | ".join(_fmt_cell(v, floatfmt) for v in row) + " |")
    if max_rows is not None and len(df) > max_rows:
        lines.append("")
        lines.append(f"_(showing first {max_rows} of {len(df)} rows)_")
    return lines


class MarkdownReport:
    """Accumulates a blog-style report: headings, prose, tables and figures."""

    def __init__(self, title: str, stamp: str | None = None):
        self.title = title
        self.stamp = stamp or generated_at()
        self.lines: list[str] = [f"# {title}", "", f"_Generated {self.stamp}_", ""]
        self.figures: list[pathlib.Path] = []

    def heading(self, text: str, level: int = 2) -> "MarkdownReport":
        self.lines.extend(["#" * level + " " + text, ""])
        return self

    def paragraph(self, text: str) -> "MarkdownReport":
        self.lines.extend([text.strip(), ""])
        return self

    def bullets(self, items: Iterable[str]) -> "MarkdownReport":
        self.lines.extend(f"- {item}" for item in items)
        self.lines.append("")
        return self

    def table(self, df: pd.DataFrame, floatfmt: str = ".3f", max_rows: int | None = 25) -> "MarkdownReport":
        self.lines.extend(markdown_table(df, floatfmt=floatfmt, max_rows=max_rows))
        self.lines.append("")
        return self

    def figure(self, path: pathlib.Path, caption: str) -> "MarkdownReport":
        self.figures.append(pathlib.Path(path))
        self.lines.extend([f"![{caption}]({{fig:{len(self.figures) - 1}}})", ""])
        return self

    def render(self, report_dir: pathlib.Path | None = None) -> str:
        text = "\n".join(self.lines)
        for i, fig in enumerate(self.figures):
            ref = os.path.relpath(fig, report_dir).replace(os.sep, "/") if report_dir else fig.as_posix()
            text = text.replace(f"{{fig:{i}}}", ref)
        return text

    def write(self, path: pathlib.Path) -> pathlib.Path:
        path = pathlib.Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render(path.parent), encoding="utf-8")
        log.info("Wrote report to %s", path)
        return path

# ---------- Summary export ----------

def _json_default(value: Any):
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (np.floating,)):
        return float(value)
    if isinstance(value, np.ndarray):
        return _finite(value.tolist())
    if isinstance(value, (pd.Timestamp, dt.date)):
        return value.isoformat()
    if isinstance(value, pathlib.Path):
        return str(value)
    raise TypeError(f"Not JSON serializable: {type(value).__name__}")


def _finite(obj: Any) -> Any:
    # JSON has no inf/NaN; unreachable distances and empty means become null.
    if isinstance(obj, dict):
        return {k: _finite(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_finite(v) for v in obj]
    if isinstance(obj, (float, np.floating)) and not math.isfinite(float(obj)):
        return None
    return obj


def write_summary(summaries_dir: pathlib.Path, name: str, summary: dict[str, Any]) -> pathlib.Path:
    out_path = pathlib.Path(summaries_dir) / f"{name}.json"
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(_finite(summary), indent=2, default=_json_default, allow_nan=False), encoding="utf-8")
    log.info("Wrote summary to %s", out_path)
    return out_path

# ---------- DuckDB persistence ----------

def persist_duckdb(db_path: pathlib.Path, tables: dict[str, pd.DataFrame], parquet_dir: pathlib.Path | None = None) -> list[str]:
    """Create-or-replace one table per frame; optionally snapshot each to Parquet."""
    db_path = pathlib.Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    if parquet_dir is not None:
        parquet_dir.mkdir(parents=True, exist_ok=True)
    written: list[str] = []
    con = duckdb.connect(str(db_path))
    try:
        for name, df in tables.items():
            if df is None or getattr(df, "shape", (0, 0))[1] == 0:
                continue
            view = f"df_{name}"
            con.register(view, df)
            con.execute(f'CREATE OR REPLACE TABLE "{name}" AS SELECT * FROM {view}')
            con.unregister(view)
            if parquet_dir is not None:
                out = (parquet_dir / f"{name}.parquet").as_posix()
                con.execute(f"COPY \"{name}\" TO '{out}' (FORMAT PARQUET, CODEC 'ZSTD')")
            written.append(name)
    finally:
        con.close()
    log.info("Persisted %d table(s) to %s", len(written), db_path)
    return written
