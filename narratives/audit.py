#!/usr/bin/env python3
"""
Audit generated narrative artifacts under Output/.

A lightweight sanity check intended to catch common regressions:
- reports without a title, or with figure links that point nowhere
- "nan" leaking into markdown tables
- summaries that are not valid JSON or lack a generated_at stamp
- empty tables in the DuckDB warehouse

Usage:
  python3 -m narratives.audit [--base PATH]
"""

from __future__ import annotations

import argparse
import json
import logging
import pathlib
import re
import sys
from dataclasses import asdict, dataclass
from typing import Iterable

import duckdb
import pandas as pd

from narratives.common import setup_logging
from narratives.reporting import MarkdownReport, generated_at

log = logging.getLogger("narratives.audit")

OUTPUT_ROOT = "Output"
AUDIT_PREFIX = "output_audit_"

_FIGURE_RE = re.compile(r"!\[[^\]]*\]\(([^)]+)\)")
_NAN_CELL_RE = re.compile(r"\|\s*(nan|NaN|None|NaT)\s*(?=\|)")


@dataclass(frozen=True)
class Finding:
    kind: str
    path: str
    detail: str


def _report_paths(output_root: pathlib.Path) -> list[pathlib.Path]:
    return [p for p in sorted((output_root / "reports").glob("*.md")) if not p.name.startswith(AUDIT_PREFIX)]


def audit_reports(output_root: pathlib.Path) -> list[Finding]:
    findings: list[Finding] = []
    for path in _report_paths(output_root):
        text = path.read_text(encoding="utf-8")
        if not text.lstrip().startswith("# "):
            findings.append(Finding("report.missing_title", str(path), "First line is not a '# ' heading"))

        for ref in _FIGURE_RE.findall(text):
            if "{fig:" in ref:
                findings.append(Finding("report.unresolved_figure", str(path), f"Placeholder left in output: {ref}"))
                continue
            if not (path.parent / ref).exists():
                findings.append(Finding("report.missing_figure", str(path), f"Figure not found: {ref}"))

        for lineno, line in enumerate(text.splitlines(), start=1):
            if line.startswith("|") and _NAN_CELL_RE.search(line):
                findings.append(Finding("report.nan_cell", str(path), f"line {lineno}: {line.strip()[:90]}"))
                break
    return findings


def audit_orphan_figures(output_root: pathlib.Path) -> list[Finding]:
    figures_dir = output_root / "reports" / "figures"
    if not figures_dir.is_dir():
        return []
    referenced: set[pathlib.Path] = set()
    for path in _report_paths(output_root):
        for ref in _FIGURE_RE.findall(path.read_text(encoding="utf-8")):
            referenced.add((path.parent / ref).resolve())
    return [
        Finding("figure.orphan", str(fig), "Not referenced by any report")
        for fig in sorted(figures_dir.iterdir())
        if fig.is_file() and fig.resolve() not in referenced
    ]


def audit_summaries(output_root: pathlib.Path) -> list[Finding]:
    findings: list[Finding] = []
    for path in sorted((output_root / "summaries").glob("*.json")):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            findings.append(Finding("summary.invalid_json", str(path), str(e)))
            continue
        if not isinstance(data, dict):
            findings.append(Finding("summary.type", str(path), f"Expected object, got {type(data).__name__}"))
            continue
        if not data.get("generated_at"):
            findings.append(Finding("summary.missing_generated_at", str(path), "Missing generated_at stamp"))
        report = data.get("report")
        if isinstance(report, str) and not pathlib.Path(report).exists():
            findings.append(Finding("summary.missing_report", str(path), f"Report not found: {report}"))
    return findings


def audit_warehouse(db_path: pathlib.Path) -> list[Finding]:
    if not db_path.exists():
        return []
    findings: list[Finding] = []
    con = duckdb.connect(str(db_path), read_only=True)
    try:
        tables = [r[0] for r in con.execute("SELECT table_name FROM information_schema.tables WHERE table_schema = 'main'").fetchall()]
        if not tables:
            findings.append(Finding("warehouse.empty", str(db_path), "No tables"))
        for name in tables:
            n = con.execute(f'SELECT COUNT(*) FROM "{name}"').fetchone()[0]
            if n == 0:
                findings.append(Finding("warehouse.empty_table", str(db_path), f"Table {name} has no rows"))
    finally:
        con.close()
    return findings


def findings_frame(findings: Iterable[Finding]) -> pd.DataFrame:
    return pd.DataFrame([asdict(f) for f in findings], columns=["kind", "path", "detail"])


def counts_by_kind(findings: Iterable[Finding]) -> pd.DataFrame:
    """Finding counts per kind, most frequent first."""
    frame = findings_frame(findings)
    counts = frame.groupby("kind").size().rename("count").reset_index()
    return counts.sort_values(["count", "kind"], ascending=[False, True], kind="mergesort").reset_index(drop=True)


def _summarize(findings: list[Finding]) -> str:
    lines = [f"Findings: {len(findings)}"]
    lines.extend(f"- {r.kind}: {r.count}" for r in counts_by_kind(findings).itertuples(index=False))
    return "\n".join(lines)


def write_audit_report(output_root: pathlib.Path, findings: list[Finding], max_details: int = 250) -> pathlib.Path:
    stamp = generated_at()
    report = MarkdownReport("Narratives Output Audit", stamp=stamp)
    report.bullets([f"Root: `{output_root}`", f"Total findings: `{len(findings)}`"])
    report.heading("Summary")
    if findings:
        report.table(counts_by_kind(findings), max_rows=None)
        report.heading("Details")
        report.table(findings_frame(findings), max_rows=max_details)
    else:
        report.paragraph("No problems found.")
    name = f"{AUDIT_PREFIX}{stamp.replace('-', '').replace(':', '')}.md"
    return report.write(output_root / "reports" / name)


def run_audit(output_root: pathlib.Path, db_path: pathlib.Path | None = None) -> list[Finding]:
    findings: list[Finding] = []
    findings.extend(audit_reports(output_root))
    findings.extend(audit_orphan_figures(output_root))
    findings.extend(audit_summaries(output_root))
    findings.extend(audit_warehouse(db_path or output_root / "narratives.duckdb"))
    log.info("Audited %s: %d finding(s)", output_root, len(findings))
    return findings


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Sanity-check generated reports, summaries and the warehouse.")
    parser.add_argument("--base", help="Directory holding Output/ (defaults to the working directory)", default=None)
    parser.add_argument("--db", help="DuckDB file path (default Output/narratives.duckdb)", default=None)
    parser.add_argument("--no-report", action="store_true", help="Print the summary only")
    args = parser.parse_args(argv)

    setup_logging()
    base = pathlib.Path(args.base).expanduser().resolve() if args.base else pathlib.Path.cwd()
    output_root = base / OUTPUT_ROOT
    if not output_root.is_dir():
        print(f"Missing `{output_root}/` folder; nothing to audit.", file=sys.stderr)
        return 2

    findings = run_audit(output_root, pathlib.Path(args.db).expanduser() if args.db else None)
    print(_summarize(findings))
    if not args.no_report:
        report = write_audit_report(output_root, findings)
        print(f"Report written: {report}")

    # Non-zero exit if any issues found.
    return 1 if findings else 0


if __name__ == "__main__":
    raise SystemExit(main())
