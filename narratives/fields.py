#!/usr/bin/env python3
"""
How similar are research fields? Jaccard similarity between ASJC fields,
measured by the journals they share.

Pipeline:
- Read the ASJC field sheet and the source (journal) sheet of the classification workbook.
- Keep active journals, split their ';'-separated ASJC codes into (journal, field) pairs.
- Count shared journals per field pair by walking each journal's field list.
- Cross join fields x fields so pairs that share nothing still appear with similarity 0.

Usage:
    python -m narratives.fields --workbook ext_list.xlsx [--base /path] [--top 25]
"""
from __future__ import annotations

import argparse
import logging
import pathlib
from collections import Counter
from dataclasses import dataclass
from itertools import combinations
from typing import Any

import numpy as np
import pandas as pd

from narratives.common import norm_space, require_columns, resolve_paths, setup_logging
from narratives.errors import NarrativeError, StructuralError
from narratives.plotting import PlotTheme, bar_chart, heatmap
from narratives.reporting import MarkdownReport, generated_at, persist_duckdb, write_summary

log = logging.getLogger("narratives.fields")


@dataclass(frozen=True)
class SpreadsheetLayout:
    """Sheet names and (position, header, column) triples the workbook must match."""

    field_sheet: str = "ASJC classification codes"
    field_columns: tuple[tuple[int, str, str], ...] = (
        (0, "Code", "field_id"),
        (1, "Description", "description"),
        (2, "Subject area", "area"),
        (3, "Abbreviation", "abbreviation"),
    )
    source_sheet: str = "Scopus Sources"
    source_columns: tuple[tuple[int, str, str], ...] = (
        (0, "Sourcerecord ID", "journal_id"),
        (1, "Source Title", "title"),
        (2, "Active or Inactive", "status"),
        (3, "All Science Journal Classification Codes (ASJC)", "asjc"),
    )
    active_value: str = "Active"

# ---------- Loading ----------

def _code(value: Any) -> str | None:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        f = float(text)
    except ValueError:
        return text
    return str(int(f)) if f.is_integer() else text


def _select_columns(raw: pd.DataFrame, columns: tuple[tuple[int, str, str], ...], sheet: str) -> pd.DataFrame:
    out: dict[str, pd.Series] = {}
    for pos, header, name in columns:
        if pos >= raw.shape[1]:
            raise StructuralError(f"Sheet {sheet!r} has {raw.shape[1]} columns; expected {header!r} at position {pos}")
        found = norm_space(str(raw.columns[pos])).lower()
        if found != norm_space(header).lower():
            raise StructuralError(f"Sheet {sheet!r} column {pos} is {raw.columns[pos]!r}, expected {header!r}")
        out[name] = raw.iloc[:, pos]
    return pd.DataFrame(out)


def split_asjc_codes(value: Any) -> list[str]:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return []
    codes = [_code(part) for part in str(value).split(";")]
    return sorted({c for c in codes if c})


def load_asjc_workbook(path: pathlib.Path, layout: SpreadsheetLayout = SpreadsheetLayout()) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Returns (fields, sources): fields[field_id, description, area, abbreviation], sources[journal_id, field_id]."""
    with pd.ExcelFile(path, engine="openpyxl") as xls:
        for sheet in (layout.field_sheet, layout.source_sheet):
            if sheet not in xls.sheet_names:
                raise StructuralError(f"Workbook {path} has no sheet {sheet!r}; sheets: {xls.sheet_names}")
        raw_fields = xls.parse(layout.field_sheet, header=0, dtype=object)
        raw_sources = xls.parse(layout.source_sheet, header=0, dtype=object)

    fields = _select_columns(raw_fields, layout.field_columns, layout.field_sheet)
    fields["field_id"] = fields["field_id"].map(_code)
    fields = fields.dropna(subset=["field_id"]).drop_duplicates("field_id").reset_index(drop=True)
    for col in ("description", "area", "abbreviation"):
        if col in fields.columns:
            fields[col] = fields[col].map(lambda v: None if v is None or (isinstance(v, float) and np.isnan(v)) else norm_space(str(v)))

    src = _select_columns(raw_sources, layout.source_columns, layout.source_sheet)
    if "status" in src.columns:
        active = src["status"].astype(str).str.strip().str.lower() == layout.active_value.lower()
        log.info("Keeping %d of %d sources marked %r", int(active.sum()), len(src), layout.active_value)
        src = src[active]
    sources = pd.DataFrame(
        [{"journal_id": _code(j), "field_id": f} for j, codes in zip(src["journal_id"], src["asjc"]) for f in split_asjc_codes(codes)],
        columns=["journal_id", "field_id"],
    )
    sources = sources.dropna().drop_duplicates().reset_index(drop=True)
    log.info("Loaded %d fields and %d journal-field assignments", len(fields), len(sources))
    return fields, sources

# ---------- Similarity ----------

def field_cooccurrence(sources: pd.DataFrame) -> pd.DataFrame:
    """Shared-journal counts for every field pair that shares at least one journal, both orders."""
    require_columns(sources, ["journal_id", "field_id"], "sources")
    pairs: Counter[tuple[str, str]] = Counter()
    for _, group in sources.groupby("journal_id", sort=False)["field_id"]:
        for a, b in combinations(sorted(set(group)), 2):
            pairs[(a, b)] += 1
    rows = [(a, b, n) for (a, b), n in pairs.items()] + [(b, a, n) for (a, b), n in pairs.items()]
    return pd.DataFrame(rows, columns=["field_i", "field_j", "shared"])


def jaccard_similarity(fields: pd.DataFrame, sources: pd.DataFrame) -> pd.DataFrame:
    """One row per ordered pair of distinct fields: shared journals, set sizes and Jaccard similarity."""
    require_columns(fields, ["field_id"], "fields")
    require_columns(sources, ["journal_id", "field_id"], "sources")
    ids = list(dict.fromkeys(fields["field_id"].tolist()))
    known = sources["field_id"].isin(ids)
    if not known.all():
        unknown = sorted(sources.loc[~known, "field_id"].astype(str).unique())
        log.warning("Ignoring %d assignment(s) to %d field code(s) missing from the field table: %s",
                    int((~known).sum()), len(unknown), unknown[:10])
    sources = sources[known].drop_duplicates(["journal_id", "field_id"])

    sizes = sources.groupby("field_id")["journal_id"].nunique()
    grid = pd.DataFrame({"field_i": ids}).merge(pd.DataFrame({"field_j": ids}), how="cross")
    grid = grid[grid["field_i"] != grid["field_j"]]
    grid = grid.merge(field_cooccurrence(sources), on=["field_i", "field_j"], how="left")
    grid["shared"] = grid["shared"].fillna(0).astype(int)
    grid["n_i"] = grid["field_i"].map(sizes).fillna(0).astype(int)
    grid["n_j"] = grid["field_j"].map(sizes).fillna(0).astype(int)
    union = grid["n_i"] + grid["n_j"] - grid["shared"]
    grid["union"] = union
    grid["jaccard"] = np.where(union > 0, grid["shared"] / union.where(union > 0, 1), 0.0)
    return grid.reset_index(drop=True)


def similarity_matrix(sim: pd.DataFrame) -> pd.DataFrame:
    """Square field x field matrix; the diagonal is NaN."""
    ids = list(dict.fromkeys(sim["field_i"].tolist() + sim["field_j"].tolist()))
    mat = sim.pivot(index="field_i", columns="field_j", values="jaccard")
    return mat.reindex(index=ids, columns=ids)


def top_pairs(sim: pd.DataFrame, fields: pd.DataFrame, k: int = 25) -> pd.DataFrame:
    pairs = sim[sim["field_i"] < sim["field_j"]]
    pairs = pairs.sort_values(["jaccard", "shared", "field_i", "field_j"], ascending=[False, False, True, True]).head(k)
    desc = fields.set_index("field_id")["description"] if "description" in fields.columns else pd.Series(dtype=object)
    out = pairs.assign(
        description_i=pairs["field_i"].map(desc),
        description_j=pairs["field_j"].map(desc),
    )
    return out[["field_i", "description_i", "field_j", "description_j", "shared", "union", "jaccard"]].reset_index(drop=True)


def most_similar_fields(sim: pd.DataFrame) -> pd.DataFrame:
    """Closest neighbour of each field (ties broken by shared count, then code)."""
    ordered = sim.sort_values(["field_i", "jaccard", "shared", "field_j"], ascending=[True, False, False, True])
    return ordered.groupby("field_i", sort=True).head(1).reset_index(drop=True)[["field_i", "field_j", "shared", "jaccard"]]


def area_similarity(sim: pd.DataFrame, fields: pd.DataFrame) -> pd.DataFrame:
    """Mean field-to-field similarity between (and within) subject areas."""
    require_columns(fields, ["field_id", "area"], "fields")
    area = fields.set_index("field_id")["area"]
    tagged = sim.assign(area_i=sim["field_i"].map(area), area_j=sim["field_j"].map(area)).dropna(subset=["area_i", "area_j"])
    if tagged.empty:
        return pd.DataFrame()
    return tagged.pivot_table(index="area_i", columns="area_j", values="jaccard", aggfunc="mean")

# ---------- Report ----------

def _label(description: Any, code: str) -> str:
    return description if isinstance(description, str) and description else str(code)


def build_fields_report(
    fields: pd.DataFrame,
    sources: pd.DataFrame,
    paths: dict[str, pathlib.Path],
    theme: PlotTheme,
    top_k: int = 25,
    db_path: pathlib.Path | None = None,
) -> dict[str, Any]:
    sim = jaccard_similarity(fields, sources)
    pairs = top_pairs(sim, fields, k=top_k)
    neighbours = most_similar_fields(sim)
    figs = paths["figures_dir"]

    journals_per_field = sources.groupby("field_id")["journal_id"].nunique()
    fields_per_journal = sources.groupby("journal_id")["field_id"].nunique()

    report = MarkdownReport("Which research fields overlap?")
    report.paragraph(
        f"{sources['journal_id'].nunique()} active journals are assigned to {journals_per_field.size} of "
        f"{len(fields)} ASJC fields, on average {fields_per_journal.mean():.2f} fields per journal. "
        "Two fields are similar when the sets of journals classified under them overlap: "
        "similarity is the Jaccard index, shared journals over journals in either field."
    )
    report.heading("Most similar field pairs").table(pairs, floatfmt=".3f", max_rows=top_k)
    if not pairs.empty:
        labels = [f"{_label(r.description_i, r.field_i)} / {_label(r.description_j, r.field_j)}" for r in pairs.itertuples()]
        fig = bar_chart(labels, pairs["jaccard"], figs / "fields_top_pairs.svg", theme, title="Most similar field pairs", xlabel="Jaccard similarity")
        report.figure(fig, "Most similar field pairs")
    if 1 < len(fields) <= 60:
        fig = heatmap(similarity_matrix(sim), figs / "fields_similarity.svg", theme, title="Field similarity", colorbar_label="Jaccard")
        report.heading("Field by field").figure(fig, "Field similarity")
    areas = pd.DataFrame()
    if "area" in fields.columns and fields["area"].notna().any():
        areas = area_similarity(sim, fields)
        if not areas.empty:
            report.heading("Similarity between subject areas")
            report.paragraph("Each cell is the mean Jaccard similarity over all field pairs drawn from the two areas.")
            fig = heatmap(areas, figs / "fields_area_heatmap.svg", theme, title="Mean field similarity by area", colorbar_label="Jaccard")
            report.figure(fig, "Mean field similarity by area")
    isolated = int((sim.groupby("field_i")["jaccard"].max() == 0).sum())
    report.paragraph(f"{isolated} field(s) share no journal with any other field.")
    report_path = report.write(paths["reports_dir"] / "fields.md")

    if db_path is not None:
        persist_duckdb(db_path, {"asjc_fields": fields, "asjc_sources": sources, "field_similarity": sim}, parquet_dir=paths["output"] / "parquet")

    return {
        "generated_at": report.stamp,
        "field_count": int(len(fields)),
        "journal_count": int(sources["journal_id"].nunique()),
        "mean_fields_per_journal": float(fields_per_journal.mean()) if len(fields_per_journal) else 0.0,
        "isolated_fields": isolated,
        "top_pairs": pairs.to_dict("records"),
        "nearest_neighbours": neighbours.to_dict("records"),
        "area_similarity": areas.round(6).to_dict() if not areas.empty else {},
        "report": str(report_path),
    }

# ---------- Main entry ----------

def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Field similarity from the ASJC journal classification workbook.")
    parser.add_argument("--workbook", required=True, help="Classification workbook (.xlsx)")
    parser.add_argument("--field-sheet", default=SpreadsheetLayout.field_sheet)
    parser.add_argument("--source-sheet", default=SpreadsheetLayout.source_sheet)
    parser.add_argument("--base", help="Output root (defaults to the working directory)", default=None)
    parser.add_argument("--root", dest="base", help="Alias for --base", default=None)
    parser.add_argument("--db", help="DuckDB file path (default Output/narratives.duckdb)", default=None)
    parser.add_argument("--top", type=int, default=25, help="Field pairs listed in the report")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--log-file", default=None)
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)
    paths = resolve_paths(args.base)
    db_path = pathlib.Path(args.db).expanduser() if args.db else paths["db_path"]
    workbook = pathlib.Path(args.workbook).expanduser()
    if not workbook.exists():
        raise SystemExit(f"Workbook not found: {workbook}")

    layout = SpreadsheetLayout(field_sheet=args.field_sheet, source_sheet=args.source_sheet)
    try:
        fields, sources = load_asjc_workbook(workbook, layout)
        summary = build_fields_report(fields, sources, paths, PlotTheme(), top_k=args.top, db_path=db_path)
    except NarrativeError as e:
        raise SystemExit(f"fields: {e}")
    summary["source"] = str(workbook)
    summary["written_at"] = generated_at()
    write_summary(paths["summaries_dir"], "fields", summary)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
