import json
import pathlib
import tempfile
import unittest

import pandas as pd

from narratives.audit import Finding, counts_by_kind, main, run_audit, write_audit_report
from narratives.common import resolve_paths
from narratives.plotting import PlotTheme
from narratives.regression import SimulationConfig, build_regression_report
from narratives.reporting import persist_duckdb, write_summary


class AuditUnitTests(unittest.TestCase):
    def test_freshly_generated_output_is_clean(self):
        with tempfile.TemporaryDirectory() as tmp:
            paths = resolve_paths(tmp)
            summary = build_regression_report(
                SimulationConfig(n=40, replications=20, seed=0), paths, PlotTheme(), levels=(0.0, 0.5), db_path=paths["db_path"]
            )
            write_summary(paths["summaries_dir"], "regression", summary)
            findings = run_audit(paths["output"])
        self.assertEqual(findings, [])

    def test_flags_broken_artifacts(self):
        with tempfile.TemporaryDirectory() as tmp:
            paths = resolve_paths(tmp)
            (paths["reports_dir"] / "broken.md").write_text(
                "No title here\n\n![chart](figures/missing.svg)\n\n| a | b |\n|---|---|\n| 1 | nan |\n", encoding="utf-8"
            )
            (paths["figures_dir"] / "stray.svg").write_text("<svg/>", encoding="utf-8")
            (paths["summaries_dir"] / "no_stamp.json").write_text(json.dumps({"x": 1}), encoding="utf-8")
            (paths["summaries_dir"] / "bad.json").write_text("{not json", encoding="utf-8")
            persist_duckdb(paths["db_path"], {"empty": pd.DataFrame({"x": pd.Series([], dtype=float)})})

            kinds = sorted(f.kind for f in run_audit(paths["output"]))
        self.assertEqual(
            kinds,
            sorted(
                [
                    "report.missing_title",
                    "report.missing_figure",
                    "report.nan_cell",
                    "figure.orphan",
                    "summary.missing_generated_at",
                    "summary.invalid_json",
                    "warehouse.empty_table",
                ]
            ),
        )

    def test_main_exit_codes(self):
        with tempfile.TemporaryDirectory() as tmp:
            self.assertEqual(main(["--base", tmp]), 2)
            paths = resolve_paths(tmp)
            self.assertEqual(main(["--base", tmp, "--no-report"]), 0)
            (paths["summaries_dir"] / "no_stamp.json").write_text("{}", encoding="utf-8")
            self.assertEqual(main(["--base", tmp]), 1)
            written = list(pathlib.Path(paths["reports_dir"]).glob("output_audit_*.md"))
            self.assertEqual(len(written), 1)

    def test_audit_report_lists_counts_and_details(self):
        findings = [
            Finding("figure.orphan", "a.svg", "Not referenced by any report"),
            Finding("report.nan_cell", "r.md", "line 3: | 1 | nan |"),
            Finding("figure.orphan", "b.svg", "Not referenced by any report"),
        ]
        counts = counts_by_kind(findings)
        self.assertEqual(counts["kind"].tolist(), ["figure.orphan", "report.nan_cell"])
        self.assertEqual(counts["count"].tolist(), [2, 1])
        with tempfile.TemporaryDirectory() as tmp:
            root = pathlib.Path(tmp)
            path = write_audit_report(root, findings)
            text = path.read_text(encoding="utf-8")
            self.assertTrue(path.name.startswith("output_audit_"))
            self.assertEqual(path.parent, root / "reports")
            self.assertTrue(text.startswith("# Narratives Output Audit"))
            self.assertIn("| figure.orphan | 2 |", text)
            self.assertIn("line 3: \\| 1 \\| nan \\|", text)
            clean = write_audit_report(root / "clean", [])
            self.assertIn("No problems found.", clean.read_text(encoding="utf-8"))


if __name__ == "__main__":
    unittest.main()
