import json
import tempfile
import unittest

import duckdb
import pandas as pd

from narratives.common import resolve_paths
from narratives.diary import (
    assemble_entries,
    build_diary_report,
    entries_from_tokens,
    entries_per_month,
    parse_start_date,
    portfolio_relation,
    portfolio_tf_idf,
    split_portfolios,
    tokenize_words,
    top_counterparts,
)
from narratives.layout import PositionedToken
from narratives.plotting import PlotTheme
from narratives.reporting import write_summary

HEADER = [("Date", 50.0), ("Time", 120.0), ("Meeting", 180.0), ("Location", 300.0), ("With", 380.0), ("Portfolio", 460.0)]


def diary_tokens() -> list[PositionedToken]:
    tokens = [PositionedToken(1, x, 100.0, label) for label, x in HEADER]
    rows = [
        (120.0, [(50.0, "28"), (62.0, "-"), (120.0, "9:00am"), (180.0, "Dairy"), (215.0, "farmers"), (260.0, "water"),
                 (300.0, "Hamilton"), (380.0, "Federated"), (420.0, "Farmers"), (460.0, "Agriculture")]),
        (135.0, [(50.0, "30"), (62.0, "January"), (95.0, "2019")]),
        (150.0, [(50.0, "4"), (62.0, "February"), (95.0, "2019"), (180.0, "Budget"), (215.0, "water"),
                 (300.0, "Wellington"), (380.0, "Treasury"), (460.0, "Minister"), (490.0, "of"), (505.0, "Finance;"),
                 (540.0, "Revenue")]),
        (165.0, [(50.0, "5"), (62.0, "March"), (95.0, "2019"), (180.0, "Café"), (215.0, "tax"),
                 (380.0, "Treasury"), (460.0, "Revenue")]),
    ]
    for y, cells in rows:
        tokens.extend(PositionedToken(1, x, y, text) for x, text in cells)
    return tokens


class DiaryUnitTests(unittest.TestCase):
    def test_split_portfolios(self):
        text = "Minister of Finance; Revenue / Associate Minister for the Environment, Finance"
        self.assertEqual(split_portfolios(text), ["Finance", "Revenue", "Environment"])
        self.assertEqual(split_portfolios(None), [])
        self.assertEqual(split_portfolios("Health\nEducation"), ["Health", "Education"])

    def test_tokenize_words_drops_stop_words(self):
        self.assertEqual(tokenize_words("Meeting with the Dairy farmers re: water"), ["dairy", "farmers", "water"])
        self.assertEqual(tokenize_words(None), [])

    def test_parse_start_date(self):
        self.assertEqual(parse_start_date("28-30 January 2019"), pd.Timestamp(2019, 1, 28))
        self.assertEqual(parse_start_date("31 January - 2 February 2019"), pd.Timestamp(2019, 1, 31))
        self.assertEqual(parse_start_date("4 February 2019"), pd.Timestamp(2019, 2, 4))
        self.assertEqual(parse_start_date("30 December - 2 January 2019"), pd.Timestamp(2018, 12, 30))
        self.assertEqual(parse_start_date("31 December 2018 - 2 January 2019"), pd.Timestamp(2018, 12, 31))
        self.assertTrue(pd.isna(parse_start_date("to be confirmed")))
        self.assertTrue(pd.isna(parse_start_date(None)))

    def test_entries_from_tokens(self):
        entries = entries_from_tokens(diary_tokens())
        self.assertEqual(len(entries), 3)
        self.assertEqual(entries["entry_id"].tolist(), [1, 2, 3])
        first = entries.iloc[0]
        self.assertEqual(first["date"], "28-30 January 2019")
        self.assertEqual(first["start_date"], pd.Timestamp(2019, 1, 28))
        self.assertEqual(first["with"], "Federated Farmers")
        self.assertEqual(entries.iloc[2]["meeting"], "Cafe tax")
        self.assertIsNone(entries.iloc[2]["location"])

    def test_assemble_entries_normalizes_cells(self):
        rows = [{"date": "1 May 2019", "scheduled_time": None, "meeting": "Minster  briefing",
                 "location": None, "with": None, "portfolio": "Health"}]
        entries = assemble_entries(rows)
        self.assertEqual(entries.loc[0, "meeting"], "Minister briefing")

    def test_portfolio_relation_and_tf_idf(self):
        entries = entries_from_tokens(diary_tokens())
        relation = portfolio_relation(entries)
        self.assertEqual(
            relation.values.tolist(),
            [[1, "Agriculture"], [2, "Finance"], [2, "Revenue"], [3, "Revenue"]],
        )
        scored, top = portfolio_tf_idf(entries, relation, k=1)
        water = scored[scored["word"] == "water"]
        # 'water' appears under every portfolio, so it never distinguishes one.
        self.assertTrue((water["tf_idf"] == 0).all())
        self.assertEqual(top.set_index("portfolio").loc["Agriculture", "word"], "dairy")
        self.assertEqual(top.set_index("portfolio").loc["Finance", "word"], "budget")

    def test_entries_per_month_fills_gaps(self):
        entries = pd.DataFrame({"start_date": pd.to_datetime(["2019-01-05", "2019-03-02", "2019-03-09", None])})
        monthly = entries_per_month(entries)
        self.assertEqual(monthly["month"].tolist(), ["2019-01", "2019-02", "2019-03"])
        self.assertEqual(monthly["entries"].tolist(), [1, 0, 2])

    def test_top_counterparts(self):
        entries = pd.DataFrame({"with": ["Treasury", "Farmers", "Treasury", None]})
        top = top_counterparts(entries, k=1)
        self.assertEqual(top.values.tolist(), [["Treasury", 2]])

    def test_report_end_to_end(self):
        with tempfile.TemporaryDirectory() as tmp:
            paths = resolve_paths(tmp)
            entries = entries_from_tokens(diary_tokens())
            summary = build_diary_report(entries, paths, PlotTheme(), top_k=3, db_path=paths["db_path"])
            write_summary(paths["summaries_dir"], "diary", summary)

            self.assertEqual(summary["entry_count"], 3)
            self.assertEqual(summary["portfolio_count"], 3)
            text = (paths["reports_dir"] / "diary.md").read_text(encoding="utf-8")
            self.assertTrue(text.startswith("# "))
            self.assertIn("figures/diary_entries_per_month.svg", text)
            self.assertTrue((paths["figures_dir"] / "diary_entries_per_month.svg").exists())
            data = json.loads((paths["summaries_dir"] / "diary.json").read_text(encoding="utf-8"))
            self.assertIn("generated_at", data)

            con = duckdb.connect(str(paths["db_path"]), read_only=True)
            try:
                n = con.execute("SELECT COUNT(*) FROM diary_portfolios").fetchone()[0]
            finally:
                con.close()
            self.assertEqual(n, 4)


if __name__ == "__main__":
    unittest.main()
