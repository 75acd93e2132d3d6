import pathlib
import tempfile
import unittest

import numpy as np
import pandas as pd
from openpyxl import Workbook

from narratives.common import resolve_paths
from narratives.errors import StructuralError
from narratives.fields import (
    SpreadsheetLayout,
    area_similarity,
    build_fields_report,
    field_cooccurrence,
    jaccard_similarity,
    load_asjc_workbook,
    most_similar_fields,
    similarity_matrix,
    split_asjc_codes,
    top_pairs,
)
from narratives.plotting import PlotTheme


def small_fields() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "field_id": ["A", "B", "C"],
            "description": ["Alpha", "Beta", "Gamma"],
            "area": ["Physical", "Physical", "Life"],
        }
    )


def small_sources() -> pd.DataFrame:
    # S_A = {1, 2}, S_B = {2, 3}, S_C = {3}
    return pd.DataFrame({"journal_id": ["1", "2", "2", "3", "3"], "field_id": ["A", "A", "B", "B", "C"]})


def write_workbook(path: pathlib.Path, field_sheet: str = "ASJC classification codes") -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = field_sheet
    ws.append(["Code", "Description", "Subject area", "Abbreviation"])
    ws.append([1102, "Agronomy and Crop Science", "Life Sciences", "AGRI"])
    ws.append([1103, "Animal Science and Zoology", "Life Sciences", "AGRI"])
    ws.append([2002, "Economics and Econometrics", "Social Sciences", "ECON"])
    src = wb.create_sheet("Scopus Sources")
    src.append(["Sourcerecord ID", "Source Title", "Active or Inactive", "All Science Journal Classification Codes (ASJC)"])
    src.append([101, "Crop Journal", "Active", "1102; 1103;"])
    src.append([102, "Zoology Letters", "Active", 1103])
    src.append([103, "Old Farm Economics", "Inactive", "1102; 2002"])
    src.append([104, "Agri Economics", "Active", "1102;2002"])
    wb.save(path)


class FieldsUnitTests(unittest.TestCase):
    def test_jaccard_worked_example(self):
        sim = jaccard_similarity(small_fields(), small_sources()).set_index(["field_i", "field_j"])
        self.assertAlmostEqual(sim.loc[("A", "B"), "jaccard"], 1 / 3)
        self.assertEqual(sim.loc[("A", "C"), "jaccard"], 0.0)
        self.assertAlmostEqual(sim.loc[("B", "C"), "jaccard"], 1 / 2)
        self.assertEqual(int(sim.loc[("A", "B"), "union"]), 3)

    def test_pairs_sharing_nothing_are_present(self):
        sim = jaccard_similarity(small_fields(), small_sources())
        # 3 fields -> 6 ordered pairs, no self pairs.
        self.assertEqual(len(sim), 6)
        self.assertFalse((sim["field_i"] == sim["field_j"]).any())

    def test_symmetric_and_bounded(self):
        rng = np.random.default_rng(0)
        fields = pd.DataFrame({"field_id": [f"F{i}" for i in range(6)]})
        pairs = {(f"j{j}", f"F{f}") for j in range(30) for f in rng.choice(6, size=rng.integers(1, 4), replace=False)}
        sources = pd.DataFrame(sorted(pairs), columns=["journal_id", "field_id"])
        mat = similarity_matrix(jaccard_similarity(fields, sources))
        values = mat.to_numpy(dtype=float)
        off = ~np.eye(len(mat), dtype=bool)
        np.testing.assert_allclose(values[off], values.T[off])
        self.assertTrue(((values[off] >= 0) & (values[off] <= 1)).all())
        self.assertTrue(np.isnan(np.diag(values)).all())

    def test_field_without_journals_scores_zero(self):
        fields = pd.concat([small_fields(), pd.DataFrame({"field_id": ["D"]})], ignore_index=True)
        sim = jaccard_similarity(fields, small_sources())
        self.assertTrue((sim.loc[sim["field_i"] == "D", "jaccard"] == 0).all())

    def test_unknown_field_codes_are_dropped(self):
        sources = pd.concat([small_sources(), pd.DataFrame({"journal_id": ["2"], "field_id": ["Z"]})], ignore_index=True)
        with self.assertLogs("narratives.fields", level="WARNING"):
            sim = jaccard_similarity(small_fields(), sources)
        self.assertNotIn("Z", set(sim["field_i"]))
        self.assertAlmostEqual(sim.set_index(["field_i", "field_j"]).loc[("A", "B"), "jaccard"], 1 / 3)

    def test_cooccurrence_lists_both_orders(self):
        co = field_cooccurrence(small_sources()).set_index(["field_i", "field_j"])["shared"]
        self.assertEqual(co[("A", "B")], 1)
        self.assertEqual(co[("B", "A")], 1)
        self.assertNotIn(("A", "C"), co.index)

    def test_rankings(self):
        fields, sources = small_fields(), small_sources()
        sim = jaccard_similarity(fields, sources)
        top = top_pairs(sim, fields, k=1)
        self.assertEqual(top.loc[0, ["field_i", "field_j"]].tolist(), ["B", "C"])
        self.assertEqual(top.loc[0, "description_j"], "Gamma")
        nearest = most_similar_fields(sim).set_index("field_i")["field_j"]
        self.assertEqual(nearest.to_dict(), {"A": "B", "B": "C", "C": "B"})
        areas = area_similarity(sim, fields)
        self.assertAlmostEqual(areas.loc["Physical", "Physical"], 1 / 3)
        self.assertAlmostEqual(areas.loc["Physical", "Life"], (0.0 + 0.5) / 2)

    def test_split_asjc_codes(self):
        self.assertEqual(split_asjc_codes("1102; 1103;"), ["1102", "1103"])
        self.assertEqual(split_asjc_codes(1102), ["1102"])
        self.assertEqual(split_asjc_codes(float("nan")), [])

    def test_workbook_round_trip(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = pathlib.Path(tmp) / "ext_list.xlsx"
            write_workbook(path)
            fields, sources = load_asjc_workbook(path)
        self.assertEqual(fields["field_id"].tolist(), ["1102", "1103", "2002"])
        self.assertEqual(fields.loc[0, "area"], "Life Sciences")
        # The inactive journal is left out.
        self.assertNotIn("103", set(sources["journal_id"]))
        self.assertEqual(len(sources), 5)
        sim = jaccard_similarity(fields, sources).set_index(["field_i", "field_j"])
        # S_1102 = {101, 104}, S_1103 = {101, 102}, S_2002 = {104}
        self.assertAlmostEqual(sim.loc[("1102", "1103"), "jaccard"], 1 / 3)
        self.assertAlmostEqual(sim.loc[("1102", "2002"), "jaccard"], 1 / 2)

    def test_missing_sheet_raises(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = pathlib.Path(tmp) / "ext_list.xlsx"
            write_workbook(path, field_sheet="Codes")
            with self.assertRaises(StructuralError):
                load_asjc_workbook(path)
            # A layout pointing at the renamed sheet loads fine.
            fields, _ = load_asjc_workbook(path, SpreadsheetLayout(field_sheet="Codes"))
        self.assertEqual(len(fields), 3)

    def test_unexpected_header_raises(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = pathlib.Path(tmp) / "ext_list.xlsx"
            write_workbook(path)
            layout = SpreadsheetLayout(
                field_columns=((0, "ASJC", "field_id"), (1, "Description", "description")),
            )
            with self.assertRaises(StructuralError):
                load_asjc_workbook(path, layout)

    def test_report_end_to_end(self):
        with tempfile.TemporaryDirectory() as tmp:
            paths = resolve_paths(tmp)
            summary = build_fields_report(small_fields(), small_sources(), paths, PlotTheme(), top_k=5, db_path=paths["db_path"])
            self.assertEqual(summary["field_count"], 3)
            self.assertEqual(summary["isolated_fields"], 0)
            self.assertTrue((paths["reports_dir"] / "fields.md").exists())
            self.assertTrue((paths["figures_dir"] / "fields_top_pairs.svg").exists())
            self.assertTrue((paths["output"] / "parquet" / "field_similarity.parquet").exists())


if __name__ == "__main__":
    unittest.main()
