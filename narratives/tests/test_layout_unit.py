import unittest

import pandas as pd

from narratives.errors import StructuralError
from narratives.layout import (
    PositionedToken,
    ReconstructorConfig,
    column_for_x,
    derive_column_anchors,
    is_continuation_row,
    merge_continuation_rows,
    reconstruct_rows,
    tokens_from_frame,
)

HEADER_X = {"Date": 50.0, "Time": 120.0, "Meeting": 180.0, "Location": 300.0, "With": 380.0, "Portfolio": 460.0}


def header(page: int = 1, y: float = 100.0) -> list[PositionedToken]:
    return [PositionedToken(page, x, y, label) for label, x in HEADER_X.items()]


def line(page: int, y: float, *cells: tuple[float, str]) -> list[PositionedToken]:
    return [PositionedToken(page, x, y, text) for x, text in cells]


class LayoutUnitTests(unittest.TestCase):
    def setUp(self):
        self.config = ReconstructorConfig()

    def test_anchors_come_from_header_line(self):
        tokens = line(1, 40.0, (50.0, "Diary"), (90.0, "of"), (110.0, "the"), (140.0, "Minister")) + header()
        anchors = derive_column_anchors(tokens, self.config)
        self.assertEqual(list(anchors), ["date", "scheduled_time", "meeting", "location", "with", "portfolio"])
        self.assertEqual(anchors["meeting"], 180.0)
        self.assertEqual(anchors["portfolio"], 460.0)

    def test_missing_sentinel_raises(self):
        tokens = [t for t in header() if t.text != "Date"]
        with self.assertRaises(StructuralError):
            derive_column_anchors(tokens, self.config)
        with self.assertRaises(StructuralError):
            reconstruct_rows(tokens, dict(zip(self.config.columns, HEADER_X.values())), self.config)

    def test_custom_sentinel_renames_the_date_label(self):
        config = ReconstructorConfig.with_sentinel("Day", tolerance=0.25)
        self.assertEqual(config.header_labels[0], ("date", "Day"))
        self.assertEqual(config.columns, self.config.columns)
        self.assertEqual(config.tolerance, 0.25)
        tokens = [PositionedToken(t.page, t.x, t.y, "Day" if t.text == "Date" else t.text) for t in header()]
        tokens += line(1, 120.0, (50.0, "4"), (120.0, "9am"), (180.0, "Budget"))
        anchors = derive_column_anchors(tokens, config)
        self.assertEqual(anchors["date"], 50.0)
        rows = reconstruct_rows(tokens, anchors, config)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["date"], "4")
        self.assertEqual(rows[0]["meeting"], "Budget")
        with self.assertRaises(ValueError):
            ReconstructorConfig.with_sentinel("  ")

    def test_missing_label_raises(self):
        tokens = [t for t in header() if t.text != "Location"]
        with self.assertRaises(StructuralError):
            derive_column_anchors(tokens, self.config)

    def test_column_for_x_picks_nearest_anchor_on_the_left(self):
        anchors = {"a": 10.0, "b": 50.0, "c": 90.0}
        self.assertEqual(column_for_x(10.0, anchors), "a")
        self.assertEqual(column_for_x(49.9, anchors), "a")
        self.assertEqual(column_for_x(49.8, anchors, tolerance=0.5), "b")
        self.assertEqual(column_for_x(200.0, anchors), "c")
        self.assertIsNone(column_for_x(5.0, anchors))

    def test_two_rows_with_multi_token_cells(self):
        tokens = (
            line(1, 40.0, (50.0, "Preamble"))
            + header()
            + line(1, 120.0, (50.0, "1"), (60.0, "February"), (100.0, "2019"), (120.0, "9:00am"),
                   (180.0, "Meeting"), (230.0, "with"), (260.0, "Federated"), (300.0, "Wellington"),
                   (380.0, "Farmers"), (460.0, "Agriculture"))
            # Wrapped meeting text sits on its own line but belongs to the row above.
            + line(1, 130.0, (180.0, "(continued)"))
            + line(1, 140.0, (50.0, "2"), (60.0, "February"), (100.0, "2019"), (120.0, "10:00am"),
                   (180.0, "Budget"), (230.0, "briefing"), (300.0, "Parliament"), (380.0, "Treasury"),
                   (460.0, "Finance;"), (500.0, "Revenue"))
        )
        anchors = derive_column_anchors(tokens, self.config)
        rows = reconstruct_rows(tokens, anchors, self.config)
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0]["date"], "1 February 2019")
        self.assertEqual(rows[0]["meeting"], "Meeting with Federated (continued)")
        self.assertEqual(rows[0]["with"], "Farmers")
        self.assertEqual(rows[1]["scheduled_time"], "10:00am")
        self.assertEqual(rows[1]["portfolio"], "Finance; Revenue")

    def test_empty_cells_are_none(self):
        tokens = header() + line(1, 120.0, (50.0, "3"), (60.0, "March"), (180.0, "Caucus"))
        rows = reconstruct_rows(tokens, derive_column_anchors(tokens, self.config), self.config)
        self.assertEqual(len(rows), 1)
        self.assertIsNone(rows[0]["location"])
        self.assertIsNone(rows[0]["scheduled_time"])

    def test_repeated_header_and_page_furniture_are_skipped(self):
        tokens = (
            header(page=1)
            + line(1, 120.0, (50.0, "1"), (180.0, "One"))
            + line(2, 30.0, (50.0, "Page"), (80.0, "2"))
            + header(page=2)
            + line(2, 120.0, (50.0, "2"), (180.0, "Two"))
            # Left-margin note outside the table.
            + line(2, 140.0, (10.0, "note"))
        )
        rows = reconstruct_rows(tokens, derive_column_anchors(tokens, self.config), self.config)
        self.assertEqual([r["meeting"] for r in rows], ["One", "Two"])

    def test_hyphenated_date_continuation_is_merged(self):
        tokens = (
            header()
            + line(1, 120.0, (50.0, "28"), (62.0, "-"), (180.0, "Conference"), (300.0, "Auckland"))
            + line(1, 140.0, (50.0, "30"), (62.0, "January"), (95.0, "2019"))
        )
        rows = reconstruct_rows(tokens, derive_column_anchors(tokens, self.config), self.config)
        self.assertEqual(len(rows), 2)
        self.assertTrue(is_continuation_row(rows[0], rows[1]))
        merged = merge_continuation_rows(rows)
        self.assertEqual(len(merged), 1)
        self.assertEqual(merged[0]["date"], "28 - 30 January 2019")
        self.assertEqual(merged[0]["location"], "Auckland")

    def test_row_with_other_cells_is_not_a_continuation(self):
        prev = {"date": "28 -", "meeting": "A"}
        row = {"date": "30 January", "meeting": "B"}
        self.assertFalse(is_continuation_row(prev, row))
        self.assertFalse(is_continuation_row({"date": "28", "meeting": "A"}, {"date": "30 January", "meeting": None}))
        self.assertTrue(is_continuation_row({"date": "28", "meeting": "A"}, {"date": "- 30 January", "meeting": None}))

    def test_tokens_from_frame_skips_blank_text(self):
        df = pd.DataFrame({"page": [1, 1], "x": [1.0, 2.0], "y": [3.0, 3.0], "text": ["Date", "  "]})
        self.assertEqual(tokens_from_frame(df), [PositionedToken(1, 1.0, 3.0, "Date")])


if __name__ == "__main__":
    unittest.main()
