import unittest
from datetime import datetime, timezone

from lapsheet.lap_report import (
    HEADERS,
    NO_LAP_DATA_TEXT,
    RawLap,
    RawLength,
    aggregate_laps,
    aggregate_stroke,
    activity_date_key,
    best_length_pace,
    is_whole_lap_index,
    report_rows,
    serialize_report,
)


def _lap(index, **fields):
    payload = {"lapIndex": index}
    payload.update(fields)
    return payload


def _data_rows(report):
    return [line for line in report.lines[1:] if line[1] not in {"Summary", "Link"}]


FIRST_LAP = _lap(
    1,
    distance=100.0,
    duration=100.0,
    averageSpeed=1.0,
    swimStroke="FREESTYLE",
    averageHR=130,
    maxHR=140,
    averageSWOLF=40,
    totalNumberOfStrokes=30,
    averageStrokes=15,
    calories=20,
    numberOfActiveLengths=4,
    lengthDTOs=[
        {"distance": 25, "duration": 24, "swimStroke": "FREESTYLE"},
        {"distance": 25, "duration": 26, "swimStroke": "FREESTYLE"},
    ],
)

SECOND_LAP = _lap(
    2,
    distance=50,
    duration=60,
    averageSpeed=0,
    averageHR=150,
    maxHR=160,
    lengthDTOs=[
        {"distance": 25, "duration": 30, "swimStroke": "BACKSTROKE"},
        {"distance": 25, "duration": 30, "swimStroke": "BREASTSTROKE"},
    ],
)


class TestLapFiltering(unittest.TestCase):
    def test_whole_index_detection(self) -> None:
        self.assertTrue(is_whole_lap_index(3))
        self.assertTrue(is_whole_lap_index(3.0))
        self.assertTrue(is_whole_lap_index("3"))
        self.assertFalse(is_whole_lap_index(3.5))
        self.assertFalse(is_whole_lap_index("3.1"))
        self.assertFalse(is_whole_lap_index("3.0"))

    def test_fractional_laps_never_appear(self) -> None:
        report = aggregate_laps(
            [
                _lap(1, duration=30),
                _lap(1.1, duration=10),
                _lap("1.2", duration=20),
                _lap("2", duration=40),
            ],
            "99",
        )
        indices = [row[1] for row in _data_rows(report)]
        self.assertEqual(indices, ["1", "2"])

    def test_rows_are_sorted_by_index(self) -> None:
        report = aggregate_laps(
            [_lap(3, duration=10), _lap(1, duration=10), _lap(2, duration=10)],
            "99",
        )
        self.assertEqual([row[1] for row in _data_rows(report)], ["1", "2", "3"])


class TestLapRows(unittest.TestCase):
    def test_header_and_row_layout(self) -> None:
        report = aggregate_laps([SECOND_LAP, FIRST_LAP], "123")
        self.assertEqual(report.lines[0], HEADERS)
        self.assertEqual(len(report.lines), 5)
        self.assertEqual(
            list(report.lines[1]),
            ['""', "1", "FREESTYLE", "4", "100", "1:40.0", "1:40.0", "1:40", "1:36", "40", "130", "140", "30", "15", "20"],
        )
        self.assertEqual(
            list(report.lines[2]),
            ['""', "2", "Mixed", "2", "50", "1:00.0", "2:40.0", "", "2:00", "", "150", "160", "", "", ""],
        )

    def test_summary_row(self) -> None:
        report = aggregate_laps([FIRST_LAP, SECOND_LAP], "123")
        self.assertEqual(
            list(report.lines[3]),
            ['""', "Summary", "--", "6", "150", "2:40.0", "2:40.0", "0:50", "1:36", "20", "140", "160", "30", "8", "20"],
        )

    def test_link_row(self) -> None:
        report = aggregate_laps([FIRST_LAP], "123")
        link = report.lines[-1]
        self.assertEqual(link[:3], ('""', "Link", "https://connect.garmin.com/modern/activity/123"))
        self.assertEqual(len(link), len(HEADERS))
        self.assertTrue(all(cell == "" for cell in link[3:]))

    def test_lap_times_and_cumulative_times(self) -> None:
        report = aggregate_laps([_lap(1, duration=65), _lap(2, duration=40)], "1")
        rows = _data_rows(report)
        self.assertEqual([row[5] for row in rows], ["1:05.0", "0:40.0"])
        self.assertEqual([row[6] for row in rows], ["1:05.0", "1:45.0"])
        summary = report.lines[-2]
        self.assertEqual(summary[5], "1:45.0")
        self.assertEqual(summary[6], "1:45.0")
        self.assertEqual(rows[-1][6], summary[5])

    def test_zero_speed_leaves_average_pace_empty(self) -> None:
        report = aggregate_laps([_lap(1, duration=60, averageSpeed=0)], "1")
        self.assertEqual(_data_rows(report)[0][7], "")

    def test_lengths_without_distance_leave_best_pace_empty(self) -> None:
        report = aggregate_laps(
            [_lap(1, duration=60, lengthDTOs=[{"distance": 0, "duration": 30}, {"duration": 30}])],
            "1",
        )
        self.assertEqual(_data_rows(report)[0][8], "")
        self.assertEqual(report.lines[-2][8], "")

    def test_explicit_length_count_wins_over_length_list(self) -> None:
        report = aggregate_laps(
            [_lap(1, duration=60, numberOfActiveLengths=3, lengthDTOs=[{}, {}])],
            "1",
        )
        self.assertEqual(_data_rows(report)[0][3], "3")

    def test_missing_length_data_renders_empty(self) -> None:
        report = aggregate_laps([_lap(1, duration=60)], "1")
        self.assertEqual(_data_rows(report)[0][3], "")
        self.assertEqual(report.lines[-2][3], "0")

    def test_missing_max_hr_does_not_raise_summary_max(self) -> None:
        report = aggregate_laps([_lap(1, duration=60, maxHR=150), _lap(2, duration=60)], "1")
        self.assertEqual(report.lines[-2][11], "150")


class TestStrokeResolution(unittest.TestCase):
    def test_single_distinct_stroke(self) -> None:
        lengths = [RawLength(swim_stroke="Freestyle"), RawLength(swim_stroke="Freestyle")]
        self.assertEqual(aggregate_stroke(lengths), "Freestyle")

    def test_multiple_strokes_are_mixed(self) -> None:
        lengths = [RawLength(swim_stroke="Freestyle"), RawLength(swim_stroke="Backstroke")]
        self.assertEqual(aggregate_stroke(lengths), "Mixed")

    def test_placeholder_strokes_are_ignored(self) -> None:
        lengths = [RawLength(swim_stroke="--"), RawLength(swim_stroke=None), RawLength(swim_stroke="")]
        self.assertEqual(aggregate_stroke(lengths), "")

    def test_lap_stroke_takes_precedence(self) -> None:
        report = aggregate_laps(
            [_lap(1, duration=60, swimStroke="DRILL", lengthDTOs=[{"swimStroke": "FREESTYLE"}])],
            "1",
        )
        self.assertEqual(_data_rows(report)[0][2], "DRILL")

    def test_best_length_pace(self) -> None:
        lengths = [RawLength(distance=25, duration=30), RawLength(distance=25, duration=20)]
        self.assertAlmostEqual(best_length_pace(lengths), 80.0)
        self.assertIsNone(best_length_pace([]))


class TestPlaceholderAndSerialization(unittest.TestCase):
    def test_empty_input_yields_placeholder(self) -> None:
        for laps in ([], None):
            with self.assertLogs("lapsheet.lap_report", level="WARNING"):
                report = aggregate_laps(laps, "1")
            self.assertTrue(report.placeholder)
            self.assertEqual(serialize_report(report), NO_LAP_DATA_TEXT)
            self.assertEqual(report.laps, ())

    def test_only_fractional_laps_give_empty_summary(self) -> None:
        report = aggregate_laps([_lap(1.5, duration=30)], "7")
        self.assertFalse(report.placeholder)
        self.assertEqual(len(report.lines), 3)
        self.assertEqual(
            list(report.lines[1]),
            ['""', "Summary", "--", "0", "0", "0:00.0", "0:00.0", "", "", "", "", "0", "0", "", "0"],
        )

    def test_serialized_text_splits_back_into_cells(self) -> None:
        report = aggregate_laps([FIRST_LAP, SECOND_LAP], "123")
        text = serialize_report(report)
        self.assertTrue(text.startswith(",Intervals,Swim Stroke,Lengths"))
        self.assertEqual(report_rows(text), [list(line) for line in report.lines])

    def test_raw_lap_objects_are_accepted(self) -> None:
        raw = RawLap.from_dict(_lap(1, duration=65))
        report = aggregate_laps([raw], "1")
        self.assertEqual(_data_rows(report)[0][5], "1:05.0")


class TestActivityDateKey(unittest.TestCase):
    def test_uses_first_lap_start_in_configured_zone(self) -> None:
        laps = [{"lapIndex": 1, "startTimeGMT": "2025-04-13T23:30:00.0"}]
        self.assertEqual(activity_date_key(laps, "UTC"), "2025-04-13")
        self.assertEqual(activity_date_key(laps, "America/Chicago"), "2025-04-13")
        self.assertEqual(activity_date_key(laps, "Asia/Tokyo"), "2025-04-14")

    def test_falls_back_to_current_date(self) -> None:
        now = datetime(2026, 1, 2, 12, 0, tzinfo=timezone.utc)
        self.assertEqual(activity_date_key([], "UTC", now=now), "2026-01-02")
        self.assertEqual(activity_date_key([{"startTimeGMT": "garbage"}], "UTC", now=now), "2026-01-02")

    def test_unknown_timezone_uses_utc(self) -> None:
        laps = [{"startTimeGMT": "2025-04-13T23:30:00"}]
        self.assertEqual(activity_date_key(laps, "Not/AZone"), "2025-04-13")


if __name__ == "__main__":
    unittest.main()
