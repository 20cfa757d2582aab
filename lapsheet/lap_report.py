from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser

from .numeric_utils import (
    as_float,
    as_int,
    format_elapsed,
    format_number,
    format_pace,
    round_half_up,
)


logger = logging.getLogger(__name__)

NO_LAP_DATA_TEXT = "No lap data found."
ACTIVITY_URL_TEMPLATE = "https://connect.garmin.com/modern/activity/{activity_id}"
MIXED_STROKE = "Mixed"
EMPTY_STROKE = "--"
QUOTED_EMPTY = '""'

HEADERS = (
    "",
    "Intervals",
    "Swim Stroke",
    "Lengths",
    "Distance",
    "Time",
    "Cumulative Time",
    "Avg Pace",
    "Best Pace",
    "Avg. Swolf",
    "Avg HR",
    "Max HR",
    "Total Strokes",
    "Avg Strokes",
    "Calories",
)


@dataclass(frozen=True)
class RawLength:
    distance: float | None = None
    duration: float | None = None
    swim_stroke: str | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RawLength":
        stroke = payload.get("swimStroke")
        return cls(
            distance=as_float(payload.get("distance")),
            duration=as_float(payload.get("duration")),
            swim_stroke=stroke if isinstance(stroke, str) else None,
        )


@dataclass(frozen=True)
class RawLap:
    """One interval as the splits endpoint returns it.

    ``lap_index`` keeps the original value: Garmin sends fractional indices
    (``3.1``) for sub-splits, and both numbers and strings show up.
    """

    lap_index: Any
    distance: float | None = None
    duration: float | None = None
    average_speed: float | None = None
    swim_stroke: str | None = None
    average_hr: float | None = None
    max_hr: float | None = None
    average_swolf: float | None = None
    total_number_of_strokes: float | None = None
    average_strokes: float | None = None
    calories: float | None = None
    number_of_active_lengths: int | None = None
    start_time_gmt: str | None = None
    lengths: tuple[RawLength, ...] | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RawLap":
        stroke = payload.get("swimStroke")
        start_time = payload.get("startTimeGMT")
        raw_lengths = payload.get("lengthDTOs")
        lengths: tuple[RawLength, ...] | None = None
        if isinstance(raw_lengths, list):
            lengths = tuple(RawLength.from_dict(item) for item in raw_lengths if isinstance(item, Mapping))
        return cls(
            lap_index=payload.get("lapIndex"),
            distance=as_float(payload.get("distance")),
            duration=as_float(payload.get("duration")),
            average_speed=as_float(payload.get("averageSpeed")),
            swim_stroke=stroke if isinstance(stroke, str) else None,
            average_hr=as_float(payload.get("averageHR")),
            max_hr=as_float(payload.get("maxHR")),
            average_swolf=as_float(payload.get("averageSWOLF")),
            total_number_of_strokes=as_float(payload.get("totalNumberOfStrokes")),
            average_strokes=as_float(payload.get("averageStrokes")),
            calories=as_float(payload.get("calories")),
            number_of_active_lengths=as_int(payload.get("numberOfActiveLengths")),
            start_time_gmt=start_time if isinstance(start_time, str) else None,
            lengths=lengths,
        )


@dataclass(frozen=True)
class AggregatedLap:
    raw: RawLap
    average_pace: float | None
    best_pace: float | None
    stroke: str
    length_count: int | None
    cumulative_duration: float


@dataclass
class ReportSummary:
    count: int = 0
    lengths: int = 0
    distance: float = 0.0
    duration: float = 0.0
    average_pace_sum: float = 0.0
    best_pace: float = math.inf
    average_swolf_sum: float = 0.0
    average_hr_sum: float = 0.0
    max_hr: float = 0.0
    total_strokes: float = 0.0
    average_strokes_sum: float = 0.0
    calories: float = 0.0

    def add(self, lap: AggregatedLap) -> None:
        raw = lap.raw
        self.count += 1
        self.lengths += lap.length_count or 0
        self.distance += raw.distance or 0.0
        self.duration += raw.duration or 0.0
        self.average_pace_sum += lap.average_pace or 0.0
        if lap.best_pace is not None:
            self.best_pace = min(self.best_pace, lap.best_pace)
        self.average_swolf_sum += raw.average_swolf or 0.0
        self.average_hr_sum += raw.average_hr or 0.0
        if raw.max_hr is not None:
            self.max_hr = max(self.max_hr, raw.max_hr)
        self.total_strokes += raw.total_number_of_strokes or 0.0
        self.average_strokes_sum += raw.average_strokes or 0.0
        self.calories += raw.calories or 0.0

    def _rounded_average(self, total: float) -> str:
        if not self.count:
            return ""
        value = round_half_up(total / self.count)
        return str(value) if value else ""

    def finalize(self) -> tuple[str, ...]:
        return (
            QUOTED_EMPTY,
            "Summary",
            EMPTY_STROKE,
            format_number(self.lengths),
            format_number(self.distance),
            format_elapsed(self.duration),
            format_elapsed(self.duration),
            format_pace(self.average_pace_sum / self.count) if self.count else "",
            format_pace(self.best_pace) if self.best_pace != math.inf else "",
            self._rounded_average(self.average_swolf_sum),
            self._rounded_average(self.average_hr_sum),
            format_number(self.max_hr),
            format_number(self.total_strokes),
            self._rounded_average(self.average_strokes_sum),
            format_number(self.calories),
        )


@dataclass(frozen=True)
class Report:
    lines: tuple[tuple[str, ...], ...]
    activity_id: str
    laps: tuple[AggregatedLap, ...] = field(default_factory=tuple)
    placeholder: bool = False


def is_whole_lap_index(index: Any) -> bool:
    if isinstance(index, (int, float)) and not isinstance(index, bool):
        return float(index).is_integer()
    return "." not in str(index)


def _index_sort_key(lap: RawLap) -> tuple[int, float]:
    parsed = as_float(lap.lap_index)
    if parsed is None:
        return (1, 0.0)
    return (0, parsed)


def best_length_pace(lengths: Iterable[RawLength]) -> float | None:
    best = math.inf
    for length in lengths:
        if length.distance and length.duration and length.distance > 0:
            pace = (length.duration / length.distance) * 100
            if pace < best:
                best = pace
    return None if best == math.inf else best


def aggregate_stroke(lengths: Iterable[RawLength]) -> str:
    strokes: list[str] = []
    for length in lengths:
        stroke = length.swim_stroke
        if stroke and stroke != EMPTY_STROKE and stroke not in strokes:
            strokes.append(stroke)
    if not strokes:
        return ""
    if len(strokes) == 1:
        return strokes[0]
    return MIXED_STROKE


def _coerce_laps(raw_laps: Iterable[RawLap | Mapping[str, Any]]) -> list[RawLap]:
    laps: list[RawLap] = []
    for item in raw_laps:
        if isinstance(item, RawLap):
            laps.append(item)
        elif isinstance(item, Mapping):
            laps.append(RawLap.from_dict(item))
    return laps


def _lap_row(lap: AggregatedLap) -> tuple[str, ...]:
    raw = lap.raw
    return (
        QUOTED_EMPTY,
        format_number(raw.lap_index),
        lap.stroke,
        format_number(lap.length_count),
        format_number(raw.distance),
        format_elapsed(raw.duration) if raw.duration is not None else "",
        format_elapsed(lap.cumulative_duration),
        format_pace(lap.average_pace) if lap.average_pace else "",
        format_pace(lap.best_pace) if lap.best_pace is not None else "",
        format_number(raw.average_swolf),
        format_number(raw.average_hr),
        format_number(raw.max_hr),
        format_number(raw.total_number_of_strokes),
        format_number(raw.average_strokes),
        format_number(raw.calories),
    )


def _link_row(activity_id: str) -> tuple[str, ...]:
    cells = [QUOTED_EMPTY, "Link", ACTIVITY_URL_TEMPLATE.format(activity_id=activity_id)]
    cells.extend([""] * (len(HEADERS) - len(cells)))
    return tuple(cells)


def aggregate_laps(
    raw_laps: Iterable[RawLap | Mapping[str, Any]] | None,
    activity_id: str,
) -> Report:
    """Build the Garmin-style splits table for the whole-numbered laps.

    Fractional lap indices are sub-splits and are left out. Missing numeric
    fields count as zero in the totals and render as empty cells.
    """
    laps = _coerce_laps(raw_laps or [])
    if not laps:
        logger.warning("Lap data (lapDTOs) was null, undefined, or empty.")
        return Report(lines=((NO_LAP_DATA_TEXT,),), activity_id=str(activity_id), placeholder=True)

    whole_laps = sorted((lap for lap in laps if is_whole_lap_index(lap.lap_index)), key=_index_sort_key)
    skipped = len(laps) - len(whole_laps)
    if skipped:
        logger.debug("Skipped %s fractional sub-split lap(s).", skipped)

    summary = ReportSummary()
    aggregated: list[AggregatedLap] = []
    cumulative = 0.0
    for raw in whole_laps:
        cumulative += raw.duration or 0.0
        speed = raw.average_speed
        length_count = raw.number_of_active_lengths
        if length_count is None and raw.lengths is not None:
            length_count = len(raw.lengths)
        lap = AggregatedLap(
            raw=raw,
            average_pace=100 / speed if speed and speed > 0 else None,
            best_pace=best_length_pace(raw.lengths or ()),
            stroke=raw.swim_stroke or aggregate_stroke(raw.lengths or ()),
            length_count=length_count,
            cumulative_duration=cumulative,
        )
        summary.add(lap)
        aggregated.append(lap)

    lines = [HEADERS]
    lines.extend(_lap_row(lap) for lap in aggregated)
    lines.append(summary.finalize())
    lines.append(_link_row(str(activity_id)))
    return Report(lines=tuple(lines), activity_id=str(activity_id), laps=tuple(aggregated))


def serialize_report(report: Report) -> str:
    return "\n".join(",".join(cells) for cells in report.lines)


def report_rows(text: str) -> list[list[str]]:
    return [line.split(",") for line in text.strip().split("\n")]


def activity_date_key(
    raw_laps: Iterable[RawLap | Mapping[str, Any]] | None,
    timezone_name: str,
    *,
    now: datetime | None = None,
) -> str:
    """Calendar date (``YYYY-MM-DD``) of the first lap's start in ``timezone_name``.

    Falls back to the current date when the first lap has no usable start time.
    """
    try:
        tz = ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone '%s'. Falling back to UTC.", timezone_name)
        tz = ZoneInfo("UTC")

    laps = _coerce_laps(raw_laps or [])
    start_text = laps[0].start_time_gmt if laps else None
    if start_text:
        try:
            started = date_parser.isoparse(start_text.strip())
        except ValueError:
            logger.warning("Could not parse lap start time %r; using today's date.", start_text)
        else:
            if started.tzinfo is None:
                started = started.replace(tzinfo=timezone.utc)
            return started.astimezone(tz).date().isoformat()

    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(tz).date().isoformat()
