from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any


def as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if math.isnan(value):
            return None
        return float(value)
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return None if math.isnan(parsed) else parsed
    return None


def as_int(value: Any) -> int | None:
    parsed = as_float(value)
    if parsed is None:
        return None
    return int(round(parsed))


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up, like the Connect web UI."""
    return math.floor(value + 0.5)


def format_number(value: Any) -> str:
    """Render a raw numeric cell the way Garmin's CSV export does (no trailing ``.0``)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def format_elapsed(seconds: float | int) -> str:
    """Format a duration as ``M:SS.s``.

    Minutes are floored; the remaining seconds keep one decimal and are
    zero-padded to four characters, so 65 becomes ``1:05.0``.
    """
    minutes = math.floor(seconds / 60)
    remaining = Decimal(seconds - minutes * 60).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return f"{minutes}:{str(remaining).zfill(4)}"


def format_pace(seconds: float | int) -> str:
    """Format a pace (seconds per 100m) as ``M:SS`` with whole seconds."""
    minutes = math.floor(seconds / 60)
    remaining = round_half_up(seconds - minutes * 60)
    return f"{minutes}:{remaining:02d}"
