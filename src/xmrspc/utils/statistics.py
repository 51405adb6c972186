"""Series primitives and statistical helpers for XMR calculations.

This module provides:
- The Observation / RangedPoint / ControlLimits value objects
- Moving range computation
- Mean, median and dispersion helpers
- Round-half-up decimal rounding
- Timestamp parsing for the date formats submetrics arrive in
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Sequence

import numpy as np

from .constants import DECIMAL_PRECISION

_YEAR_MONTH = re.compile(r"^\d{6}$")
_YEAR_MONTH_DAY = re.compile(r"^\d{8}$")


@dataclass(frozen=True)
class Observation:
    """One time-ordered measurement of a submetric.

    Attributes:
        timestamp: ISO-8601 or compact (YYYYMM / YYYYMMDD) date string
        value: Measured value
        confidence: Optional confidence in [0, 1] supplied by the source
    """
    timestamp: str
    value: float
    confidence: float | None = None


@dataclass(frozen=True)
class RangedPoint:
    """Observation value paired with its moving range.

    Attributes:
        timestamp: Timestamp of the observation
        value: Observation value
        range: Absolute difference from the previous observation
        index: Position of the observation in the series it came from
    """
    timestamp: str
    value: float
    range: float
    index: int


@dataclass(frozen=True)
class ControlLimits:
    """XMR chart statistics, rounded to DECIMAL_PRECISION.

    Attributes:
        avg_x: Centre line of the individuals chart (mean or median)
        avg_movement: Centre line of the moving range chart
        unpl: Upper Natural Process Limit
        lnpl: Lower Natural Process Limit
        url: Upper Range Limit of the moving range chart
        lower_quartile: Midpoint between LNPL and the centre line
        upper_quartile: Midpoint between the centre line and UNPL
    """
    avg_x: float
    avg_movement: float
    unpl: float
    lnpl: float
    url: float
    lower_quartile: float
    upper_quartile: float

    @classmethod
    def empty(cls) -> "ControlLimits":
        """Zero-filled limits returned when there is not enough data."""
        return cls(
            avg_x=0.0,
            avg_movement=0.0,
            unpl=0.0,
            lnpl=0.0,
            url=0.0,
            lower_quartile=0.0,
            upper_quartile=0.0,
        )

    @property
    def is_empty(self) -> bool:
        """True for the zero-filled "insufficient data" sentinel."""
        return self == ControlLimits.empty()


def round_half_up(n: float, precision: int = DECIMAL_PRECISION) -> float:
    """Round a number to ``precision`` decimals, halves rounding upwards.

    Args:
        n: Number to round
        precision: Number of decimal places (default: DECIMAL_PRECISION)

    Returns:
        Rounded number

    Examples:
        >>> round_half_up(1.556)
        1.56
        >>> round_half_up(2.5, 0)
        3.0
        >>> round_half_up(-2.5, 0)
        -2.0
    """
    factor = 10 ** precision
    return math.floor(n * factor + 0.5) / factor


def calculate_moving_ranges(series: Sequence[Observation]) -> List[RangedPoint]:
    """Calculate moving ranges (absolute differences between consecutive points).

    The first observation has no predecessor and therefore no ranged point,
    so a series of length n yields n - 1 points.

    Args:
        series: Time-ordered observations

    Returns:
        List of RangedPoint, empty when fewer than 2 observations

    Examples:
        >>> series = [Observation("2024-01-01", 10), Observation("2024-01-02", 12)]
        >>> calculate_moving_ranges(series)[0].range
        2
    """
    if len(series) < 2:
        return []

    return [
        RangedPoint(
            timestamp=series[i].timestamp,
            value=series[i].value,
            range=abs(series[i].value - series[i - 1].value),
            index=i,
        )
        for i in range(1, len(series))
    ]


def mean(values: Iterable[float]) -> float:
    """Arithmetic mean, 0.0 for an empty input."""
    arr = np.asarray(list(values), dtype=np.float64)
    if arr.size == 0:
        return 0.0
    return float(np.mean(arr))


def median(values: Iterable[float]) -> float:
    """Median (average of the two middle values for even lengths), 0.0 if empty."""
    arr = np.asarray(list(values), dtype=np.float64)
    if arr.size == 0:
        return 0.0
    return float(np.median(arr))


def population_std(values: Sequence[float]) -> float:
    """Population standard deviation (ddof=0), 0.0 if empty."""
    if len(values) == 0:
        return 0.0
    return float(np.std(np.asarray(values, dtype=np.float64)))


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Standard deviation relative to the absolute mean.

    Returns 0.0 when the mean is zero, since relative spread is undefined.
    """
    avg = mean(values)
    if avg == 0:
        return 0.0
    return population_std(values) / abs(avg)


def skewness(values: Sequence[float]) -> float:
    """Population skewness, 0.0 when the values have no spread."""
    std = population_std(values)
    if std == 0:
        return 0.0
    arr = np.asarray(values, dtype=np.float64)
    return float(np.mean(((arr - np.mean(arr)) / std) ** 3))


def nearest_rank(sorted_values: Sequence[float], fraction: float) -> float:
    """Value at ``floor(n * fraction)`` of an ascending sequence.

    The index is clamped to the last element so ``fraction=1.0`` is safe.
    """
    index = min(int(math.floor(len(sorted_values) * fraction)), len(sorted_values) - 1)
    return sorted_values[index]


def parse_timestamp(timestamp: str) -> datetime:
    """Parse a submetric timestamp into a naive UTC datetime.

    Supported formats:
    - ``YYYYMM``: first day of the month
    - ``YYYYMMDD``
    - ISO-8601 dates and datetimes, with an optional ``Z`` or UTC offset

    Args:
        timestamp: Timestamp string

    Returns:
        Naive datetime in UTC

    Raises:
        ValueError: If the timestamp cannot be parsed

    Examples:
        >>> parse_timestamp("202403")
        datetime.datetime(2024, 3, 1, 0, 0)
        >>> parse_timestamp("2024-03-05T10:00:00Z")
        datetime.datetime(2024, 3, 5, 10, 0)
    """
    text = timestamp.strip()

    if _YEAR_MONTH.match(text):
        return datetime(int(text[:4]), int(text[4:6]), 1)

    if _YEAR_MONTH_DAY.match(text):
        return datetime(int(text[:4]), int(text[4:6]), int(text[6:8]))

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ValueError(f"Unparsable timestamp: {timestamp!r}") from e

    return to_naive_utc(parsed)


def to_naive_utc(moment: datetime) -> datetime:
    """Convert an offset-aware datetime to naive UTC; naive values pass through.

    Examples:
        >>> to_naive_utc(datetime.fromisoformat("2024-01-06T14:00:00+02:00"))
        datetime.datetime(2024, 1, 6, 12, 0)
    """
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)
