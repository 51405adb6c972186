"""Seasonal factors and deseasonalization for XMR series.

A series is split into calendar periods (ISO weeks, months, quarters or
years). Within each period every observation has a position, and the seasonal
factor of a position is the average value at that position relative to the
overall average. Dividing by the factor removes the seasonal swing before the
XMR limits are calculated.

With a grouping finer than the period (for example months within a year)
values are first summed per calendar group, and the group's calendar index
within the period becomes its position.
"""

import math
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Callable, Sequence

import structlog

from xmrspc.utils.constants import SEASONAL_FACTOR_PRECISION
from xmrspc.utils.statistics import Observation, mean, parse_timestamp, round_half_up

logger = structlog.get_logger(__name__)


class SeasonalityPeriod(str, Enum):
    """Length of one seasonal cycle."""
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class SeasonalityGrouping(str, Enum):
    """Calendar unit values are summed into before factors are computed."""
    NONE = "none"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"


class Granularity(str, Enum):
    """Sampling interval of a series."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


# Coarseness ranks; a period is usable only when strictly coarser than the data
_PERIOD_RANK = {
    SeasonalityPeriod.WEEK: 1,
    SeasonalityPeriod.MONTH: 2,
    SeasonalityPeriod.QUARTER: 3,
    SeasonalityPeriod.YEAR: 4,
}
_GRANULARITY_RANK = {
    Granularity.DAY: 0,
    Granularity.WEEK: 1,
    Granularity.MONTH: 2,
    Granularity.QUARTER: 3,
    Granularity.YEAR: 4,
}

# Average days per period
_PERIOD_DAYS = {
    SeasonalityPeriod.WEEK: 7.0,
    SeasonalityPeriod.MONTH: 30.44,
    SeasonalityPeriod.QUARTER: 91.31,
    SeasonalityPeriod.YEAR: 365.25,
}

# Number of calendar groups a period holds, per allowed (period, grouping)
_GROUP_COUNTS = {
    (SeasonalityPeriod.YEAR, SeasonalityGrouping.QUARTER): 4,
    (SeasonalityPeriod.YEAR, SeasonalityGrouping.MONTH): 12,
    (SeasonalityPeriod.YEAR, SeasonalityGrouping.WEEK): 53,
    (SeasonalityPeriod.QUARTER, SeasonalityGrouping.MONTH): 3,
    (SeasonalityPeriod.QUARTER, SeasonalityGrouping.WEEK): 14,
    (SeasonalityPeriod.MONTH, SeasonalityGrouping.WEEK): 5,
}


@dataclass(frozen=True)
class SeasonalFactors:
    """Multiplicative seasonal factors, one per position in the period.

    Attributes:
        factors: Factor per position, rounded to 4 decimals (1.0 if unknown)
        period: Seasonal cycle the factors describe
        grouping: Grouping used when computing the factors
        has_warning: Periods contained different numbers of positions
        coverage: Number of whole periods the series spans
    """
    factors: tuple[float, ...]
    period: SeasonalityPeriod = SeasonalityPeriod.YEAR
    grouping: SeasonalityGrouping = SeasonalityGrouping.NONE
    has_warning: bool = False
    coverage: float = 0.0

    @property
    def insufficient_coverage(self) -> bool:
        """Less than one whole period: factors will be close to uniform."""
        return self.coverage < 1

    def factor_at(self, position: int) -> float | None:
        if 0 <= position < len(self.factors):
            return self.factors[position]
        return None


@dataclass(frozen=True)
class SeasonalRow:
    """An observation labelled with its 1-based season."""
    timestamp: str
    value: float
    season: int


# ============================================================
# CALENDAR ARITHMETIC
# ============================================================

def _quarter_start(d: datetime) -> date:
    return date(d.year, 3 * ((d.month - 1) // 3) + 1, 1)


def _period_key(d: datetime, period: SeasonalityPeriod) -> tuple:
    if period == SeasonalityPeriod.WEEK:
        iso_year, iso_week, _ = d.isocalendar()
        return (iso_year, iso_week)
    if period == SeasonalityPeriod.MONTH:
        return (d.year, d.month)
    if period == SeasonalityPeriod.QUARTER:
        return (d.year, (d.month - 1) // 3 + 1)
    return (d.year,)


def _day_of_period(d: datetime, period: SeasonalityPeriod) -> int:
    """Zero-based calendar position of a date inside its period."""
    if period == SeasonalityPeriod.WEEK:
        return d.isoweekday() - 1
    if period == SeasonalityPeriod.MONTH:
        return d.day - 1
    if period == SeasonalityPeriod.QUARTER:
        return (d.date() - _quarter_start(d)).days
    return d.timetuple().tm_yday - 1


def _group_index(
    d: datetime, period: SeasonalityPeriod, grouping: SeasonalityGrouping
) -> int:
    """Zero-based calendar index of a date's group inside its period."""
    if grouping == SeasonalityGrouping.QUARTER:
        return (d.month - 1) // 3
    if grouping == SeasonalityGrouping.MONTH:
        if period == SeasonalityPeriod.QUARTER:
            return (d.month - 1) % 3
        return d.month - 1
    # Weeks are 7-day blocks counted from the start of the period
    return _day_of_period(d, period) // 7


def _validate_grouping(period: SeasonalityPeriod, grouping: SeasonalityGrouping) -> None:
    if grouping != SeasonalityGrouping.NONE and (period, grouping) not in _GROUP_COUNTS:
        raise ValueError(
            f"Grouping '{grouping.value}' must be finer than period '{period.value}'"
        )


# ============================================================
# PERIODISATION
# ============================================================

def periodize(
    series: Sequence[Observation], period: SeasonalityPeriod = SeasonalityPeriod.YEAR
) -> list[list[Observation]]:
    """Split a series into calendar periods.

    Periods are returned in chronological order and each period lists its
    observations ordered by their calendar position. Two observations with
    the same calendar position keep the later one.

    Raises:
        ValueError: If a timestamp cannot be parsed
    """
    return [
        [series[i] for i in period_indices]
        for period_indices in _periodize_indices(series, period)
    ]


def _periodize_indices(
    series: Sequence[Observation], period: SeasonalityPeriod
) -> list[list[int]]:
    """Series indices per period, ordered by calendar position."""
    buckets: dict[tuple, dict[int, int]] = {}
    for i, obs in enumerate(series):
        d = parse_timestamp(obs.timestamp)
        buckets.setdefault(_period_key(d, period), {})[_day_of_period(d, period)] = i

    return [
        [cells[pos] for pos in sorted(cells)]
        for _, cells in sorted(buckets.items())
    ]


def _periodize_grouped(
    series: Sequence[Observation],
    period: SeasonalityPeriod,
    grouping: SeasonalityGrouping,
) -> list[dict[int, float]]:
    """Per period, the sum of values in each calendar group, rounded to 2 decimals."""
    buckets: dict[tuple, dict[int, float]] = {}
    for obs in series:
        d = parse_timestamp(obs.timestamp)
        groups = buckets.setdefault(_period_key(d, period), {})
        index = _group_index(d, period, grouping)
        groups[index] = groups.get(index, 0.0) + obs.value

    return [
        {index: round_half_up(total) for index, total in groups.items()}
        for _, groups in sorted(buckets.items())
    ]


def _position_lookup(
    series: Sequence[Observation],
    period: SeasonalityPeriod,
    grouping: SeasonalityGrouping,
) -> Callable[[int], int]:
    """Map a series index to its factor position."""
    if grouping != SeasonalityGrouping.NONE:
        positions = [
            _group_index(parse_timestamp(o.timestamp), period, grouping) for o in series
        ]
        return positions.__getitem__

    # Observations displaced by a later one at the same position get no factor
    positions = [-1] * len(series)
    for period_indices in _periodize_indices(series, period):
        for ordinal, i in enumerate(period_indices):
            positions[i] = ordinal
    return positions.__getitem__


# ============================================================
# FACTORS
# ============================================================

def compute_factors(
    series: Sequence[Observation],
    period: SeasonalityPeriod = SeasonalityPeriod.YEAR,
    grouping: SeasonalityGrouping = SeasonalityGrouping.NONE,
) -> SeasonalFactors:
    """Compute seasonal factors for a series.

    Ungrouped, the factor at position i is the mean of the i-th observation of
    every period divided by the mean of the whole series. Grouped, the factor
    is the sum of group i across periods divided by the mean of those sums.

    Args:
        series: Time-ordered observations
        period: Seasonal cycle
        grouping: Optional calendar grouping finer than the period

    Returns:
        SeasonalFactors (empty factors for an empty series)

    Raises:
        ValueError: If the grouping is not finer than the period, or a
            timestamp cannot be parsed
    """
    _validate_grouping(period, grouping)
    coverage = period_coverage(series, period)

    if not series:
        return SeasonalFactors(factors=(), period=period, grouping=grouping)

    if grouping == SeasonalityGrouping.NONE:
        periods = periodize(series, period)
        lengths = {len(p) for p in periods}
        position_count = max(lengths)
        aggregates = [
            mean(p[i].value for p in periods if i < len(p)) for i in range(position_count)
        ]
        present = [True] * position_count
        overall = mean(o.value for o in series)
    else:
        grouped = _periodize_grouped(series, period, grouping)
        lengths = {len(g) for g in grouped}
        position_count = _GROUP_COUNTS[(period, grouping)]
        present = [any(i in g for g in grouped) for i in range(position_count)]
        aggregates = [
            sum(g[i] for g in grouped if i in g) for i in range(position_count)
        ]
        overall = mean(a for a, ok in zip(aggregates, present) if ok)

    factors = tuple(
        round_half_up(agg / overall, SEASONAL_FACTOR_PRECISION)
        if ok and overall != 0 else 1.0
        for agg, ok in zip(aggregates, present)
    )

    result = SeasonalFactors(
        factors=factors,
        period=period,
        grouping=grouping,
        has_warning=len(lengths) > 1,
        coverage=coverage,
    )
    logger.debug(
        "seasonal_factors_computed",
        period=period.value,
        grouping=grouping.value,
        positions=len(factors),
        has_warning=result.has_warning,
    )
    return result


def deseasonalize(
    series: Sequence[Observation], factors: SeasonalFactors
) -> list[Observation]:
    """Divide each value by the factor at its position.

    Values without a factor, or with a factor of 0, are returned unchanged.
    Results are rounded to 2 decimals.
    """
    return _apply(series, factors, lambda value, factor: value / factor)


def reseasonalize(
    series: Sequence[Observation], factors: SeasonalFactors
) -> list[Observation]:
    """Multiply deseasonalized values back by their factors."""
    return _apply(series, factors, lambda value, factor: value * factor)


def _apply(
    series: Sequence[Observation],
    factors: SeasonalFactors,
    op: Callable[[float, float], float],
) -> list[Observation]:
    if not series or not factors.factors:
        return list(series)

    position_of = _position_lookup(series, factors.period, factors.grouping)
    adjusted = []
    for i, obs in enumerate(series):
        factor = factors.factor_at(position_of(i))
        if not factor:
            adjusted.append(obs)
            continue
        adjusted.append(
            Observation(
                timestamp=obs.timestamp,
                value=round_half_up(op(obs.value, factor)),
                confidence=obs.confidence,
            )
        )
    return adjusted


# ============================================================
# GRANULARITY AND COVERAGE
# ============================================================

def determine_granularity(series: Sequence[Observation]) -> Granularity:
    """Detect the sampling interval from the most common gap in days.

    Gaps are rounded up to whole days; ties go to the larger gap. Series with
    fewer than two observations are treated as yearly.
    """
    if len(series) < 2:
        return Granularity.YEAR

    dates = [parse_timestamp(o.timestamp) for o in series]
    gaps = Counter(
        math.ceil(abs((b - a).total_seconds()) / 86400)
        for a, b in zip(dates, dates[1:])
    )
    interval = max(gaps.items(), key=lambda item: (item[1], item[0]))[0]

    if interval < 7:
        return Granularity.DAY
    if interval < 28:
        return Granularity.WEEK
    if interval < 90:
        return Granularity.MONTH
    if interval < 365:
        return Granularity.QUARTER
    return Granularity.YEAR


def period_disable_map(series: Sequence[Observation]) -> dict[SeasonalityPeriod, bool]:
    """Which periods cannot be used for this series.

    A period is disabled unless it is strictly coarser than the detected
    granularity; monthly data, for example, may only use quarter or year.
    """
    rank = _GRANULARITY_RANK[determine_granularity(series)]
    return {period: _PERIOD_RANK[period] <= rank for period in SeasonalityPeriod}


def enabled_periods(series: Sequence[Observation]) -> list[SeasonalityPeriod]:
    """Usable periods, finest first."""
    disabled = period_disable_map(series)
    return [p for p in SeasonalityPeriod if not disabled[p]]


def period_coverage(series: Sequence[Observation], period: SeasonalityPeriod) -> float:
    """Number of whole periods between the first and last observation."""
    if len(series) < 2:
        return 0.0
    first = parse_timestamp(series[0].timestamp)
    last = parse_timestamp(series[-1].timestamp)
    days = (last - first).total_seconds() / 86400
    return days / _PERIOD_DAYS[period]


def prepare_seasonal_table(
    series: Sequence[Observation], period: SeasonalityPeriod = SeasonalityPeriod.YEAR
) -> list[SeasonalRow]:
    """Label every observation with its 1-based season within its period."""
    return [
        SeasonalRow(timestamp=obs.timestamp, value=obs.value, season=ordinal + 1)
        for periodized in periodize(series, period)
        for ordinal, obs in enumerate(periodized)
    ]
