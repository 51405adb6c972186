"""Linear trend overlay for XMR charts.

A trending process drifts by design, so static limits flag every point once
the drift is large enough. The trend overlay fits an ordinary least squares
line with the point position as x and places the natural process limits
around that line instead of around a flat average.

Two bands are produced per point:
- standard: centre +/- avgMR * 2.66
- reduced: centre +/- max(0, avgMR - |m|) * 2.66, i.e. the variation left
  once the deterministic step of the trend is taken out of the moving range
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np
import structlog

from xmrspc.utils.constants import NPL_SCALING, get_url_scaling
from xmrspc.utils.statistics import (
    ControlLimits,
    Observation,
    calculate_moving_ranges,
    mean,
    round_half_up,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RegressionStats:
    """Least squares fit of a series against its positions.

    Attributes:
        m: Slope per observation
        c: Intercept at position 0
        avg_mr: Mean moving range of the raw (undetrended) series
    """
    m: float
    c: float
    avg_mr: float


@dataclass(frozen=True)
class PointLimits:
    """Limits that apply to a single point."""
    centre: float
    unpl: float
    lnpl: float
    lower_quartile: float
    upper_quartile: float


@dataclass(frozen=True)
class TrendLimits:
    """Per-position trend limits aligned 1:1 with a series.

    Every sequence has one entry per observation, rounded to 2 decimals.
    """
    timestamps: tuple[str, ...] = ()
    centre: tuple[float, ...] = ()
    unpl: tuple[float, ...] = ()
    lnpl: tuple[float, ...] = ()
    lower_quartile: tuple[float, ...] = ()
    upper_quartile: tuple[float, ...] = ()
    reduced_unpl: tuple[float, ...] = ()
    reduced_lnpl: tuple[float, ...] = ()
    reduced_lower_quartile: tuple[float, ...] = ()
    reduced_upper_quartile: tuple[float, ...] = ()
    avg_movement: float = 0.0

    def __len__(self) -> int:
        return len(self.centre)

    @property
    def is_empty(self) -> bool:
        return len(self.centre) == 0

    def limits_at(self, index: int) -> PointLimits:
        """Standard trend limits at a series position."""
        return PointLimits(
            centre=self.centre[index],
            unpl=self.unpl[index],
            lnpl=self.lnpl[index],
            lower_quartile=self.lower_quartile[index],
            upper_quartile=self.upper_quartile[index],
        )

    def reduced_limits_at(self, index: int) -> PointLimits:
        """Slope-reduced trend limits at a series position."""
        return PointLimits(
            centre=self.centre[index],
            unpl=self.reduced_unpl[index],
            lnpl=self.reduced_lnpl[index],
            lower_quartile=self.reduced_lower_quartile[index],
            upper_quartile=self.reduced_upper_quartile[index],
        )

    def at_last(self) -> ControlLimits:
        """Limits in effect at the latest point, as a ControlLimits.

        Returns ControlLimits.empty() for an empty overlay.
        """
        if self.is_empty:
            return ControlLimits.empty()
        last = self.limits_at(len(self) - 1)
        return ControlLimits(
            avg_x=last.centre,
            avg_movement=round_half_up(self.avg_movement),
            unpl=last.unpl,
            lnpl=last.lnpl,
            url=round_half_up(get_url_scaling() * self.avg_movement),
            lower_quartile=last.lower_quartile,
            upper_quartile=last.upper_quartile,
        )


def regress(series: Sequence[Observation]) -> tuple[float, float] | None:
    """Ordinary least squares fit of value against position.

    Args:
        series: Observations; position i is used as x

    Returns:
        (m, c), or None for fewer than 2 points or a zero x-variance

    Example:
        >>> regress([Observation(str(i), v) for i, v in enumerate([5, 8, 11, 14, 17])])
        (3.0, 5.0)
    """
    n = len(series)
    if n < 2:
        return None

    x = np.arange(n, dtype=np.float64)
    y = np.asarray([o.value for o in series], dtype=np.float64)
    sum_x = x.sum()
    sum_y = y.sum()

    denominator = n * (x @ x) - sum_x * sum_x
    if denominator == 0:
        logger.debug("regression_degenerate", n=n)
        return None

    m = (n * (x @ y) - sum_x * sum_y) / denominator
    c = (sum_y - m * sum_x) / n
    return float(m), float(c)


def calculate_regression_stats(series: Sequence[Observation]) -> RegressionStats | None:
    """Regression line plus the raw series' average moving range."""
    fit = regress(series)
    if fit is None:
        return None

    m, c = fit
    ranges = [p.range for p in calculate_moving_ranges(series)]
    return RegressionStats(m=m, c=c, avg_mr=mean(ranges))


def build_trend_limits(
    stats: RegressionStats | None, series: Sequence[Observation]
) -> TrendLimits:
    """Build per-position trend limits for a series.

    Args:
        stats: Regression statistics, typically from calculate_regression_stats
        series: Observations the limits are aligned with

    Returns:
        TrendLimits, empty when ``stats`` is None
    """
    if stats is None:
        return TrendLimits()

    band = stats.avg_mr * NPL_SCALING
    # Floor at zero: the reduced band may collapse onto the centre line
    reduced_band = max(0.0, stats.avg_mr - abs(stats.m)) * NPL_SCALING

    columns: dict[str, list[float]] = {
        name: []
        for name in (
            "centre", "unpl", "lnpl", "lower_quartile", "upper_quartile",
            "reduced_unpl", "reduced_lnpl",
            "reduced_lower_quartile", "reduced_upper_quartile",
        )
    }

    for i in range(len(series)):
        centre = stats.m * i + stats.c
        unpl = centre + band
        lnpl = centre - band
        reduced_unpl = centre + reduced_band
        reduced_lnpl = centre - reduced_band

        columns["centre"].append(round_half_up(centre))
        columns["unpl"].append(round_half_up(unpl))
        columns["lnpl"].append(round_half_up(lnpl))
        columns["lower_quartile"].append(round_half_up((lnpl + centre) / 2))
        columns["upper_quartile"].append(round_half_up((unpl + centre) / 2))
        columns["reduced_unpl"].append(round_half_up(reduced_unpl))
        columns["reduced_lnpl"].append(round_half_up(reduced_lnpl))
        columns["reduced_lower_quartile"].append(round_half_up((reduced_lnpl + centre) / 2))
        columns["reduced_upper_quartile"].append(round_half_up((reduced_unpl + centre) / 2))

    return TrendLimits(
        timestamps=tuple(o.timestamp for o in series),
        avg_movement=stats.avg_mr,
        **{name: tuple(values) for name, values in columns.items()},
    )
