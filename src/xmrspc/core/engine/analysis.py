"""Full XMR analysis of a series with an optional overlay.

The engine modules are stateless functions; this module ties them together
for one call. Which overlay is active is decided by the caller and passed in
as an OverlayState, so the same series and state always give the same result.

Pipeline:
1. Seasonality overlay: deseasonalize the series
2. Moving ranges and limits of the (possibly deseasonalized) series
3. Trend overlay: per-point trend limits from a regression of the series
4. Lock overlay: the locked limits replace the calculated ones
5. Violations, per segment when dividers are given
"""

import re
from dataclasses import dataclass, field, replace
from typing import Sequence

import structlog

from xmrspc.core.engine.control_limits import (
    LockedLimitState,
    LockedLimitValidationError,
    LockSource,
    QuartileVisibility,
    calculate_limits,
    is_process_in_control,
    lock_limits,
    quartile_visibility,
)
from xmrspc.core.engine.outliers import (
    DEFAULT_OUTLIER_CONFIG,
    OutlierConfig,
    calculate_limits_with_outlier_removal,
    should_auto_lock,
)
from xmrspc.core.engine.seasonality import (
    SeasonalFactors,
    SeasonalityGrouping,
    SeasonalityPeriod,
    compute_factors,
    deseasonalize,
    enabled_periods,
)
from xmrspc.core.engine.segmentation import (
    DividerSet,
    SegmentStats,
    calculate_segment_stats,
    detect_violations_with_segments,
)
from xmrspc.core.engine.trend import (
    RegressionStats,
    TrendLimits,
    build_trend_limits,
    calculate_regression_stats,
)
from xmrspc.core.engine.violation_rules import ViolationSet, detect_violations
from xmrspc.utils.constants import MINIMUM_XMR_DATA_POINTS
from xmrspc.utils.statistics import (
    ControlLimits,
    Observation,
    RangedPoint,
    calculate_moving_ranges,
)

logger = structlog.get_logger(__name__)

_TREND_LABEL = re.compile(r"\(Trend\)", re.IGNORECASE)
_SEASONALITY_LABEL = re.compile(r"\(Seasonality\)", re.IGNORECASE)


class OverlayConflictError(ValueError):
    """Raised when more than one overlay is active at the same time."""


@dataclass(frozen=True)
class TrendOverlay:
    """Trend overlay settings.

    Attributes:
        gradient: Slope entered by a user; regression value when None
        intercept: Intercept entered by a user; regression value when None
    """
    gradient: float | None = None
    intercept: float | None = None


@dataclass(frozen=True)
class SeasonalityOverlay:
    """Seasonality overlay settings."""
    period: SeasonalityPeriod = SeasonalityPeriod.YEAR
    grouping: SeasonalityGrouping = SeasonalityGrouping.NONE


@dataclass(frozen=True)
class OverlayState:
    """Caller-owned overlay selection; at most one overlay is active.

    Raises:
        OverlayConflictError: If two or more overlays are set
    """
    trend: TrendOverlay | None = None
    seasonality: SeasonalityOverlay | None = None
    lock: LockedLimitState | None = None

    def __post_init__(self):
        active = [
            name for name, value in (
                ("trend", self.trend),
                ("seasonality", self.seasonality),
                ("lock", self.lock),
            )
            if value is not None
        ]
        if len(active) > 1:
            raise OverlayConflictError(
                f"Only one overlay may be active, got: {', '.join(active)}"
            )

    @property
    def active(self) -> str | None:
        """Name of the active overlay, None when there is none."""
        if self.trend is not None:
            return "trend"
        if self.seasonality is not None:
            return "seasonality"
        if self.lock is not None:
            return "lock"
        return None

    def with_trend(self, trend: TrendOverlay | None = None) -> "OverlayState":
        return OverlayState(trend=trend or TrendOverlay())

    def with_seasonality(
        self, seasonality: SeasonalityOverlay | None = None
    ) -> "OverlayState":
        return OverlayState(seasonality=seasonality or SeasonalityOverlay())

    def with_lock(self, lock: LockedLimitState) -> "OverlayState":
        return OverlayState(lock=lock)

    def cleared(self) -> "OverlayState":
        return OverlayState()


@dataclass(frozen=True)
class AnalysisResult:
    """Everything a chart needs for one series.

    Attributes:
        observations: Series the limits were calculated on (deseasonalized
            when the seasonality overlay is active)
        points: Ranged points of ``observations``
        limits: Limits calculated from ``observations``
        violations: Violations, positions refer to ``points``
        effective_limits: Limits in force at the latest point
        in_control: Whether ``effective_limits`` describe a stable process
        quartiles: Which quartile lines to show
        regression: Regression statistics when the trend overlay is active
        trend_limits: Per-point trend limits when the trend overlay is active
        seasonal_factors: Factors when the seasonality overlay is active
        lock: Locked baseline when the lock overlay is active
        segments: Per-segment statistics when dividers were given
    """
    observations: tuple[Observation, ...]
    points: tuple[RangedPoint, ...]
    limits: ControlLimits
    violations: ViolationSet
    effective_limits: ControlLimits
    in_control: bool
    quartiles: QuartileVisibility
    regression: RegressionStats | None = None
    trend_limits: TrendLimits | None = None
    seasonal_factors: SeasonalFactors | None = None
    lock: LockedLimitState | None = None
    segments: tuple[SegmentStats, ...] = field(default_factory=tuple)


def _regression_for(
    series: Sequence[Observation], trend: TrendOverlay
) -> RegressionStats | None:
    stats = calculate_regression_stats(series)
    if stats is None:
        return None
    return RegressionStats(
        m=stats.m if trend.gradient is None else trend.gradient,
        c=stats.c if trend.intercept is None else trend.intercept,
        avg_mr=stats.avg_mr,
    )


def analyze(
    series: Sequence[Observation],
    overlay: OverlayState | None = None,
    dividers: DividerSet | None = None,
    use_median: bool = False,
) -> AnalysisResult:
    """Run the XMR analysis of a series under an overlay.

    Args:
        series: Time-ordered, de-duplicated observations
        overlay: Active overlay (none by default)
        dividers: Chart dividers; segments are evaluated when given
        use_median: Median-based limits

    Returns:
        AnalysisResult

    Raises:
        ValueError: If the seasonality overlay is active and a timestamp
            cannot be parsed, or its grouping is not finer than its period
    """
    overlay = overlay or OverlayState()

    observations = list(series)
    factors = None
    if overlay.seasonality is not None:
        factors = compute_factors(
            observations, overlay.seasonality.period, overlay.seasonality.grouping
        )
        observations = deseasonalize(observations, factors)

    points = calculate_moving_ranges(observations)
    limits = calculate_limits(observations, use_median)

    regression = None
    trend_limits = None
    if overlay.trend is not None:
        regression = _regression_for(observations, overlay.trend)
        if regression is not None:
            trend_limits = build_trend_limits(regression, observations)

    lock = overlay.lock
    segments: list[SegmentStats] = []
    if dividers is not None and len(dividers) >= 2:
        segments = calculate_segment_stats(observations, dividers, use_median)
        violations = detect_violations_with_segments(points, segments, lock, trend_limits)
    else:
        violations = detect_violations(
            points, lock.limits if lock is not None else limits, trend_limits
        )

    if trend_limits is not None:
        effective = replace(
            trend_limits.at_last(), avg_movement=limits.avg_movement, url=limits.url
        )
    elif lock is not None:
        effective = lock.limits
    else:
        effective = limits

    if lock is not None:
        quartiles = quartile_visibility(lock.status, lock.limits)
    else:
        quartiles = QuartileVisibility(upper=True, lower=True)

    logger.debug(
        "series_analyzed",
        n=len(observations),
        overlay=overlay.active,
        segments=len(segments),
        flagged=len(violations.flagged_indices()),
    )

    return AnalysisResult(
        observations=tuple(observations),
        points=tuple(points),
        limits=limits,
        violations=violations,
        effective_limits=effective,
        in_control=is_process_in_control(effective),
        quartiles=quartiles,
        regression=regression,
        trend_limits=trend_limits,
        seasonal_factors=factors,
        lock=lock,
        segments=tuple(segments),
    )


def baseline_limits(
    series: Sequence[Observation],
    excluded_indices: Sequence[int] = (),
    use_median: bool = False,
) -> ControlLimits:
    """Limits of the series with the excluded indices left out."""
    excluded = set(excluded_indices)
    return calculate_limits(
        [o for i, o in enumerate(series) if i not in excluded], use_median
    )


def auto_lock(
    series: Sequence[Observation],
    use_median: bool = False,
    config: OutlierConfig = DEFAULT_OUTLIER_CONFIG,
) -> LockedLimitState | None:
    """Lock limits calculated without consensus outliers.

    Returns:
        An AUTO LockedLimitState, or None when auto-locking is not warranted
        or the cleaned series cannot produce valid locked limits
    """
    if not should_auto_lock(series, config):
        return None

    result = calculate_limits_with_outlier_removal(series, use_median, config)
    try:
        lock = lock_limits(
            result.limits,
            excluded_indices=result.report.indices,
            source=LockSource.AUTO,
        )
    except LockedLimitValidationError as e:
        logger.debug("auto_lock_skipped", failures=[f.value for f in e.failures])
        return None

    logger.debug("auto_lock_applied", excluded=list(lock.excluded_indices))
    return lock


def overlay_from_label(label: str, series: Sequence[Observation]) -> OverlayState:
    """Overlay requested by a submetric label.

    ``(Trend)`` in the label enables the trend overlay (two or more points).
    ``(Seasonality)`` enables the seasonality overlay on the year period when
    the series has enough points and is sampled finer than yearly. Trend wins
    when both markers are present.
    """
    if _TREND_LABEL.search(label) and len(series) >= 2:
        return OverlayState().with_trend()

    if _SEASONALITY_LABEL.search(label) and len(series) >= MINIMUM_XMR_DATA_POINTS:
        if SeasonalityPeriod.YEAR in enabled_periods(series):
            return OverlayState().with_seasonality(
                SeasonalityOverlay(period=SeasonalityPeriod.YEAR)
            )

    return OverlayState()
