"""Consensus outlier detection used to derive auto-locked baselines.

Four independent detectors vote on every value:

- IQR with a multiplier adapted to the spread and skew of the data
- Z-score against the population standard deviation
- MAD (modified z-score around the median)
- Percentile band

A value is removed when at least two detectors agree, or when a single
detector flags it and its z-score is extreme. The number of removed points is
capped, and the most recent observation is protected unless it is extreme on
its own. Limits calculated over the cleaned series become the candidate
baseline for an automatic lock.
"""

import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
import structlog

from xmrspc.core.engine.control_limits import calculate_limits
from xmrspc.utils.constants import MINIMUM_XMR_DATA_POINTS
from xmrspc.utils.statistics import (
    ControlLimits,
    Observation,
    coefficient_of_variation,
    median,
    nearest_rank,
    population_std,
    skewness,
)

logger = structlog.get_logger(__name__)

MAD_SCALE = 0.6745


@dataclass(frozen=True)
class OutlierConfig:
    """Thresholds for the outlier consensus.

    Attributes:
        min_data_points: Below this length nothing is ever flagged
        iqr_multiplier_conservative: IQR multiplier for low-variation data (CV < 0.1)
        iqr_multiplier_moderate: IQR multiplier for CV < 0.3
        iqr_multiplier_aggressive: IQR multiplier for highly variable data
        iqr_skew_increment: Added to the IQR multiplier when |skewness| > 1
        iqr_zero_deviation_threshold: Relative deviation from the median that
            flags a point when the IQR is zero
        zscore_threshold: |z| above which the z-score detector flags a point
        mad_threshold: |modified z| above which the MAD detector flags a point
        percentile_lower: Lower percentile of the percentile band
        percentile_upper: Upper percentile of the percentile band
        extreme_zscore: |z| that lets a single vote count as consensus
        recency_zscore: |z| the latest point must exceed to be removed
        max_outlier_fraction: Maximum share of the series that may be removed
        min_variation: CV at or below which auto-locking is not attempted
    """
    min_data_points: int = MINIMUM_XMR_DATA_POINTS
    iqr_multiplier_conservative: float = 1.5
    iqr_multiplier_moderate: float = 1.2
    iqr_multiplier_aggressive: float = 1.0
    iqr_skew_increment: float = 0.5
    iqr_zero_deviation_threshold: float = 0.001
    zscore_threshold: float = 2.5
    mad_threshold: float = 3.5
    percentile_lower: float = 0.01
    percentile_upper: float = 0.99
    extreme_zscore: float = 3.0
    recency_zscore: float = 3.0
    max_outlier_fraction: float = 0.25
    min_variation: float = 0.05


DEFAULT_OUTLIER_CONFIG = OutlierConfig()


@dataclass(frozen=True)
class DistributionProfile:
    """Shape of a value distribution and the IQR multiplier it implies."""
    coefficient_of_variation: float
    skewness: float
    iqr_multiplier: float


@dataclass(frozen=True)
class OutlierReport:
    """Result of the outlier consensus.

    Attributes:
        cleaned: Observations that were kept, in series order
        removed: Observations that were removed, in series order
        indices: Series indices of the removed observations, ascending
        votes: Number of detectors that flagged each candidate index
    """
    cleaned: tuple[Observation, ...]
    removed: tuple[Observation, ...] = ()
    indices: tuple[int, ...] = ()
    votes: dict[int, int] = field(default_factory=dict)

    @property
    def has_outliers(self) -> bool:
        return len(self.indices) > 0


@dataclass(frozen=True)
class OutlierLimitsResult:
    """Limits calculated over an outlier-cleaned series."""
    limits: ControlLimits
    report: OutlierReport


def analyze_distribution(
    values: Sequence[float], config: OutlierConfig = DEFAULT_OUTLIER_CONFIG
) -> DistributionProfile:
    """Profile a distribution and choose the IQR multiplier.

    Low variation calls for a wider (conservative) fence, high variation for
    a narrower one. Strong skew widens the fence further.
    """
    if len(values) == 0:
        return DistributionProfile(0.0, 0.0, config.iqr_multiplier_conservative)

    cv = coefficient_of_variation(values)
    skew = skewness(values)

    if cv < 0.1:
        multiplier = config.iqr_multiplier_conservative
    elif cv < 0.3:
        multiplier = config.iqr_multiplier_moderate
    else:
        multiplier = config.iqr_multiplier_aggressive

    if abs(skew) > 1:
        multiplier += config.iqr_skew_increment

    return DistributionProfile(
        coefficient_of_variation=cv,
        skewness=skew,
        iqr_multiplier=multiplier,
    )


def detect_outliers_iqr(
    values: Sequence[float], config: OutlierConfig = DEFAULT_OUTLIER_CONFIG
) -> list[int]:
    """Indices outside ``[Q1 - k*IQR, Q3 + k*IQR]`` with an adaptive k.

    When the middle half of the data is constant (IQR = 0) any value whose
    relative deviation from the median exceeds the configured threshold is
    flagged instead.
    """
    if len(values) < config.min_data_points:
        return []

    ordered = sorted(values)
    q1 = nearest_rank(ordered, 0.25)
    q3 = nearest_rank(ordered, 0.75)
    iqr = q3 - q1

    if iqr == 0:
        mid = median(values)
        scale = max(abs(mid), 1.0)
        return [
            i for i, v in enumerate(values)
            if abs(v - mid) / scale > config.iqr_zero_deviation_threshold and v != mid
        ]

    k = analyze_distribution(values, config).iqr_multiplier
    lower = q1 - k * iqr
    upper = q3 + k * iqr
    return [i for i, v in enumerate(values) if v < lower or v > upper]


def _zscores(values: Sequence[float]) -> np.ndarray:
    """Absolute z-scores, all zero when the values have no spread."""
    arr = np.asarray(values, dtype=np.float64)
    std = population_std(values)
    if std == 0:
        return np.zeros(arr.size)
    return np.abs((arr - arr.mean()) / std)


def detect_outliers_zscore(
    values: Sequence[float], config: OutlierConfig = DEFAULT_OUTLIER_CONFIG
) -> list[int]:
    """Indices whose |z| exceeds the threshold; none when std is 0."""
    if len(values) < config.min_data_points:
        return []
    if population_std(values) == 0:
        return []
    z = _zscores(values)
    return [int(i) for i in np.flatnonzero(z > config.zscore_threshold)]


def detect_outliers_mad(
    values: Sequence[float], config: OutlierConfig = DEFAULT_OUTLIER_CONFIG
) -> list[int]:
    """Indices whose modified z-score exceeds the threshold; none when MAD is 0."""
    if len(values) < config.min_data_points:
        return []

    mid = median(values)
    arr = np.asarray(values, dtype=np.float64)
    mad = median(np.abs(arr - mid))
    if mad == 0:
        return []

    modified = np.abs(MAD_SCALE * (arr - mid) / mad)
    return [int(i) for i in np.flatnonzero(modified > config.mad_threshold)]


def detect_outliers_percentile(
    values: Sequence[float], config: OutlierConfig = DEFAULT_OUTLIER_CONFIG
) -> list[int]:
    """Indices outside the nearest-rank percentile band."""
    if len(values) < config.min_data_points:
        return []

    ordered = sorted(values)
    lower = nearest_rank(ordered, config.percentile_lower)
    upper = nearest_rank(ordered, config.percentile_upper)
    return [i for i, v in enumerate(values) if v < lower or v > upper]


def remove_outliers(
    series: Sequence[Observation], config: OutlierConfig = DEFAULT_OUTLIER_CONFIG
) -> OutlierReport:
    """Remove consensus outliers from a series.

    Args:
        series: Time-ordered observations
        config: Detection thresholds

    Returns:
        OutlierReport; the series is returned unchanged when it is shorter
        than ``config.min_data_points``
    """
    if len(series) < config.min_data_points:
        return OutlierReport(cleaned=tuple(series))

    values = [o.value for o in series]
    votes: dict[int, int] = {}
    for detector in (
        detect_outliers_iqr,
        detect_outliers_zscore,
        detect_outliers_mad,
        detect_outliers_percentile,
    ):
        for index in detector(values, config):
            votes[index] = votes.get(index, 0) + 1

    z = _zscores(values)
    accepted = [
        index for index, count in votes.items()
        if count >= 2 or z[index] > config.extreme_zscore
    ]
    accepted.sort(key=lambda index: (votes[index], z[index]), reverse=True)

    cap = math.floor(len(series) * config.max_outlier_fraction)
    final = sorted(accepted[:cap])

    last = len(series) - 1
    if last in final and z[last] <= config.recency_zscore:
        final.remove(last)

    removed_set = set(final)
    report = OutlierReport(
        cleaned=tuple(o for i, o in enumerate(series) if i not in removed_set),
        removed=tuple(series[i] for i in final),
        indices=tuple(final),
        votes=dict(sorted(votes.items())),
    )
    logger.debug(
        "outliers_removed",
        n=len(series),
        candidates=len(votes),
        removed=len(final),
    )
    return report


def calculate_limits_with_outlier_removal(
    series: Sequence[Observation],
    use_median: bool = False,
    config: OutlierConfig = DEFAULT_OUTLIER_CONFIG,
) -> OutlierLimitsResult:
    """Calculate limits over the outlier-cleaned series."""
    report = remove_outliers(series, config)
    return OutlierLimitsResult(
        limits=calculate_limits(report.cleaned, use_median),
        report=report,
    )


def should_auto_lock(
    series: Sequence[Observation], config: OutlierConfig = DEFAULT_OUTLIER_CONFIG
) -> bool:
    """Decide whether an automatic lock is worth attempting.

    Requires enough points, meaningful variation (CV above
    ``config.min_variation``) and at least one consensus outlier.
    """
    if len(series) < config.min_data_points:
        return False

    values = [o.value for o in series]
    if coefficient_of_variation(values) <= config.min_variation:
        return False

    return remove_outliers(series, config).has_outliers
