"""Control limit calculation and locked limit management for XMR charts.

This module computes the natural process limits of an individuals chart and
the upper range limit of its moving range chart, mean- or median-based:

- avgX = mean (or median) of the values
- avgMovement = mean (or median) of the moving ranges
- UNPL / LNPL = avgX +/- k * avgMovement
- URL = k2 * avgMovement

It also validates and builds locked limits. A lock replaces the calculated
limits with a fixed baseline, either derived automatically from an outlier
cleaned series or entered manually by a user.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

import structlog

from xmrspc.core.engine.violation_rules import ViolationSet, detect_violations
from xmrspc.utils.constants import SYMMETRY_TOLERANCE, get_scaling
from xmrspc.utils.statistics import (
    ControlLimits,
    Observation,
    RangedPoint,
    calculate_moving_ranges,
    mean,
    median,
    round_half_up,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class XMRData:
    """Complete XMR chart data for a series.

    Attributes:
        points: Ranged points (one per observation after the first)
        limits: Calculated control limits
        violations: Violations of the points against the limits
    """

    points: tuple[RangedPoint, ...]
    limits: ControlLimits
    violations: ViolationSet


def calculate_limits(
    series: Sequence[Observation], use_median: bool = False
) -> ControlLimits:
    """Calculate XMR control limits and statistics.

    Limits are computed from unrounded averages and each field is rounded
    independently afterwards.

    Args:
        series: Time-ordered observations
        use_median: Use medians and the median scaling factors

    Returns:
        ControlLimits, or ControlLimits.empty() when fewer than 2 observations

    Example:
        For values [10, 12, 11, 13, 12, 14, 13, 15, 14, 16]:
        - avgX = 13.00
        - avgMovement = 14 / 9 = 1.56
        - UNPL = 17.14, LNPL = 8.86, URL = 5.08
    """
    if len(series) < 2:
        return ControlLimits.empty()

    values = [o.value for o in series]
    ranges = [p.range for p in calculate_moving_ranges(series)]

    center = median if use_median else mean
    avg_x = center(values)
    avg_movement = center(ranges)

    scaling = get_scaling(use_median)
    delta = scaling.npl * avg_movement
    unpl = avg_x + delta
    lnpl = avg_x - delta

    return ControlLimits(
        avg_x=round_half_up(avg_x),
        avg_movement=round_half_up(avg_movement),
        unpl=round_half_up(unpl),
        lnpl=round_half_up(lnpl),
        url=round_half_up(scaling.url * avg_movement),
        lower_quartile=round_half_up((lnpl + avg_x) / 2),
        upper_quartile=round_half_up((unpl + avg_x) / 2),
    )


def generate_xmr_data(
    series: Sequence[Observation], use_median: bool = False
) -> XMRData:
    """Generate ranged points, limits and violations for a series."""
    points = calculate_moving_ranges(series)
    limits = calculate_limits(series, use_median)
    return XMRData(
        points=tuple(points),
        limits=limits,
        violations=detect_violations(points, limits),
    )


def is_process_in_control(limits: ControlLimits) -> bool:
    """Check whether the limits describe a process in statistical control.

    The average must lie within the natural process limits and the average
    movement must not exceed the upper range limit.
    """
    return (
        limits.lnpl <= limits.avg_x <= limits.unpl
        and limits.avg_movement <= limits.url
    )


# ============================================================
# LOCKED LIMITS
# ============================================================

class LockSource(str, Enum):
    """Provenance of a locked baseline."""
    AUTO = "AUTO"
    MANUAL = "MANUAL"


class LockValidationFailure(str, Enum):
    """Invariants a locked baseline must satisfy."""
    AVERAGE_OUTSIDE_LIMITS = "average_outside_limits"
    MOVEMENT_EXCEEDS_URL = "movement_exceeds_url"
    UNPL_NOT_ABOVE_LNPL = "unpl_not_above_lnpl"

    @property
    def message(self) -> str:
        return _FAILURE_MESSAGES[self]


_FAILURE_MESSAGES = {
    LockValidationFailure.AVERAGE_OUTSIDE_LIMITS: "Average X must be between LNPL and UNPL.",
    LockValidationFailure.MOVEMENT_EXCEEDS_URL: "Average Movement must be less than or equal to URL.",
    LockValidationFailure.UNPL_NOT_ABOVE_LNPL: "UNPL must be greater than LNPL.",
}


class LockedLimitValidationError(ValueError):
    """Raised when locked limit values violate one or more invariants.

    Attributes:
        failures: Every invariant that failed, in check order
    """

    def __init__(self, failures: list[LockValidationFailure]):
        self.failures = failures
        super().__init__(" ".join(f.message for f in failures))


@dataclass(frozen=True)
class LockStatus:
    """Which parts of a locked baseline were edited by hand.

    Attributes:
        locked: Limits are locked
        unpl_modified: UNPL differs from the calculated value
        lnpl_modified: LNPL differs from the calculated value
        avg_x_modified: Average differs from the calculated value
    """
    locked: bool = True
    unpl_modified: bool = False
    lnpl_modified: bool = False
    avg_x_modified: bool = False

    @property
    def is_modified(self) -> bool:
        return self.unpl_modified or self.lnpl_modified or self.avg_x_modified


@dataclass(frozen=True)
class LockedLimitState:
    """A validated locked baseline.

    Attributes:
        limits: Limits that replace the calculated ones
        status: Lock and modification flags
        excluded_indices: Series indices left out when deriving the baseline
        source: Whether the lock came from outlier removal or a user
    """
    limits: ControlLimits
    status: LockStatus = field(default_factory=LockStatus)
    excluded_indices: tuple[int, ...] = ()
    source: LockSource = LockSource.AUTO


@dataclass(frozen=True)
class QuartileVisibility:
    """Which quartile lines are meaningful for the current limits."""
    upper: bool
    lower: bool


def validate_locked_limits(
    avg_x: float,
    unpl: float,
    lnpl: float,
    avg_movement: float,
    url: float,
) -> list[LockValidationFailure]:
    """Check locked limit values against the three lock invariants.

    Returns:
        Failed invariants; an empty list means the values are valid

    Example:
        >>> validate_locked_limits(20, 15, 10, 1, 3)
        [<LockValidationFailure.AVERAGE_OUTSIDE_LIMITS: 'average_outside_limits'>]
    """
    failures: list[LockValidationFailure] = []
    if avg_x < lnpl or avg_x > unpl:
        failures.append(LockValidationFailure.AVERAGE_OUTSIDE_LIMITS)
    if avg_movement > url:
        failures.append(LockValidationFailure.MOVEMENT_EXCEEDS_URL)
    if unpl <= lnpl:
        failures.append(LockValidationFailure.UNPL_NOT_ABOVE_LNPL)
    return failures


def lock_limits(
    limits: ControlLimits,
    status: LockStatus | None = None,
    excluded_indices: Sequence[int] = (),
    source: LockSource = LockSource.AUTO,
) -> LockedLimitState:
    """Lock an existing set of limits.

    Raises:
        LockedLimitValidationError: If the limits violate a lock invariant
    """
    failures = validate_locked_limits(
        limits.avg_x, limits.unpl, limits.lnpl, limits.avg_movement, limits.url
    )
    if failures:
        raise LockedLimitValidationError(failures)

    return LockedLimitState(
        limits=limits,
        status=status or LockStatus(),
        excluded_indices=tuple(sorted(set(excluded_indices))),
        source=source,
    )


def build_manual_lock(
    avg_x: float,
    unpl: float,
    lnpl: float,
    avg_movement: float,
    url: float,
    baseline: ControlLimits | None = None,
    excluded_indices: Sequence[int] = (),
) -> LockedLimitState:
    """Build a locked baseline from user-entered values.

    Modification flags are set for each of avgX, UNPL and LNPL whose rounded
    value differs from ``baseline`` (the limits calculated from the series
    with the excluded points removed). Without a baseline nothing is flagged.

    Args:
        avg_x: Average entered by the user
        unpl: Upper natural process limit
        lnpl: Lower natural process limit
        avg_movement: Average moving range
        url: Upper range limit
        baseline: Calculated limits the user started from
        excluded_indices: Series indices the user excluded

    Returns:
        LockedLimitState with source MANUAL

    Raises:
        LockedLimitValidationError: If the values violate a lock invariant
    """
    failures = validate_locked_limits(avg_x, unpl, lnpl, avg_movement, url)
    if failures:
        logger.debug("manual_lock_rejected", failures=[f.value for f in failures])
        raise LockedLimitValidationError(failures)

    limits = ControlLimits(
        avg_x=round_half_up(avg_x),
        avg_movement=round_half_up(avg_movement),
        unpl=round_half_up(unpl),
        lnpl=round_half_up(lnpl),
        url=round_half_up(url),
        lower_quartile=round_half_up((avg_x + lnpl) / 2),
        upper_quartile=round_half_up((avg_x + unpl) / 2),
    )

    if baseline is None:
        status = LockStatus()
    else:
        status = LockStatus(
            unpl_modified=limits.unpl != baseline.unpl,
            lnpl_modified=limits.lnpl != baseline.lnpl,
            avg_x_modified=limits.avg_x != baseline.avg_x,
        )

    return lock_limits(
        limits,
        status=status,
        excluded_indices=excluded_indices,
        source=LockSource.MANUAL,
    )


def quartile_visibility(status: LockStatus, limits: ControlLimits) -> QuartileVisibility:
    """Determine which quartile lines to show for (possibly edited) limits.

    Rules:
    - Nothing modified: both quartiles
    - Both limits or the average modified: both if the limits are still
      symmetric around the average, otherwise neither
    - Only UNPL modified: hide the upper quartile
    - Only LNPL modified: hide the lower quartile
    """
    if not status.is_modified:
        return QuartileVisibility(upper=True, lower=True)

    if (status.unpl_modified and status.lnpl_modified) or status.avg_x_modified:
        symmetric = abs(limits.unpl + limits.lnpl - 2 * limits.avg_x) < SYMMETRY_TOLERANCE
        return QuartileVisibility(upper=symmetric, lower=symmetric)

    if status.unpl_modified:
        return QuartileVisibility(upper=False, lower=True)

    return QuartileVisibility(upper=True, lower=False)
