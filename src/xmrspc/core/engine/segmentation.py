"""Chart segmentation with dividers.

Dividers split a chart into independently limited segments, for example
before and after a process change. Two boundary dividers always sit at the
first and last timestamp of the series; up to three interior dividers can be
added between them.

Each segment gets limits calculated from its own observations only. Locked
limits and trend overlays describe the baseline period, so they apply to the
first segment alone; later segments always use their own static limits.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Sequence

import structlog

from xmrspc.core.engine.control_limits import LockedLimitState, calculate_limits
from xmrspc.core.engine.trend import TrendLimits
from xmrspc.core.engine.violation_rules import (
    ViolationSet,
    ViolationType,
    detect_violations,
)
from xmrspc.utils.constants import MAX_INTERIOR_DIVIDERS
from xmrspc.utils.statistics import (
    ControlLimits,
    Observation,
    RangedPoint,
    calculate_moving_ranges,
    parse_timestamp,
    to_naive_utc,
)

logger = structlog.get_logger(__name__)

START_DIVIDER_ID = "divider-start"
END_DIVIDER_ID = "divider-end"


@dataclass(frozen=True)
class Divider:
    """A vertical chart divider.

    Attributes:
        id: ``divider-start``, ``divider-end`` or ``divider-<n>``
        x: Position on the time axis, held as naive UTC
    """
    id: str
    x: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "x", to_naive_utc(self.x))

    @property
    def is_boundary(self) -> bool:
        return self.id in (START_DIVIDER_ID, END_DIVIDER_ID) or not self.id


@dataclass(frozen=True)
class DividerSet:
    """Boundary and interior dividers of one chart."""
    dividers: tuple[Divider, ...] = ()

    @property
    def boundaries(self) -> tuple[Divider, ...]:
        return tuple(d for d in self.dividers if d.is_boundary)

    @property
    def interior(self) -> tuple[Divider, ...]:
        return tuple(d for d in self.dividers if not d.is_boundary)

    def sorted(self) -> list[Divider]:
        """Dividers in time order."""
        return sorted(self.dividers, key=lambda d: d.x)

    def __len__(self) -> int:
        return len(self.dividers)


@dataclass(frozen=True)
class SegmentStats:
    """Limits and points of one segment.

    Attributes:
        x_left: Segment start (inclusive)
        x_right: Segment end (inclusive)
        limits: Limits calculated from the segment's observations
        points: Ranged points inside the segment, carrying series indices
    """
    x_left: datetime
    x_right: datetime
    limits: ControlLimits
    points: tuple[RangedPoint, ...]


# ============================================================
# DIVIDER MANAGEMENT
# ============================================================

def create_boundary_dividers(series: Sequence[Observation]) -> DividerSet:
    """Boundary dividers at the earliest and latest timestamp."""
    if not series:
        return DividerSet()

    times = [parse_timestamp(o.timestamp) for o in series]
    return DividerSet(
        dividers=(
            Divider(id=START_DIVIDER_ID, x=min(times)),
            Divider(id=END_DIVIDER_ID, x=max(times)),
        )
    )


def add_divider(divider_set: DividerSet, position: datetime | None = None) -> DividerSet:
    """Add an interior divider.

    Without a position the divider goes to the next quarter of the span
    between the boundaries: 1/4 for the first, 1/2 for the second, 3/4 for
    the third. Nothing changes once three interior dividers exist, or when no
    boundaries are present to place a default divider against.

    Args:
        divider_set: Current dividers
        position: Explicit position for the new divider

    Returns:
        A new DividerSet
    """
    interior = divider_set.interior
    if len(interior) >= MAX_INTERIOR_DIVIDERS:
        return divider_set

    if position is None:
        boundaries = divider_set.boundaries
        if not boundaries:
            return divider_set
        low = min(d.x for d in boundaries)
        high = max(d.x for d in boundaries)
        position = low + (high - low) * (len(interior) + 1) / 4

    new = Divider(id=f"divider-{len(interior) + 1}", x=position)
    return DividerSet(dividers=divider_set.dividers + (new,))


def remove_divider(divider_set: DividerSet) -> DividerSet:
    """Remove the most recently added interior divider."""
    count = len(divider_set.interior)
    if count == 0:
        return divider_set

    last_id = f"divider-{count}"
    return DividerSet(dividers=tuple(d for d in divider_set.dividers if d.id != last_id))


def update_divider_position(
    divider_set: DividerSet, divider_id: str, x: datetime
) -> DividerSet:
    """Move a divider; unknown ids leave the set unchanged."""
    return DividerSet(
        dividers=tuple(
            replace(d, x=x) if d.id == divider_id else d for d in divider_set.dividers
        )
    )


# ============================================================
# SEGMENT STATISTICS
# ============================================================

def calculate_segment_stats(
    series: Sequence[Observation],
    divider_set: DividerSet | None = None,
    use_median: bool = False,
) -> list[SegmentStats]:
    """Calculate limits per segment.

    Every pair of adjacent (time-sorted) dividers defines a segment covering
    ``[x_left, x_right]``, inclusive at both ends, so an observation on an
    interior divider belongs to both neighbouring segments. Empty segments are
    skipped. With fewer than two dividers the whole series is one segment.

    Args:
        series: Time-ordered observations
        divider_set: Dividers of the chart
        use_median: Median-based limits

    Returns:
        SegmentStats per non-empty segment, in time order
    """
    if not series:
        return []

    times = [parse_timestamp(o.timestamp) for o in series]
    points = calculate_moving_ranges(series)
    dividers = divider_set.sorted() if divider_set is not None else []

    if len(dividers) < 2:
        return [
            SegmentStats(
                x_left=times[0],
                x_right=times[-1],
                limits=calculate_limits(series, use_median),
                points=tuple(points),
            )
        ]

    segments = []
    for left, right in zip(dividers, dividers[1:]):
        members = [i for i, t in enumerate(times) if left.x <= t <= right.x]
        if not members:
            continue

        inside = set(members)
        segments.append(
            SegmentStats(
                x_left=left.x,
                x_right=right.x,
                limits=calculate_limits([series[i] for i in members], use_median),
                points=tuple(p for p in points if p.index in inside),
            )
        )

    logger.debug("segments_calculated", dividers=len(dividers), segments=len(segments))
    return segments


def detect_violations_with_segments(
    points: Sequence[RangedPoint],
    segments: Sequence[SegmentStats],
    lock: LockedLimitState | None = None,
    trend: TrendLimits | None = None,
) -> ViolationSet:
    """Detect violations segment by segment.

    The first segment is checked against the locked limits when a lock is
    given, otherwise against the trend overlay when one is given. Every other
    segment uses its own limits. Positions are reported against ``points``,
    matched through the series index each point carries.

    Returns:
        Per-rule union across segments, sorted and de-duplicated
    """
    if not points or not segments:
        return ViolationSet()

    position_of = {p.index: pos for pos, p in enumerate(points)}
    collected: dict[ViolationType, set[int]] = {t: set() for t in ViolationType}

    for segment_no, segment in enumerate(segments):
        limits = segment.limits
        segment_trend = None
        if segment_no == 0:
            if lock is not None:
                limits = lock.limits
            elif trend is not None and not trend.is_empty:
                segment_trend = trend

        found = detect_violations(segment.points, limits, segment_trend)
        for violation_type in ViolationType:
            for local in found.for_type(violation_type):
                global_pos = position_of.get(segment.points[local].index)
                if global_pos is not None:
                    collected[violation_type].add(global_pos)

    return ViolationSet(**{t.value: tuple(sorted(collected[t])) for t in ViolationType})
