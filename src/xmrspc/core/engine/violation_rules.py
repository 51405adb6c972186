"""Western Electric style rules for XMR chart violation detection.

This module provides five pluggable rule classes. Each rule scans a whole
sequence of ranged points and returns the positions it flags, so rules may
overlap on the same point. Every rule is trend-aware: when a TrendLimits
overlay is supplied, each point is compared against the trend values at its
own index instead of the static limits.

Rules:
    1. Outside limits: a point above UNPL or below LNPL
    2. Running points: 8+ consecutive points on one side of the centre line
    3. Four near limit: 3 of 4 consecutive points beyond the same quartile
    4. Two of three beyond two sigma
    5. Fifteen within one sigma

References:
    - Western Electric, "Statistical Quality Control Handbook" (1956)
    - Donald J. Wheeler, "Understanding Variation" (2nd Edition)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence

from xmrspc.core.engine.trend import PointLimits, TrendLimits
from xmrspc.utils.constants import ONE_SIGMA_RATIO, TWO_SIGMA_RATIO
from xmrspc.utils.statistics import ControlLimits, RangedPoint


class ViolationType(str, Enum):
    """Violation categories, one per rule."""
    OUTSIDE_LIMITS = "outside_limits"
    RUNNING_POINTS = "running_points"
    FOUR_NEAR_LIMIT = "four_near_limit"
    TWO_OF_THREE_BEYOND_TWO_SIGMA = "two_of_three_beyond_two_sigma"
    FIFTEEN_WITHIN_ONE_SIGMA = "fifteen_within_one_sigma"


# Display priority, most severe first
VIOLATION_PRIORITY: tuple[ViolationType, ...] = (
    ViolationType.OUTSIDE_LIMITS,
    ViolationType.TWO_OF_THREE_BEYOND_TWO_SIGMA,
    ViolationType.FOUR_NEAR_LIMIT,
    ViolationType.RUNNING_POINTS,
    ViolationType.FIFTEEN_WITHIN_ONE_SIGMA,
)


@dataclass(frozen=True)
class ViolationSet:
    """Flagged point positions, one sorted tuple per rule.

    Attributes:
        outside_limits: Rule 1 positions
        running_points: Rule 2 positions
        four_near_limit: Rule 3 positions
        two_of_three_beyond_two_sigma: Rule 4 positions
        fifteen_within_one_sigma: Rule 5 positions
    """
    outside_limits: tuple[int, ...] = ()
    running_points: tuple[int, ...] = ()
    four_near_limit: tuple[int, ...] = ()
    two_of_three_beyond_two_sigma: tuple[int, ...] = ()
    fifteen_within_one_sigma: tuple[int, ...] = ()

    def for_type(self, violation_type: ViolationType) -> tuple[int, ...]:
        """Positions flagged for one violation type."""
        return getattr(self, violation_type.value)

    def merge(self, other: "ViolationSet") -> "ViolationSet":
        """Per-rule union of two sets."""
        return ViolationSet(**{
            t.value: tuple(sorted(set(self.for_type(t)) | set(other.for_type(t))))
            for t in ViolationType
        })

    def flagged_indices(self) -> list[int]:
        """Every position flagged by at least one rule."""
        flagged: set[int] = set()
        for t in ViolationType:
            flagged.update(self.for_type(t))
        return sorted(flagged)

    def primary_violation(self, index: int) -> ViolationType | None:
        """Highest priority violation at a position, None if unflagged."""
        for t in VIOLATION_PRIORITY:
            if index in self.for_type(t):
                return t
        return None

    @property
    def total(self) -> int:
        return sum(len(self.for_type(t)) for t in ViolationType)


def _limits_for(
    point: RangedPoint, limits: ControlLimits, trend: TrendLimits | None
) -> PointLimits:
    """Limits a point is judged against (trend at its index, else static).

    The trend value is looked up by the point's series index, not by its
    position among the ranged points, so the first ranged point uses the
    trend value at series index 1.
    """
    if trend is not None and 0 <= point.index < len(trend):
        return trend.limits_at(point.index)
    return PointLimits(
        centre=limits.avg_x,
        unpl=limits.unpl,
        lnpl=limits.lnpl,
        lower_quartile=limits.lower_quartile,
        upper_quartile=limits.upper_quartile,
    )


class ViolationRule(Protocol):
    """Protocol for violation rule implementations."""

    @property
    def rule_id(self) -> int:
        """Rule number (1-5)."""
        ...

    @property
    def violation_type(self) -> ViolationType:
        """Category reported for this rule."""
        ...

    @property
    def min_points_required(self) -> int:
        """Minimum number of points needed to evaluate this rule."""
        ...

    def check(
        self,
        points: Sequence[RangedPoint],
        limits: ControlLimits,
        trend: TrendLimits | None = None,
    ) -> list[int]:
        """Return sorted positions of the points that violate the rule."""
        ...


class Rule1OutsideLimits:
    """Rule 1: A point above UNPL or below LNPL.

    The strongest signal of an assignable cause.
    """

    rule_id = 1
    rule_name = "Outside Limits"
    violation_type = ViolationType.OUTSIDE_LIMITS
    min_points_required = 1

    def check(self, points, limits, trend=None):
        violations = []
        for pos, point in enumerate(points):
            pl = _limits_for(point, limits, trend)
            if point.value < pl.lnpl or point.value > pl.unpl:
                violations.append(pos)
        return violations


class Rule2RunningPoints:
    """Rule 2: Eight or more consecutive points on the same side of the centre.

    Every point from the 8th onward is flagged while the run continues.
    A point exactly on the centre line ends both runs.
    """

    rule_id = 2
    rule_name = "Running Points"
    violation_type = ViolationType.RUNNING_POINTS
    min_points_required = 8

    def check(self, points, limits, trend=None):
        violations: list[int] = []
        if len(points) < self.min_points_required:
            return violations

        above = 0
        below = 0
        for pos, point in enumerate(points):
            centre = _limits_for(point, limits, trend).centre
            if point.value > centre:
                above += 1
                below = 0
            elif point.value < centre:
                below += 1
                above = 0
            else:
                above = 0
                below = 0

            if above >= self.min_points_required or below >= self.min_points_required:
                violations.append(pos)
        return violations


class Rule3FourNearLimit:
    """Rule 3: Three out of four consecutive points beyond the same quartile.

    The whole 4-point window is flagged.
    """

    rule_id = 3
    rule_name = "Four Near Limit"
    violation_type = ViolationType.FOUR_NEAR_LIMIT
    min_points_required = 4

    def check(self, points, limits, trend=None):
        if len(points) < self.min_points_required:
            return []

        flagged: set[int] = set()
        for end in range(3, len(points)):
            window = range(end - 3, end + 1)
            below = 0
            above = 0
            for j in window:
                pl = _limits_for(points[j], limits, trend)
                if points[j].value < pl.lower_quartile:
                    below += 1
                elif points[j].value > pl.upper_quartile:
                    above += 1

            if below >= 3 or above >= 3:
                flagged.update(window)
        return sorted(flagged)


class Rule4TwoOfThreeBeyondTwoSigma:
    """Rule 4: Two out of three consecutive points beyond two sigma.

    The two sigma line sits 2/2.66 of the way from the centre to each limit.
    The whole 3-point window is flagged.
    """

    rule_id = 4
    rule_name = "Two of Three Beyond Two Sigma"
    violation_type = ViolationType.TWO_OF_THREE_BEYOND_TWO_SIGMA
    min_points_required = 3

    def check(self, points, limits, trend=None):
        if len(points) < self.min_points_required:
            return []

        flagged: set[int] = set()
        for end in range(2, len(points)):
            window = range(end - 2, end + 1)
            beyond = 0
            for j in window:
                pl = _limits_for(points[j], limits, trend)
                upper = pl.centre + (pl.unpl - pl.centre) * TWO_SIGMA_RATIO
                lower = pl.centre - (pl.centre - pl.lnpl) * TWO_SIGMA_RATIO
                if points[j].value > upper or points[j].value < lower:
                    beyond += 1

            if beyond >= 2:
                flagged.update(window)
        return sorted(flagged)


class Rule5FifteenWithinOneSigma:
    """Rule 5: Fifteen or more consecutive points within one sigma.

    Indicates stratification: limits too wide or data smoothed. The band is
    inclusive and the 15th point onward of an unbroken run is flagged.
    """

    rule_id = 5
    rule_name = "Fifteen Within One Sigma"
    violation_type = ViolationType.FIFTEEN_WITHIN_ONE_SIGMA
    min_points_required = 15

    def check(self, points, limits, trend=None):
        violations: list[int] = []
        if len(points) < self.min_points_required:
            return violations

        run = 0
        for pos, point in enumerate(points):
            pl = _limits_for(point, limits, trend)
            upper = pl.centre + (pl.unpl - pl.centre) * ONE_SIGMA_RATIO
            lower = pl.centre - (pl.centre - pl.lnpl) * ONE_SIGMA_RATIO
            if lower <= point.value <= upper:
                run += 1
            else:
                run = 0

            if run >= self.min_points_required:
                violations.append(pos)
        return violations


class ViolationRuleLibrary:
    """Aggregates the five violation rules.

    Provides a central registry and a way to run all (or a subset of) the
    rules in one pass, producing a ViolationSet.
    """

    def __init__(self):
        self._rules: dict[int, ViolationRule] = {}
        self._register_default_rules()

    def _register_default_rules(self) -> None:
        rules = [
            Rule1OutsideLimits(),
            Rule2RunningPoints(),
            Rule3FourNearLimit(),
            Rule4TwoOfThreeBeyondTwoSigma(),
            Rule5FifteenWithinOneSigma(),
        ]
        for rule in rules:
            self._rules[rule.rule_id] = rule

    def check_all(
        self,
        points: Sequence[RangedPoint],
        limits: ControlLimits,
        trend: TrendLimits | None = None,
        enabled_rules: set[int] | None = None,
    ) -> ViolationSet:
        """Run every enabled rule.

        Args:
            points: Ranged points to check
            limits: Static limits (used where no trend value applies)
            trend: Optional per-index trend limits
            enabled_rules: Rule IDs to run (None = all)

        Returns:
            ViolationSet with the positions flagged by each rule
        """
        if enabled_rules is None:
            enabled_rules = set(self._rules.keys())

        found: dict[str, tuple[int, ...]] = {}
        if not points:
            return ViolationSet()

        for rule_id in sorted(enabled_rules):
            rule = self._rules.get(rule_id)
            if rule is None:
                continue
            found[rule.violation_type.value] = tuple(rule.check(points, limits, trend))

        return ViolationSet(**found)

    def get_rule(self, rule_id: int) -> ViolationRule | None:
        return self._rules.get(rule_id)


_default_library = ViolationRuleLibrary()


def detect_violations(
    points: Sequence[RangedPoint],
    limits: ControlLimits,
    trend: TrendLimits | None = None,
) -> ViolationSet:
    """Detect violations of all five rules.

    Positions in the result refer to the ``points`` sequence. With a trend
    overlay each point is judged against the trend limits at ``point.index``.
    """
    return _default_library.check_all(points, limits, trend)
