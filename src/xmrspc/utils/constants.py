"""Scaling constants for XMR (individuals / moving range) charts.

The natural process limits of an individuals chart sit at
``average +/- k * average moving range`` and the upper range limit of the
moving range chart at ``k2 * average moving range``. The factors differ
depending on whether the chart centre is the mean or the median.

References:
    - Donald J. Wheeler, "Understanding Variation" (2nd Edition)
    - NIST Engineering Statistics Handbook, section 6.3.2
"""

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class ScalingConstants:
    """Scaling factors for one centring mode.

    Attributes:
        mode: "mean" or "median"
        npl: Natural process limit factor applied to the average moving range
        url: Upper range limit factor applied to the average moving range
    """
    mode: str
    npl: float
    url: float


_SCALING_TABLE: Dict[str, ScalingConstants] = {
    "mean": ScalingConstants(mode="mean", npl=2.66, url=3.268),
    "median": ScalingConstants(mode="median", npl=3.145, url=3.865),
}

# Natural process limits sit at roughly 3 sigma, i.e. 2.66 average moving
# ranges, so k sigma corresponds to a k / 2.66 share of the limit distance.
NPL_SCALING = 2.66
TWO_SIGMA_RATIO = 2.0 / NPL_SCALING
ONE_SIGMA_RATIO = 1.0 / NPL_SCALING

# Decimal places used for every published statistic
DECIMAL_PRECISION = 2
SEASONAL_FACTOR_PRECISION = 4

# Minimum number of observations needed for a meaningful XMR chart
MINIMUM_XMR_DATA_POINTS = 6

# Interior dividers a caller may place on a chart
MAX_INTERIOR_DIVIDERS = 3

# Tolerance for treating manually edited limits as symmetric around the average
SYMMETRY_TOLERANCE = 0.001


def get_scaling(use_median: bool = False) -> ScalingConstants:
    """Get the scaling constants for the requested centring mode.

    Args:
        use_median: True for median-based limits, False for mean-based limits

    Returns:
        ScalingConstants for the mode

    Examples:
        >>> get_scaling().npl
        2.66
        >>> get_scaling(use_median=True).url
        3.865
    """
    return _SCALING_TABLE["median" if use_median else "mean"]


def get_npl_scaling(use_median: bool = False) -> float:
    """Get the natural process limit factor for the centring mode."""
    return get_scaling(use_median).npl


def get_url_scaling(use_median: bool = False) -> float:
    """Get the upper range limit factor for the centring mode."""
    return get_scaling(use_median).url
