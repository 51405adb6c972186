"""Utilities for xmrspc statistical process control calculations."""

from .constants import (
    DECIMAL_PRECISION,
    MINIMUM_XMR_DATA_POINTS,
    NPL_SCALING,
    ONE_SIGMA_RATIO,
    TWO_SIGMA_RATIO,
    ScalingConstants,
    get_npl_scaling,
    get_scaling,
    get_url_scaling,
)

from .statistics import (
    ControlLimits,
    Observation,
    RangedPoint,
    calculate_moving_ranges,
    coefficient_of_variation,
    mean,
    median,
    nearest_rank,
    parse_timestamp,
    to_naive_utc,
    population_std,
    round_half_up,
    skewness,
)

__all__ = [
    # Constants
    "DECIMAL_PRECISION",
    "MINIMUM_XMR_DATA_POINTS",
    "NPL_SCALING",
    "ONE_SIGMA_RATIO",
    "TWO_SIGMA_RATIO",
    "ScalingConstants",
    "get_scaling",
    "get_npl_scaling",
    "get_url_scaling",
    # Data classes
    "Observation",
    "RangedPoint",
    "ControlLimits",
    # Series helpers
    "calculate_moving_ranges",
    "mean",
    "median",
    "population_std",
    "coefficient_of_variation",
    "skewness",
    "nearest_rank",
    "round_half_up",
    "parse_timestamp",
    "to_naive_utc",
]
