"""Unit tests for the linear trend overlay.

Tests verify:
- Least squares regression on exact and degenerate input
- Standard and slope-reduced trend bands
- Limits in effect at the latest point
"""

import numpy as np
import pytest

from xmrspc.core.engine import (
    RegressionStats,
    TrendLimits,
    build_trend_limits,
    calculate_regression_stats,
    regress,
)
from xmrspc.utils.statistics import Observation


class TestRegress:
    """Test regress."""

    def test_exact_line(self, linear_series):
        """[5, 8, 11, 14, 17] is y = 3x + 5."""
        assert regress(linear_series) == (3.0, 5.0)

    def test_flat_series(self, series_factory):
        m, c = regress(series_factory([4, 4, 4]))
        assert m == 0.0
        assert c == 4.0

    def test_noisy_slope(self, series_factory):
        m, c = regress(series_factory([1, 3, 2, 4]))
        assert m == pytest.approx(0.8)
        assert c == pytest.approx(1.3)

    def test_matches_numpy_polyfit(self, series_factory):
        values = [3, 1, 4, 1, 5, 9, 2, 6, 5, 3]
        m, c = regress(series_factory(values))
        expected_m, expected_c = np.polyfit(np.arange(len(values)), values, 1)

        assert m == pytest.approx(expected_m)
        assert c == pytest.approx(expected_c)

    def test_returns_plain_floats(self, linear_series):
        m, c = regress(linear_series)
        assert type(m) is float
        assert type(c) is float

    def test_fewer_than_two_points(self):
        assert regress([]) is None
        assert regress([Observation("2024-01-01", 3)]) is None


class TestRegressionStats:
    """Test calculate_regression_stats."""

    def test_average_moving_range_of_raw_series(self, linear_series):
        stats = calculate_regression_stats(linear_series)

        assert stats == RegressionStats(m=3.0, c=5.0, avg_mr=3.0)

    def test_insufficient_data(self):
        assert calculate_regression_stats([Observation("2024-01-01", 3)]) is None


class TestBuildTrendLimits:
    """Test build_trend_limits."""

    def test_standard_band(self, linear_series):
        trend = build_trend_limits(calculate_regression_stats(linear_series), linear_series)

        assert len(trend) == 5
        assert trend.timestamps == tuple(o.timestamp for o in linear_series)
        assert trend.centre == (5.0, 8.0, 11.0, 14.0, 17.0)
        assert trend.unpl == (12.98, 15.98, 18.98, 21.98, 24.98)
        assert trend.lnpl == (-2.98, 0.02, 3.02, 6.02, 9.02)
        assert trend.upper_quartile[0] == 8.99
        assert trend.lower_quartile[0] == 1.01

    def test_reduced_band_collapses_when_slope_equals_movement(self, linear_series):
        """max(0, avgMR - |m|) is 0: reduced limits sit on the centre line."""
        trend = build_trend_limits(calculate_regression_stats(linear_series), linear_series)

        assert trend.reduced_unpl == trend.centre
        assert trend.reduced_lnpl == trend.centre
        assert trend.reduced_upper_quartile == trend.centre

    def test_reduced_band_floor_with_steep_slope(self, series_factory):
        series = series_factory([0, 0, 0])
        trend = build_trend_limits(RegressionStats(m=-5.0, c=10.0, avg_mr=1.0), series)

        assert trend.centre == (10.0, 5.0, 0.0)
        assert trend.reduced_unpl == trend.centre
        assert trend.unpl == (12.66, 7.66, 2.66)

    def test_reduced_band_width(self, series_factory):
        series = series_factory([0, 0])
        trend = build_trend_limits(RegressionStats(m=0.5, c=0.0, avg_mr=1.5), series)

        assert trend.reduced_unpl == (2.66, 3.16)
        assert trend.reduced_lnpl == (-2.66, -2.16)

    def test_none_stats_gives_empty_overlay(self, linear_series):
        trend = build_trend_limits(None, linear_series)

        assert trend.is_empty
        assert len(trend) == 0
        assert trend.at_last().is_empty

    def test_limits_at(self, linear_series):
        trend = build_trend_limits(calculate_regression_stats(linear_series), linear_series)
        point = trend.limits_at(2)

        assert point.centre == 11.0
        assert point.unpl == 18.98
        assert point.lnpl == 3.02
        assert trend.reduced_limits_at(2).unpl == 11.0


class TestAtLast:
    """Test TrendLimits.at_last."""

    def test_latest_point_limits(self, linear_series):
        trend = build_trend_limits(calculate_regression_stats(linear_series), linear_series)
        limits = trend.at_last()

        assert limits.avg_x == 17.0
        assert limits.unpl == 24.98
        assert limits.lnpl == 9.02
        assert limits.avg_movement == 3.0
        assert limits.url == 9.8
        assert limits.upper_quartile == 20.99

    def test_empty_overlay(self):
        assert TrendLimits().at_last().is_empty
