"""Unit tests for XMR control limit calculation.

Tests verify:
- Mean and median limits on a known series
- Insufficient data handling
- Determinism of repeated calculations
- In-control check
- XMR data generation (points, limits, violations)
"""

import pytest

from xmrspc.core.engine import (
    calculate_limits,
    generate_xmr_data,
    is_process_in_control,
)
from xmrspc.utils.statistics import ControlLimits, Observation


class TestCalculateLimits:
    """Test calculate_limits."""

    def test_mean_limits_known_series(self, example_series):
        """[10, 12, ..., 16] has avgX 13 and avgMovement 14 / 9."""
        limits = calculate_limits(example_series)

        assert limits.avg_x == 13.0
        assert limits.avg_movement == 1.56
        assert limits.unpl == 17.14
        assert limits.lnpl == 8.86
        assert limits.url == 5.08
        assert limits.lower_quartile == 10.93
        assert limits.upper_quartile == 15.07

    def test_limits_use_unrounded_movement(self, example_series):
        """UNPL is 13 + 2.66 * 1.5556, not 13 + 2.66 * 1.56."""
        limits = calculate_limits(example_series)
        assert limits.unpl != round(13 + 2.66 * 1.56, 2)

    def test_median_limits(self, example_series):
        """Median mode uses median value, median range and 3.145 / 3.865."""
        limits = calculate_limits(example_series, use_median=True)

        assert limits.avg_x == 13.0
        assert limits.avg_movement == 2.0
        assert limits.unpl == 19.29
        assert limits.lnpl == 6.71
        assert limits.url == 7.73

    def test_fewer_than_two_points_returns_empty(self):
        assert calculate_limits([]).is_empty
        assert calculate_limits([Observation("2024-01-01", 5)]).is_empty

    def test_constant_series(self, series_factory):
        """No variation collapses every limit onto the average."""
        limits = calculate_limits(series_factory([4, 4, 4, 4]))

        assert limits.avg_x == 4.0
        assert limits.avg_movement == 0.0
        assert limits.unpl == limits.lnpl == 4.0
        assert limits.url == 0.0

    def test_quartiles_are_midpoints(self, series_factory):
        limits = calculate_limits(series_factory([1, 3, 2, 4, 3, 5]))

        assert limits.upper_quartile == pytest.approx((limits.unpl + limits.avg_x) / 2, abs=0.02)
        assert limits.lower_quartile == pytest.approx((limits.lnpl + limits.avg_x) / 2, abs=0.02)

    def test_deterministic(self, example_series):
        """Same input gives identical output on every call."""
        results = {calculate_limits(example_series) for _ in range(5)}
        assert len(results) == 1


class TestIsProcessInControl:
    """Test is_process_in_control."""

    def test_calculated_limits_are_in_control(self, example_series):
        assert is_process_in_control(calculate_limits(example_series))

    def test_average_outside_limits(self):
        limits = ControlLimits(20.0, 1.0, 15.0, 10.0, 3.27, 12.5, 17.5)
        assert not is_process_in_control(limits)

    def test_movement_above_url(self):
        limits = ControlLimits(13.0, 6.0, 17.0, 9.0, 5.0, 11.0, 15.0)
        assert not is_process_in_control(limits)

    def test_empty_limits_are_in_control(self):
        """All-zero limits satisfy the inclusive checks."""
        assert is_process_in_control(ControlLimits.empty())


class TestGenerateXMRData:
    """Test generate_xmr_data."""

    def test_bundles_points_limits_and_violations(self, example_series):
        data = generate_xmr_data(example_series)

        assert len(data.points) == len(example_series) - 1
        assert data.limits == calculate_limits(example_series)
        assert data.violations.total == 0

    def test_short_series(self):
        data = generate_xmr_data([Observation("2024-01-01", 1)])

        assert data.points == ()
        assert data.limits.is_empty
        assert data.violations.flagged_indices() == []
