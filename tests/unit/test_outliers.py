"""Unit tests for consensus outlier removal.

Tests verify:
- Each detector on hand-checked data
- Consensus voting, the removal cap and the recency guard
- Degenerate inputs (short, constant, zero spread)
- Auto-lock decision
"""

import math

import pytest

from xmrspc.core.engine import (
    OutlierConfig,
    calculate_limits,
    calculate_limits_with_outlier_removal,
    remove_outliers,
    should_auto_lock,
)
from xmrspc.core.engine.outliers import (
    analyze_distribution,
    detect_outliers_iqr,
    detect_outliers_mad,
    detect_outliers_percentile,
    detect_outliers_zscore,
)
from xmrspc.utils.statistics import mean, population_std


class TestDetectors:
    """Test the individual detectors."""

    def test_all_detectors_but_percentile_flag_spike(self, spike_series):
        values = [o.value for o in spike_series]

        assert detect_outliers_iqr(values) == [7]
        assert detect_outliers_zscore(values) == [7]
        assert detect_outliers_mad(values) == [7]
        assert detect_outliers_percentile(values) == []

    def test_iqr_zero_spread_fallback(self):
        """With a constant middle half any deviation from the median is flagged."""
        values = [10.0] * 9 + [10.5]
        assert detect_outliers_iqr(values) == [9]

    def test_percentile_band(self):
        values = [float(v) for v in range(200)]
        assert detect_outliers_percentile(values) == [0, 1, 199]

    def test_zero_spread_detectors_flag_nothing(self):
        values = [5.0] * 10

        assert detect_outliers_iqr(values) == []
        assert detect_outliers_zscore(values) == []
        assert detect_outliers_mad(values) == []
        assert detect_outliers_percentile(values) == []

    def test_below_minimum_length(self):
        values = [1.0, 1.0, 1.0, 100.0]

        assert detect_outliers_iqr(values) == []
        assert detect_outliers_zscore(values) == []

    def test_custom_threshold(self):
        values = [10, 11, 10, 11, 10, 11, 10, 11, 10, 16]
        strict = OutlierConfig(zscore_threshold=3.0)

        assert detect_outliers_zscore(values) == [9]
        assert detect_outliers_zscore(values, strict) == []


class TestAnalyzeDistribution:
    """Test the adaptive IQR multiplier."""

    def test_low_variation_is_conservative(self):
        profile = analyze_distribution([100, 101, 99, 100, 101, 99])

        assert profile.coefficient_of_variation < 0.1
        assert profile.iqr_multiplier == 1.5

    def test_high_variation_with_skew(self, spike_series):
        profile = analyze_distribution([o.value for o in spike_series])

        assert profile.coefficient_of_variation > 0.3
        assert profile.skewness > 1
        assert profile.iqr_multiplier == 1.5

    def test_zero_mean(self):
        profile = analyze_distribution([-1, 1, -1, 1])
        assert profile.coefficient_of_variation == 0.0


class TestRemoveOutliers:
    """Test the consensus."""

    def test_spike_removed(self, spike_series):
        report = remove_outliers(spike_series)

        assert report.indices == (7,)
        assert report.removed == (spike_series[7],)
        assert len(report.cleaned) == 11
        assert spike_series[7] not in report.cleaned
        assert report.votes == {7: 3}
        assert report.has_outliers

    def test_latest_point_protected(self, series_factory):
        """A recent value that is not extreme on its own is kept."""
        series = series_factory([10, 11, 10, 11, 10, 11, 10, 11, 10, 16])
        report = remove_outliers(series)

        assert report.votes == {9: 3}
        assert report.indices == ()
        assert len(report.cleaned) == 10

    def test_extreme_latest_point_removed(self, series_factory):
        """The latest point goes when its own z-score is extreme."""
        values = [10, 11] * 7 + [10, 200]
        series = series_factory(values)
        report = remove_outliers(series)

        assert (values[-1] - mean(values)) / population_std(values) > 3.0
        assert report.votes == {15: 3}
        assert report.indices == (15,)
        assert report.removed == (series[-1],)

    def test_same_value_earlier_is_removed(self, series_factory):
        series = series_factory([10, 11, 10, 11, 16, 10, 11, 10, 11, 10])
        assert remove_outliers(series).indices == (4,)

    def test_single_vote_accepted_when_extreme(self, series_factory):
        """Only the IQR fence flags the spike; its z-score carries it."""
        values = [10, 11, 10, 11, 10, 11, 10, 200, 11, 10, 11, 10, 11, 10, 11, 10]
        series = series_factory(values)
        config = OutlierConfig(zscore_threshold=10.0, mad_threshold=1000.0)
        report = remove_outliers(series, config)

        assert (200 - mean(values)) / population_std(values) > 3.0
        assert report.votes == {7: 1}
        assert report.indices == (7,)

    def test_single_vote_rejected_below_extreme_z(self, series_factory):
        values = [10, 11, 10, 11, 10, 11, 10, 200, 11, 10, 11, 10, 11, 10, 11, 10]
        config = OutlierConfig(zscore_threshold=10.0, mad_threshold=1000.0, extreme_zscore=4.0)
        report = remove_outliers(series_factory(values), config)

        assert report.votes == {7: 1}
        assert report.indices == ()

    def test_short_series_unchanged(self, series_factory):
        series = series_factory([1, 1, 1, 1, 100])
        report = remove_outliers(series)

        assert report.cleaned == tuple(series)
        assert not report.has_outliers

    def test_constant_series(self, series_factory):
        assert not remove_outliers(series_factory([7] * 12)).has_outliers

    @pytest.mark.parametrize("values", [
        [1, 50, 1, 50, 1, 50, 1, 50, 1, 2, 3, 4],
        [0, 0, 0, 100, 0, 0, 200, 0, 0, 300, 0, 0],
        [5, 5, 5, 5, 5, 5, 90, 95, 100, 5, 5, 5],
        [1, 2, 3, 4, 5, 6, 7, 8, 9, 1000],
    ])
    def test_removal_is_bounded(self, series_factory, values):
        series = series_factory(values)
        report = remove_outliers(series)

        assert len(report.indices) <= math.floor(len(series) * 0.25)
        assert len(report.cleaned) + len(report.removed) == len(series)

    def test_cap_from_config(self, series_factory):
        series = series_factory([10, 11, 10, 80, 11, 10, 90, 10, 11, 10, 11, 10])
        config = OutlierConfig(max_outlier_fraction=0.1)

        assert len(remove_outliers(series, config).indices) <= 1


class TestOutlierLimits:
    """Test limits over the cleaned series and the auto-lock decision."""

    def test_limits_from_cleaned_series(self, spike_series):
        result = calculate_limits_with_outlier_removal(spike_series)

        assert result.limits == calculate_limits(result.report.cleaned)
        assert result.limits.unpl < calculate_limits(spike_series).unpl

    def test_should_auto_lock(self, spike_series):
        assert should_auto_lock(spike_series)

    def test_no_auto_lock_without_outliers(self, example_series):
        assert not should_auto_lock(example_series)

    def test_no_auto_lock_for_low_variation(self, series_factory):
        series = series_factory([1000, 1001, 1000, 1001, 1000, 1001, 1000, 1030])
        assert not should_auto_lock(series)

    def test_no_auto_lock_for_short_series(self, series_factory):
        assert not should_auto_lock(series_factory([1, 1, 50]))
