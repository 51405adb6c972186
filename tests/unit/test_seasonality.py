"""Unit tests for seasonal factors and deseasonalization.

Tests verify:
- Ungrouped and grouped factor computation, with group sums rounded to 2 decimals
- Deseasonalize / reseasonalize round trip within rounding tolerance
- Missing and zero factors leave values unchanged
- Granularity detection, disabled periods and coverage
"""

from datetime import date

import pytest

from xmrspc.core.engine import (
    Granularity,
    SeasonalFactors,
    SeasonalityGrouping,
    SeasonalityPeriod,
    compute_factors,
    deseasonalize,
    determine_granularity,
    period_coverage,
    period_disable_map,
    reseasonalize,
)
from xmrspc.core.engine.seasonality import (
    enabled_periods,
    periodize,
    prepare_seasonal_table,
)
from xmrspc.utils.statistics import Observation


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _monthly(values, start_year=2023):
    return [
        Observation(f"{start_year + i // 12}-{i % 12 + 1:02d}-01", float(v))
        for i, v in enumerate(values)
    ]


class TestPeriodize:
    """Test periodize."""

    def test_splits_by_year(self, monthly_seasonal_series):
        periods = periodize(monthly_seasonal_series, SeasonalityPeriod.YEAR)

        assert len(periods) == 2
        assert [len(p) for p in periods] == [12, 12]
        assert periods[1][0].timestamp == "2024-01-01"

    def test_iso_weeks(self, series_factory):
        """2024-01-01 is a Monday; 14 days span two ISO weeks."""
        periods = periodize(series_factory(list(range(14))), SeasonalityPeriod.WEEK)

        assert [len(p) for p in periods] == [7, 7]
        assert periods[1][0].value == 7

    def test_seasonal_table(self, monthly_seasonal_series):
        table = prepare_seasonal_table(monthly_seasonal_series, SeasonalityPeriod.YEAR)

        assert [row.season for row in table[:3]] == [1, 2, 3]
        assert table[12].season == 1
        assert table[12].timestamp == "2024-01-01"


class TestComputeFactors:
    """Test compute_factors."""

    def test_ungrouped_factors(self, monthly_seasonal_series):
        """Position mean / overall mean, overall mean 6.5."""
        factors = compute_factors(monthly_seasonal_series, SeasonalityPeriod.YEAR)

        assert len(factors.factors) == 12
        assert factors.factors[0] == 0.1538
        assert factors.factors[5] == 0.9231
        assert factors.factors[11] == 1.8462
        assert not factors.has_warning
        assert not factors.insufficient_coverage

    def test_uneven_periods_warn(self):
        factors = compute_factors(_monthly(range(1, 19)), SeasonalityPeriod.YEAR)
        assert factors.has_warning

    def test_zero_mean_gives_unit_factors(self):
        factors = compute_factors(_monthly([1, -1] * 12), SeasonalityPeriod.YEAR)
        assert set(factors.factors) == {1.0}

    def test_grouped_by_quarter(self, monthly_seasonal_series):
        """Quarter sums 12, 30, 48, 66 over two years, mean 39."""
        factors = compute_factors(
            monthly_seasonal_series,
            SeasonalityPeriod.YEAR,
            SeasonalityGrouping.QUARTER,
        )

        assert factors.factors == (0.3077, 0.7692, 1.2308, 1.6923)
        assert factors.grouping == SeasonalityGrouping.QUARTER

    def test_grouped_missing_group_is_unit(self):
        """Groups with no data get factor 1.0 and are left out of the mean."""
        series = _monthly([1, 1, 1, 3, 3, 3])
        factors = compute_factors(series, SeasonalityPeriod.YEAR, SeasonalityGrouping.QUARTER)

        assert factors.factors == (0.5, 1.5, 1.0, 1.0)

    def test_group_sums_rounded_before_factors(self):
        """The first quarter sums to 3.004, which counts as 3.00 like the others."""
        series = _monthly([1.001, 1.001, 1.002, 1, 1, 1, 1, 1, 1, 1, 1, 1])
        factors = compute_factors(series, SeasonalityPeriod.YEAR, SeasonalityGrouping.QUARTER)

        assert factors.factors == (1.0, 1.0, 1.0, 1.0)

    @pytest.mark.parametrize("period,grouping", [
        (SeasonalityPeriod.MONTH, SeasonalityGrouping.QUARTER),
        (SeasonalityPeriod.MONTH, SeasonalityGrouping.MONTH),
        (SeasonalityPeriod.WEEK, SeasonalityGrouping.WEEK),
        (SeasonalityPeriod.QUARTER, SeasonalityGrouping.QUARTER),
    ])
    def test_grouping_not_finer_than_period(self, monthly_seasonal_series, period, grouping):
        with pytest.raises(ValueError, match="must be finer"):
            compute_factors(monthly_seasonal_series, period, grouping)

    def test_empty_series(self):
        assert compute_factors([]).factors == ()


class TestDeseasonalize:
    """Test deseasonalize and reseasonalize."""

    def test_round_trip(self, monthly_seasonal_series):
        factors = compute_factors(monthly_seasonal_series, SeasonalityPeriod.YEAR)
        adjusted = deseasonalize(monthly_seasonal_series, factors)
        restored = reseasonalize(adjusted, factors)

        assert {o.value for o in adjusted} == {6.5}
        for original, back in zip(monthly_seasonal_series, restored):
            assert back.timestamp == original.timestamp
            assert back.value == pytest.approx(original.value, abs=0.05)

    def test_grouped_round_trip(self, monthly_seasonal_series):
        factors = compute_factors(
            monthly_seasonal_series, SeasonalityPeriod.YEAR, SeasonalityGrouping.QUARTER
        )
        adjusted = deseasonalize(monthly_seasonal_series, factors)

        assert adjusted[0].value == pytest.approx(1 / 0.3077, abs=0.01)
        restored = reseasonalize(adjusted, factors)
        for original, back in zip(monthly_seasonal_series, restored):
            assert back.value == pytest.approx(original.value, abs=0.05)

    def test_zero_factor_leaves_value(self):
        series = [Observation("2020-01-01", 5), Observation("2021-01-01", 7)]
        factors = SeasonalFactors(factors=(0.0,), period=SeasonalityPeriod.YEAR)

        assert deseasonalize(series, factors) == series

    def test_missing_factor_leaves_value(self, monthly_seasonal_series):
        factors = SeasonalFactors(factors=(2.0,), period=SeasonalityPeriod.YEAR)
        adjusted = deseasonalize(monthly_seasonal_series, factors)

        assert adjusted[0].value == 0.5
        assert adjusted[1:12] == monthly_seasonal_series[1:12]

    def test_no_factors(self, monthly_seasonal_series):
        factors = SeasonalFactors(factors=())
        assert deseasonalize(monthly_seasonal_series, factors) == monthly_seasonal_series


class TestGranularity:
    """Test granularity detection and period availability."""

    def test_daily(self, series_factory):
        assert determine_granularity(series_factory([1, 2, 3])) == Granularity.DAY

    def test_weekly(self, series_factory):
        series = series_factory([1, 2, 3], step_days=7)
        assert determine_granularity(series) == Granularity.WEEK

    def test_monthly(self, monthly_seasonal_series):
        assert determine_granularity(monthly_seasonal_series) == Granularity.MONTH

    def test_quarterly(self):
        series = [
            Observation(ts, 1.0)
            for ts in ("2023-01-01", "2023-04-01", "2023-07-01", "2023-10-01", "2024-01-01")
        ]
        assert determine_granularity(series) == Granularity.QUARTER

    def test_yearly(self):
        series = [Observation(f"{y}-01-01", 1.0) for y in range(2018, 2024)]
        assert determine_granularity(series) == Granularity.YEAR

    def test_tie_goes_to_larger_gap(self):
        series = [
            Observation("2024-01-01", 1.0),
            Observation("2024-01-02", 1.0),
            Observation("2024-01-09", 1.0),
        ]
        assert determine_granularity(series) == Granularity.WEEK

    def test_single_point_is_yearly(self):
        assert determine_granularity([Observation("2024-01-01", 1.0)]) == Granularity.YEAR

    def test_disable_map_monthly(self, monthly_seasonal_series):
        disabled = period_disable_map(monthly_seasonal_series)

        assert disabled == {
            SeasonalityPeriod.WEEK: True,
            SeasonalityPeriod.MONTH: True,
            SeasonalityPeriod.QUARTER: False,
            SeasonalityPeriod.YEAR: False,
        }
        assert enabled_periods(monthly_seasonal_series) == [
            SeasonalityPeriod.QUARTER,
            SeasonalityPeriod.YEAR,
        ]

    def test_disable_map_daily(self, series_factory):
        assert not any(period_disable_map(series_factory([1, 2, 3])).values())

    def test_disable_map_yearly(self):
        series = [Observation(f"{y}-01-01", 1.0) for y in range(2018, 2024)]
        assert all(period_disable_map(series).values())

    def test_coverage(self, series_factory):
        series = series_factory(list(range(15)), start=date(2024, 1, 1))

        assert period_coverage(series, SeasonalityPeriod.WEEK) == pytest.approx(2.0)
        assert period_coverage(series[:1], SeasonalityPeriod.WEEK) == 0.0

    def test_short_coverage_flagged(self, series_factory):
        factors = compute_factors(series_factory(list(range(1, 31))), SeasonalityPeriod.YEAR)
        assert factors.insufficient_coverage
