"""Pytest configuration and shared fixtures."""

from collections.abc import Callable
from datetime import date, timedelta

import pytest

from xmrspc.utils.statistics import Observation

SeriesFactory = Callable[..., list[Observation]]


def make_series(
    values: list[float],
    start: date = date(2024, 1, 1),
    step_days: int = 1,
) -> list[Observation]:
    """Build an evenly spaced daily (or every ``step_days``) series."""
    return [
        Observation(timestamp=(start + timedelta(days=i * step_days)).isoformat(), value=v)
        for i, v in enumerate(values)
    ]


def make_monthly_series(values: list[float], start_year: int = 2023) -> list[Observation]:
    """Build a series with one observation on the first of each month."""
    series = []
    for i, v in enumerate(values):
        year = start_year + i // 12
        month = i % 12 + 1
        series.append(Observation(timestamp=f"{year}-{month:02d}-01", value=v))
    return series


@pytest.fixture
def series_factory() -> SeriesFactory:
    return make_series


@pytest.fixture
def example_values() -> list[float]:
    """Slowly rising series with a known set of limits."""
    return [10, 12, 11, 13, 12, 14, 13, 15, 14, 16]


@pytest.fixture
def example_series(example_values: list[float]) -> list[Observation]:
    return make_series(example_values)


@pytest.fixture
def linear_series() -> list[Observation]:
    """Noise-free line y = 3x + 5."""
    return make_series([5, 8, 11, 14, 17])


@pytest.fixture
def spike_series() -> list[Observation]:
    """Stable 10-12 process with one extreme value at index 7."""
    return make_series([10, 11, 10, 12, 11, 10, 11, 50, 10, 11, 12, 10])


@pytest.fixture
def monthly_seasonal_series() -> list[Observation]:
    """Two years of monthly data repeating the pattern 1..12."""
    return make_monthly_series([float(m) for m in range(1, 13)] * 2)
