"""Pydantic schemas for XMR analysis operations.

Request schemas carry raw submetric data points, which are normalised before
they reach the engine. Response schemas mirror the engine's value objects and
are built from them with ``model_validate``.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from xmrspc.core.engine.control_limits import LockSource
from xmrspc.core.engine.seasonality import (
    Granularity,
    SeasonalityGrouping,
    SeasonalityPeriod,
)


# ============================================================
# REQUESTS
# ============================================================

class DataPointIn(BaseModel):
    """A raw data point as stored on a submetric.

    Attributes:
        timestamp: ISO-8601 or compact (YYYYMM / YYYYMMDD) date string
        value: Measured value; non-finite or missing values are dropped
        confidence: Optional confidence used to pick between duplicates
        source: Optional name of the system that produced the point
        dimensions: Optional string labels attached to the point
    """

    timestamp: str
    value: float | None = None
    confidence: float | None = None
    source: str | None = None
    dimensions: dict[str, str] | None = None


class SubmetricMetadata(BaseModel):
    """Descriptive submetric fields; never read by the engine."""

    category: str | None = None
    unit: str | None = Field(None, description="Display unit, e.g. %, $, units")
    aggregation_type: str | None = Field(None, description="sum, avg, count or none")
    color: str | None = Field(None, description="Hex colour for the chart")
    trend: str | None = Field(None, description="Expected direction, e.g. uptrend")
    timezone: str | None = None


class SeriesRequest(BaseModel):
    """Base request: one submetric series.

    Attributes:
        label: Submetric label; ``(Trend)`` and ``(Seasonality)`` markers
            select overlays in a full analysis
        data_points: Raw data points in any order
        use_median: Median-based limits; server default when omitted
        metadata: Optional descriptive fields
    """

    label: str = ""
    data_points: list[DataPointIn] = Field(default_factory=list)
    use_median: bool | None = None
    metadata: SubmetricMetadata | None = None


class OutlierRequest(SeriesRequest):
    """Outlier removal request."""

    min_data_points: int | None = Field(None, ge=2, description="Override of the minimum series length")


class TrendRequest(SeriesRequest):
    """Trend overlay request; manual values take precedence over the regression."""

    gradient: float | None = None
    intercept: float | None = None


class SeasonalityRequest(SeriesRequest):
    """Seasonal factor request."""

    period: SeasonalityPeriod = SeasonalityPeriod.YEAR
    grouping: SeasonalityGrouping = SeasonalityGrouping.NONE


class DividerSchema(BaseModel):
    """A chart divider."""

    id: str
    x: datetime

    model_config = ConfigDict(from_attributes=True)


class ManualLockInput(BaseModel):
    """Locked limit values entered by a user.

    Attributes:
        avg_x: Average
        unpl: Upper natural process limit
        lnpl: Lower natural process limit
        avg_movement: Average moving range
        url: Upper range limit
        excluded_indices: Series indices left out of the baseline
    """

    avg_x: float
    unpl: float
    lnpl: float
    avg_movement: float
    url: float
    excluded_indices: list[int] = Field(default_factory=list)


class LockedLimitsRequest(SeriesRequest, ManualLockInput):
    """Manual lock request; the series provides the baseline for change flags."""


class SegmentsRequest(SeriesRequest):
    """Segmented analysis request.

    Attributes:
        dividers: Boundary and interior dividers; boundaries are created
            from the series when omitted
        lock: Locked limits applied to the first segment
        trend: Apply the trend overlay to the first segment
    """

    dividers: list[DividerSchema] | None = None
    lock: ManualLockInput | None = None
    trend: bool = False


class TrendOverlayIn(BaseModel):
    """Trend overlay selection."""

    gradient: float | None = None
    intercept: float | None = None


class SeasonalityOverlayIn(BaseModel):
    """Seasonality overlay selection."""

    period: SeasonalityPeriod = SeasonalityPeriod.YEAR
    grouping: SeasonalityGrouping = SeasonalityGrouping.NONE


class OverlayIn(BaseModel):
    """Overlay selection; at most one of the fields may be set.

    Attributes:
        trend: Trend overlay
        seasonality: Seasonality overlay
        lock: Manual lock
        auto_lock: Lock limits without consensus outliers when warranted
    """

    trend: TrendOverlayIn | None = None
    seasonality: SeasonalityOverlayIn | None = None
    lock: ManualLockInput | None = None
    auto_lock: bool = False


class AnalysisRequest(SeriesRequest):
    """Full analysis request.

    When no overlay is given the label markers decide; failing that an
    automatic lock is attempted when ``auto_lock`` is set.
    """

    overlay: OverlayIn | None = None
    dividers: list[DividerSchema] | None = None
    auto_lock: bool = True


# ============================================================
# RESPONSES
# ============================================================

class ObservationSchema(BaseModel):
    """Observation in a normalised series."""

    timestamp: str
    value: float
    confidence: float | None = None

    model_config = ConfigDict(from_attributes=True)


class RangedPointSchema(BaseModel):
    """Observation value with its moving range and series index."""

    timestamp: str
    value: float
    range: float
    index: int

    model_config = ConfigDict(from_attributes=True)


class ControlLimitsSchema(BaseModel):
    """XMR chart statistics rounded to 2 decimals."""

    avg_x: float
    avg_movement: float
    unpl: float
    lnpl: float
    url: float
    lower_quartile: float
    upper_quartile: float

    model_config = ConfigDict(from_attributes=True)


class ViolationSetSchema(BaseModel):
    """Flagged point positions per rule."""

    outside_limits: list[int] = Field(default_factory=list)
    running_points: list[int] = Field(default_factory=list)
    four_near_limit: list[int] = Field(default_factory=list)
    two_of_three_beyond_two_sigma: list[int] = Field(default_factory=list)
    fifteen_within_one_sigma: list[int] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class SeriesSummary(BaseModel):
    """What normalisation did to the submitted data points."""

    received: int
    used: int
    dropped: int
    duplicates: int


class LimitsResponse(BaseModel):
    """Control limits of a series."""

    limits: ControlLimitsSchema
    in_control: bool
    insufficient_data: bool
    series: SeriesSummary


class XMRResponse(BaseModel):
    """Ranged points, limits and violations of a series."""

    points: list[RangedPointSchema]
    limits: ControlLimitsSchema
    violations: ViolationSetSchema
    series: SeriesSummary


class OutlierResponse(BaseModel):
    """Outlier consensus result and the limits of the cleaned series."""

    limits: ControlLimitsSchema
    cleaned: list[ObservationSchema]
    removed: list[ObservationSchema]
    indices: list[int]
    votes: dict[int, int]
    should_auto_lock: bool
    series: SeriesSummary


class RegressionSchema(BaseModel):
    """Regression line and average moving range."""

    m: float
    c: float
    avg_mr: float

    model_config = ConfigDict(from_attributes=True)


class TrendLimitsSchema(BaseModel):
    """Per-point trend limits aligned with the series."""

    timestamps: list[str]
    centre: list[float]
    unpl: list[float]
    lnpl: list[float]
    lower_quartile: list[float]
    upper_quartile: list[float]
    reduced_unpl: list[float]
    reduced_lnpl: list[float]
    reduced_lower_quartile: list[float]
    reduced_upper_quartile: list[float]

    model_config = ConfigDict(from_attributes=True)


class TrendResponse(BaseModel):
    """Trend overlay of a series; null fields when no line can be fitted."""

    regression: RegressionSchema | None
    trend_limits: TrendLimitsSchema | None
    violations: ViolationSetSchema
    series: SeriesSummary


class SeasonalRowSchema(BaseModel):
    """Observation labelled with its season."""

    timestamp: str
    value: float
    season: int

    model_config = ConfigDict(from_attributes=True)


class SeasonalFactorsResponse(BaseModel):
    """Seasonal factors with the deseasonalized series."""

    factors: list[float]
    period: SeasonalityPeriod
    grouping: SeasonalityGrouping
    has_warning: bool
    coverage: float
    insufficient_coverage: bool
    deseasonalized: list[ObservationSchema]
    table: list[SeasonalRowSchema]
    series: SeriesSummary


class SeasonalityPeriodsResponse(BaseModel):
    """Which seasonal periods a series supports."""

    granularity: Granularity
    disabled: dict[SeasonalityPeriod, bool]
    coverage: dict[SeasonalityPeriod, float]
    series: SeriesSummary


class SegmentSchema(BaseModel):
    """Limits and points of one segment."""

    x_left: datetime
    x_right: datetime
    limits: ControlLimitsSchema
    points: list[RangedPointSchema]

    model_config = ConfigDict(from_attributes=True)


class SegmentsResponse(BaseModel):
    """Segmented analysis result."""

    dividers: list[DividerSchema]
    segments: list[SegmentSchema]
    violations: ViolationSetSchema
    series: SeriesSummary


class LockStatusSchema(BaseModel):
    """Lock flags."""

    locked: bool
    unpl_modified: bool
    lnpl_modified: bool
    avg_x_modified: bool

    model_config = ConfigDict(from_attributes=True)


class QuartileVisibilitySchema(BaseModel):
    """Which quartile lines to display."""

    upper: bool
    lower: bool

    model_config = ConfigDict(from_attributes=True)


class LockedLimitsResponse(BaseModel):
    """A validated locked baseline."""

    limits: ControlLimitsSchema
    status: LockStatusSchema
    excluded_indices: list[int]
    source: LockSource
    quartiles: QuartileVisibilitySchema


class LockFailureSchema(BaseModel):
    """One failed lock invariant."""

    code: str
    message: str


class AnalysisResponse(BaseModel):
    """Full analysis result."""

    overlay: str | None
    observations: list[ObservationSchema]
    points: list[RangedPointSchema]
    limits: ControlLimitsSchema
    effective_limits: ControlLimitsSchema
    violations: ViolationSetSchema
    in_control: bool
    quartiles: QuartileVisibilitySchema
    regression: RegressionSchema | None = None
    trend_limits: TrendLimitsSchema | None = None
    seasonal_factors: list[float] | None = None
    lock: LockedLimitsResponse | None = None
    segments: list[SegmentSchema] = Field(default_factory=list)
    series: SeriesSummary
