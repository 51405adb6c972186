"""Pydantic schemas for the xmrspc REST API."""

from xmrspc.api.schemas.analysis import (
    AnalysisRequest,
    AnalysisResponse,
    ControlLimitsSchema,
    DataPointIn,
    DividerSchema,
    LimitsResponse,
    LockedLimitsRequest,
    LockedLimitsResponse,
    ManualLockInput,
    OutlierRequest,
    OutlierResponse,
    OverlayIn,
    SeasonalFactorsResponse,
    SeasonalityPeriodsResponse,
    SeasonalityRequest,
    SegmentsRequest,
    SegmentsResponse,
    SeriesRequest,
    SubmetricMetadata,
    TrendRequest,
    TrendResponse,
    XMRResponse,
)

__all__ = [
    # Requests
    "SeriesRequest",
    "DataPointIn",
    "SubmetricMetadata",
    "OutlierRequest",
    "TrendRequest",
    "SeasonalityRequest",
    "SegmentsRequest",
    "DividerSchema",
    "ManualLockInput",
    "LockedLimitsRequest",
    "OverlayIn",
    "AnalysisRequest",
    # Responses
    "ControlLimitsSchema",
    "LimitsResponse",
    "XMRResponse",
    "OutlierResponse",
    "TrendResponse",
    "SeasonalFactorsResponse",
    "SeasonalityPeriodsResponse",
    "SegmentsResponse",
    "LockedLimitsResponse",
    "AnalysisResponse",
]
