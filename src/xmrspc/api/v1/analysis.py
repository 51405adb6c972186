"""Analysis REST API endpoints.

Stateless endpoints exposing the XMR engine. Every request carries the raw
data points of one submetric; nothing is stored between calls.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from xmrspc.api.schemas.analysis import (
    AnalysisRequest,
    AnalysisResponse,
    ControlLimitsSchema,
    DividerSchema,
    LimitsResponse,
    LockedLimitsRequest,
    LockedLimitsResponse,
    LockFailureSchema,
    LockStatusSchema,
    ManualLockInput,
    ObservationSchema,
    OutlierRequest,
    OutlierResponse,
    QuartileVisibilitySchema,
    RangedPointSchema,
    RegressionSchema,
    SeasonalFactorsResponse,
    SeasonalityPeriodsResponse,
    SeasonalityRequest,
    SeasonalRowSchema,
    SegmentSchema,
    SegmentsRequest,
    SegmentsResponse,
    SeriesRequest,
    SeriesSummary,
    TrendLimitsSchema,
    TrendRequest,
    TrendResponse,
    ViolationSetSchema,
    XMRResponse,
)
from xmrspc.core.config import Settings, get_settings
from xmrspc.core.logging import bind_series_context
from xmrspc.core.engine.analysis import (
    OverlayConflictError,
    OverlayState,
    SeasonalityOverlay,
    TrendOverlay,
    analyze,
    auto_lock,
    baseline_limits,
    overlay_from_label,
)
from xmrspc.core.engine.control_limits import (
    LockedLimitState,
    LockedLimitValidationError,
    build_manual_lock,
    calculate_limits,
    generate_xmr_data,
    is_process_in_control,
    quartile_visibility,
)
from xmrspc.core.engine.outliers import (
    calculate_limits_with_outlier_removal,
    should_auto_lock,
)
from xmrspc.core.engine.seasonality import (
    SeasonalityPeriod,
    compute_factors,
    deseasonalize,
    determine_granularity,
    period_coverage,
    period_disable_map,
    prepare_seasonal_table,
)
from xmrspc.core.engine.segmentation import (
    Divider,
    DividerSet,
    calculate_segment_stats,
    create_boundary_dividers,
    detect_violations_with_segments,
)
from xmrspc.core.preprocess import NormalizedSeries, normalize_observations
from xmrspc.utils.statistics import calculate_moving_ranges

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/analysis", tags=["analysis"])


# ============================================================
# HELPERS
# ============================================================

def _normalize(request: SeriesRequest) -> tuple[NormalizedSeries, SeriesSummary]:
    """Normalise the request's data points and summarise what changed."""
    normalized = normalize_observations(
        p.model_dump(include={"timestamp", "value", "confidence"})
        for p in request.data_points
    )
    summary = SeriesSummary(
        received=len(request.data_points),
        used=len(normalized.observations),
        dropped=normalized.dropped,
        duplicates=normalized.duplicates,
    )
    bind_series_context(request.label, summary.used)
    return normalized, summary


def _use_median(request: SeriesRequest, settings: Settings) -> bool:
    return settings.use_median if request.use_median is None else request.use_median


def _unprocessable(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=message)


def _lock_rejected(error: LockedLimitValidationError) -> HTTPException:
    """422 enumerating every failed lock invariant."""
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={
            "message": "Locked limits are invalid",
            "failures": [
                LockFailureSchema(code=f.value, message=f.message).model_dump()
                for f in error.failures
            ],
        },
    )


def _manual_lock(
    lock: ManualLockInput, normalized: NormalizedSeries, use_median: bool
) -> LockedLimitState:
    baseline = baseline_limits(normalized.observations, lock.excluded_indices, use_median)
    return build_manual_lock(
        avg_x=lock.avg_x,
        unpl=lock.unpl,
        lnpl=lock.lnpl,
        avg_movement=lock.avg_movement,
        url=lock.url,
        baseline=baseline,
        excluded_indices=lock.excluded_indices,
    )


def _lock_response(lock: LockedLimitState) -> LockedLimitsResponse:
    return LockedLimitsResponse(
        limits=ControlLimitsSchema.model_validate(lock.limits),
        status=LockStatusSchema.model_validate(lock.status),
        excluded_indices=list(lock.excluded_indices),
        source=lock.source,
        quartiles=QuartileVisibilitySchema.model_validate(
            quartile_visibility(lock.status, lock.limits)
        ),
    )


# ============================================================
# ENDPOINTS
# ============================================================

@router.post("/limits", response_model=LimitsResponse)
async def compute_limits(
    request: SeriesRequest,
    settings: Settings = Depends(get_settings),
) -> LimitsResponse:
    """Calculate XMR control limits for a series.

    Series with fewer than two usable points return zero-filled limits with
    ``insufficient_data`` set.
    """
    normalized, summary = _normalize(request)
    limits = calculate_limits(normalized.observations, _use_median(request, settings))
    return LimitsResponse(
        limits=ControlLimitsSchema.model_validate(limits),
        in_control=is_process_in_control(limits),
        insufficient_data=limits.is_empty,
        series=summary,
    )


@router.post("/xmr", response_model=XMRResponse)
async def compute_xmr(
    request: SeriesRequest,
    settings: Settings = Depends(get_settings),
) -> XMRResponse:
    """Calculate ranged points, limits and violations for a series."""
    normalized, summary = _normalize(request)
    data = generate_xmr_data(normalized.observations, _use_median(request, settings))
    return XMRResponse(
        points=[RangedPointSchema.model_validate(p) for p in data.points],
        limits=ControlLimitsSchema.model_validate(data.limits),
        violations=ViolationSetSchema.model_validate(data.violations),
        series=summary,
    )


@router.post("/outliers", response_model=OutlierResponse)
async def compute_outliers(
    request: OutlierRequest,
    settings: Settings = Depends(get_settings),
) -> OutlierResponse:
    """Remove consensus outliers and calculate limits of the cleaned series."""
    normalized, summary = _normalize(request)
    config = settings.outlier_config(request.min_data_points)
    result = calculate_limits_with_outlier_removal(
        normalized.observations, _use_median(request, settings), config
    )
    report = result.report
    return OutlierResponse(
        limits=ControlLimitsSchema.model_validate(result.limits),
        cleaned=[ObservationSchema.model_validate(o) for o in report.cleaned],
        removed=[ObservationSchema.model_validate(o) for o in report.removed],
        indices=list(report.indices),
        votes=report.votes,
        should_auto_lock=should_auto_lock(normalized.observations, config),
        series=summary,
    )


@router.post("/trend", response_model=TrendResponse)
async def compute_trend(
    request: TrendRequest,
    settings: Settings = Depends(get_settings),
) -> TrendResponse:
    """Fit a trend line and build per-point trend limits.

    ``regression`` and ``trend_limits`` are null when fewer than two points
    are usable.
    """
    normalized, summary = _normalize(request)
    result = analyze(
        normalized.observations,
        OverlayState().with_trend(
            TrendOverlay(gradient=request.gradient, intercept=request.intercept)
        ),
        use_median=_use_median(request, settings),
    )
    return TrendResponse(
        regression=(
            RegressionSchema.model_validate(result.regression)
            if result.regression is not None else None
        ),
        trend_limits=(
            TrendLimitsSchema.model_validate(result.trend_limits)
            if result.trend_limits is not None else None
        ),
        violations=ViolationSetSchema.model_validate(result.violations),
        series=summary,
    )


@router.post("/seasonality/factors", response_model=SeasonalFactorsResponse)
async def compute_seasonal_factors(request: SeasonalityRequest) -> SeasonalFactorsResponse:
    """Compute seasonal factors and the deseasonalized series.

    Raises:
        HTTPException: 422 if the grouping is not finer than the period
    """
    normalized, summary = _normalize(request)
    try:
        factors = compute_factors(normalized.observations, request.period, request.grouping)
    except ValueError as e:
        raise _unprocessable(str(e))

    return SeasonalFactorsResponse(
        factors=list(factors.factors),
        period=factors.period,
        grouping=factors.grouping,
        has_warning=factors.has_warning,
        coverage=factors.coverage,
        insufficient_coverage=factors.insufficient_coverage,
        deseasonalized=[
            ObservationSchema.model_validate(o)
            for o in deseasonalize(normalized.observations, factors)
        ],
        table=[
            SeasonalRowSchema.model_validate(row)
            for row in prepare_seasonal_table(normalized.observations, request.period)
        ],
        series=summary,
    )


@router.post("/seasonality/periods", response_model=SeasonalityPeriodsResponse)
async def list_seasonal_periods(request: SeriesRequest) -> SeasonalityPeriodsResponse:
    """Report the detected granularity and which periods it allows."""
    normalized, summary = _normalize(request)
    observations = normalized.observations
    return SeasonalityPeriodsResponse(
        granularity=determine_granularity(observations),
        disabled=period_disable_map(observations),
        coverage={p: period_coverage(observations, p) for p in SeasonalityPeriod},
        series=summary,
    )


@router.post("/segments", response_model=SegmentsResponse)
async def compute_segments(
    request: SegmentsRequest,
    settings: Settings = Depends(get_settings),
) -> SegmentsResponse:
    """Calculate limits and violations per segment.

    Raises:
        HTTPException: 422 if both a lock and a trend are requested, or the
            lock values are invalid
    """
    if request.lock is not None and request.trend:
        raise _unprocessable("Only one overlay may be active, got: trend, lock")

    normalized, summary = _normalize(request)
    observations = normalized.observations
    use_median = _use_median(request, settings)

    if request.dividers:
        dividers = DividerSet(
            dividers=tuple(Divider(id=d.id, x=d.x) for d in request.dividers)
        )
    else:
        dividers = create_boundary_dividers(observations)

    lock = None
    if request.lock is not None:
        try:
            lock = _manual_lock(request.lock, normalized, use_median)
        except LockedLimitValidationError as e:
            raise _lock_rejected(e)

    trend_limits = None
    if request.trend:
        trend_limits = analyze(
            observations, OverlayState().with_trend(), use_median=use_median
        ).trend_limits

    segments = calculate_segment_stats(observations, dividers, use_median)
    violations = detect_violations_with_segments(
        calculate_moving_ranges(observations), segments, lock, trend_limits
    )
    return SegmentsResponse(
        dividers=[DividerSchema.model_validate(d) for d in dividers.sorted()],
        segments=[SegmentSchema.model_validate(s) for s in segments],
        violations=ViolationSetSchema.model_validate(violations),
        series=summary,
    )


@router.post("/locked-limits", response_model=LockedLimitsResponse)
async def create_locked_limits(
    request: LockedLimitsRequest,
    settings: Settings = Depends(get_settings),
) -> LockedLimitsResponse:
    """Validate manually entered limits and build a locked baseline.

    Change flags compare the entered values with the limits of the series
    after the excluded indices are removed.

    Raises:
        HTTPException: 422 listing every failed invariant
    """
    normalized, _ = _normalize(request)
    try:
        lock = _manual_lock(request, normalized, _use_median(request, settings))
    except LockedLimitValidationError as e:
        logger.info("locked_limits_rejected", failures=[f.value for f in e.failures])
        raise _lock_rejected(e)
    return _lock_response(lock)


@router.post("/", response_model=AnalysisResponse)
async def run_analysis(
    request: AnalysisRequest,
    settings: Settings = Depends(get_settings),
) -> AnalysisResponse:
    """Run a full analysis under the requested overlay.

    Overlay selection order: an explicit ``overlay``, then the label markers,
    then an automatic lock when ``auto_lock`` is set.

    Raises:
        HTTPException: 422 for conflicting overlays, invalid lock values or
            an unusable seasonality grouping
    """
    normalized, summary = _normalize(request)
    observations = normalized.observations
    use_median = _use_median(request, settings)

    try:
        overlay = _select_overlay(request, normalized, use_median, settings)
    except OverlayConflictError as e:
        raise _unprocessable(str(e))
    except LockedLimitValidationError as e:
        raise _lock_rejected(e)

    dividers = None
    if request.dividers:
        dividers = DividerSet(
            dividers=tuple(Divider(id=d.id, x=d.x) for d in request.dividers)
        )

    try:
        result = analyze(observations, overlay, dividers, use_median)
    except ValueError as e:
        raise _unprocessable(str(e))

    return AnalysisResponse(
        overlay=overlay.active,
        observations=[ObservationSchema.model_validate(o) for o in result.observations],
        points=[RangedPointSchema.model_validate(p) for p in result.points],
        limits=ControlLimitsSchema.model_validate(result.limits),
        effective_limits=ControlLimitsSchema.model_validate(result.effective_limits),
        violations=ViolationSetSchema.model_validate(result.violations),
        in_control=result.in_control,
        quartiles=QuartileVisibilitySchema.model_validate(result.quartiles),
        regression=(
            RegressionSchema.model_validate(result.regression)
            if result.regression is not None else None
        ),
        trend_limits=(
            TrendLimitsSchema.model_validate(result.trend_limits)
            if result.trend_limits is not None else None
        ),
        seasonal_factors=(
            list(result.seasonal_factors.factors)
            if result.seasonal_factors is not None else None
        ),
        lock=_lock_response(result.lock) if result.lock is not None else None,
        segments=[SegmentSchema.model_validate(s) for s in result.segments],
        series=summary,
    )


def _select_overlay(
    request: AnalysisRequest,
    normalized: NormalizedSeries,
    use_median: bool,
    settings: Settings,
) -> OverlayState:
    """Resolve the overlay for a full analysis request."""
    observations = normalized.observations
    requested = request.overlay

    if requested is not None:
        lock = None
        if requested.lock is not None:
            lock = _manual_lock(requested.lock, normalized, use_median)
        elif requested.auto_lock:
            lock = auto_lock(observations, use_median, settings.outlier_config())
        return OverlayState(
            trend=(
                TrendOverlay(
                    gradient=requested.trend.gradient,
                    intercept=requested.trend.intercept,
                )
                if requested.trend is not None else None
            ),
            seasonality=(
                SeasonalityOverlay(
                    period=requested.seasonality.period,
                    grouping=requested.seasonality.grouping,
                )
                if requested.seasonality is not None else None
            ),
            lock=lock,
        )

    overlay = overlay_from_label(request.label, observations)
    if overlay.active is None and request.auto_lock:
        lock = auto_lock(observations, use_median, settings.outlier_config())
        if lock is not None:
            overlay = overlay.with_lock(lock)
    return overlay
