"""XMR Engine - control limits, violation rules and overlays."""

from .analysis import (
    AnalysisResult,
    OverlayConflictError,
    OverlayState,
    SeasonalityOverlay,
    TrendOverlay,
    analyze,
    auto_lock,
    baseline_limits,
    overlay_from_label,
)
from .control_limits import (
    LockedLimitState,
    LockedLimitValidationError,
    LockSource,
    LockStatus,
    LockValidationFailure,
    QuartileVisibility,
    XMRData,
    build_manual_lock,
    calculate_limits,
    generate_xmr_data,
    is_process_in_control,
    lock_limits,
    quartile_visibility,
    validate_locked_limits,
)
from .outliers import (
    OutlierConfig,
    OutlierReport,
    calculate_limits_with_outlier_removal,
    remove_outliers,
    should_auto_lock,
)
from .seasonality import (
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
from .segmentation import (
    Divider,
    DividerSet,
    SegmentStats,
    add_divider,
    calculate_segment_stats,
    create_boundary_dividers,
    detect_violations_with_segments,
    remove_divider,
    update_divider_position,
)
from .trend import (
    PointLimits,
    RegressionStats,
    TrendLimits,
    build_trend_limits,
    calculate_regression_stats,
    regress,
)
from .violation_rules import (
    ViolationRuleLibrary,
    ViolationSet,
    ViolationType,
    detect_violations,
)

__all__ = [
    # Analysis
    "analyze",
    "AnalysisResult",
    "OverlayState",
    "OverlayConflictError",
    "TrendOverlay",
    "SeasonalityOverlay",
    "auto_lock",
    "baseline_limits",
    "overlay_from_label",
    # Control limits
    "calculate_limits",
    "generate_xmr_data",
    "is_process_in_control",
    "XMRData",
    # Locked limits
    "LockedLimitState",
    "LockedLimitValidationError",
    "LockSource",
    "LockStatus",
    "LockValidationFailure",
    "QuartileVisibility",
    "build_manual_lock",
    "lock_limits",
    "quartile_visibility",
    "validate_locked_limits",
    # Violation rules
    "ViolationRuleLibrary",
    "ViolationSet",
    "ViolationType",
    "detect_violations",
    # Outliers
    "OutlierConfig",
    "OutlierReport",
    "remove_outliers",
    "calculate_limits_with_outlier_removal",
    "should_auto_lock",
    # Trend
    "PointLimits",
    "RegressionStats",
    "TrendLimits",
    "regress",
    "calculate_regression_stats",
    "build_trend_limits",
    # Seasonality
    "Granularity",
    "SeasonalFactors",
    "SeasonalityGrouping",
    "SeasonalityPeriod",
    "compute_factors",
    "deseasonalize",
    "reseasonalize",
    "determine_granularity",
    "period_coverage",
    "period_disable_map",
    # Segmentation
    "Divider",
    "DividerSet",
    "SegmentStats",
    "create_boundary_dividers",
    "add_divider",
    "remove_divider",
    "update_divider_position",
    "calculate_segment_stats",
    "detect_violations_with_segments",
]
