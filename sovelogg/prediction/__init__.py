"""Age-bucketed schedule predictions and sleep statistics."""

from .constants import NAP_COUNTS, SLEEP_NEEDS, WAKE_WINDOWS, find_by_age
from .schedule import (
    NapTransition,
    PredictedNap,
    calculate_age_months,
    detect_nap_transition,
    expected_nap_count,
    get_wake_window,
    nap_duration_minutes,
    predict_day_naps,
    predict_next_nap,
    recommend_bedtime,
)
from .stats import (
    DayStats,
    WeekStats,
    get_average_wake_window,
    get_today_stats,
    get_week_stats,
    group_by_day,
    sleep_duration_minutes,
)

__all__ = [
    "NAP_COUNTS",
    "SLEEP_NEEDS",
    "WAKE_WINDOWS",
    "DayStats",
    "NapTransition",
    "PredictedNap",
    "WeekStats",
    "calculate_age_months",
    "detect_nap_transition",
    "expected_nap_count",
    "find_by_age",
    "get_average_wake_window",
    "get_today_stats",
    "get_wake_window",
    "get_week_stats",
    "group_by_day",
    "nap_duration_minutes",
    "predict_day_naps",
    "predict_next_nap",
    "recommend_bedtime",
    "sleep_duration_minutes",
]
