"""Age-bracketed sleep norms.

Each bracket covers ``min_months <= age < max_months``; ages past the last
bracket use the last one.
"""

from dataclasses import dataclass
from typing import Sequence, TypeVar


@dataclass(frozen=True)
class WakeWindowRange:
    """Wake window range in minutes for an age bracket."""

    min_months: int
    max_months: int
    min_minutes: int
    max_minutes: int


@dataclass(frozen=True)
class NapCountRange:
    """Age-appropriate number of naps per day."""

    min_months: int
    max_months: int
    naps: int  # typical count
    range: tuple[int, int]


@dataclass(frozen=True)
class SleepNeed:
    """Total sleep need in hours per 24h."""

    min_months: int
    max_months: int
    total_hours: float
    range: tuple[float, float]


WAKE_WINDOWS: tuple[WakeWindowRange, ...] = (
    WakeWindowRange(0, 3, 60, 90),
    WakeWindowRange(3, 4, 75, 120),
    WakeWindowRange(4, 6, 105, 150),
    WakeWindowRange(6, 8, 120, 180),
    WakeWindowRange(8, 10, 150, 210),
    WakeWindowRange(10, 12, 180, 240),
    WakeWindowRange(12, 18, 210, 300),
    WakeWindowRange(18, 24, 300, 360),
)

NAP_COUNTS: tuple[NapCountRange, ...] = (
    NapCountRange(0, 3, 4, (3, 5)),
    NapCountRange(3, 6, 3, (3, 4)),
    NapCountRange(6, 9, 2, (2, 3)),
    NapCountRange(9, 12, 2, (1, 2)),
    NapCountRange(12, 18, 1, (1, 2)),
    NapCountRange(18, 24, 1, (1, 1)),
)

SLEEP_NEEDS: tuple[SleepNeed, ...] = (
    SleepNeed(0, 3, 16, (14, 17)),
    SleepNeed(3, 6, 15, (13, 16)),
    SleepNeed(6, 9, 14, (12, 15)),
    SleepNeed(9, 12, 14, (12, 15)),
    SleepNeed(12, 18, 13.5, (12, 14)),
    SleepNeed(18, 24, 13, (11, 14)),
)

# Gaps outside this range are interruptions or data-entry mistakes.
MIN_WAKE_GAP_MINUTES = 10
MAX_WAKE_GAP_MINUTES = 480

# Bedtime is kept inside this local wall-clock band.
EARLIEST_BEDTIME = (18, 0)
LATEST_BEDTIME = (20, 30)
DEFAULT_BEDTIME = (19, 0)

LAST_WAKE_WINDOW_MULTIPLIER = 1.15

T = TypeVar("T", WakeWindowRange, NapCountRange, SleepNeed)


def find_by_age(ranges: Sequence[T], age_months: int) -> T:
    """Find the bracket containing ``age_months``."""
    for r in ranges:
        if r.min_months <= age_months < r.max_months:
            return r
    return ranges[-1]
