"""Adaptive scheduling policy.

Pure functions: priority tier from activity, effective interval with error
backoff, activity smoothing and queue priority. No I/O.
"""

from datetime import datetime, timedelta

from mailsync.domain.enums import JobPriority, SyncJobReason

BASE_INTERVALS: dict[int, timedelta] = {
    1: timedelta(minutes=3),
    2: timedelta(minutes=15),
    3: timedelta(minutes=30),
    4: timedelta(hours=2),
    5: timedelta(hours=6),
}

MIN_PRIORITY = 1
MAX_PRIORITY = 5
DEFAULT_PRIORITY = 3

# Backoff ceiling: never poll less often than the slowest tier.
MAX_INTERVAL = BASE_INTERVALS[MAX_PRIORITY]

# (emails/hour lower bound, tier), checked top-down.
ACTIVITY_THRESHOLDS: tuple[tuple[float, int], ...] = (
    (4.0, 1),
    (2.0, 2),
    (0.5, 3),
    (0.1, 4),
)

# Shortest window used when turning messages-per-pass into a rate.
MIN_ELAPSED_HOURS = 1 / 60


def clamp_priority(priority: int | None) -> int:
    if priority is None:
        return DEFAULT_PRIORITY
    return max(MIN_PRIORITY, min(MAX_PRIORITY, priority))


def priority_for_activity(avg_activity_rate: float) -> int:
    """Map smoothed emails/hour to a tier (1 = busiest).

    Monotonic: a higher rate never yields a higher tier number.
    """
    for threshold, tier in ACTIVITY_THRESHOLDS:
        if avg_activity_rate >= threshold:
            return tier
    return MAX_PRIORITY


def base_interval(priority: int | None) -> timedelta:
    return BASE_INTERVALS[clamp_priority(priority)]


def effective_interval(
    priority: int | None,
    error_streak: int,
    backoff_factor: float = 2.0,
) -> timedelta:
    """Base interval of the tier, multiplied by factor**streak, capped at MAX_INTERVAL.

    Example: tier 2 with streak 3 and factor 2 gives min(15m * 8, 6h) = 120m.
    """
    interval = base_interval(priority)
    if error_streak <= 0:
        return interval
    # Cap the exponent so very long streaks cannot overflow the float math.
    exponent = min(error_streak, 64)
    seconds = interval.total_seconds() * (backoff_factor**exponent)
    return min(timedelta(seconds=seconds), MAX_INTERVAL)


def observed_rate(
    message_count: int,
    last_synced_at: datetime | None,
    now: datetime,
    lookback: timedelta,
) -> float:
    """Messages per hour for one pass.

    The window is the time since the previous successful pass, or the
    lookback window for a first sync.
    """
    if last_synced_at is None:
        hours = lookback.total_seconds() / 3600
    else:
        hours = (now - last_synced_at).total_seconds() / 3600
    return message_count / max(hours, MIN_ELAPSED_HOURS)


def smooth_activity_rate(current: float, observed: float, weight: float = 0.7) -> float:
    """Exponential moving average; the first observation seeds the average."""
    if current <= 0:
        return observed
    return weight * observed + (1 - weight) * current


def job_priority(reason: SyncJobReason, sync_priority: int | None) -> JobPriority:
    """Queue priority: manual/webhook first, then by tier band."""
    if reason in (SyncJobReason.MANUAL, SyncJobReason.WEBHOOK):
        return JobPriority.URGENT
    tier = clamp_priority(sync_priority)
    if tier == 1:
        return JobPriority.HIGH
    if tier <= 3:
        return JobPriority.NORMAL
    return JobPriority.LOW
