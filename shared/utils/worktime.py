"""
shared/utils/worktime.py
Active work time for a job, excluding the periods it was on hold.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

HOLD_REASONS = (
    "Waiting for parts/materials",
    "Customer unavailable",
    "Weather conditions",
    "Safety concern",
    "Scheduled break",
    "Other",
)


def _as_datetime(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def total_hold_seconds(hold_history: Optional[Iterable[dict]]) -> int:
    """Sum of completed hold periods. An open hold (no end) is not counted."""
    total = 0.0
    for entry in hold_history or []:
        started = _as_datetime(entry.get("hold_started_at"))
        ended = _as_datetime(entry.get("hold_ended_at"))
        if started and ended:
            total += (ended - started).total_seconds()
    return int(total)


def active_work_seconds(
    started_at: Optional[datetime],
    completed_at: Optional[datetime],
    hold_history: Optional[Iterable[dict]],
) -> int:
    started = _as_datetime(started_at)
    completed = _as_datetime(completed_at)
    if not started or not completed:
        return 0
    elapsed = (completed - started).total_seconds()
    return max(0, int(elapsed) - total_hold_seconds(hold_history))


def format_duration(seconds: int) -> str:
    """Human readable "2h 5m" / "45m"."""
    hours, remainder = divmod(max(0, int(seconds)), 3600)
    minutes = remainder // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
