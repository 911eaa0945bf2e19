"""
shared/utils/availability.py
Evaluates a partner's declared weekly schedule against a requested slot.

Windows look like:
    {"day": "monday", "start_time": "09:00", "end_time": "18:00", "is_available": true}
Times may be 24h ("09:00", "09:00:00") or 12h ("9:00 AM").
"""

import logging
from datetime import date, datetime, time
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from config.settings import settings

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def parse_clock(value) -> Optional[time]:
    """Parse "HH:MM", "HH:MM:SS" or "h:mm AM/PM". Returns None when unparseable."""
    if isinstance(value, time):
        return value
    if not value or not isinstance(value, str):
        return None
    text = value.strip().upper()
    for fmt in ("%H:%M", "%H:%M:%S", "%I:%M %p", "%I:%M%p", "%I %p"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    return None


def local_now() -> datetime:
    return datetime.now(ZoneInfo(settings.TIMEZONE))


def _windows_for_day(availability: Iterable[dict], day_name: str) -> list[dict]:
    return [
        window
        for window in (availability or [])
        if str(window.get("day", "")).strip().lower() == day_name
        and window.get("is_available", True)
    ]


def _is_blacked_out(blackout_dates: Optional[Iterable], requested: date) -> bool:
    iso = requested.isoformat()
    return any(str(d) == iso for d in (blackout_dates or []))


def _window_covers(window: dict, moment: time) -> bool:
    start = parse_clock(window.get("start_time"))
    end = parse_clock(window.get("end_time"))
    if start is None or end is None:
        logger.warning(f"Skipping availability window with unparseable times: {window}")
        return False
    return start <= moment <= end


def is_partner_available(
    availability: Optional[Iterable[dict]],
    requested_date: Optional[date] = None,
    requested_time=None,
    *,
    blackout_dates: Optional[Iterable] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Return True if the schedule covers the requested slot.

    - No date: ASAP request, checked against the current moment and today's window.
    - Date without time: any available window on that weekday is enough.
    - Date and time: the time must fall inside a window for that weekday (inclusive).
    A day with no declared window is simply unavailable.
    """
    if requested_date is None:
        moment = now or local_now()
        requested_date = moment.date()
        requested_clock = moment.time().replace(second=0, microsecond=0)
    else:
        requested_clock = parse_clock(requested_time) if requested_time else None
        if requested_time and requested_clock is None:
            return False

    if _is_blacked_out(blackout_dates, requested_date):
        return False

    windows = _windows_for_day(availability, WEEKDAYS[requested_date.weekday()])
    if not windows:
        return False
    if requested_clock is None:
        return True
    return any(_window_covers(window, requested_clock) for window in windows)
