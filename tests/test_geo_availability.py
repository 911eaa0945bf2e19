"""
tests/test_geo_availability.py
Unit tests for geofencing and partner availability windows.
"""

import random
from datetime import date, datetime
from types import SimpleNamespace

from shared.utils.availability import is_partner_available, parse_clock
from shared.utils.geofence import find_containing_regions, point_in_polygon

SQUARE = [{"lat": 0, "lng": 0}, {"lat": 0, "lng": 10}, {"lat": 10, "lng": 10}, {"lat": 10, "lng": 0}]
# Concave "L": the top-right quadrant is cut away
L_SHAPE = [(0, 0), (0, 10), (5, 10), (5, 5), (10, 5), (10, 0)]


def _crossings(lat, lng, vertices):
    """Independent crossing-number count: half-open rule on latitude, ray towards +lng."""
    hits = 0
    n = len(vertices)
    for k in range(n):
        a_lat, a_lng = vertices[k]
        b_lat, b_lng = vertices[(k + 1) % n]
        if (a_lat <= lat < b_lat) or (b_lat <= lat < a_lat):
            t = (lat - a_lat) / (b_lat - a_lat)
            if lng < a_lng + t * (b_lng - a_lng):
                hits += 1
    return hits % 2 == 1


# ── Geofence ──────────────────────────────────────────────────

def test_point_inside_square():
    assert point_in_polygon(5, 5, SQUARE)


def test_point_outside_square():
    assert not point_in_polygon(15, 5, SQUARE)
    assert not point_in_polygon(5, -0.1, SQUARE)


def test_concave_polygon_notch_is_outside():
    assert point_in_polygon(2, 2, L_SHAPE)
    assert point_in_polygon(7, 2, L_SHAPE)
    assert not point_in_polygon(7, 7, L_SHAPE)


def test_degenerate_inputs_are_outside():
    assert not point_in_polygon(None, 5, SQUARE)
    assert not point_in_polygon(5, None, SQUARE)
    assert not point_in_polygon(5, 5, [])
    assert not point_in_polygon(5, 5, [(0, 0), (1, 1)])
    assert not point_in_polygon(5, 5, None)


def test_horizontal_edges_do_not_divide_by_zero():
    # Every point on the bottom edge's latitude exercises the horizontal-edge skip
    for lng in range(-2, 13):
        point_in_polygon(0, lng, SQUARE)
        point_in_polygon(10, lng, SQUARE)


def test_agrees_with_reference_crossing_number():
    rng = random.Random(42)
    for polygon in (L_SHAPE, [(v["lat"], v["lng"]) for v in SQUARE]):
        for _ in range(500):
            lat = rng.uniform(-2, 12)
            lng = rng.uniform(-2, 12)
            assert point_in_polygon(lat, lng, polygon) == _crossings(lat, lng, polygon)


def test_agrees_with_reference_on_grid_including_boundaries():
    for lat in range(-1, 12):
        for lng in range(-1, 12):
            expected = _crossings(lat, lng, L_SHAPE)
            assert point_in_polygon(lat, lng, L_SHAPE) == expected, (lat, lng)


def test_find_containing_regions_skips_inactive():
    active = SimpleNamespace(is_active=True, polygon=SQUARE)
    inactive = SimpleNamespace(is_active=False, polygon=SQUARE)
    elsewhere = SimpleNamespace(is_active=True, polygon=[(20, 20), (20, 30), (30, 30)])
    assert find_containing_regions(5, 5, [active, inactive, elsewhere]) == [active]


# ── Availability ──────────────────────────────────────────────

MONDAY = date(2026, 10, 19)
WEEKDAY_WINDOWS = [
    {"day": "Monday", "start_time": "09:00", "end_time": "18:00"},
    {"day": "tuesday", "start_time": "9:00 AM", "end_time": "1:00 PM", "is_available": True},
    {"day": "wednesday", "start_time": "09:00", "end_time": "18:00", "is_available": False},
]


def test_parse_clock_formats():
    assert parse_clock("09:30").strftime("%H:%M") == "09:30"
    assert parse_clock("09:30:00").strftime("%H:%M") == "09:30"
    assert parse_clock("2:15 PM").strftime("%H:%M") == "14:15"
    assert parse_clock("2:15pm").strftime("%H:%M") == "14:15"
    assert parse_clock("nonsense") is None
    assert parse_clock(None) is None


def test_time_inside_window():
    assert is_partner_available(WEEKDAY_WINDOWS, MONDAY, "10:00")


def test_window_bounds_are_inclusive():
    assert is_partner_available(WEEKDAY_WINDOWS, MONDAY, "09:00")
    assert is_partner_available(WEEKDAY_WINDOWS, MONDAY, "18:00")
    assert not is_partner_available(WEEKDAY_WINDOWS, MONDAY, "18:01")


def test_twelve_hour_windows():
    tuesday = date(2026, 10, 20)
    assert is_partner_available(WEEKDAY_WINDOWS, tuesday, "12:30")
    assert not is_partner_available(WEEKDAY_WINDOWS, tuesday, "14:00")


def test_day_marked_unavailable():
    assert not is_partner_available(WEEKDAY_WINDOWS, date(2026, 10, 21), "10:00")


def test_day_without_window():
    assert not is_partner_available(WEEKDAY_WINDOWS, date(2026, 10, 25), "10:00")


def test_date_without_time_matches_any_window():
    assert is_partner_available(WEEKDAY_WINDOWS, MONDAY)


def test_unparseable_requested_time():
    assert not is_partner_available(WEEKDAY_WINDOWS, MONDAY, "quarter past")


def test_blackout_date():
    assert not is_partner_available(WEEKDAY_WINDOWS, MONDAY, "10:00", blackout_dates=["2026-10-19"])


def test_asap_uses_current_moment():
    assert is_partner_available(WEEKDAY_WINDOWS, now=datetime(2026, 10, 19, 11, 0))
    assert not is_partner_available(WEEKDAY_WINDOWS, now=datetime(2026, 10, 19, 20, 0))


def test_bad_window_is_skipped():
    windows = [
        {"day": "monday", "start_time": "later", "end_time": "18:00"},
        {"day": "monday", "start_time": "08:00", "end_time": "12:00"},
    ]
    assert is_partner_available(windows, MONDAY, "10:00")
    assert not is_partner_available(windows[:1], MONDAY, "10:00")
