"""
tests/test_utils_misc.py
Phone normalization, hold-aware work time, OTPs, JWTs and payment signatures.
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import JWTError, jwt

from shared.utils.phone import normalize_phone, phone_in_list, phone_variants
from shared.utils.security import (
    create_access_token,
    generate_otp,
    otp_matches,
    razorpay_signature,
    verify_access_token,
    verify_razorpay_signature,
)
from shared.utils.worktime import active_work_seconds, format_duration, total_hold_seconds


# ── Phone ─────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "raw, expected",
    [
        ("9876543210", "+919876543210"),
        ("09876543210", "+919876543210"),
        ("919876543210", "+919876543210"),
        ("+91 98765-43210", "+919876543210"),
        ("+14155550100", "+14155550100"),
        ("", ""),
        (None, None),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_phone_variants():
    assert phone_variants("+919876543210") == {
        "+919876543210",
        "9876543210",
        "09876543210",
        "919876543210",
    }
    assert phone_variants(None) == set()


def test_phone_in_list():
    assert phone_in_list("9876543210", ["+91 98765 43210"])
    assert not phone_in_list("9876543210", ["9876543211"])
    assert not phone_in_list(None, ["9876543210"])
    assert not phone_in_list("9876543210", None)


# ── Work time ─────────────────────────────────────────────────

START = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


def test_holds_are_subtracted_from_work_time():
    history = [
        {"hold_started_at": (START + timedelta(minutes=10)).isoformat(),
         "hold_ended_at": (START + timedelta(minutes=25)).isoformat()},
        {"hold_started_at": START + timedelta(minutes=40),
         "hold_ended_at": START + timedelta(minutes=45)},
    ]
    assert total_hold_seconds(history) == 20 * 60
    assert active_work_seconds(START, START + timedelta(hours=1), history) == 40 * 60


def test_open_hold_not_counted():
    history = [{"hold_started_at": START.isoformat(), "hold_ended_at": None}]
    assert total_hold_seconds(history) == 0


def test_naive_timestamps_treated_as_utc():
    naive_start = datetime(2026, 10, 19, 9, 0)
    assert active_work_seconds(naive_start, START + timedelta(minutes=30), []) == 1800


def test_work_time_missing_bounds():
    assert active_work_seconds(None, START, []) == 0
    assert active_work_seconds(START, None, []) == 0


def test_format_duration():
    assert format_duration(45 * 60) == "45m"
    assert format_duration(2 * 3600 + 5 * 60) == "2h 5m"
    assert format_duration(-5) == "0m"


# ── OTPs ──────────────────────────────────────────────────────

def test_otp_has_no_leading_zero():
    for _ in range(200):
        otp = generate_otp(4)
        assert len(otp) == 4
        assert 1000 <= int(otp) <= 9999


def test_otp_matches_is_exact():
    assert otp_matches("1234", "1234")
    assert not otp_matches("1234", "12345")
    assert not otp_matches("1234", None)
    assert not otp_matches(None, "1234")


# ── Tokens and signatures ─────────────────────────────────────

def test_access_token_round_trip():
    token, jti = create_access_token("user-1", "USER", "+919876543210")
    payload = verify_access_token(token)
    assert payload["sub"] == "user-1"
    assert payload["role"] == "USER"
    assert payload["jti"] == jti


def test_foreign_token_rejected():
    forged = jwt.encode({"sub": "user-1", "role": "ADMIN", "type": "access"}, "other-key", algorithm="HS256")
    with pytest.raises(JWTError):
        verify_access_token(forged)


def test_refresh_type_rejected():
    token, _ = create_access_token("user-1", "USER", extra={"type": "refresh"})
    with pytest.raises(JWTError):
        verify_access_token(token)


def test_razorpay_signature():
    signature = razorpay_signature("order_1", "pay_1", "secret")
    assert verify_razorpay_signature("order_1", "pay_1", signature, "secret")
    assert not verify_razorpay_signature("order_1", "pay_2", signature, "secret")
    assert not verify_razorpay_signature("order_1", "pay_1", None, "secret")
