"""
shared/utils/security.py
JWT creation/verification, job OTPs, and payment signature checks.
"""

import hashlib
import hmac
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from config.settings import settings


# ── JWT ───────────────────────────────────────────────────────

def create_access_token(
    user_id: str,
    role: str,
    phone: Optional[str] = None,
    extra: Optional[dict] = None,
) -> tuple[str, str]:
    """
    Create a signed JWT access token.
    Returns (token, jti). The jti is what the Redis deny-list keys on.
    """
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": str(user_id),
        "role": role,
        "phone": phone,
        "jti": jti,
        "iat": now,
        "exp": expire,
        "type": "access",
        **(extra or {}),
    }

    token = jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return token, jti


def verify_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.
    Raises JWTError on invalid/expired token.
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
    )
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    return payload


# ── Job OTPs ──────────────────────────────────────────────────

def generate_otp(length: Optional[int] = None) -> str:
    """Numeric OTP without a leading zero, e.g. 1000-9999 for length 4."""
    length = length or settings.OTP_LENGTH
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


def otp_matches(expected: Optional[str], provided: Optional[str]) -> bool:
    """Exact, case-sensitive comparison in constant time."""
    if not expected or provided is None:
        return False
    return hmac.compare_digest(str(expected), str(provided))


# ── Razorpay Signature ────────────────────────────────────────

def razorpay_signature(order_id: str, payment_id: str, secret: str) -> str:
    body = f"{order_id}|{payment_id}"
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


def verify_razorpay_signature(
    order_id: str,
    payment_id: str,
    signature: str,
    secret: Optional[str] = None,
) -> bool:
    """Verify Razorpay payment signature using HMAC-SHA256."""
    expected = razorpay_signature(order_id, payment_id, secret or settings.RAZORPAY_KEY_SECRET)
    return hmac.compare_digest(expected, signature or "")
