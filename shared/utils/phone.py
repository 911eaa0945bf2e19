"""
shared/utils/phone.py
Phone normalization for consistent lookups. Primarily handles Indian numbers (+91).
"""

import re
from typing import Iterable, Optional

_NON_DIGITS = re.compile(r"[^\d+]")


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """Return the E.164 form where it can be inferred, otherwise the cleaned digits."""
    if not phone:
        return phone
    normalized = _NON_DIGITS.sub("", phone)

    if normalized.startswith("+91"):
        return normalized
    if normalized.startswith("91") and len(normalized) == 12:
        return "+" + normalized
    if normalized.startswith("0") and len(normalized) == 11:
        return "+91" + normalized[1:]
    if len(normalized) == 10:
        return "+91" + normalized
    if len(normalized) > 10 and not normalized.startswith("+"):
        return "+" + normalized
    return normalized


def phone_variants(phone: Optional[str]) -> set[str]:
    """E.164, bare 10-digit and 0-prefixed spellings of the same number."""
    normalized = normalize_phone(phone)
    if not normalized:
        return set()
    variants = {normalized}
    if normalized.startswith("+91") and len(normalized) == 13:
        local = normalized[3:]
        variants.update({local, "0" + local, "91" + local})
    return variants


def phone_in_list(phone: Optional[str], allowed: Iterable[str]) -> bool:
    """True if any spelling of `phone` matches any spelling of an allow-list entry."""
    wanted = phone_variants(phone)
    if not wanted:
        return False
    return any(wanted & phone_variants(entry) for entry in (allowed or []))
