"""Pure normalization helpers for customer identifiers.

``normalize_email`` produces the primary lookup key (trimmed, lowercased).
``canonicalize_email`` is a looser form used only to detect duplicates: the
``+tag`` suffix is dropped on every domain, and providers that ignore dots in
the local part (configured via ``dotless_email_domains``) have dots removed and
their aliases folded onto the first configured domain.
"""

from __future__ import annotations

import re
from typing import Iterable

from fiddo_core.core.settings import settings

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_E164_PATTERN = re.compile(r"^\+\d{10,15}$")
_VAT_PATTERN = re.compile(r"^BE0\d{9}$")
_NON_DIGITS = re.compile(r"\D")
_VAT_SEPARATORS = re.compile(r"[\s.]")

_MIN_PHONE_DIGITS = 8


def normalize_email(raw: str | None) -> str | None:
    if not raw or not isinstance(raw, str):
        return None
    trimmed = raw.strip().lower()
    if not trimmed or not _EMAIL_PATTERN.match(trimmed):
        return None
    return trimmed


def canonicalize_email(raw: str | None, *, dotless_domains: Iterable[str] | None = None) -> str | None:
    normalized = normalize_email(raw)
    if normalized is None:
        return None

    local, _, domain = normalized.rpartition("@")
    local = local.split("+", 1)[0]
    if not local:
        return normalized

    domains = list(dotless_domains if dotless_domains is not None else settings.dotless_email_domains)
    if domain in domains:
        local = local.replace(".", "")
        domain = domains[0]
        if not local:
            return normalized
    return f"{local}@{domain}"


def normalize_phone(raw: str | None, default_country_code: str | None = None) -> str | None:
    """Return an E.164 form of ``raw`` or ``None`` when too short to be a number."""

    if not raw or not isinstance(raw, str):
        return None

    country_code = default_country_code or settings.default_phone_country_code
    trimmed = raw.strip()
    has_plus = trimmed.startswith("+")
    digits = _NON_DIGITS.sub("", trimmed)
    if len(digits) < _MIN_PHONE_DIGITS:
        return None

    if has_plus:
        return f"+{digits}"
    if digits.startswith("00"):
        return f"+{digits[2:]}"
    if digits.startswith("0"):
        return f"{country_code}{digits[1:]}"
    return f"{country_code}{digits}"


def normalize_vat(raw: str | None) -> str | None:
    if not raw or not isinstance(raw, str):
        return None
    cleaned = _VAT_SEPARATORS.sub("", raw).upper()
    if not _VAT_PATTERN.match(cleaned):
        return None
    return cleaned


def is_valid_email(raw: str | None) -> bool:
    if not raw or not isinstance(raw, str):
        return False
    return bool(_EMAIL_PATTERN.match(raw.strip()))


def is_valid_phone(raw: str | None) -> bool:
    normalized = normalize_phone(raw)
    return bool(normalized and _E164_PATTERN.match(normalized))


__all__ = [
    "canonicalize_email",
    "is_valid_email",
    "is_valid_phone",
    "normalize_email",
    "normalize_phone",
    "normalize_vat",
]
