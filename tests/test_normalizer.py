"""Tests for identifier normalization helpers."""

import pytest

from fiddo_core.services.normalizer import (
    canonicalize_email,
    is_valid_email,
    is_valid_phone,
    normalize_email,
    normalize_phone,
    normalize_vat,
)


def test_normalize_email_trims_and_lowercases() -> None:
    assert normalize_email("  Alice.Smith@Example.COM ") == "alice.smith@example.com"


@pytest.mark.parametrize("raw", [None, "", "   ", "not-an-email", "a@b", "two words@example.com"])
def test_normalize_email_rejects_garbage(raw) -> None:
    assert normalize_email(raw) is None


def test_canonical_email_strips_plus_tag_on_any_domain() -> None:
    assert canonicalize_email("Bob+Coffee@Example.com") == "bob@example.com"
    assert canonicalize_email("bob@example.com") == "bob@example.com"


def test_canonical_email_folds_dotless_providers() -> None:
    domains = ["gmail.com", "googlemail.com"]

    assert canonicalize_email("J.Doe+promo@gmail.com", dotless_domains=domains) == "jdoe@gmail.com"
    assert canonicalize_email("j.doe@googlemail.com", dotless_domains=domains) == "jdoe@gmail.com"
    assert canonicalize_email("j.doe@example.org", dotless_domains=domains) == "j.doe@example.org"


def test_canonical_email_keeps_address_when_local_part_would_vanish() -> None:
    assert canonicalize_email("+tag@example.com") == "+tag@example.com"


def test_normalize_phone_applies_default_country_code() -> None:
    assert normalize_phone("0470 12 34 56", "+32") == "+32470123456"
    assert normalize_phone("470/12.34.56", "+32") == "+32470123456"


def test_normalize_phone_keeps_international_prefixes() -> None:
    assert normalize_phone("+33 6 12 34 56 78", "+32") == "+33612345678"
    assert normalize_phone("0033 6 12 34 56 78", "+32") == "+33612345678"


def test_normalize_phone_rejects_short_numbers() -> None:
    assert normalize_phone("12345", "+32") is None
    assert normalize_phone(None) is None


def test_validators() -> None:
    assert is_valid_email("someone@example.com")
    assert not is_valid_email("someone@")
    assert is_valid_phone("+32470123456")
    assert not is_valid_phone("12")


def test_normalize_vat() -> None:
    assert normalize_vat("be 0123.456.789") == "BE0123456789"
    assert normalize_vat("FR123") is None
    assert normalize_vat(None) is None
