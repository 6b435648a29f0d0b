"""Unit tests for shared config and metadata parsing helpers."""

import pytest

from bookglot.parsing import (
    normalize_language_code,
    normalize_optional_string,
    parse_positive_number,
)


def test_normalize_optional_string_handles_blank_values() -> None:
    """Normalization should return `None` for `None` and blank textual values."""

    assert normalize_optional_string(None) is None
    assert normalize_optional_string("") is None
    assert normalize_optional_string("   ") is None


def test_normalize_optional_string_strips_non_blank_values() -> None:
    """Normalization should return stripped content for non-empty values."""

    assert normalize_optional_string("  value  ") == "value"
    assert normalize_optional_string(42) == "42"


@pytest.mark.parametrize(
    ("value", "expected"),
    [("cs", "cs"), (" EN ", "en"), ("pt_BR", "pt-br"), ("zh-Hant-TW", "zh-hant-tw")],
)
def test_normalize_language_code_lowercases_and_unifies_separators(
    value: str, expected: str
) -> None:
    """Language codes are normalized to one cache-safe spelling."""

    assert normalize_language_code(value) == expected


@pytest.mark.parametrize("value", ["", "  ", "e", "../etc", "en us", "english!"])
def test_normalize_language_code_rejects_unsafe_values(value: str) -> None:
    """Codes that cannot serve as a directory name are rejected."""

    with pytest.raises(ValueError, match="target_language"):
        normalize_language_code(value)


def test_parse_positive_number_accepts_strings_and_numbers() -> None:
    """Config values may arrive as YAML numbers or environment strings."""

    assert parse_positive_number(" 12 ", "concurrency", integer=True) == 12
    assert parse_positive_number(0.25, "retry_backoff_base_seconds", integer=False) == 0.25
    assert parse_positive_number("0", "max_retries", integer=True, allow_zero=True) == 0


@pytest.mark.parametrize("value", [True, "abc", "-1", 0, "1.5"])
def test_parse_positive_number_rejects_invalid_integers(value: object) -> None:
    """Booleans, non-numeric text, and values below one are rejected."""

    with pytest.raises(ValueError, match=r"`concurrency` must be a positive integer\."):
        parse_positive_number(value, "concurrency", integer=True)


def test_parse_positive_number_reports_non_negative_bound() -> None:
    """Fields allowing zero report a non-negative requirement."""

    with pytest.raises(ValueError, match=r"`max_retries` must be a non-negative integer\."):
        parse_positive_number(-2, "max_retries", integer=True, allow_zero=True)
