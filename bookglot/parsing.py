"""Shared parsing helpers for config, settings, and cache metadata values."""

from __future__ import annotations

import re


_LANGUAGE_CODE_PATTERN = re.compile(r"^[a-z]{2,3}(-[a-z0-9]{2,8})*$")


def normalize_optional_string(value: object) -> str | None:
    """Normalize an optional value to a stripped non-empty string.

    Args:
        value: Arbitrary input value.

    Returns:
        Stripped string value, or `None` when the value is empty after trimming.
    """

    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_positive_number(
    value: object, field_name: str, *, integer: bool, allow_zero: bool = False
) -> int | float:
    """Parse a positive int/float from config-style input.

    Raises:
        ValueError: If the value is a boolean, not numeric, or below the bound.
    """

    qualifier = "non-negative" if allow_zero else "positive"
    message = f"`{field_name}` must be a {qualifier} {'integer' if integer else 'number'}."
    if isinstance(value, bool):
        raise ValueError(message)
    try:
        parsed: int | float = int(str(value).strip()) if integer else float(str(value).strip())
    except ValueError as exc:
        raise ValueError(message) from exc
    if parsed < 0 or (parsed == 0 and not allow_zero):
        raise ValueError(message)
    return parsed


def normalize_language_code(value: object, field_name: str = "target_language") -> str:
    """Normalize a BCP-47-like language code (`cs`, `pt-BR`) to lowercase form.

    The lowercase code doubles as a cache directory name, so only ASCII letters,
    digits and hyphens are accepted.
    """

    normalized = normalize_optional_string(value)
    if normalized is None:
        raise ValueError(f"`{field_name}` must be a non-empty language code.")
    code = normalized.replace("_", "-").lower()
    if not _LANGUAGE_CODE_PATTERN.match(code):
        raise ValueError(f"`{field_name}` value `{normalized}` is not a valid language code.")
    return code
