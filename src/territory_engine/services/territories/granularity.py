"""Granularity management utilities for postal code operations."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True, slots=True)
class GranularityOption:
    value: str
    label: str
    level: int


GRANULARITY_OPTIONS: tuple[GranularityOption, ...] = (
    GranularityOption("1digit", "1-digit", 1),
    GranularityOption("2digit", "2-digit", 2),
    GranularityOption("3digit", "3-digit", 3),
    GranularityOption("5digit", "5-digit", 5),
)


def granularity_level(granularity: str) -> int:
    for option in GRANULARITY_OPTIONS:
        if option.value == granularity:
            return option.level
    raise ValueError(f"Unknown granularity '{granularity}'.")


def is_change_compatible(current: str, new: str) -> bool:
    """Moving to an equal or finer granularity keeps every assignment meaningful."""

    return granularity_level(new) >= granularity_level(current)


def would_lose_data(current: str, new: str, has_codes: bool = False) -> bool:
    if not has_codes:
        return False
    return not is_change_compatible(current, new)


def convert_code(code: str, granularity: str) -> str:
    """Truncate a code to the given granularity, e.g. "80331" at 2digit is "80"."""

    if not code:
        return code
    clean = _NON_DIGITS.sub("", code)
    return clean[: granularity_level(granularity)]


def migrate_codes(codes: Iterable[str], current: str, new: str, target_codes: Iterable[str]) -> list[str]:
    """Translate a layer's codes to another granularity.

    Moving to a finer granularity expands every code to all target codes that
    start with it. Moving to a coarser one drops every code.
    """

    codes = list(codes)
    current_level = granularity_level(current)
    new_level = granularity_level(new)
    if new_level == current_level:
        return sorted(set(codes))
    if new_level < current_level:
        return []

    prefixes = set(codes)
    return sorted(
        code for code in set(target_codes) if convert_code(code, current) in prefixes
    )
