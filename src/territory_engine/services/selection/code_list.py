"""Resolution of typed or pasted postal-code lists."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from ..territories.granularity import convert_code, granularity_level
from .context import SelectionContext

_SEPARATORS = re.compile(r"[,;\s]+")
_COUNTRY_PREFIX = re.compile(r"^D-?", re.IGNORECASE)
_VALID_CODE = re.compile(r"^\d{1,5}$")


@dataclass(slots=True)
class CodeListMatch:
    """Outcome of resolving a code list against a boundary dataset."""

    codes: list[str] = field(default_factory=list)
    matches: dict[str, list[str]] = field(default_factory=dict)
    invalid: list[str] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)


def normalize_token(token: str) -> str:
    """Strip whitespace and a German country prefix, e.g. "D-80331" -> "80331"."""

    return _COUNTRY_PREFIX.sub("", token.strip()).replace(" ", "").upper()


def parse_code_input(text: str) -> list[str]:
    """Split free text into raw code tokens."""

    if not text or not text.strip():
        return []
    return [token for token in _SEPARATORS.split(text.strip()) if token]


def code_list_select(ctx: SelectionContext, text: str) -> CodeListMatch:
    """Resolve a code list into dataset codes.

    Exact codes match themselves. Shorter codes expand to every dataset code
    with that prefix. Longer codes are truncated to the dataset granularity.
    """

    result = CodeListMatch()
    available = ctx.index.codes()
    available_set = set(available)
    level = granularity_level(ctx.granularity)

    for token in parse_code_input(text):
        normalized = normalize_token(token)
        if not _VALID_CODE.match(normalized):
            result.invalid.append(token)
            continue
        if normalized in result.matches:
            continue

        if normalized in available_set:
            matched = [normalized]
        elif len(normalized) < level:
            matched = [code for code in available if code.startswith(normalized)]
        else:
            truncated = convert_code(normalized, ctx.granularity)
            matched = [truncated] if truncated in available_set else []

        if matched:
            result.matches[normalized] = matched
        else:
            result.unmatched.append(token)

    result.codes = list(dict.fromkeys(code for matched in result.matches.values() for code in matched))
    return result
