"""Scanning of `#{...}` interpolation in Haml text."""

from __future__ import annotations

import re
from collections.abc import Iterator

_INTERPOLATION_START_RE = re.compile(r"(\\*)#([{@$])")


def iter_interpolations(text: str) -> Iterator[tuple[int, str]]:
    """Yield (start index, code) for each interpolated expression in text.

    The index points at the first non-blank character of the code. An
    interpolation preceded by an odd number of backslashes is escaped and
    skipped. `#@var` / `#$var` shorthands are not reported.
    """

    position = 0
    while True:
        match = _INTERPOLATION_START_RE.search(text, position)
        if match is None:
            return
        position = match.end()
        if len(match.group(1)) % 2 == 1 or match.group(2) != "{":
            continue

        closing = _closing_brace_index(text, position)
        if closing is None:
            return

        code = text[position:closing]
        stripped = code.strip()
        if stripped:
            yield position + len(code) - len(code.lstrip()), stripped
        position = closing + 1


def has_interpolation(text: str) -> bool:
    return next(iter_interpolations(text), None) is not None


def _closing_brace_index(text: str, start: int) -> int | None:
    depth = 1
    for index in range(start, len(text)):
        char = text[index]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return None
