"""Line and indentation helpers shared by the parser and the correction engine."""

from __future__ import annotations

import re

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")
_LEADING_SPACES_RE = re.compile(r"^ *")


def split_lines(text: str) -> list[str]:
    """Split on any line break, keeping a trailing empty entry like the source has."""

    return _LINE_BREAK_RE.split(text)


def leading_spaces(line: str) -> int:
    match = _LEADING_SPACES_RE.match(line)
    return len(match.group(0)) if match else 0


def first_non_space(line: str) -> int | None:
    """Index of the first non-whitespace character, or None for blank lines."""

    for index, char in enumerate(line):
        if not char.isspace():
            return index
    return None


def is_blank(line: str) -> bool:
    return not line.strip()


def indent(line: str, delta: int) -> str:
    """Shift a line right by delta spaces, or left by removing up to -delta spaces."""

    if delta > 0:
        return " " * delta + line
    if delta < 0:
        return re.sub(rf"^ {{1,{-delta}}}", "", line)
    return line


def ends_with_comma(line: str) -> bool:
    return line.rstrip().endswith(",")
