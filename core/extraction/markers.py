"""Marker lines delimiting fragments inside the synthetic Ruby source."""

from __future__ import annotations

MARKER_PREFIX = "haml_lint_marker_"


def marker_text(marker_line: int) -> str:
    return f"{MARKER_PREFIX}{marker_line}"


def find_marker_index(source_lines: list[str], marker_line: int) -> int | None:
    """Find the 0-based index of a marker in source_lines.

    The marker id is the line number it was emitted at, so the remembered
    position is checked first. If lines were added or removed earlier in the
    buffer, fall back to scanning. Indentation around the marker is ignored.
    """

    marker = marker_text(marker_line)
    expected_index = marker_line - 1
    if 0 <= expected_index < len(source_lines) and source_lines[expected_index].strip() == marker:
        return expected_index

    for index, line in enumerate(source_lines):
        if line.strip() == marker:
            return index
    return None
