"""Lays fragments out as one Ruby source and splices corrections back.

The synthetic source is a flat list of lines. Each fragment that can carry a
correction is surrounded by two marker lines whose ids are their own line
numbers, so a fragment can be found again after the analyzer has moved lines
around. Corrections are applied last fragment first: a transfer that changes
the number of template lines only shifts lines that belong to fragments
already handled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from core.extraction.fragments import SCRIPT_OUTPUT_PREFIX, Fragment
from core.extraction.markers import marker_text
from core.template.document import TemplateDocument
from core.utils.errors import FragmentTransferSkipped
from core.utils.events import log_event
from core.utils.text import is_blank, leading_spaces, split_lines

logger = logging.getLogger("hamlfix.extraction")


@dataclass
class SyntheticSource:
    """Ruby text sent to the analyzer plus its line mapping back to the template."""

    source: str
    source_map: dict[int, int] = field(default_factory=dict)
    fragments: list[Fragment] = field(default_factory=list)


@dataclass
class SkippedTransfer:
    haml_start_line: int
    fragment_type: str
    reason: str


class FragmentAssembler:
    def __init__(self, document: TemplateDocument, fragments: list[Fragment]) -> None:
        self.document = document
        self.script_output_prefix = SCRIPT_OUTPUT_PREFIX
        self.fragments = self._fuse(fragments, document.current_lines())
        self.skipped_transfers: list[SkippedTransfer] = []
        self._ruby_lines: list[str] = []
        self._source_map: dict[int, int] = {}
        self._locked_indexes: set[int] = set()
        self._assembled: SyntheticSource | None = None

    def synthetic_source(self) -> SyntheticSource:
        """Build the synthetic source once and return it on every later call."""

        if self._assembled is not None:
            return self._assembled

        self._ruby_lines = []
        self._source_map = {}
        for fragment in self.fragments:
            fragment.full_assemble(self)
        # Trailing empty line so the text ends with a newline
        self._ruby_lines.append("")

        self._assembled = SyntheticSource(
            source="\n".join(self._ruby_lines),
            source_map=dict(self._source_map),
            fragments=list(self.fragments),
        )
        return self._assembled

    def add_marker(self, indent_level: int) -> int:
        """Append a marker line; its id is the 1-based line number it lands on."""

        marker_line = len(self._ruby_lines) + 1
        self._ruby_lines.append("  " * indent_level + marker_text(marker_line))
        return marker_line

    def add_lines(self, lines: list[str], *, haml_start_line: int | None = None) -> None:
        for offset, line in enumerate(lines):
            self._ruby_lines.append(line)
            if haml_start_line is not None:
                self._source_map[len(self._ruby_lines)] = haml_start_line + offset

    def template_line_for(self, synthetic_line: int) -> int:
        """Map a synthetic line to a template line for diagnostics.

        Lines without an entry (markers, fused `end` lines) take the nearest
        mapped line before them.
        """

        source_map = self.synthetic_source().source_map
        for line in range(synthetic_line, 0, -1):
            if line in source_map:
                return source_map[line]
        return 1

    def template_lines_with_corrections(self, corrected_source: str) -> list[str]:
        """Return the template lines with every transferable correction applied."""

        initial_lines = split_lines(self.synthetic_source().source)
        corrected_lines = split_lines(corrected_source)
        haml_lines = self.document.current_lines()
        self._locked_indexes = set()
        self.skipped_transfers = []

        for fragment in reversed(self.fragments):
            from_lines = fragment.extract_from(initial_lines)
            to_lines = fragment.extract_from(corrected_lines)
            if from_lines is None or to_lines is None:
                self._record_skip(fragment, "markers not found")
                continue
            if from_lines == to_lines:
                continue
            try:
                fragment.transfer_correction(self, from_lines, to_lines, haml_lines)
            except FragmentTransferSkipped as exc:
                self._record_skip(fragment, str(exc))

        return haml_lines

    def replace_lines(
        self, haml_lines: list[str], start_index: int, end_index: int, new_lines: list[str]
    ) -> int:
        """Replace haml_lines[start_index:end_index]; return the new end index.

        Locked indexes past the replaced range move with the line count change.
        """

        haml_lines[start_index:end_index] = new_lines
        delta = len(new_lines) - (end_index - start_index)
        if delta:
            self._locked_indexes = {
                index + delta if index >= end_index else index
                for index in self._locked_indexes
                if index < start_index or index >= end_index
            }
        return start_index + len(new_lines)

    def lock_indent(self, start_index: int, end_index: int) -> None:
        self._locked_indexes.update(range(start_index, end_index))

    def is_locked(self, index: int) -> bool:
        return index in self._locked_indexes

    def fix_indent_after(
        self, haml_lines: list[str], first_index: int, from_indent: int, to_indent: int
    ) -> None:
        """Move the lines following a corrected fragment by its indentation change.

        Starting at first_index, every non-blank line indented at least
        from_indent moves by to_indent - from_indent, until a less indented
        line ends the block. Locked lines keep their indentation.
        """

        delta = to_indent - from_indent
        if delta == 0:
            return

        for index in range(first_index, len(haml_lines)):
            line = haml_lines[index]
            if is_blank(line):
                continue
            current_indent = leading_spaces(line)
            if current_indent < from_indent:
                break
            if self.is_locked(index):
                continue
            if delta > 0:
                haml_lines[index] = " " * delta + line
            else:
                haml_lines[index] = line[min(-delta, current_indent) :]

    def _fuse(self, fragments: list[Fragment], haml_lines: list[str]) -> list[Fragment]:
        fused: list[Fragment] = []
        for fragment in fragments:
            if fused and _blank_between(fused[-1], fragment, haml_lines):
                merged = fused[-1].fuse(fragment)
                if merged is not None:
                    fused[-1] = merged
                    continue
            fused.append(fragment)
        return fused

    def _record_skip(self, fragment: Fragment, reason: str) -> None:
        self.skipped_transfers.append(
            SkippedTransfer(
                haml_start_line=fragment.haml_start_line,
                fragment_type=type(fragment).__name__,
                reason=reason,
            )
        )
        log_event(
            logger,
            logging.WARNING,
            "transfer skipped",
            file=self.document.file,
            line=fragment.haml_start_line,
            fragment=type(fragment).__name__,
            reason=reason,
        )


def _blank_between(previous: Fragment, fragment: Fragment, haml_lines: list[str]) -> bool:
    """True when no template text sits between the two fragments' lines."""

    for index in range(previous.haml_end_line, fragment.haml_start_line - 1):
        if index < len(haml_lines) and not is_blank(haml_lines[index]):
            return False
    return True
