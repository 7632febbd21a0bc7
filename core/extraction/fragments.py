"""Fragment variants and their correction-transfer rules.

A fragment is one span of Ruby lifted out of the template. It knows the
lines it contributes to the synthetic source, where it came from in the
template, and how to rewrite those template lines once the analyzer has
corrected its span. The set of variants is closed:

- ScriptFragment: `-` / `=` scripts, possibly fused with following scripts
  and implicit `end` lines.
- ImplicitEndFragment: the `end` closing a block Haml closes by indentation.
- InterpolationFragment: one `#{...}` expression.
- TagAttributesFragment: a tag's `{...}` attribute hash.
- TagScriptFragment: the script after `%tag=`.
- RubyFilterFragment: the body of a `:ruby` filter.
- PlaceholderFragment: structural lines the template never shows.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from core.extraction.markers import find_marker_index
from core.template.blocks import mid_block_keyword
from core.template.models import TemplateNode
from core.utils.errors import FragmentTransferSkipped
from core.utils.text import first_non_space, indent, is_blank, leading_spaces

if TYPE_CHECKING:
    from core.extraction.assembler import FragmentAssembler

SCRIPT_OUTPUT_PREFIX = "HL.out = "
TAG_PLACEHOLDER = "haml_lint_tag_placeholder"
PLAIN_PLACEHOLDER = "haml_lint_plain_placeholder"
FILTER_PLACEHOLDER = "haml_lint_filter_placeholder"
TAG_INDENT_GUARD = "if haml_lint_tag_indent"

_WRAP_START_RE = re.compile(r"\AW*\(")
_WRAP_END_RE = re.compile(r"\)\s*\Z")
_TRAILING_COMMA_RE = re.compile(r",[ \t]*\Z")
_OPENERS = {"(": ")", "[": "]", "{": "}"}


class Fragment:
    """Common state of every fragment variant.

    `end_marker_indent_level` is the indentation level of the closing marker.
    None means the fragment is never wrapped in markers and nothing is fused
    into it.
    """

    wrapped_in_markers = True

    def __init__(
        self,
        node: TemplateNode,
        ruby_lines: list[str] | str,
        *,
        end_marker_indent_level: int | None,
        haml_start_line: int | None = None,
    ) -> None:
        if isinstance(ruby_lines, str):
            ruby_lines = [ruby_lines]
        self.node = node
        self.ruby_lines = list(ruby_lines)
        self.end_marker_indent_level = end_marker_indent_level
        self.haml_start_line = node.line if haml_start_line is None else haml_start_line
        self.start_marker_line: int | None = None
        self.end_marker_line: int | None = None

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(haml_start_line={self.haml_start_line}, "
            f"ruby_lines={self.ruby_lines!r})"
        )

    @property
    def haml_end_line(self) -> int:
        return self.haml_start_line + len(self.ruby_lines) - 1

    def fuse(self, other: Fragment) -> Fragment | None:
        """Return one fragment standing for self followed by other, or None."""

        return None

    def start_marker_indent_level(self) -> int:
        for line in self.ruby_lines:
            if not is_blank(line):
                return leading_spaces(line) // 2
        return 0

    def full_assemble(self, assembler: FragmentAssembler) -> None:
        self.start_marker_line = assembler.add_marker(self.start_marker_indent_level())
        self.assemble_in(assembler)
        self.end_marker_line = assembler.add_marker(self.end_marker_indent_level or 0)

    def assemble_in(self, assembler: FragmentAssembler) -> None:
        assembler.add_lines(self.ruby_lines, haml_start_line=self.haml_start_line)

    def extract_from(self, source_lines: list[str]) -> list[str] | None:
        """Return this fragment's lines in source_lines, or None if its markers are gone."""

        if not self.wrapped_in_markers:
            return []
        if self.start_marker_line is None or self.end_marker_line is None:
            return None

        start_index = find_marker_index(source_lines, self.start_marker_line)
        end_index = find_marker_index(source_lines, self.end_marker_line)
        if start_index is None or end_index is None or end_index <= start_index:
            return None
        return source_lines[start_index + 1 : end_index]

    def transfer_correction(
        self,
        assembler: FragmentAssembler,
        from_lines: list[str],
        to_lines: list[str],
        haml_lines: list[str],
    ) -> None:
        """Rewrite haml_lines in place so they reflect to_lines instead of from_lines."""

        raise NotImplementedError


class ScriptFragment(Fragment):
    def __init__(
        self,
        node: TemplateNode,
        ruby_lines: list[str] | str,
        *,
        end_marker_indent_level: int | None,
        haml_start_line: int | None = None,
        haml_end_line: int | None = None,
        must_start_chunk: bool = False,
        skip_line_indexes_in_source_map: list[int] | None = None,
    ) -> None:
        super().__init__(
            node,
            ruby_lines,
            end_marker_indent_level=end_marker_indent_level,
            haml_start_line=haml_start_line,
        )
        if haml_end_line is None:
            haml_end_line = self.haml_start_line + len(self.ruby_lines) - 1
        self._haml_end_line = haml_end_line
        self.must_start_chunk = must_start_chunk
        self.skip_line_indexes_in_source_map = list(skip_line_indexes_in_source_map or [])

    @property
    def haml_end_line(self) -> int:
        return self._haml_end_line

    def fuse(self, other: Fragment) -> Fragment | None:
        if not isinstance(other, (ScriptFragment, ImplicitEndFragment)):
            return None
        if other.end_marker_indent_level is None:
            return None
        if isinstance(other, ScriptFragment) and other.must_start_chunk:
            return None

        blank_lines = [""] * max(other.haml_start_line - self.haml_end_line - 1, 0)
        offset = len(self.ruby_lines) + len(blank_lines)
        skip_indexes = list(self.skip_line_indexes_in_source_map)
        if isinstance(other, ScriptFragment):
            haml_end_line = other.haml_end_line
            skip_indexes.extend(offset + index for index in other.skip_line_indexes_in_source_map)
        else:
            # The implicit `end` has no template line of its own
            haml_end_line = self.haml_end_line
            skip_indexes.extend(range(offset, offset + len(other.ruby_lines)))

        return ScriptFragment(
            self.node,
            self.ruby_lines + blank_lines + other.ruby_lines,
            end_marker_indent_level=other.end_marker_indent_level,
            haml_start_line=self.haml_start_line,
            haml_end_line=haml_end_line,
            must_start_chunk=self.must_start_chunk,
            skip_line_indexes_in_source_map=skip_indexes,
        )

    def start_marker_indent_level(self) -> int:
        level = super().start_marker_indent_level()
        # `else` and friends sit one level left of the code they lead into
        if self.ruby_lines and mid_block_keyword(self.ruby_lines[0]):
            level += 1
        return level

    def assemble_in(self, assembler: FragmentAssembler) -> None:
        haml_line = self.haml_start_line
        for index, line in enumerate(self.ruby_lines):
            if index in self.skip_line_indexes_in_source_map:
                assembler.add_lines([line])
                continue
            assembler.add_lines([line], haml_start_line=haml_line)
            haml_line += 1

    def transfer_correction(
        self,
        assembler: FragmentAssembler,
        from_lines: list[str],
        to_lines: list[str],
        haml_lines: list[str],
    ) -> None:
        to_lines = [line for line in to_lines if line.strip() != "end"]
        if not _brackets_close_at_line_ends(to_lines):
            raise FragmentTransferSkipped(
                "script rewritten across lines without trailing commas", fragment=self
            )

        from_last_indent = _last_script_indent([line for line in from_lines if line.strip() != "end"])
        to_last_indent = _last_script_indent(to_lines)

        prefix = assembler.script_output_prefix
        continuation_delta = 2
        new_lines: list[str] = []
        for index, line in enumerate(to_lines):
            code_start = first_non_space(line)
            if code_start is None:
                new_lines.append("")
            elif _starts_script(to_lines, index):
                code = line[code_start:]
                if code.startswith(prefix):
                    continuation_delta = 2 - len(prefix)
                    new_lines.append(f"{line[:code_start]}= {code[len(prefix):]}")
                else:
                    continuation_delta = 2
                    new_lines.append(f"{line[:code_start]}- {code}")
            else:
                new_lines.append(indent(line, continuation_delta))

        start_index = self.haml_start_line - 1
        end_index = assembler.replace_lines(haml_lines, start_index, self.haml_end_line, new_lines)
        assembler.lock_indent(start_index, end_index)
        if from_last_indent is not None and to_last_indent is not None:
            assembler.fix_indent_after(haml_lines, end_index, from_last_indent, to_last_indent)


class ImplicitEndFragment(Fragment):
    """The `end` Haml adds when a block's nested lines stop."""

    wrapped_in_markers = False

    def __init__(
        self,
        node: TemplateNode,
        *,
        indent_level: int,
        haml_start_line: int,
        end_marker_indent_level: int | None,
    ) -> None:
        super().__init__(
            node,
            "  " * indent_level + "end",
            end_marker_indent_level=end_marker_indent_level,
            haml_start_line=haml_start_line,
        )

    def full_assemble(self, assembler: FragmentAssembler) -> None:
        assembler.add_lines(self.ruby_lines)

    def transfer_correction(
        self,
        assembler: FragmentAssembler,
        from_lines: list[str],
        to_lines: list[str],
        haml_lines: list[str],
    ) -> None:
        return None


class PlaceholderFragment(Fragment):
    """Lines that steer the analyzer's parse and never reach the template."""

    wrapped_in_markers = False

    def __init__(self, node: TemplateNode, text: str, *, indent_level: int) -> None:
        super().__init__(node, "  " * indent_level + text, end_marker_indent_level=None)

    def full_assemble(self, assembler: FragmentAssembler) -> None:
        assembler.add_lines(self.ruby_lines, haml_start_line=self.haml_start_line)

    def transfer_correction(
        self,
        assembler: FragmentAssembler,
        from_lines: list[str],
        to_lines: list[str],
        haml_lines: list[str],
    ) -> None:
        return None


class InterpolationFragment(Fragment):
    def __init__(
        self,
        node: TemplateNode,
        ruby_line: str,
        *,
        haml_start_line: int,
        start_char_index: int,
        end_marker_indent_level: int | None,
    ) -> None:
        super().__init__(
            node,
            ruby_line,
            end_marker_indent_level=end_marker_indent_level,
            haml_start_line=haml_start_line,
        )
        self.start_char_index = start_char_index

    def transfer_correction(
        self,
        assembler: FragmentAssembler,
        from_lines: list[str],
        to_lines: list[str],
        haml_lines: list[str],
    ) -> None:
        if len(from_lines) != 1 or len(to_lines) != 1:
            raise FragmentTransferSkipped("interpolation rewritten over several lines", fragment=self)

        prefix = assembler.script_output_prefix
        from_code = _strip_output_prefix(from_lines[0], prefix)
        to_code = _strip_output_prefix(to_lines[0], prefix)

        line_index = self.haml_start_line - 1
        haml_line = haml_lines[line_index]
        start = self.start_char_index
        end = start + len(from_code)
        if haml_line[start:end] != from_code:
            raise FragmentTransferSkipped(
                "interpolation code not found at its recorded offset", fragment=self
            )
        assembler.replace_lines(
            haml_lines, line_index, line_index + 1, [haml_line[:start] + to_code + haml_line[end:]]
        )


class TagAttributesFragment(Fragment):
    """A tag's attribute hash, wrapped as `W(...)` so it parses as a call argument.

    `indent_to_remove` is the padding added to continuation lines when the
    wrap would not fit in the tag's own indentation.
    """

    def __init__(
        self,
        node: TemplateNode,
        ruby_lines: list[str],
        *,
        end_marker_indent_level: int | None,
        indent_to_remove: int = 0,
    ) -> None:
        super().__init__(node, ruby_lines, end_marker_indent_level=end_marker_indent_level)
        self.indent_to_remove = indent_to_remove

    def extract_from(self, source_lines: list[str]) -> list[str] | None:
        lines = super().extract_from(source_lines)
        if not lines:
            return lines

        lines[0] = _WRAP_START_RE.sub("", lines[0].lstrip(), count=1)
        lines[-1] = _WRAP_END_RE.sub("", lines[-1])
        if self.indent_to_remove:
            lines[1:] = [indent(line, -self.indent_to_remove) for line in lines[1:]]
        return lines

    def transfer_correction(
        self,
        assembler: FragmentAssembler,
        from_lines: list[str],
        to_lines: list[str],
        haml_lines: list[str],
    ) -> None:
        if not _continuations_end_with_comma(to_lines):
            raise FragmentTransferSkipped(
                "attributes rewritten across lines without trailing commas", fragment=self
            )

        start_index = self.haml_start_line - 1
        end_index = start_index + len(from_lines)
        affected = "\n".join(haml_lines[start_index:end_index])
        from_code = "\n".join(from_lines)
        position = affected.find(from_code)
        if position < 0:
            raise FragmentTransferSkipped("attribute code not found in template lines", fragment=self)

        affected = affected[:position] + "\n".join(to_lines) + affected[position + len(from_code) :]
        assembler.replace_lines(haml_lines, start_index, end_index, affected.split("\n"))


class TagScriptFragment(Fragment):
    """The script following `=` on a tag line, e.g. `%p= link_to(...)`."""

    def transfer_correction(
        self,
        assembler: FragmentAssembler,
        from_lines: list[str],
        to_lines: list[str],
        haml_lines: list[str],
    ) -> None:
        if not to_lines or not _continuations_end_with_comma(to_lines):
            raise FragmentTransferSkipped(
                "tag script rewritten across lines without trailing commas", fragment=self
            )

        prefix = assembler.script_output_prefix
        from_code = _strip_output_prefix(from_lines[0], prefix)
        to_code = _strip_output_prefix(to_lines[0], prefix)
        to_indent = first_non_space(to_lines[0]) or 0

        start_index = self.haml_start_line - 1
        haml_line = haml_lines[start_index]
        position = haml_line.rfind(from_code)
        if position < 0:
            raise FragmentTransferSkipped("tag script not found in template line", fragment=self)

        delta = position - len(prefix) - to_indent
        new_lines = [haml_line[:position] + to_code]
        new_lines.extend(indent(line, delta) for line in to_lines[1:])
        assembler.replace_lines(haml_lines, start_index, start_index + len(from_lines), new_lines)


class RubyFilterFragment(Fragment):
    """Body of a `:ruby` filter, one synthetic line per template line.

    template_indent_delta is how far right of its synthetic column the body
    sits in the template.
    """

    def __init__(
        self,
        node: TemplateNode,
        ruby_lines: list[str] | str,
        *,
        end_marker_indent_level: int | None,
        haml_start_line: int | None = None,
        template_indent_delta: int = 2,
    ) -> None:
        super().__init__(
            node,
            ruby_lines,
            end_marker_indent_level=end_marker_indent_level,
            haml_start_line=haml_start_line,
        )
        self.template_indent_delta = template_indent_delta

    def transfer_correction(
        self,
        assembler: FragmentAssembler,
        from_lines: list[str],
        to_lines: list[str],
        haml_lines: list[str],
    ) -> None:
        start_index = self.haml_start_line - 1
        first_missing_index: int | None = None

        for offset in range(max(len(from_lines), len(to_lines))):
            index = start_index + offset
            if offset >= len(to_lines):
                # Every removed line collapses onto the same position
                if first_missing_index is None:
                    first_missing_index = index
                assembler.replace_lines(haml_lines, first_missing_index, first_missing_index + 1, [])
                continue

            to_line = to_lines[offset]
            haml_line = "" if is_blank(to_line) else indent(to_line, self.template_indent_delta)
            if offset >= len(from_lines):
                assembler.replace_lines(haml_lines, index, index, [haml_line])
            else:
                assembler.replace_lines(haml_lines, index, index + 1, [haml_line])

        assembler.lock_indent(start_index, start_index + len(to_lines))


def _strip_output_prefix(line: str, prefix: str) -> str:
    code = line.lstrip()
    if code.startswith(prefix):
        return code[len(prefix) :]
    return code


def _starts_script(lines: list[str], index: int) -> bool:
    return index == 0 or _TRAILING_COMMA_RE.search(lines[index - 1]) is None


def _last_script_indent(lines: list[str]) -> int | None:
    for index in range(len(lines) - 1, -1, -1):
        if not is_blank(lines[index]) and _starts_script(lines, index):
            return leading_spaces(lines[index])
    return None


def _continuations_end_with_comma(lines: list[str]) -> bool:
    return all(_TRAILING_COMMA_RE.search(line) for line in lines[:-1])


def _brackets_close_at_line_ends(lines: list[str]) -> bool:
    """True if every bracket opened in a script statement closes by its last line.

    Haml only continues a script when a line ends with a comma, so a rewrite
    that breaks a call after `(` cannot be written back as a script.
    """

    stack: list[str] = []
    quote: str | None = None
    for index, line in enumerate(lines):
        escaped = False
        for char in line:
            if quote is not None:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == quote:
                    quote = None
            elif char in "\"'":
                quote = char
            elif char == "#":
                break
            elif char in _OPENERS:
                stack.append(_OPENERS[char])
            elif stack and char == stack[-1]:
                stack.pop()
        statement_ends = index == len(lines) - 1 or _starts_script(lines, index + 1)
        if statement_ends and stack:
            return False
        if statement_ends:
            quote = None
    return True
