"""Walks a parsed template and lifts its embedded Ruby into fragments."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from core.extraction.fragments import (
    FILTER_PLACEHOLDER,
    PLAIN_PLACEHOLDER,
    SCRIPT_OUTPUT_PREFIX,
    TAG_INDENT_GUARD,
    TAG_PLACEHOLDER,
    Fragment,
    ImplicitEndFragment,
    InterpolationFragment,
    PlaceholderFragment,
    RubyFilterFragment,
    ScriptFragment,
    TagAttributesFragment,
    TagScriptFragment,
)
from core.template.blocks import MID_BLOCK_KEYWORDS, opens_block
from core.template.document import TemplateDocument
from core.template.interpolation import iter_interpolations
from core.template.models import TemplateNode
from core.utils.events import log_event
from core.utils.text import ends_with_comma, indent, is_blank, leading_spaces

logger = logging.getLogger("hamlfix.extraction")

_SILENT_SIGIL_RE = re.compile(r"-[ \t]*")
_OUTPUT_SIGIL_RE = re.compile(r"=[ \t]*")


@dataclass
class ExtractionContext:
    """Values the extractor needs beyond the tree itself.

    `interpolation_originals` maps the Ruby string the parser built for a
    tag's interpolated text back to that text as written in the template.
    """

    interpolation_originals: dict[str, str] = field(default_factory=dict)

    @classmethod
    def for_document(cls, document: TemplateDocument) -> ExtractionContext:
        return cls(interpolation_originals=dict(document.interpolation_originals))


class FragmentExtractor:
    """Produces fragments in pre-order tree order.

    `indent_level` tracks how deep the synthetic Ruby is nested: block
    scripts and guarded tags open a level for their children.
    """

    def __init__(self, document: TemplateDocument, *, context: ExtractionContext | None = None) -> None:
        self.document = document
        self.context = context if context is not None else ExtractionContext.for_document(document)
        self.script_output_prefix = SCRIPT_OUTPUT_PREFIX
        self._haml_lines: list[str] = []
        self._fragments: list[Fragment] = []
        self._indent_level = 0

    def extract(self) -> list[Fragment]:
        self._haml_lines = self.document.current_lines()
        self._fragments = []
        self._indent_level = 0
        self._visit_children(self.document.tree)
        log_event(
            logger,
            logging.DEBUG,
            "fragments_extracted",
            file=self.document.file,
            count=len(self._fragments),
        )
        return self._fragments

    def _visit(self, node: TemplateNode) -> None:
        if node.kind in ("script", "silent_script"):
            self._visit_script(node)
        elif node.kind == "tag":
            self._visit_tag(node)
        elif node.kind == "plain":
            self._visit_plain(node)
        elif node.kind == "filter":
            self._visit_filter(node)
        elif node.kind == "comment":
            self._visit_guarded_children(node)
        # `-#` comments never reach the analyzer

    def _visit_children(self, node: TemplateNode) -> None:
        for child in node.children:
            self._visit(child)

    def _visit_script(self, node: TemplateNode) -> None:
        if node.value.get("operator"):
            # `!=`, `&=` and `~` would be written back as `=`
            self._skip(node, "unsupported script operator")
            self._visit_guarded_children(node)
            return

        raw_lines = self._continued_lines(node.line - 1)
        silent = node.kind == "silent_script"
        ruby_lines = _script_ruby_lines(raw_lines, silent=silent, prefix=self.script_output_prefix)
        if ruby_lines is None:
            self._skip(node, "script sigil not found")
            self._visit_guarded_children(node)
            return

        keyword = node.keyword
        continues_block = keyword in MID_BLOCK_KEYWORDS
        opens = continues_block or opens_block(node.text)
        if opens:
            self._indent_level += 1

        parent = node.parent
        must_start_chunk = (
            node.kind == "script" and parent is not None and parent.kind == "script"
        )
        self._fragments.append(
            ScriptFragment(
                node,
                ruby_lines,
                end_marker_indent_level=self._indent_level,
                must_start_chunk=must_start_chunk,
            )
        )

        if not opens:
            return
        self._visit_children(node)
        self._indent_level -= 1
        if not node.value.get("dont_push_end"):
            self._add_implicit_end(node, end_marker_indent_level=self._indent_level)

    def _visit_tag(self, node: TemplateNode) -> None:
        # A tag with children gets its placeholder inside the guard
        if not node.children:
            self._fragments.append(
                PlaceholderFragment(node, TAG_PLACEHOLDER, indent_level=self._indent_level)
            )

        script_line_index = node.line - 1
        sources = node.dynamic_attributes_sources
        if sources and "legacy_attributes" not in node.value and len(sources) == 1:
            script_line_index += sources[0].count("\n")
            self._add_attributes_fragment(node, sources[0])
        elif sources:
            self._skip(node, "attribute syntax left unextracted")

        script = node.script
        if script is not None:
            if node.value.get("parse"):
                self._add_tag_text_interpolations(node, script, script_line_index)
            else:
                self._add_tag_script_fragment(node, script, script_line_index)

        self._visit_guarded_children(node)

    def _visit_plain(self, node: TemplateNode) -> None:
        if node.value.get("doctype"):
            return

        line = self._haml_lines[node.line - 1]
        text_start = line.find(node.text, leading_spaces(line))
        interpolations = list(iter_interpolations(node.text)) if text_start >= 0 else []
        if not interpolations:
            self._fragments.append(
                PlaceholderFragment(node, PLAIN_PLACEHOLDER, indent_level=self._indent_level)
            )
            return

        for index, code in interpolations:
            self._add_interpolation(node, code, node.line, text_start + index)

    def _visit_filter(self, node: TemplateNode) -> None:
        if node.filter_type == "ruby":
            self._add_ruby_filter_fragment(node)
            return

        found = False
        for line_index in range(node.line, self._nested_end(node)):
            for index, code in iter_interpolations(self._haml_lines[line_index]):
                self._add_interpolation(node, code, line_index + 1, index)
                found = True
        if not found:
            self._fragments.append(
                PlaceholderFragment(node, FILTER_PLACEHOLDER, indent_level=self._indent_level)
            )

    def _visit_guarded_children(self, node: TemplateNode) -> None:
        """Visit children inside `if haml_lint_tag_indent ... end`.

        The guard keeps the children's indentation meaningful to the analyzer,
        and the placeholder keeps the block from holding a single statement.
        """

        if not node.children:
            return

        self._fragments.append(
            PlaceholderFragment(node, TAG_INDENT_GUARD, indent_level=self._indent_level)
        )
        self._indent_level += 1
        self._fragments.append(
            PlaceholderFragment(node, TAG_PLACEHOLDER, indent_level=self._indent_level)
        )
        self._visit_children(node)
        self._indent_level -= 1
        self._add_implicit_end(node, end_marker_indent_level=None)

    def _add_implicit_end(self, node: TemplateNode, *, end_marker_indent_level: int | None) -> None:
        haml_start_line = self._fragments[-1].haml_end_line if self._fragments else node.line
        self._fragments.append(
            ImplicitEndFragment(
                node,
                indent_level=self._indent_level,
                haml_start_line=haml_start_line,
                end_marker_indent_level=end_marker_indent_level,
            )
        )

    def _add_attributes_fragment(self, node: TemplateNode, source: str) -> None:
        code = "{" + source + "}"
        line_count = code.count("\n") + 1
        start_index = node.line - 1
        raw_text = "\n".join(self._haml_lines[start_index : start_index + line_count])
        offset = raw_text.find(code)
        if offset < 0 or "\n" in raw_text[:offset]:
            self._skip(node, "attribute source not found in template")
            return

        code_lines = code.split("\n")
        base_indent = 2 * self._indent_level
        wrap_by = offset - base_indent
        indent_to_remove = 0
        if wrap_by < 2:
            indent_to_remove = 2 - wrap_by
            wrap_by = 2

        ruby_lines = [" " * base_indent + "W" * (wrap_by - 1) + "(" + code_lines[0]]
        ruby_lines.extend(indent(line, indent_to_remove) for line in code_lines[1:])
        ruby_lines[-1] += ")"
        self._fragments.append(
            TagAttributesFragment(
                node,
                ruby_lines,
                end_marker_indent_level=self._indent_level,
                indent_to_remove=indent_to_remove,
            )
        )

    def _add_tag_script_fragment(self, node: TemplateNode, script: str, line_index: int) -> None:
        raw_lines = self._continued_lines(line_index)
        continuation = " ".join(part for part in (line.strip() for line in raw_lines[1:]) if part)
        first_code = script
        if continuation:
            if not script.endswith(" " + continuation):
                self._skip(node, "tag script continuation does not match template")
                return
            first_code = script[: -len(continuation) - 1]

        offset = raw_lines[0].rfind(first_code)
        if offset < 0:
            self._skip(node, "tag script not found in template")
            return

        base_indent = 2 * self._indent_level
        prefix = self.script_output_prefix
        ruby_lines = [" " * base_indent + prefix + first_code]
        delta = base_indent + len(prefix) - offset
        ruby_lines.extend(indent(line, delta) for line in raw_lines[1:])
        self._fragments.append(
            TagScriptFragment(
                node,
                ruby_lines,
                end_marker_indent_level=self._indent_level,
                haml_start_line=line_index + 1,
            )
        )

    def _add_tag_text_interpolations(self, node: TemplateNode, script: str, line_index: int) -> None:
        original = self.context.interpolation_originals.get(script)
        line = self._haml_lines[line_index]
        text_start = line.rfind(original) if original else -1
        if original is None or text_start < 0:
            self._skip(node, "interpolated tag text not found in template")
            return

        for index, code in iter_interpolations(original):
            self._add_interpolation(node, code, line_index + 1, text_start + index)

    def _add_interpolation(self, node: TemplateNode, code: str, haml_line: int, start: int) -> None:
        self._fragments.append(
            InterpolationFragment(
                node,
                "  " * self._indent_level + self.script_output_prefix + code,
                haml_start_line=haml_line,
                start_char_index=start,
                end_marker_indent_level=self._indent_level,
            )
        )

    def _add_ruby_filter_fragment(self, node: TemplateNode) -> None:
        body = node.text.split("\n")[:-1]
        if not body:
            return

        # The parser drops leading blank lines; keep them so lines stay aligned
        leading_blank_lines = 0
        cursor = node.line
        while cursor < len(self._haml_lines) and is_blank(self._haml_lines[cursor]):
            leading_blank_lines += 1
            cursor += 1

        base_indent = "  " * self._indent_level
        body_column = min(
            (
                leading_spaces(line)
                for line in self._haml_lines[cursor : self._nested_end(node)]
                if not is_blank(line)
            ),
            default=len(base_indent) + 2,
        )
        ruby_lines = [""] * leading_blank_lines
        ruby_lines.extend("" if is_blank(line) else base_indent + line for line in body)
        self._fragments.append(
            RubyFilterFragment(
                node,
                ruby_lines,
                end_marker_indent_level=self._indent_level,
                haml_start_line=node.line + 1,
                template_indent_delta=body_column - len(base_indent),
            )
        )

    def _continued_lines(self, index: int) -> list[str]:
        end = index
        while ends_with_comma(self._haml_lines[end]) and end + 1 < len(self._haml_lines):
            end += 1
        return self._haml_lines[index : end + 1]

    def _nested_end(self, node: TemplateNode) -> int:
        width = leading_spaces(self._haml_lines[node.line - 1])
        cursor = node.line
        while cursor < len(self._haml_lines):
            line = self._haml_lines[cursor]
            if not is_blank(line) and leading_spaces(line) <= width:
                break
            cursor += 1
        return cursor

    def _skip(self, node: TemplateNode, reason: str) -> None:
        log_event(
            logger,
            logging.DEBUG,
            "node_not_extracted",
            file=self.document.file,
            line=node.line,
            kind=node.kind,
            reason=reason,
        )


def _script_ruby_lines(raw_lines: list[str], *, silent: bool, prefix: str) -> list[str] | None:
    """Turn a script's template lines into Ruby, keeping the template's indentation.

    The sigil is removed from the first line; an output script gets the
    capture prefix in its place. Continuation lines move by the difference so
    they stay aligned with the code on the first line.
    """

    first = raw_lines[0]
    width = leading_spaces(first)
    sigil = (_SILENT_SIGIL_RE if silent else _OUTPUT_SIGIL_RE).match(first, width)
    if sigil is None:
        return None

    sigil_size = sigil.end() - width
    code = first[sigil.end() :]
    if silent:
        lines = [first[:width] + code]
        delta = -sigil_size
    else:
        lines = [first[:width] + prefix + code]
        delta = len(prefix) - sigil_size
    lines.extend(indent(line, delta) for line in raw_lines[1:])
    return lines
