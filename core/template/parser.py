"""Haml subset parser producing the node tree walked by the fragment extractor.

Rules:
- Indentation uses spaces; the first indented line fixes the unit.
- `-` / `=` scripts and inline tag scripts continue onto the next line when a
  line ends with a comma. The node text joins the stripped lines with a space.
- `{...}` attribute hashes may span lines and are kept verbatim.
- Filter bodies and `-#` comment bodies are consumed by their node.
"""

from __future__ import annotations

import re
from typing import Any

from core.template.blocks import MID_BLOCK_KEYWORDS, block_keyword, opens_block
from core.template.interpolation import has_interpolation
from core.template.models import NodeKind, ParsedTemplate, TemplateNode
from core.utils.errors import TemplateParseError
from core.utils.text import ends_with_comma, is_blank, leading_spaces, split_lines

_TAG_NAME_RE = re.compile(r"%([-:\w]+)")
_CLASS_OR_ID_RE = re.compile(r"[.#][-:\w]+")
_FILTER_RE = re.compile(r":(\w[-\w]*)\s*$")
_LEGACY_ATTRIBUTE_RE = re.compile(
    r"""([-:\w]+)(?:\s*=\s*("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*'|[^\s"')]+))?"""
)
_CLOSERS = {"{": "}", "(": ")", "[": "]"}
_SCRIPT_OPERATORS = ("!=", "&=", "=", "~")


def parse_template(text: str) -> ParsedTemplate:
    """Parse Haml text into a node tree.

    Raises:
        TemplateParseError: when the text is not valid for the supported subset.
    """

    return _Parser(text).parse()


class _Parser:
    def __init__(self, text: str) -> None:
        self._lines = split_lines(text)
        self._indent_unit: int | None = None
        self._interpolation_originals: dict[str, str] = {}

    def parse(self) -> ParsedTemplate:
        root = TemplateNode("root", 0)
        stack: list[tuple[int, TemplateNode]] = [(-1, root)]

        index = 0
        while index < len(self._lines):
            line = self._lines[index]
            if is_blank(line):
                index += 1
                continue

            line_number = index + 1
            depth = self._depth(line, line_number, previous_depth=stack[-1][0])
            while stack[-1][0] >= depth:
                stack.pop()
            parent = stack[-1][1]
            _check_nesting(parent, line_number)

            node, index = self._parse_node(index, len(line) - len(line.lstrip()))
            _check_block_chain(node, parent)
            parent.add_child(node)
            stack.append((depth, node))

        return ParsedTemplate(tree=root, interpolation_originals=self._interpolation_originals)

    def _depth(self, line: str, line_number: int, previous_depth: int) -> int:
        whitespace = line[: len(line) - len(line.lstrip())]
        if "\t" in whitespace:
            raise TemplateParseError("Indentation with tabs is not supported.", line=line_number)

        width = len(whitespace)
        if width == 0:
            return 0
        if self._indent_unit is None:
            if previous_depth < 0:
                raise TemplateParseError(
                    "Indenting at the beginning of the document is illegal.", line=line_number
                )
            self._indent_unit = width
        if width % self._indent_unit:
            raise TemplateParseError(
                f"Inconsistent indentation: {width} spaces used for indentation, "
                f"but the rest of the document was indented using {self._indent_unit} spaces.",
                line=line_number,
            )

        depth = width // self._indent_unit
        if depth > previous_depth + 1:
            raise TemplateParseError(
                f"The line was indented {depth - previous_depth} levels deeper "
                "than the previous line.",
                line=line_number,
            )
        return depth

    def _parse_node(self, index: int, width: int) -> tuple[TemplateNode, int]:
        content = self._lines[index][width:]
        line_number = index + 1

        if content.startswith("-#"):
            end = self._nested_end(index, width)
            return TemplateNode("haml_comment", line_number, {"text": content[2:].strip()}), end
        if content.startswith("-"):
            return self._parse_script("silent_script", index, content[1:])
        for operator in _SCRIPT_OPERATORS:
            if content.startswith(operator):
                return self._parse_script(
                    "script", index, content[len(operator) :], operator=operator
                )

        filter_match = _FILTER_RE.match(content)
        if filter_match is not None:
            return self._parse_filter(index, width, filter_match.group(1))

        if content.startswith("/"):
            return TemplateNode("comment", line_number, {"text": content[1:].strip()}), index + 1
        if content.startswith("!!!"):
            return TemplateNode("plain", line_number, {"text": content, "doctype": True}), index + 1
        if content.startswith("\\"):
            return TemplateNode("plain", line_number, {"text": content[1:]}), index + 1
        if content[0] in "%.#" and not content.startswith("#{"):
            parsed = self._parse_tag(index, width)
            if parsed is not None:
                return parsed

        return TemplateNode("plain", line_number, {"text": content}), index + 1

    def _parse_script(
        self, kind: NodeKind, index: int, code: str, operator: str | None = None
    ) -> tuple[TemplateNode, int]:
        end = self._continuation_end(index)
        text = _join_continued([code] + self._lines[index + 1 : end + 1])
        value: dict[str, Any] = {"text": text, "keyword": block_keyword(text)}
        if operator is not None and operator != "=":
            value["operator"] = operator
        return TemplateNode(kind, index + 1, value), end + 1

    def _parse_filter(self, index: int, width: int, name: str) -> tuple[TemplateNode, int]:
        end = self._nested_end(index, width)
        body = self._lines[index + 1 : end]

        # Leading and trailing blank lines are not part of the filter text
        while body and is_blank(body[0]):
            body.pop(0)
        while body and is_blank(body[-1]):
            body.pop()

        margin = min((leading_spaces(line) for line in body if not is_blank(line)), default=0)
        text = "".join(("" if is_blank(line) else line[margin:]) + "\n" for line in body)
        return TemplateNode("filter", index + 1, {"filter_type": name, "text": text}), end

    def _parse_tag(self, index: int, width: int) -> tuple[TemplateNode, int] | None:
        line = self._lines[index]
        position = width
        value: dict[str, Any] = {"tag_name": "div", "dynamic_attributes_sources": []}

        name_match = _TAG_NAME_RE.match(line, position)
        if name_match is not None:
            value["tag_name"] = name_match.group(1)
            position = name_match.end()

        shorthand_match = _CLASS_OR_ID_RE.match(line, position)
        while shorthand_match is not None:
            position = shorthand_match.end()
            shorthand_match = _CLASS_OR_ID_RE.match(line, position)

        if position == width:
            return None

        current = index
        while position < len(line) and line[position] in _CLOSERS:
            opener = line[position]
            inner, current, position = self._scan_balanced(current, position, opener)
            line = self._lines[current]
            if opener == "{":
                value["dynamic_attributes_sources"].append(inner)
            elif opener == "(":
                value["legacy_attributes"] = inner
                converted = _legacy_attributes_source(inner)
                if converted is not None:
                    value["dynamic_attributes_sources"].append(converted)
            else:
                value["object_reference"] = inner

        while position < len(line) and line[position] in "<>/":
            if line[position] == "/":
                value["self_closing"] = True
            position += 1

        node = TemplateNode("tag", index + 1, value)
        rest = line[position:]
        for operator in _SCRIPT_OPERATORS:
            if rest.startswith(operator):
                end = self._continuation_end(current)
                code = [rest[len(operator) :]] + self._lines[current + 1 : end + 1]
                value["script"] = _join_continued(code)
                return node, end + 1

        text = rest.strip()
        if text and has_interpolation(text):
            script = _ruby_string_literal(text)
            value["script"] = script
            value["parse"] = True
            self._interpolation_originals[script] = text
        elif text:
            value["text"] = text
        return node, current + 1

    def _scan_balanced(self, index: int, position: int, opener: str) -> tuple[str, int, int]:
        """Return (inner text, closing line index, column after the closer)."""

        closer = _CLOSERS[opener]
        depth = 0
        quote: str | None = None
        pieces: list[str] = []
        line_index = index
        column = position
        piece_start = position + 1

        while line_index < len(self._lines):
            line = self._lines[line_index]
            while column < len(line):
                char = line[column]
                escaped = column > 0 and line[column - 1] == "\\"
                if quote is not None:
                    if char == quote and not escaped:
                        quote = None
                elif char in "\"'":
                    quote = char
                elif char == opener:
                    depth += 1
                elif char == closer:
                    depth -= 1
                    if depth == 0:
                        pieces.append(line[piece_start:column])
                        return "\n".join(pieces), line_index, column + 1
                column += 1
            pieces.append(line[piece_start:])
            line_index += 1
            column = 0
            piece_start = 0

        raise TemplateParseError("Unbalanced brackets.", line=index + 1)

    def _continuation_end(self, index: int) -> int:
        end = index
        while ends_with_comma(self._lines[end]) and end + 1 < len(self._lines):
            end += 1
        return end

    def _nested_end(self, index: int, width: int) -> int:
        """Index of the first line after `index` that is neither blank nor nested deeper."""

        cursor = index + 1
        while cursor < len(self._lines):
            candidate = self._lines[cursor]
            if not is_blank(candidate) and leading_spaces(candidate) <= width:
                break
            cursor += 1
        return cursor


def _check_nesting(parent: TemplateNode, line_number: int) -> None:
    if parent.kind == "plain":
        raise TemplateParseError(
            "Illegal nesting: nesting within plain text is illegal.", line=line_number
        )
    if parent.kind == "tag":
        if parent.value.get("self_closing"):
            raise TemplateParseError(
                "Illegal nesting: nesting within a self-closing tag is illegal.", line=line_number
            )
        if parent.script or parent.value.get("text"):
            raise TemplateParseError(
                "Illegal nesting: content can't be both given on the same line as "
                f"%{parent.value['tag_name']} and nested within it.",
                line=line_number,
            )
    if parent.kind in ("script", "silent_script") and not (
        opens_block(parent.text) or parent.keyword in MID_BLOCK_KEYWORDS
    ):
        raise TemplateParseError(
            "Illegal nesting: nesting within a script that does not open a block is illegal.",
            line=line_number,
        )
    if parent.kind == "comment" and parent.text:
        raise TemplateParseError(
            "Illegal nesting: nesting within a html comment that already has content is illegal.",
            line=line_number,
        )


def _check_block_chain(node: TemplateNode, parent: TemplateNode) -> None:
    """Attach `else`/`when`/... scripts to the block they continue."""

    if node.kind != "silent_script":
        return
    keyword = node.keyword
    if keyword == "end":
        raise TemplateParseError(
            "You don't need to use \"- end\" in Haml. Un-indent to close a block.",
            line=node.line,
        )
    if keyword not in MID_BLOCK_KEYWORDS:
        return

    previous = parent.children[-1] if parent.children else None
    if previous is None or previous.kind not in ("script", "silent_script"):
        raise TemplateParseError(f'Got "{keyword}" with no preceding block.', line=node.line)
    previous.value["dont_push_end"] = True


def _join_continued(lines: list[str]) -> str:
    return " ".join(part for part in (line.strip() for line in lines) if part)


def _legacy_attributes_source(inner: str) -> str | None:
    """Rewrite the dynamic values of `(name=value)` attributes as a Ruby hash."""

    entries: list[str] = []
    for match in _LEGACY_ATTRIBUTE_RE.finditer(inner):
        name, raw_value = match.group(1), match.group(2)
        if raw_value is None or raw_value[0] in "\"'":
            continue
        entries.append(f'"{name}" => {raw_value}')
    if not entries:
        return None
    return "{" + ", ".join(entries) + ",}"


def _ruby_string_literal(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
