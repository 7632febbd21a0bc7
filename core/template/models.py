"""Data models for parsed Haml templates."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

NodeKind = Literal[
    "root",
    "tag",
    "script",
    "silent_script",
    "plain",
    "comment",
    "haml_comment",
    "filter",
]


@dataclass(eq=False)
class TemplateNode:
    """One node of the Haml tree.

    `line` is 1-based. `value` holds kind-specific data as produced by the
    parser (`text`, `keyword`, `script`, `dynamic_attributes_sources`, ...).
    """

    kind: NodeKind
    line: int
    value: dict[str, Any] = field(default_factory=dict)
    children: list[TemplateNode] = field(default_factory=list)
    parent: TemplateNode | None = field(default=None, repr=False)

    def add_child(self, child: TemplateNode) -> TemplateNode:
        child.parent = self
        self.children.append(child)
        return child

    @property
    def text(self) -> str:
        return self.value.get("text", "")

    @property
    def script(self) -> str | None:
        return self.value.get("script")

    @property
    def keyword(self) -> str | None:
        return self.value.get("keyword")

    @property
    def filter_type(self) -> str | None:
        return self.value.get("filter_type")

    @property
    def dynamic_attributes_sources(self) -> list[str]:
        return self.value.get("dynamic_attributes_sources", [])


@dataclass
class ParsedTemplate:
    """Parser output: the tree plus the original text of interpolated strings.

    `interpolation_originals` maps the normalized Ruby string the parser builds
    for a tag's trailing interpolated text to that text as written in the file.
    """

    tree: TemplateNode
    interpolation_originals: dict[str, str] = field(default_factory=dict)
