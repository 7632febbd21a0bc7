"""Parsed Haml document with controlled, rollback-safe source replacement."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from core.template.models import ParsedTemplate, TemplateNode
from core.template.parser import parse_template
from core.utils.errors import TemplateParseError
from core.utils.text import split_lines

STRING_SOURCE = "(string)"

logger = logging.getLogger("hamlfix.document")


class TemplateDocument:
    """Owns the current template text, its lines and its parsed tree.

    Every mutation goes through `replace_text`, which reparses. When the new
    text fails to parse, the previous text is restored before the error
    propagates, unless debug mode keeps the broken text for inspection.
    """

    def __init__(self, source: str, *, path: Path | None = None, debug: bool | None = None) -> None:
        self.path = path
        self.debug = _debug_enabled() if debug is None else debug
        self.source_was_changed = False
        self._process_source(source)

    @classmethod
    def from_path(cls, path: Path, *, debug: bool | None = None) -> TemplateDocument:
        return cls(path.read_text(encoding="utf-8"), path=path, debug=debug)

    @property
    def file(self) -> str:
        return str(self.path) if self.path is not None else STRING_SOURCE

    @property
    def tree(self) -> TemplateNode:
        return self._parsed.tree

    @property
    def interpolation_originals(self) -> dict[str, str]:
        return self._parsed.interpolation_originals

    def current_text(self) -> str:
        return self.source

    def current_lines(self) -> list[str]:
        return list(self.source_lines)

    def was_changed(self) -> bool:
        return self.source_was_changed

    def replace_text(self, new_source: str) -> None:
        """Reparse with new_source and remember that the document changed.

        Raises:
            TemplateParseError: when new_source does not parse. The previous
                text is restored first unless debug mode is on.
        """

        if new_source == self.source:
            return

        old_source = self.source
        try:
            self._process_source(new_source)
        except TemplateParseError:
            if not self.debug:
                self._process_source(old_source)
            logger.warning(
                "reparse failed for %s, %s",
                self.file,
                "kept broken text (debug)" if self.debug else "reverted",
            )
            raise
        self.source_was_changed = True

    def write_to_disk(self) -> bool:
        """Write the corrected text back to its origin; return True if written."""

        if not self.source_was_changed or self.path is None:
            return False
        self.path.write_text(self.source, encoding="utf-8")
        self.source_was_changed = False
        return True

    def _process_source(self, source: str) -> None:
        self.source = source
        self.source_lines = split_lines(source)
        try:
            self._parsed: ParsedTemplate = parse_template(source)
        except TemplateParseError as exc:
            if self.debug:
                exc.add_note(f"{self.file} (source follows)\n{source}")
            raise


def _debug_enabled() -> bool:
    return os.getenv("HAMLFIX_DEBUG", "0") == "1"
