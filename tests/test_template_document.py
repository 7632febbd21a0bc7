from __future__ import annotations

import logging
from pathlib import Path

import pytest

from core.template.document import TemplateDocument
from core.utils.errors import TemplateParseError


def test_replace_text_reparses_and_marks_changed() -> None:
    document = TemplateDocument("- foo\n")

    document.replace_text("- bar\n")

    assert document.current_text() == "- bar\n"
    assert document.current_lines() == ["- bar", ""]
    assert document.tree.children[0].text == "bar"
    assert document.was_changed() is True


def test_replace_text_with_same_text_is_not_a_change() -> None:
    document = TemplateDocument("- foo\n")

    document.replace_text("- foo\n")

    assert document.was_changed() is False


def test_replace_text_reverts_on_parse_error(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="hamlfix.document")
    document = TemplateDocument("%p\n  - foo\n", debug=False)

    with pytest.raises(TemplateParseError) as exc_info:
        document.replace_text("%p\n- else\n")

    assert exc_info.value.line == 2
    assert document.current_text() == "%p\n  - foo\n"
    assert document.tree.children[0].children[0].text == "foo"
    assert document.was_changed() is False
    assert "reverted" in caplog.text


def test_debug_mode_keeps_broken_text(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HAMLFIX_DEBUG", "1")
    document = TemplateDocument("- foo\n")
    assert document.debug is True

    with pytest.raises(TemplateParseError) as exc_info:
        document.replace_text("- else\n")

    assert document.current_text() == "- else\n"
    assert any("source follows" in note for note in exc_info.value.__notes__)


def test_initial_parse_error_propagates() -> None:
    with pytest.raises(TemplateParseError, match="Indenting at the beginning"):
        TemplateDocument("  %p\n")


def test_write_to_disk_only_when_changed(tmp_path: Path) -> None:
    path = tmp_path / "view.haml"
    path.write_text("- foo\n", encoding="utf-8")
    document = TemplateDocument.from_path(path)

    assert document.file == str(path)
    assert document.write_to_disk() is False

    document.replace_text("- bar\n")
    assert document.write_to_disk() is True
    assert path.read_text(encoding="utf-8") == "- bar\n"
    assert document.write_to_disk() is False


def test_string_document_has_placeholder_file_name() -> None:
    assert TemplateDocument("%p\n").file == "(string)"
