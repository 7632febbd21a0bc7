from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path

import pytest

from core.analyzer.models import AnalyzerDiagnostic, AnalyzerOptions, AnalyzerResult
from core.analyzer.rubocop import RubocopConfigStore
from core.config.models import LinterConfig
from core.orchestrator.session import LintSession
from core.template.document import TemplateDocument
from core.utils.errors import AnalyzerInvocationError, TemplateParseError


class _RewritingAnalyzer:
    name = "fake"

    def __init__(
        self,
        rewrite: Callable[[str], str] | None = None,
        diagnostics: list[AnalyzerDiagnostic] | None = None,
    ) -> None:
        self.rewrite = rewrite
        self.diagnostics = diagnostics or []
        self.calls: list[tuple[str, AnalyzerOptions]] = []

    def analyze(self, synthetic_text: str, options: AnalyzerOptions) -> AnalyzerResult:
        self.calls.append((synthetic_text, options))
        rewritten = None
        if self.rewrite is not None and options.autocorrect is not None:
            rewritten = self.rewrite(synthetic_text)
        return AnalyzerResult(diagnostics=list(self.diagnostics), rewritten_text=rewritten)


class _FailingAnalyzer:
    name = "broken"

    def analyze(self, synthetic_text: str, options: AnalyzerOptions) -> AnalyzerResult:
        raise AnalyzerInvocationError("boom", exit_status=2, stderr="config error")


def _replace(old: str, new: str) -> Callable[[str], str]:
    return lambda source: source.replace(old, new)


def test_round_trip_corrects_script_and_ends_clean() -> None:
    document = TemplateDocument("- foo(bar , 42)\n", debug=False)
    analyzer = _RewritingAnalyzer(_replace("foo(bar , 42)", "foo(bar, 42)"))
    session = LintSession(document, analyzer, autocorrect="safe")

    report = session.run()

    assert document.current_text() == "- foo(bar, 42)\n"
    assert document.was_changed() is True
    assert report.corrected is True
    assert session.state == "clean"
    assert session.last_extracted_source is not None
    assert session.last_extracted_source.source == (
        "haml_lint_marker_1\nfoo(bar , 42)\nhaml_lint_marker_3\n"
    )
    assert session.last_new_ruby_source == "haml_lint_marker_1\nfoo(bar, 42)\nhaml_lint_marker_3\n"


def test_without_autocorrect_the_document_is_not_touched() -> None:
    document = TemplateDocument("- foo(bar , 42)\n", debug=False)
    analyzer = _RewritingAnalyzer(_replace("foo(bar , 42)", "foo(bar, 42)"))

    report = LintSession(document, analyzer).run()

    assert document.current_text() == "- foo(bar , 42)\n"
    assert report.corrected is False
    assert analyzer.calls[0][1].autocorrect is None


def test_identical_rewrite_is_not_a_change() -> None:
    text = "%p= foo\n- if x\n  = y\n:ruby\n  z(1)\n"
    document = TemplateDocument(text, debug=False)
    session = LintSession(document, _RewritingAnalyzer(lambda source: source), autocorrect="all")

    report = session.run()

    assert document.current_text() == text
    assert document.was_changed() is False
    assert report.corrected is False
    assert session.state == "clean"


def test_template_without_ruby_skips_the_analyzer() -> None:
    document = TemplateDocument("!!! 5\n-# nothing here\n", debug=False)
    analyzer = _RewritingAnalyzer()
    session = LintSession(document, analyzer)

    report = session.run()

    assert analyzer.calls == []
    assert report.lints == []
    assert session.last_new_ruby_source == ""


def test_diagnostics_are_mapped_to_template_lines() -> None:
    document = TemplateDocument("%tag\n  - foo(bar , 42)\n", debug=False)
    analyzer = _RewritingAnalyzer(
        diagnostics=[
            AnalyzerDiagnostic(
                synthetic_line=4,
                message="Space found before comma.",
                severity="warning",
                cop_name="Layout/SpaceBeforeComma",
            ),
            AnalyzerDiagnostic(
                synthetic_line=6,
                message="Syntax error",
                severity="error",
                cop_name="Lint/Syntax",
            ),
            AnalyzerDiagnostic(
                synthetic_line=4,
                message="Use modifier form.",
                cop_name="Style/IfUnlessModifier",
            ),
        ]
    )
    config = LinterConfig(ignored_cops=["Style/IfUnlessModifier"])

    report = LintSession(document, analyzer, config).run()

    assert [(lint.line, lint.cop_name, lint.severity) for lint in report.lints] == [
        (2, "Layout/SpaceBeforeComma", "warning"),
        (2, "Lint/Syntax", "error"),
    ]
    assert report.has_errors is True
    assert all(lint.file == "(string)" for lint in report.lints)


def test_analyzer_options_carry_ignored_cops_and_merged_config(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("HAMLFIX_RUBOCOP_CONF", raising=False)
    (tmp_path / ".rubocop.yml").write_text("AllCops: {}\n", encoding="utf-8")
    template = tmp_path / "view.haml"
    template.write_text("- foo\n", encoding="utf-8")
    analyzer = _RewritingAnalyzer()
    config = LinterConfig(
        ignored_cops=["Layout/LineLength"],
        ignored_autocorrect_cops=["Lint/UselessAssignment", "Layout/LineLength"],
    )
    store = RubocopConfigStore(temp_dir=tmp_path)

    LintSession(
        TemplateDocument.from_path(template, debug=False),
        analyzer,
        config,
        autocorrect="safe",
        config_store=store,
    ).run()

    options = analyzer.calls[0][1]
    assert options.filename == f"{template}.rb"
    assert options.except_cops == ["Layout/LineLength", "Lint/UselessAssignment"]
    assert options.config_path is not None
    assert Path(options.config_path).parent == tmp_path


def test_reparse_failure_reverts_and_fails_session() -> None:
    document = TemplateDocument("- foo(1)\n", debug=False)
    session = LintSession(document, _RewritingAnalyzer(_replace("foo(1)", "else")), autocorrect="safe")

    with pytest.raises(TemplateParseError):
        session.run()

    assert session.state == "failed"
    assert document.current_text() == "- foo(1)\n"
    assert document.was_changed() is False
    with pytest.raises(RuntimeError, match="failed session"):
        session.run()


def test_debug_mode_keeps_broken_text_after_failed_reparse() -> None:
    document = TemplateDocument("- foo(1)\n", debug=False)
    session = LintSession(
        document,
        _RewritingAnalyzer(_replace("foo(1)", "else")),
        LinterConfig(debug=True),
        autocorrect="safe",
    )

    with pytest.raises(TemplateParseError):
        session.run()

    assert session.state == "failed"
    assert document.current_text() == "- else\n"


def test_analyzer_failure_is_fatal_for_the_session(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.ERROR, logger="hamlfix.session")
    document = TemplateDocument("- foo\n", debug=False)
    session = LintSession(document, _FailingAnalyzer())

    with pytest.raises(AnalyzerInvocationError) as exc_info:
        session.run()

    assert exc_info.value.exit_status == 2
    assert session.state == "failed"
    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "analyzer_failed"
    assert payload["exit_status"] == 2


def test_skipped_transfer_is_logged_and_counted(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="hamlfix.extraction")
    document = TemplateDocument("- foo(1 , 2)\n%p\n  Hi #{bar(3 , 4)}\n", debug=False)
    analyzer = _RewritingAnalyzer(
        lambda source: source.replace("foo(1 , 2)", "foo(1, 2)").replace(
            "HL.out = bar(3 , 4)", "HL.out = bar(\n    3, 4\n  )"
        )
    )
    session = LintSession(document, analyzer, autocorrect="safe")

    report = session.run()

    assert document.current_text() == "- foo(1, 2)\n%p\n  Hi #{bar(3 , 4)}\n"
    assert report.skipped_transfers == 1
    assert session.skipped_transfers[0].fragment_type == "InterpolationFragment"
    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "transfer skipped"
    assert payload["line"] == 3


def test_unsupported_autocorrect_mode_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported autocorrect mode"):
        LintSession(TemplateDocument("- foo\n"), _RewritingAnalyzer(), autocorrect="aggressive")  # type: ignore[arg-type]


def test_correction_before_a_block_holding_only_a_tag_survives() -> None:
    document = TemplateDocument("- foo(1 , 2)\n\n- if x\n  %br\n", debug=False)
    analyzer = _RewritingAnalyzer(_replace("foo(1 , 2)", "foo(1, 2)"))
    session = LintSession(document, analyzer, autocorrect="safe")

    session.run()

    assert document.current_text() == "- foo(1, 2)\n\n- if x\n  %br\n"
    assert session.state == "clean"
    assert session.last_extracted_source is not None
    assert "  haml_lint_tag_placeholder\nend\n" in session.last_extracted_source.source
