from __future__ import annotations

import json
import subprocess
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import pytest
import yaml  # type: ignore[import-untyped]

from core.analyzer.models import AnalyzerOptions
from core.analyzer.registry import create_analyzer, list_supported_analyzers
from core.analyzer.rubocop import RubocopAnalyzer, RubocopConfigStore
from core.config.models import LinterConfig
from core.utils.errors import AnalyzerInvocationError


def _report(*offenses: dict[str, Any]) -> str:
    return json.dumps({"files": [{"path": "view.haml.rb", "offenses": list(offenses)}]})


def _offense(line: int, cop_name: str, severity: str = "convention", corrected: bool = False) -> dict[str, Any]:
    return {
        "severity": severity,
        "message": f"{cop_name} offense",
        "cop_name": cop_name,
        "corrected": corrected,
        "location": {"start_line": line, "start_column": 1, "line": line},
    }


class _FakeRun:
    def __init__(self, stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        self.stdout = stdout
        self.returncode = returncode
        self.stderr = stderr
        self.calls: list[tuple[list[str], dict[str, Any]]] = []

    def __call__(self, arguments: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        self.calls.append((arguments, kwargs))
        return subprocess.CompletedProcess(arguments, self.returncode, self.stdout, self.stderr)


def test_build_arguments(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("HAMLFIX_RUBOCOP_CONF", raising=False)
    analyzer = RubocopAnalyzer(["bundle", "exec", "rubocop"])
    options = AnalyzerOptions(
        filename="app/views/a.haml.rb",
        autocorrect="all",
        config_path="/tmp/merged.yml",
        except_cops=["Layout/LineLength", "Lint/Void"],
    )

    assert analyzer.build_arguments(options) == [
        "bundle",
        "exec",
        "rubocop",
        "--stdin",
        "app/views/a.haml.rb",
        "--format",
        "json",
        "--force-exclusion",
        "--autocorrect-all",
        "--config",
        "/tmp/merged.yml",
        "--except",
        "Layout/LineLength,Lint/Void",
    ]


def test_environment_config_overrides_merged_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HAMLFIX_RUBOCOP_CONF", "/etc/rubocop.yml")
    options = AnalyzerOptions(filename="x.rb", autocorrect="safe", config_path="/tmp/merged.yml")

    arguments = RubocopAnalyzer().build_arguments(options)

    assert "--autocorrect" in arguments
    assert arguments[arguments.index("--config") + 1] == "/etc/rubocop.yml"


def test_analyze_reads_offenses(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_run = _FakeRun(
        _report(_offense(2, "Layout/SpaceBeforeComma"), _offense(5, "Lint/Syntax", "fatal")),
        returncode=1,
    )
    monkeypatch.setattr("core.analyzer.rubocop.subprocess.run", fake_run)

    result = RubocopAnalyzer().analyze("foo(bar , 42)\n", AnalyzerOptions(filename="ruby_script.rb"))

    assert result.rewritten_text is None
    assert [(d.synthetic_line, d.cop_name, d.severity) for d in result.diagnostics] == [
        (2, "Layout/SpaceBeforeComma", "warning"),
        (5, "Lint/Syntax", "error"),
    ]
    arguments, kwargs = fake_run.calls[0]
    assert kwargs["input"] == "foo(bar , 42)\n"
    assert kwargs["check"] is False


def test_analyze_splits_corrected_source(monkeypatch: pytest.MonkeyPatch) -> None:
    stdout = _report(_offense(2, "Layout/SpaceBeforeComma", corrected=True)) + (
        "\n====================\nhaml_lint_marker_1\nfoo(bar, 42)\nhaml_lint_marker_3\n"
    )
    monkeypatch.setattr("core.analyzer.rubocop.subprocess.run", _FakeRun(stdout))

    result = RubocopAnalyzer().analyze(
        "haml_lint_marker_1\nfoo(bar , 42)\nhaml_lint_marker_3\n",
        AnalyzerOptions(filename="ruby_script.rb", autocorrect="safe"),
    )

    assert result.rewritten_text == "haml_lint_marker_1\nfoo(bar, 42)\nhaml_lint_marker_3\n"
    assert result.diagnostics[0].corrected is True


def test_unexpected_exit_status_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "core.analyzer.rubocop.subprocess.run",
        _FakeRun(returncode=2, stderr="Error: unrecognized cop Foo/Bar\n"),
    )

    with pytest.raises(AnalyzerInvocationError, match="status 2") as exc_info:
        RubocopAnalyzer().analyze("foo\n", AnalyzerOptions(filename="ruby_script.rb"))

    assert exc_info.value.exit_status == 2
    assert "unrecognized cop" in (exc_info.value.stderr or "")


def test_missing_executable_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    def _missing(arguments: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError(2, "No such file or directory", arguments[0])

    monkeypatch.setattr("core.analyzer.rubocop.subprocess.run", _missing)

    with pytest.raises(AnalyzerInvocationError, match="Could not run rubocop"):
        RubocopAnalyzer().analyze("foo\n", AnalyzerOptions(filename="ruby_script.rb"))


def test_invalid_json_report_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("core.analyzer.rubocop.subprocess.run", _FakeRun("not json", returncode=1))

    with pytest.raises(AnalyzerInvocationError, match="not valid JSON"):
        RubocopAnalyzer().analyze("foo\n", AnalyzerOptions(filename="ruby_script.rb"))


def test_config_lookup_walks_up_to_project_config(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    project = tmp_path / "project"
    views = project / "app" / "views"
    views.mkdir(parents=True)
    (project / ".rubocop.yml").write_text("AllCops: {}\n", encoding="utf-8")
    store = RubocopConfigStore(temp_dir=tmp_path)

    assert store.config_path_for(views / "index.haml") == (project / ".rubocop.yml").resolve()

    merged = store.merged_config_for(views / "index.haml", {"AllCops": {"NewCops": "disable"}})
    written = yaml.safe_load(merged.read_text(encoding="utf-8"))
    assert written == {
        "AllCops": {"NewCops": "disable"},
        "inherit_from": str((project / ".rubocop.yml").resolve()),
    }


def test_config_lookup_without_project_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    lonely = tmp_path / "lonely"
    lonely.mkdir()
    store = RubocopConfigStore(temp_dir=tmp_path)

    merged = store.merged_config_for(lonely, {})

    assert store.config_path_for(lonely) is None
    assert yaml.safe_load(merged.read_text(encoding="utf-8")) == {}
    store.cleanup()
    assert not merged.exists()


def test_merged_config_is_built_once_across_threads(tmp_path: Path) -> None:
    (tmp_path / ".rubocop.yml").write_text("AllCops: {}\n", encoding="utf-8")
    store = RubocopConfigStore(temp_dir=tmp_path)
    sent = {"AllCops": {"SuggestExtensions": False}}

    with ThreadPoolExecutor(max_workers=8) as pool:
        paths = list(pool.map(lambda _: store.merged_config_for(tmp_path, sent), range(32)))

    assert len(set(paths)) == 1
    assert store.build_count == 1


def test_registry_creates_rubocop_from_config() -> None:
    analyzer = create_analyzer("rubocop", LinterConfig(rubocop_command=["bin/rubocop"]))

    assert isinstance(analyzer, RubocopAnalyzer)
    assert analyzer.command == ["bin/rubocop"]
    assert list_supported_analyzers() == ["rubocop"]
    with pytest.raises(ValueError, match="Unsupported analyzer: reek"):
        create_analyzer("reek")
