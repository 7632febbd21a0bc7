"""RuboCop adapter: runs the `rubocop` executable over a synthetic source."""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from core.analyzer.models import (
    AnalyzerDiagnostic,
    AnalyzerOptions,
    AnalyzerResult,
    normalize_severity,
)
from core.config.models import LinterConfig
from core.utils.errors import AnalyzerInvocationError
from core.utils.events import dump_json, log_event

logger = logging.getLogger("hamlfix.analyzer")

RUBOCOP_CONFIG_FILENAME = ".rubocop.yml"
# Exit statuses meaning "no offenses" and "offenses found"
_ACCEPTED_STATUSES = (0, 1)
_CORRECTED_SOURCE_SEPARATOR_RE = re.compile(r"^={20}$", re.MULTILINE)


class RubocopConfigStore:
    """Caches RuboCop config lookups shared by every session in the process.

    Two caches: the `.rubocop.yml` that applies to a directory, and the merged
    config file generated for a (config file, overrides) pair. Both are
    filled under one lock so each entry is computed at most once, even when
    sessions for many files run on separate threads.
    """

    def __init__(self, *, temp_dir: Path | None = None) -> None:
        self._lock = threading.Lock()
        self._temp_dir = temp_dir
        self._dir_to_config_path: dict[Path, Path | None] = {}
        self._merged_configs: dict[tuple[Path | None, str], Path] = {}
        self.build_count = 0

    def config_path_for(self, path: Path) -> Path | None:
        directory = path if path.is_dir() else path.parent
        directory = directory.resolve()
        with self._lock:
            if directory not in self._dir_to_config_path:
                self._dir_to_config_path[directory] = _find_config_file(directory)
            return self._dir_to_config_path[directory]

    def merged_config_for(self, path: Path, sent_to_rubocop: dict[str, Any]) -> Path:
        """Return a config file inheriting the project config and applying overrides."""

        config_path = self.config_path_for(path)
        key = (config_path, dump_json(sent_to_rubocop))
        with self._lock:
            merged = self._merged_configs.get(key)
            if merged is None:
                merged = self._build_merged_config(config_path, sent_to_rubocop)
                self._merged_configs[key] = merged
                self.build_count += 1
            return merged

    def cleanup(self) -> None:
        with self._lock:
            for merged in self._merged_configs.values():
                merged.unlink(missing_ok=True)
            self._merged_configs.clear()
            self._dir_to_config_path.clear()

    def _build_merged_config(self, config_path: Path | None, sent_to_rubocop: dict[str, Any]) -> Path:
        template = dict(sent_to_rubocop)
        if config_path is not None:
            template["inherit_from"] = str(config_path)

        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            prefix=".hamlfix-rubocop-",
            suffix=".yml",
            dir=self._temp_dir,
            delete=False,
        ) as handle:
            yaml.safe_dump(template, handle, sort_keys=True)
        log_event(
            logger,
            logging.DEBUG,
            "rubocop_config_built",
            inherit_from=str(config_path) if config_path is not None else None,
            path=handle.name,
        )
        return Path(handle.name)


_default_store = RubocopConfigStore()


def default_config_store() -> RubocopConfigStore:
    return _default_store


class RubocopAnalyzer:
    """Runs `rubocop --stdin` and reads its JSON report.

    When auto-correcting, RuboCop prints the corrected source after a line of
    twenty `=` signs following the report.
    """

    name = "rubocop"

    def __init__(self, command: list[str] | None = None) -> None:
        self.command = list(command or ["rubocop"])

    @classmethod
    def from_config(cls, config: LinterConfig) -> RubocopAnalyzer:
        return cls(config.rubocop_command)

    def build_arguments(self, options: AnalyzerOptions) -> list[str]:
        arguments = [
            *self.command,
            "--stdin",
            options.filename,
            "--format",
            "json",
            "--force-exclusion",
        ]
        if options.autocorrect == "safe":
            arguments.append("--autocorrect")
        elif options.autocorrect == "all":
            arguments.append("--autocorrect-all")

        config_path = os.getenv("HAMLFIX_RUBOCOP_CONF") or options.config_path
        if config_path:
            arguments.extend(["--config", config_path])
        if options.except_cops:
            arguments.extend(["--except", ",".join(options.except_cops)])
        return arguments

    def analyze(self, synthetic_text: str, options: AnalyzerOptions) -> AnalyzerResult:
        arguments = self.build_arguments(options)
        try:
            completed = subprocess.run(
                arguments,
                input=synthetic_text,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise AnalyzerInvocationError(f"Could not run {self.command[0]}: {exc}") from exc

        log_event(
            logger,
            logging.DEBUG,
            "analyzer_run",
            analyzer=self.name,
            filename=options.filename,
            status=completed.returncode,
        )
        if completed.returncode not in _ACCEPTED_STATUSES:
            raise AnalyzerInvocationError(
                f"RuboCop exited unsuccessfully with status {completed.returncode}.",
                exit_status=completed.returncode,
                stderr=completed.stderr,
            )

        report_text, rewritten_text = _split_output(completed.stdout, options.autocorrect is not None)
        return AnalyzerResult(
            diagnostics=_parse_diagnostics(report_text),
            rewritten_text=rewritten_text,
        )


def _find_config_file(directory: Path) -> Path | None:
    for candidate_dir in (directory, *directory.parents):
        candidate = candidate_dir / RUBOCOP_CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    home_config = Path.home() / RUBOCOP_CONFIG_FILENAME
    if home_config.is_file():
        return home_config
    return None


def _split_output(stdout: str, autocorrect: bool) -> tuple[str, str | None]:
    if not autocorrect:
        return stdout, None
    parts = _CORRECTED_SOURCE_SEPARATOR_RE.split(stdout, maxsplit=1)
    if len(parts) == 1:
        return stdout, None
    report_text, corrected = parts
    # The separator line ends with a newline that is not part of the source
    if corrected.startswith("\n"):
        corrected = corrected[1:]
    return report_text, corrected


def _parse_diagnostics(report_text: str) -> list[AnalyzerDiagnostic]:
    if not report_text.strip():
        return []
    try:
        report = json.loads(report_text)
    except json.JSONDecodeError as exc:
        raise AnalyzerInvocationError("RuboCop printed a report that is not valid JSON.") from exc

    diagnostics: list[AnalyzerDiagnostic] = []
    for file_report in report.get("files", []):
        for offense in file_report.get("offenses", []):
            location = offense.get("location", {})
            diagnostics.append(
                AnalyzerDiagnostic(
                    synthetic_line=int(location.get("start_line", location.get("line", 1))),
                    message=str(offense.get("message", "")),
                    severity=normalize_severity(offense.get("severity")),
                    cop_name=offense.get("cop_name"),
                    corrected=bool(offense.get("corrected", False)),
                )
            )
    return diagnostics
