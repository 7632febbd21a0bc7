"""Data models for analyzer results and lint reports."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Severity = Literal["error", "warning"]
AutocorrectMode = Literal["safe", "all"]

SEVERITY_MAP: dict[str, Severity] = {
    "error": "error",
    "fatal": "error",
    "convention": "warning",
    "refactor": "warning",
    "warning": "warning",
    "info": "warning",
}


def normalize_severity(raw: str | None) -> Severity:
    """Map an analyzer severity name onto error/warning; unknown names are warnings."""

    return SEVERITY_MAP.get((raw or "").lower(), "warning")


class AnalyzerOptions(BaseModel):
    """Per-call options handed to an analyzer."""

    model_config = ConfigDict(extra="forbid")

    filename: str
    autocorrect: AutocorrectMode | None = None
    config_path: str | None = None
    except_cops: list[str] = Field(default_factory=list)


class AnalyzerDiagnostic(BaseModel):
    """One offense, positioned on the synthetic source."""

    model_config = ConfigDict(extra="forbid")

    synthetic_line: int
    message: str
    severity: Severity = "warning"
    cop_name: str | None = None
    corrected: bool = False


class AnalyzerResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    diagnostics: list[AnalyzerDiagnostic] = Field(default_factory=list)
    rewritten_text: str | None = None


class Lint(BaseModel):
    """One diagnostic positioned on the template."""

    model_config = ConfigDict(extra="forbid")

    file: str
    line: int
    message: str
    severity: Severity
    cop_name: str | None = None
    corrected: bool = False


class LintReport(BaseModel):
    """Outcome of linting one template."""

    model_config = ConfigDict(extra="forbid")

    file: str
    lints: list[Lint] = Field(default_factory=list)
    corrected: bool = False
    skipped_transfers: int = 0

    @classmethod
    def from_lints(
        cls,
        file: str,
        lints: list[Lint],
        *,
        corrected: bool = False,
        skipped_transfers: int = 0,
    ) -> LintReport:
        ordered = sorted(lints, key=lambda lint: (lint.line, lint.cop_name or "", lint.message))
        return cls(
            file=file,
            lints=ordered,
            corrected=corrected,
            skipped_transfers=skipped_transfers,
        )

    @property
    def has_errors(self) -> bool:
        return any(lint.severity == "error" for lint in self.lints)

    @property
    def remaining_lints(self) -> list[Lint]:
        return [lint for lint in self.lints if not lint.corrected]
