"""Human-readable lint report rendering for CLI output."""

from __future__ import annotations

from collections import Counter

from core.analyzer.models import Lint, LintReport

_SEVERITY_CODES = {"error": "E", "warning": "W"}


def render_lint(lint: Lint) -> str:
    cop = f"{lint.cop_name}: " if lint.cop_name else ""
    corrected = "[Corrected] " if lint.corrected else ""
    return f"{lint.file}:{lint.line} [{_SEVERITY_CODES[lint.severity]}] {corrected}{cop}{lint.message}"


def render_lint_reports(reports: list[LintReport]) -> str:
    """Render one line per lint followed by a one-line summary."""

    lines: list[str] = []
    for report in reports:
        lines.extend(render_lint(lint) for lint in report.lints)
        if report.skipped_transfers:
            lines.append(
                f"{report.file}: {report.skipped_transfers} correction(s) could not be "
                "written back"
            )

    severity_counter: Counter[str] = Counter(
        lint.severity for report in reports for lint in report.lints
    )
    corrected_count = sum(1 for report in reports for lint in report.lints if lint.corrected)
    file_word = "file" if len(reports) == 1 else "files"
    summary = (
        f"{len(reports)} {file_word} inspected, "
        f"{severity_counter['error']} error(s), {severity_counter['warning']} warning(s)"
    )
    if corrected_count:
        summary += f", {corrected_count} corrected"
    lines.append(summary)
    return "\n".join(lines)
