"""Typer CLI entrypoint for hamlfix."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Literal, cast

import typer

from apps.cli.format_human import render_lint_reports
from apps.cli.io import build_reports_payload, write_reports_json_atomic
from core.analyzer.base import Analyzer
from core.analyzer.models import AutocorrectMode, LintReport
from core.analyzer.registry import create_analyzer, list_supported_analyzers
from core.analyzer.rubocop import RubocopConfigStore, default_config_store
from core.config.loader import load_config
from core.config.models import LinterConfig
from core.orchestrator.session import LintSession
from core.template.document import TemplateDocument
from core.utils.errors import AnalyzerInvocationError, ConfigurationError, TemplateParseError

app = typer.Typer(help="Haml embedded Ruby lint CLI", rich_markup_mode=None)
ReportFormat = Literal["human", "json"]

EXIT_OK = 0
EXIT_LINTS = 1
EXIT_FAILURE = 2


@app.callback()
def cli_callback() -> None:
    """CLI root callback to keep `hamlfix lint` as explicit command form."""


@app.command("lint")
def lint_command(
    files: Annotated[
        list[Path], typer.Argument(exists=True, dir_okay=False, file_okay=True)
    ],
    auto_correct: Annotated[
        str | None,
        typer.Option(
            "--auto-correct",
            help="Write corrections back to the templates: safe or all.",
        ),
    ] = None,
    config: Annotated[
        Path | None, typer.Option("--config", exists=True, dir_okay=False, file_okay=True)
    ] = None,
    output_format: Annotated[str, typer.Option("--format")] = "human",
    analyzer_name: Annotated[str, typer.Option("--analyzer")] = "rubocop",
    report_json: Annotated[
        Path | None,
        typer.Option("--report-json", help="Also write the JSON report to this path."),
    ] = None,
) -> None:
    """Lint the Ruby embedded in Haml templates, optionally auto-correcting it."""

    autocorrect: AutocorrectMode | None = None
    if auto_correct is not None:
        normalized_autocorrect = auto_correct.lower().strip()
        if normalized_autocorrect not in {"safe", "all"}:
            typer.echo("ERROR: --auto-correct must be one of: safe, all.")
            raise typer.Exit(code=EXIT_FAILURE)
        autocorrect = cast(AutocorrectMode, normalized_autocorrect)

    normalized_format = output_format.lower().strip()
    if normalized_format not in {"human", "json"}:
        typer.echo("ERROR: --format must be one of: human, json.")
        raise typer.Exit(code=EXIT_FAILURE)
    report_format = cast(ReportFormat, normalized_format)

    try:
        linter_config = load_config(config)
    except ConfigurationError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_FAILURE) from exc

    try:
        analyzer = create_analyzer(analyzer_name, linter_config)
    except ValueError as exc:
        supported = ", ".join(list_supported_analyzers())
        typer.echo(f"ERROR: {exc}. Supported analyzers: {supported}.")
        raise typer.Exit(code=EXIT_FAILURE) from exc

    reports: list[LintReport] = []
    failed = False
    config_store = default_config_store()
    try:
        for path in files:
            report = _lint_file(
                path,
                analyzer,
                linter_config,
                autocorrect,
                config_store=config_store,
                announce=report_format == "human",
            )
            if report is None:
                failed = True
                continue
            reports.append(report)
    finally:
        # Merged RuboCop configs live in temp files for the length of one run
        if config_store is not None:
            config_store.cleanup()

    if report_format == "json":
        typer.echo(json.dumps(build_reports_payload(reports), ensure_ascii=False, sort_keys=True))
    else:
        typer.echo(render_lint_reports(reports))

    if report_json is not None:
        try:
            write_reports_json_atomic(report_json, reports)
        except OSError as exc:
            typer.echo(f"ERROR: report write failed: {exc}")
            raise typer.Exit(code=EXIT_FAILURE) from exc

    if failed:
        raise typer.Exit(code=EXIT_FAILURE)
    remaining_errors = any(
        lint.severity == "error" for report in reports for lint in report.remaining_lints
    )
    raise typer.Exit(code=EXIT_LINTS if remaining_errors else EXIT_OK)


def _lint_file(
    path: Path,
    analyzer: Analyzer,
    config: LinterConfig,
    autocorrect: AutocorrectMode | None,
    *,
    config_store: RubocopConfigStore | None,
    announce: bool,
) -> LintReport | None:
    try:
        document = TemplateDocument.from_path(path, debug=config.debug or None)
    except TemplateParseError as exc:
        typer.echo(f"ERROR: {path}: {exc}")
        return None
    except (OSError, UnicodeDecodeError) as exc:
        typer.echo(f"ERROR: {path}: {type(exc).__name__}: {exc}")
        return None

    session = LintSession(
        document,
        analyzer,
        config,
        autocorrect=autocorrect,
        config_store=config_store,
    )
    try:
        report = session.run()
    except AnalyzerInvocationError as exc:
        typer.echo(f"ERROR: {path}: {exc}")
        if exc.stderr:
            typer.echo(exc.stderr.rstrip())
        return None
    except TemplateParseError as exc:
        typer.echo(f"ERROR: {path}: corrections produced an invalid template ({exc}); reverted")
        return None

    if document.write_to_disk() and announce:
        typer.echo(f"INFO: corrected {path}")
    return report


def main() -> None:
    """Console script entrypoint."""

    app()


if __name__ == "__main__":
    main()
