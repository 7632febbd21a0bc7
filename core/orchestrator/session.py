"""One extract -> analyze -> splice -> reparse cycle over a template document."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

from core.analyzer.base import Analyzer
from core.analyzer.models import (
    AnalyzerOptions,
    AnalyzerResult,
    AutocorrectMode,
    Lint,
    LintReport,
)
from core.analyzer.rubocop import RubocopConfigStore
from core.config.models import LinterConfig
from core.extraction.assembler import FragmentAssembler, SkippedTransfer, SyntheticSource
from core.extraction.extractor import FragmentExtractor
from core.template.document import TemplateDocument
from core.utils.errors import AnalyzerInvocationError, TemplateParseError
from core.utils.events import log_event

SessionState = Literal["clean", "analyzing", "correcting", "failed"]

STDIN_RUBY_FILENAME = "ruby_script.rb"

logger = logging.getLogger("hamlfix.session")


class LintSession:
    """Lints one document and, when asked, writes corrections back into it.

    States move clean -> analyzing -> correcting -> clean. A reparse failure
    while correcting reverts the document (unless debug mode keeps the broken
    text) and leaves the session failed; a failed session does not run again.
    """

    def __init__(
        self,
        document: TemplateDocument,
        analyzer: Analyzer,
        config: LinterConfig | None = None,
        *,
        autocorrect: AutocorrectMode | None = None,
        config_store: RubocopConfigStore | None = None,
    ) -> None:
        if autocorrect not in (None, "safe", "all"):
            raise ValueError(f"Unsupported autocorrect mode: {autocorrect}")

        self.document = document
        self.analyzer = analyzer
        self.config = config or LinterConfig()
        self.autocorrect = autocorrect
        self.config_store = config_store
        self.state: SessionState = "clean"
        self.last_extracted_source: SyntheticSource | None = None
        self.last_new_ruby_source: str | None = None
        self.skipped_transfers: list[SkippedTransfer] = []
        if self.config.debug:
            self.document.debug = True

    def run(self) -> LintReport:
        if self.state == "failed":
            raise RuntimeError("A failed session cannot run again; start a new one.")

        self._transition("analyzing")
        self.last_extracted_source = None
        self.last_new_ruby_source = None
        self.skipped_transfers = []

        assembler = FragmentAssembler(self.document, FragmentExtractor(self.document).extract())
        extracted = assembler.synthetic_source()
        self.last_extracted_source = extracted
        if not extracted.source:
            self.last_new_ruby_source = ""
            self._transition("clean")
            return LintReport.from_lints(self.document.file, [])

        try:
            result = self.analyzer.analyze(extracted.source, self._analyzer_options())
        except AnalyzerInvocationError as exc:
            self._transition("failed")
            log_event(
                logger,
                logging.ERROR,
                "analyzer_failed",
                file=self.document.file,
                analyzer=self.analyzer.name,
                exit_status=exc.exit_status,
            )
            raise

        new_source = result.rewritten_text if result.rewritten_text is not None else extracted.source
        self.last_new_ruby_source = new_source
        lints = self._lints_from(result, assembler)

        if self.autocorrect is None or new_source == extracted.source:
            self._transition("clean")
            return LintReport.from_lints(self.document.file, lints)

        self._transition("correcting")
        haml_lines = assembler.template_lines_with_corrections(new_source)
        self.skipped_transfers = list(assembler.skipped_transfers)
        try:
            self.document.replace_text("\n".join(haml_lines))
        except TemplateParseError as exc:
            self._transition("failed")
            log_event(
                logger,
                logging.ERROR,
                "correction_reverted",
                file=self.document.file,
                line=exc.line,
                message=exc.message,
                kept_broken_text=self.document.debug,
            )
            raise

        self._transition("clean")
        return LintReport.from_lints(
            self.document.file,
            lints,
            corrected=self.document.was_changed(),
            skipped_transfers=len(self.skipped_transfers),
        )

    def _analyzer_options(self) -> AnalyzerOptions:
        except_cops = list(self.config.ignored_cops)
        if self.autocorrect is not None:
            except_cops.extend(self.config.ignored_autocorrect_cops)

        config_path: str | None = None
        if self.config_store is not None and not os.getenv("HAMLFIX_RUBOCOP_CONF"):
            location = self.document.path or Path.cwd()
            merged = self.config_store.merged_config_for(location, self.config.sent_to_rubocop)
            config_path = str(merged)

        filename = f"{self.document.path}.rb" if self.document.path else STDIN_RUBY_FILENAME
        return AnalyzerOptions(
            filename=filename,
            autocorrect=self.autocorrect,
            config_path=config_path,
            except_cops=list(dict.fromkeys(except_cops)),
        )

    def _lints_from(self, result: AnalyzerResult, assembler: FragmentAssembler) -> list[Lint]:
        ignored = set(self.config.ignored_cops)
        return [
            Lint(
                file=self.document.file,
                line=assembler.template_line_for(diagnostic.synthetic_line),
                message=diagnostic.message,
                severity=diagnostic.severity,
                cop_name=diagnostic.cop_name,
                corrected=diagnostic.corrected,
            )
            for diagnostic in result.diagnostics
            if diagnostic.cop_name not in ignored
        ]

    def _transition(self, state: SessionState) -> None:
        log_event(
            logger,
            logging.DEBUG,
            "session_state",
            file=self.document.file,
            previous=self.state,
            state=state,
        )
        self.state = state
