"""Analyzer interface definitions."""

from __future__ import annotations

from typing import Protocol

from core.analyzer.models import AnalyzerOptions, AnalyzerResult


class Analyzer(Protocol):
    """Protocol for external Ruby analyzers."""

    name: str

    def analyze(self, synthetic_text: str, options: AnalyzerOptions) -> AnalyzerResult:
        """Report offenses in synthetic_text and, when asked, return it corrected."""
