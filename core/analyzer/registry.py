"""Analyzer registry for CLI analyzer resolution."""

from __future__ import annotations

from collections.abc import Callable

from core.analyzer.base import Analyzer
from core.analyzer.rubocop import RubocopAnalyzer
from core.config.models import LinterConfig

AnalyzerFactory = Callable[[LinterConfig], Analyzer]

_SUPPORTED_ANALYZERS: dict[str, AnalyzerFactory] = {
    "rubocop": RubocopAnalyzer.from_config,
}


def create_analyzer(name: str, config: LinterConfig | None = None) -> Analyzer:
    """Instantiate a supported analyzer by name."""

    try:
        factory = _SUPPORTED_ANALYZERS[name]
    except KeyError as exc:
        raise ValueError(f"Unsupported analyzer: {name}") from exc
    return factory(config or LinterConfig())


def list_supported_analyzers() -> list[str]:
    """Return supported analyzer names in stable order."""

    return sorted(_SUPPORTED_ANALYZERS)
