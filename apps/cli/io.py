"""CLI I/O helpers for atomic report writing."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path
from typing import Any

from core.analyzer.models import LintReport


def build_reports_payload(reports: list[LintReport]) -> dict[str, Any]:
    """Build the JSON document describing every linted file."""

    return {
        "files": [report.model_dump(mode="json") for report in reports],
        "summary": {
            "file_count": len(reports),
            "lint_count": sum(len(report.lints) for report in reports),
            "error_count": sum(
                1 for report in reports for lint in report.lints if lint.severity == "error"
            ),
            "corrected_file_count": sum(1 for report in reports if report.corrected),
        },
    }


def write_reports_json_atomic(path: Path, reports: list[LintReport]) -> None:
    """Write the reports JSON atomically using a temporary file + replace."""

    path.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_json(path, build_reports_payload(reports))


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        prefix=f"{path.name}.",
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        json.dump(payload, tmp, ensure_ascii=False, sort_keys=True, separators=(",", ":"))

    tmp_path.replace(path)
