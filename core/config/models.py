"""Linter configuration model."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LinterConfig(BaseModel):
    """Settings for the RuboCop pass over extracted Ruby.

    `ignored_cops` are neither reported nor allowed to auto-correct.
    `ignored_autocorrect_cops` are reported but never auto-correct.
    `sent_to_rubocop` is merged over the project's own `.rubocop.yml`.
    """

    model_config = ConfigDict(extra="forbid")

    ignored_cops: list[str] = Field(default_factory=list)
    ignored_autocorrect_cops: list[str] = Field(default_factory=list)
    sent_to_rubocop: dict[str, Any] = Field(default_factory=dict)
    rubocop_command: list[str] = Field(default_factory=lambda: ["rubocop"])
    debug: bool = False
