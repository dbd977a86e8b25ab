"""Template fill report models."""

from __future__ import annotations

from typing import Literal

from docx.document import Document as DocxDocument
from pydantic import BaseModel, ConfigDict, Field

from tagtransfer.context.models import ParseResult


class FillLogEntry(BaseModel):
    """One log item: a placeholder outcome, a checkbox set from a key, or an unused key."""

    model_config = ConfigDict(extra="forbid")

    status: Literal["replaced", "missing", "unsupported", "checkbox", "unused"]
    field_name: str | None = None
    run_id: str | None = None
    paragraph_path: str | None = None
    start: int | None = None
    end: int | None = None
    original_text: str | None = None
    new_text: str | None = None
    reason: str | None = None


class FillSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_placeholders: int
    replaced_count: int
    missing_count: int
    unsupported_count: int
    checkbox_count: int = 0
    unused_count: int = 0
    unsupported_mode: Literal["error", "warn"]


class FillReport(BaseModel):
    """Full fill report including the run ids that were rewritten."""

    model_config = ConfigDict(extra="forbid")

    entries: list[FillLogEntry] = Field(default_factory=list)
    summary: FillSummary
    touched_runs: list[str] = Field(default_factory=list)


class FillOutput(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    document: DocxDocument
    parse_result: ParseResult
    report: FillReport
