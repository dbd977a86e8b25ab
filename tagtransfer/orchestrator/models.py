"""Report models returned to callers of the mapping pipeline."""

from __future__ import annotations

from typing import Any, Literal

from docx.document import Document as DocxDocument
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MappingMode = Literal["oracle", "segmented_oracle", "hybrid", "pattern_fallback"]


class _ReportModel(BaseModel):
    """Snake-case fields serialized with camelCase aliases."""

    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class AppliedTag(_ReportModel):
    tag: str
    target_index: int
    insertion_point: str
    confidence: float


class FailedTag(_ReportModel):
    tag: str
    reason: str
    target_index: int | None = None


class CheckboxStats(_ReportModel):
    reference_total: int = 0
    target_total: int = 0
    reference_pairs: int = 0
    target_pairs: int = 0
    decisions: int = 0
    applied: int = 0
    changed: int = 0
    failed: int = 0
    mode: str = "deterministic"


class SegmentationInfo(_ReportModel):
    used: bool = False
    strategy: str | None = None
    reference_segments: int = 0
    target_segments: int = 0
    matched_segments: int = 0
    unmatched_tags: list[str] = Field(default_factory=list)


class MappingReport(_ReportModel):
    """Structured outcome of one reference/target mapping."""

    tags_applied: int
    tags_failed: int
    applied: list[AppliedTag] = Field(default_factory=list)
    failed: list[FailedTag] = Field(default_factory=list)
    checkbox_stats: CheckboxStats = Field(default_factory=CheckboxStats)
    mode: MappingMode
    segmentation: SegmentationInfo = Field(default_factory=SegmentationInfo)
    output_name: str
    data_structure: dict[str, str | bool] = Field(default_factory=dict)
    debug: dict[str, Any] | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MappingOutput(BaseModel):
    """Mutated target document, its serialized bytes and the report."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    document: DocxDocument
    content: bytes
    report: MappingReport


class BatchItemResult(_ReportModel):
    name: str
    ok: bool
    output_name: str | None = None
    report: MappingReport | None = None
    error: str | None = None
    content: bytes | None = Field(default=None, exclude=True)
