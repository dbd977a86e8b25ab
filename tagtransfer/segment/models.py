"""Data models for document segmentation and segment matching."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from tagtransfer.context.models import TagContext, TargetParagraph

SegmentKind = Literal["section", "table", "page"]
SegmentationStrategy = Literal["hybrid", "auto", "sections", "tables", "pages"]


@dataclass(frozen=True)
class SegmentMetadata:
    """Content flags used for relevance and similarity scoring."""

    has_financial_data: bool = False
    has_contact_info: bool = False
    has_identification: bool = False
    has_legal_info: bool = False
    has_dates: bool = False
    relevance_score: int = 0


@dataclass(frozen=True)
class DocumentSegment:
    """A bounded region of the body markup.

    `xml_span` is a half-open `[start, end)` range over the serialized body;
    a paragraph belongs to the segment whose span contains its `xml_start`.
    """

    id: str
    kind: SegmentKind
    title: str
    xml_span: tuple[int, int]
    paragraph_count: int
    tags: tuple[str, ...] = ()
    text: str = ""
    section_letter: str | None = None
    table_index: int | None = None
    column_count: int | None = None
    metadata: SegmentMetadata = field(default_factory=SegmentMetadata)

    def contains(self, offset: int) -> bool:
        start, end = self.xml_span
        return start <= offset < end


@dataclass(frozen=True)
class SegmentationStats:
    total_segments: int
    segments_with_tags: int
    total_tags: int
    total_paragraphs: int


@dataclass(frozen=True)
class SegmentationResult:
    segments: list[DocumentSegment]
    strategy: SegmentationStrategy
    stats: SegmentationStats


@dataclass(frozen=True)
class SegmentMatch:
    """Best target segment for one reference segment, if any scored high enough."""

    reference: DocumentSegment
    target: DocumentSegment | None
    score: float


@dataclass(frozen=True)
class SegmentPair:
    """A matched segment pair with everything needed to run one scoped loop."""

    reference: DocumentSegment
    target: DocumentSegment
    score: float
    tags: tuple[str, ...]
    tag_contexts: list[TagContext]
    paragraphs: list[TargetParagraph]


@dataclass(frozen=True)
class PlanStats:
    total_template_segments: int
    total_target_segments: int
    matched_segments: int
    total_tags_to_transfer: int


@dataclass
class SegmentMatchingPlan:
    matched_pairs: list[SegmentPair] = field(default_factory=list)
    unmatched_tags: list[str] = field(default_factory=list)
    stats: PlanStats | None = None
