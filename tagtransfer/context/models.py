"""Data models shared by extraction, matching and application."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

TagType = Literal["text", "checkbox", "table_cell", "date"]
InsertionPoint = Literal["after_colon", "table_cell", "replace_empty", "inline", "checkbox"]
CheckboxKind = Literal["unicode", "form_control"]

INSERTION_POINTS: tuple[str, ...] = (
    "after_colon",
    "table_cell",
    "replace_empty",
    "inline",
    "checkbox",
)


@dataclass(frozen=True)
class TablePosition:
    """Coordinates of a table cell in document order."""

    table_index: int
    row: int
    column: int

    @property
    def key(self) -> str:
        return f"T{self.table_index}R{self.row}C{self.column}"


@dataclass(frozen=True)
class TagContext:
    """Where a placeholder sat in the reference, semantically and structurally."""

    tag: str
    label_before: str
    label_after: str = ""
    section: str | None = None
    type: TagType = "text"
    table_position: TablePosition | None = None
    paragraph_index: int | None = None


@dataclass(frozen=True)
class TargetParagraph:
    """One paragraph or table-cell paragraph of a document.

    `index` is document-global and stays valid when paragraphs are filtered
    into per-segment subsets.
    """

    index: int
    text: str
    section: str | None = None
    is_table_cell: bool = False
    has_existing_tag: bool = False
    table_position: TablePosition | None = None
    xml_start: int = 0
    row_header: str | None = None

    @property
    def ends_with_colon(self) -> bool:
        return self.text.strip().endswith(":")

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


@dataclass(frozen=True)
class MatchResult:
    """Candidate placement of one tag in the target."""

    tag: str
    target_index: int
    confidence: float
    insertion_point: InsertionPoint
    reason: str | None = None


@dataclass(frozen=True)
class ExtractedCheckbox:
    """A checkbox found in a paragraph; `position` orders boxes sharing one paragraph."""

    index: int
    checked: bool
    kind: CheckboxKind
    label: str
    section: str | None = None
    position: int = 0

    @property
    def key(self) -> tuple[int, int]:
        return (self.index, self.position)


@dataclass(frozen=True)
class CheckboxPair:
    """A yes/no pair with its resolved tri-state value."""

    question: str
    paragraph_index: int
    yes: ExtractedCheckbox
    no: ExtractedCheckbox
    value: bool | None


@dataclass(frozen=True)
class CheckboxDecision:
    """Desired state for one target checkbox."""

    target_index: int
    checked: bool
    confidence: float = 0.8
    label: str = ""
    position: int = 0
    reason: str | None = None

    @property
    def key(self) -> tuple[int, int]:
        return (self.target_index, self.position)


@dataclass(frozen=True)
class Occurrence:
    """A supported placeholder contained in a single run."""

    field_name: str
    run_id: str
    paragraph_index: int
    start: int
    end: int


@dataclass(frozen=True)
class UnsupportedOccurrence:
    """A placeholder-like token that cannot be safely processed."""

    kind: str
    text: str
    run_id: str | None
    start: int | None
    end: int | None


@dataclass
class ParseResult:
    """Placeholder parsing output."""

    fields: list[str] = field(default_factory=list)
    occurrences: list[Occurrence] = field(default_factory=list)
    unsupported: list[UnsupportedOccurrence] = field(default_factory=list)


@dataclass
class ReferenceContext:
    """Everything learned from the annotated reference document."""

    tag_contexts: list[TagContext] = field(default_factory=list)
    paragraphs: list[TargetParagraph] = field(default_factory=list)
    checkboxes: list[ExtractedCheckbox] = field(default_factory=list)
    body_xml: str = ""

    @property
    def tags(self) -> list[str]:
        return [context.tag for context in self.tag_contexts]


@dataclass
class TargetContext:
    """Paragraph and checkbox records of the unannotated target document."""

    paragraphs: list[TargetParagraph] = field(default_factory=list)
    checkboxes: list[ExtractedCheckbox] = field(default_factory=list)
    body_xml: str = ""
