"""Split a document body into section, table or page segments."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from tagtransfer.config.models import SegmentationSettings
from tagtransfer.context.models import TagContext, TargetParagraph
from tagtransfer.matching.keywords import normalize_text
from tagtransfer.segment.models import (
    DocumentSegment,
    SegmentationResult,
    SegmentationStats,
    SegmentationStrategy,
    SegmentKind,
    SegmentMatch,
    SegmentMetadata,
)
from tagtransfer.utils.docx_xml import BodyBlock, block_has_page_break, table_column_count

logger = logging.getLogger("tagtransfer.segment")

SECTION_MARKER_RE = re.compile(r"^([A-H])\s*[-–—:]\s*(.+?)(?:\s*$|\.)", re.IGNORECASE)
SECTION_TEXT_PATTERNS = (
    re.compile(r"([A-H])\s*[-–—]\s*Identification", re.IGNORECASE),
    re.compile(r"([A-H])\s*[-–—]\s*Objet", re.IGNORECASE),
    re.compile(r"([A-H])\s*[-–—]\s*(?:Renseignements|Capacit[ée]s)", re.IGNORECASE),
    re.compile(r"Section\s+([A-H])\b", re.IGNORECASE),
)

_FINANCIAL_RE = re.compile(r"chiffre\s*d'affaires|CA\s|exercice\s*du|montant", re.IGNORECASE)
_CONTACT_RE = re.compile(
    r"email|@|téléphone|télécopie|fax|adresse\s*(électronique|postale)", re.IGNORECASE
)
_IDENTIFICATION_RE = re.compile(
    r"siret|siren|nom\s*commercial|dénomination|raison\s*sociale", re.IGNORECASE
)
_LEGAL_RE = re.compile(r"forme\s*juridique|rcs|capital|représentant", re.IGNORECASE)
_DATES_RE = re.compile(r"du\s*\.\.\.|exercice|année|période", re.IGNORECASE)
_WORD_RE = re.compile(r"\w+")


@dataclass
class _BlockInfo:
    block: BodyBlock
    paragraphs: list[TargetParagraph]
    text: str
    marker: tuple[str, str] | None
    page_break: bool


@dataclass
class _Draft:
    kind: SegmentKind
    blocks: list[_BlockInfo] = field(default_factory=list)
    section_letter: str | None = None
    section_title: str | None = None

    @property
    def text(self) -> str:
        return "\n".join(info.text for info in self.blocks if info.text)

    @property
    def table_block(self) -> _BlockInfo | None:
        return next((info for info in self.blocks if info.block.kind == "table"), None)


def detect_section_marker(text: str) -> tuple[str, str] | None:
    """Return `(letter, title)` for a lettered administrative heading."""

    stripped = text.strip()
    match = SECTION_MARKER_RE.match(stripped)
    if match is not None:
        return match.group(1).upper(), match.group(2).strip()
    for pattern in SECTION_TEXT_PATTERNS:
        found = pattern.search(stripped)
        if found is not None and found.start() < 3:
            return found.group(1).upper(), stripped[found.end() :].strip(" -–—:.") or stripped
    return None


def segment_document(
    blocks: Sequence[BodyBlock],
    paragraphs: Sequence[TargetParagraph],
    tag_contexts: Sequence[TagContext] = (),
    strategy: SegmentationStrategy = "hybrid",
    settings: SegmentationSettings | None = None,
) -> SegmentationResult:
    """Partition the body into segments and attribute tags to them."""

    config = settings or SegmentationSettings()
    infos = _block_infos(blocks, paragraphs)

    resolved = detect_best_strategy(infos) if strategy == "auto" else strategy
    if resolved == "sections":
        drafts = _split_sections(infos)
    elif resolved == "tables":
        drafts = _split_tables(infos)
    elif resolved == "pages":
        drafts = _split_pages(infos)
    else:
        drafts = _split_hybrid(infos)

    drafts = _merge_small(drafts, config)
    tag_offsets = _tag_offsets(tag_contexts, paragraphs)
    segments = [_finalize(draft, position, tag_offsets) for position, draft in enumerate(drafts)]

    tagged = {tag for segment in segments for tag in segment.tags}
    stats = SegmentationStats(
        total_segments=len(segments),
        segments_with_tags=sum(1 for segment in segments if segment.tags),
        total_tags=len(tagged),
        total_paragraphs=len(paragraphs),
    )
    logger.debug(
        "segmented body: strategy=%s segments=%d tagged=%d",
        resolved,
        stats.total_segments,
        stats.segments_with_tags,
    )
    return SegmentationResult(segments=segments, strategy=resolved, stats=stats)


def detect_best_strategy(infos: Sequence[_BlockInfo]) -> SegmentationStrategy:
    table_count = sum(1 for info in infos if info.block.kind == "table")
    has_markers = any(info.marker is not None for info in infos)
    page_breaks = sum(1 for info in infos if info.page_break)

    if table_count >= 5 and has_markers:
        return "hybrid"
    if table_count >= 8:
        return "tables"
    if page_breaks >= 3:
        return "pages"
    if has_markers:
        return "sections"
    return "hybrid"


def segment_similarity(reference: DocumentSegment, target: DocumentSegment) -> float:
    """Score 0-100 for how likely two segments hold the same content."""

    score = 0.0
    if reference.section_letter and reference.section_letter == target.section_letter:
        score += 40
    if reference.metadata.has_financial_data and target.metadata.has_financial_data:
        score += 20
    if reference.metadata.has_contact_info and target.metadata.has_contact_info:
        score += 15
    if reference.metadata.has_identification and target.metadata.has_identification:
        score += 15
    if reference.table_index is not None and reference.table_index == target.table_index:
        score += 30
    if reference.column_count and reference.column_count == target.column_count:
        score += 10

    reference_words = _long_words(reference.text)
    target_words = _long_words(target.text)
    if reference_words and target_words:
        shared = reference_words & target_words
        score += len(shared) / max(len(reference_words), len(target_words)) * 20
    return min(score, 100.0)


def match_segments(
    reference_segments: Sequence[DocumentSegment],
    target_segments: Sequence[DocumentSegment],
    min_score: float = 30.0,
) -> list[SegmentMatch]:
    """Pair every tagged reference segment with its best target segment."""

    matches: list[SegmentMatch] = []
    for reference in reference_segments:
        if not reference.tags:
            continue
        best: DocumentSegment | None = None
        best_score = 0.0
        for target in target_segments:
            score = segment_similarity(reference, target)
            if score > best_score:
                best_score = score
                best = target
        if best is None or best_score < min_score:
            matches.append(SegmentMatch(reference=reference, target=None, score=best_score))
        else:
            matches.append(SegmentMatch(reference=reference, target=best, score=best_score))
    return matches


def relevant_segments(
    result: SegmentationResult,
    min_relevance: int = 30,
    only_with_tags: bool = False,
) -> list[DocumentSegment]:
    return [
        segment
        for segment in result.segments
        if segment.metadata.relevance_score >= min_relevance and (segment.tags or not only_with_tags)
    ]


def paragraphs_in_segment(
    segment: DocumentSegment, paragraphs: Sequence[TargetParagraph]
) -> list[TargetParagraph]:
    """Paragraphs whose opening tag lies inside the segment; indices stay global."""

    return [paragraph for paragraph in paragraphs if segment.contains(paragraph.xml_start)]


def _block_infos(
    blocks: Sequence[BodyBlock], paragraphs: Sequence[TargetParagraph]
) -> list[_BlockInfo]:
    ordered = sorted(paragraphs, key=lambda item: item.xml_start)
    infos: list[_BlockInfo] = []
    cursor = 0
    for block in blocks:
        owned: list[TargetParagraph] = []
        while cursor < len(ordered) and ordered[cursor].xml_start < block.end:
            if ordered[cursor].xml_start >= block.start:
                owned.append(ordered[cursor])
            cursor += 1
        text = "\n".join(paragraph.text for paragraph in owned if paragraph.text.strip())
        marker = None
        if block.kind == "paragraph" and owned:
            marker = detect_section_marker(owned[0].text)
        infos.append(
            _BlockInfo(
                block=block,
                paragraphs=owned,
                text=text,
                marker=marker,
                page_break=block_has_page_break(block.element),
            )
        )
    return infos


def _split_hybrid(infos: Sequence[_BlockInfo]) -> list[_Draft]:
    drafts: list[_Draft] = []
    current: _Draft | None = None
    letter: str | None = None
    for info in infos:
        if info.block.kind == "table":
            drafts.append(_Draft(kind="table", blocks=[info], section_letter=letter))
            current = None
            continue
        if info.marker is not None:
            letter = info.marker[0]
            current = _Draft(
                kind="section",
                blocks=[info],
                section_letter=letter,
                section_title=info.marker[1],
            )
            drafts.append(current)
            continue
        if current is None:
            current = _Draft(kind="section", section_letter=letter)
            drafts.append(current)
        current.blocks.append(info)
    return drafts


def _split_sections(infos: Sequence[_BlockInfo]) -> list[_Draft]:
    drafts: list[_Draft] = []
    current: _Draft | None = None
    for info in infos:
        if info.marker is not None:
            current = _Draft(
                kind="section",
                blocks=[info],
                section_letter=info.marker[0],
                section_title=info.marker[1],
            )
            drafts.append(current)
            continue
        if current is None:
            current = _Draft(kind="section")
            drafts.append(current)
        current.blocks.append(info)
    return drafts


def _split_tables(infos: Sequence[_BlockInfo]) -> list[_Draft]:
    drafts: list[_Draft] = []
    leading: list[_BlockInfo] = []
    for info in infos:
        if info.block.kind == "table":
            drafts.append(_Draft(kind="table", blocks=[*leading, info]))
            leading = []
        elif drafts:
            drafts[-1].blocks.append(info)
        else:
            leading.append(info)
    if leading:
        drafts.append(_Draft(kind="section", blocks=leading))
    return drafts


def _split_pages(infos: Sequence[_BlockInfo]) -> list[_Draft]:
    drafts: list[_Draft] = [_Draft(kind="page")]
    for info in infos:
        drafts[-1].blocks.append(info)
        if info.page_break:
            drafts.append(_Draft(kind="page"))
    return [draft for draft in drafts if draft.blocks]


def _merge_small(drafts: list[_Draft], config: SegmentationSettings) -> list[_Draft]:
    merged: list[_Draft] = []
    for draft in drafts:
        if not draft.blocks:
            continue
        if merged and (
            len(draft.text) < config.min_segment_chars
            or len(merged[-1].text) < config.merge_segment_chars
            or len(draft.text) < config.merge_segment_chars
        ):
            _absorb(merged[-1], draft)
            continue
        merged.append(draft)

    if len(merged) > 1 and len(merged[0].text) < config.min_segment_chars:
        head = merged.pop(0)
        head.blocks.extend(merged[0].blocks)
        head.kind = merged[0].kind
        head.section_letter = merged[0].section_letter or head.section_letter
        head.section_title = merged[0].section_title or head.section_title
        merged[0] = head
    return merged


def _absorb(into: _Draft, other: _Draft) -> None:
    into.blocks.extend(other.blocks)
    if into.section_letter is None:
        into.section_letter = other.section_letter
        into.section_title = other.section_title


def _tag_offsets(
    tag_contexts: Sequence[TagContext], paragraphs: Sequence[TargetParagraph]
) -> list[tuple[str, int]]:
    by_index = {paragraph.index: paragraph.xml_start for paragraph in paragraphs}
    offsets: list[tuple[str, int]] = []
    for context in tag_contexts:
        if context.paragraph_index is None or context.paragraph_index not in by_index:
            continue
        offsets.append((context.tag, by_index[context.paragraph_index]))
    return offsets


def _finalize(draft: _Draft, position: int, tag_offsets: list[tuple[str, int]]) -> DocumentSegment:
    start = draft.blocks[0].block.start
    end = draft.blocks[-1].block.end
    text = draft.text
    paragraph_count = sum(len(info.paragraphs) for info in draft.blocks)
    tags = tuple(dict.fromkeys(tag for tag, offset in tag_offsets if start <= offset < end))

    table = draft.table_block
    table_index: int | None = None
    column_count: int | None = None
    if table is not None:
        first_cell = next(
            (paragraph for paragraph in table.paragraphs if paragraph.table_position is not None),
            None,
        )
        table_index = first_cell.table_position.table_index if first_cell else None
        column_count = table_column_count(table.block.element)

    return DocumentSegment(
        id=f"seg_{position}",
        kind=draft.kind,
        title=_title(draft, table_index, text),
        xml_span=(start, end),
        paragraph_count=paragraph_count,
        tags=tags,
        text=text,
        section_letter=draft.section_letter,
        table_index=table_index,
        column_count=column_count,
        metadata=_metadata(text, len(tags), paragraph_count),
    )


def _title(draft: _Draft, table_index: int | None, text: str) -> str:
    first_line = next((line for line in text.splitlines() if line.strip()), "")[:60]
    if draft.kind == "section" and draft.section_letter:
        return f"Section {draft.section_letter} - {draft.section_title or first_line}"
    if draft.kind == "table" and table_index is not None:
        return f"Tableau {table_index + 1}: {first_line}"
    return first_line or draft.kind


def _metadata(text: str, tag_count: int, paragraph_count: int) -> SegmentMetadata:
    lowered = normalize_text(text)
    flags = {
        "has_financial_data": _FINANCIAL_RE.search(lowered) is not None,
        "has_contact_info": _CONTACT_RE.search(lowered) is not None,
        "has_identification": _IDENTIFICATION_RE.search(lowered) is not None,
        "has_legal_info": _LEGAL_RE.search(lowered) is not None,
        "has_dates": _DATES_RE.search(lowered) is not None,
    }
    score = tag_count * 20
    score += 15 if flags["has_identification"] else 0
    score += 10 if flags["has_contact_info"] else 0
    score += 15 if flags["has_financial_data"] else 0
    score += 5 if flags["has_legal_info"] else 0
    score += 5 if len(text) > 500 else 0
    score += 5 if paragraph_count > 5 else 0
    return SegmentMetadata(relevance_score=min(score, 100), **flags)


def _long_words(text: str) -> set[str]:
    return {word for word in _WORD_RE.findall(normalize_text(text)) if len(word) > 4}
