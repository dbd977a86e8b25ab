"""Insert {{TAG}} placeholders into target paragraphs.

Paragraph elements are resolved by global index before any mutation and
matches are applied from the highest index down, so an insertion never moves
a paragraph that is still waiting to be processed. Text is only written into
existing w:t nodes or into runs that copy the paragraph's run properties;
w:pPr and w:rPr blocks are never removed.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from docx.document import Document as DocxDocument

from tagtransfer.context.models import InsertionPoint, MatchResult, TagContext
from tagtransfer.context.placeholder_parser import PLACEHOLDER_RE
from tagtransfer.utils.docx_xml import (
    CHECKED_GLYPHS,
    UNCHECKED_GLYPHS,
    append_text_run,
    paragraph_elements,
    paragraph_text,
    set_node_text,
    text_nodes,
)

logger = logging.getLogger("tagtransfer.apply")

_DATE_BLANK_RE = re.compile(r"du\s*[.…_ ]*[.…_]+\s*au\s*[.…_ ]*[.…_]*", re.IGNORECASE)
_FILLER_RE = re.compile(r"^[\s.…_\-–—]*$")
_LETTER_RE = re.compile(r"[^\W\d_]")
_GLYPHS = CHECKED_GLYPHS + UNCHECKED_GLYPHS


@dataclass(frozen=True)
class AppliedPlacement:
    tag: str
    target_index: int
    insertion_point: InsertionPoint
    confidence: float


@dataclass(frozen=True)
class FailedPlacement:
    tag: str
    target_index: int
    reason: str


@dataclass
class TagApplyResult:
    applied: list[AppliedPlacement] = field(default_factory=list)
    failed: list[FailedPlacement] = field(default_factory=list)

    @property
    def applied_tags(self) -> list[str]:
        return [item.tag for item in self.applied]


class _PlacementError(Exception):
    """Internal signal carrying the failure reason of one placement."""


def placeholder(tag: str) -> str:
    return f"{{{{{tag}}}}}"


def apply_tag_matches(
    document: DocxDocument,
    matches: Sequence[MatchResult],
    tag_contexts: Sequence[TagContext] = (),
) -> TagApplyResult:
    """Apply matches to the document tree; failures are recorded, never raised.

    A paragraph takes one tag, except date pairs, tags stacked into one table
    cell, and tags that shared a cell or a paragraph in the reference
    (`tag_contexts`); those follow the placeholder already inserted.
    """

    elements = paragraph_elements(document)
    result = TagApplyResult()
    used_tags: set[str] = set()
    modified: dict[int, list[MatchResult]] = {}
    anchors = _reference_anchors(tag_contexts)
    date_partners = _date_partners(matches)

    handled: set[str] = set()
    ordered = sorted(enumerate(matches), key=lambda item: (-item[1].target_index, item[0]))
    for _, match in ordered:
        if match.tag in handled:
            continue
        if match.tag in used_tags:
            result.failed.append(FailedPlacement(match.tag, match.target_index, "already used"))
            continue
        if not 0 <= match.target_index < len(elements):
            result.failed.append(FailedPlacement(match.tag, match.target_index, "invalid index"))
            continue

        element = elements[match.target_index]
        partner = date_partners.get(match.tag)
        if partner is None:
            group = [match]
        else:
            group = sorted((match, partner), key=lambda item: item.tag.endswith("_FIN"))
        handled.update(item.tag for item in group)
        try:
            stacked = _check_untouched(element, match, modified.get(match.target_index, []), anchors)
            if partner is not None:
                _insert_date_range(element, group[0].tag, group[1].tag)
            elif stacked:
                _append_after_placeholder(element, match.tag)
            else:
                _insert(element, match.tag, match.insertion_point)
        except _PlacementError as exc:
            for item in group:
                result.failed.append(FailedPlacement(item.tag, item.target_index, str(exc)))
            continue

        for item in group:
            used_tags.add(item.tag)
            result.applied.append(_applied(item))
        modified.setdefault(match.target_index, []).extend(group)

    logger.debug("applied %d tags, %d failed", len(result.applied), len(result.failed))
    return result


def _applied(match: MatchResult) -> AppliedPlacement:
    return AppliedPlacement(
        tag=match.tag,
        target_index=match.target_index,
        insertion_point=match.insertion_point,
        confidence=match.confidence,
    )


def _date_partners(matches: Sequence[MatchResult]) -> dict[str, MatchResult]:
    """Map each `_DEBUT`/`_FIN` tag to its partner when both target one paragraph."""

    by_tag = {match.tag: match for match in matches}
    partners: dict[str, MatchResult] = {}
    for match in matches:
        if not match.tag.endswith("_DEBUT"):
            continue
        end = by_tag.get(match.tag[: -len("_DEBUT")] + "_FIN")
        if end is not None and end.target_index == match.target_index:
            partners[match.tag] = end
            partners[end.tag] = match
    return partners


def _reference_anchors(tag_contexts: Sequence[TagContext]) -> dict[str, set[tuple[str, object]]]:
    """Reference cell and paragraph of each tag; tags sharing one were co-located."""

    anchors: dict[str, set[tuple[str, object]]] = {}
    for context in tag_contexts:
        keys: set[tuple[str, object]] = set()
        if context.table_position is not None:
            keys.add(("cell", context.table_position.key))
        if context.paragraph_index is not None:
            keys.add(("paragraph", context.paragraph_index))
        anchors[context.tag] = keys
    return anchors


def _check_untouched(
    element: Any,
    match: MatchResult,
    previous: list[MatchResult],
    anchors: dict[str, set[tuple[str, object]]],
) -> bool:
    """Raise when the paragraph cannot take `match`; return whether it stacks on earlier tags."""

    if previous:
        # Tags sharing a table cell may stack into one cell.
        if match.insertion_point == "table_cell" and all(item.insertion_point == "table_cell" for item in previous):
            return False
        own = anchors.get(match.tag, set())
        if own and all(own & anchors.get(item.tag, set()) for item in previous):
            return True
        raise _PlacementError("paragraph already tagged")
    if PLACEHOLDER_RE.search(paragraph_text(element)):
        raise _PlacementError("paragraph already tagged")
    return False


def _append_after_placeholder(element: Any, tag: str) -> None:
    """Insert right after the last placeholder of the paragraph."""

    for node in reversed(text_nodes(element)):
        text = node.text or ""
        found = list(PLACEHOLDER_RE.finditer(text))
        if found:
            end = found[-1].end()
            set_node_text(node, f"{text[:end]} {placeholder(tag)}{text[end:]}")
            return
    _append_inline(element, tag)


def _insert(element: Any, tag: str, insertion_point: InsertionPoint) -> None:
    if insertion_point == "after_colon":
        _insert_after_colon(element, tag)
    elif insertion_point == "replace_empty":
        _replace_empty(element, tag)
    elif insertion_point == "table_cell":
        _insert_table_cell(element, tag)
    elif insertion_point == "checkbox":
        _insert_after_glyph(element, tag)
    else:
        _append_inline(element, tag)


def _insert_after_colon(element: Any, tag: str) -> None:
    nodes = [node for node in text_nodes(element) if ":" in (node.text or "")]
    if not nodes:
        _append_inline(element, tag)
        return
    node = nodes[-1]
    text = node.text or ""
    position = text.rfind(":")
    head, tail = text[: position + 1], text[position + 1 :]
    if _FILLER_RE.match(tail):
        tail = ""
    elif tail and not tail.startswith(" "):
        tail = f" {tail}"
    set_node_text(node, f"{head} {placeholder(tag)}{tail}")


def _replace_empty(element: Any, tag: str) -> None:
    if len(paragraph_text(element).strip()) >= 5:
        raise _PlacementError("not empty")
    _fill(element, placeholder(tag))


def _fill(element: Any, text: str) -> None:
    """Replace the whole paragraph text, keeping the first run and its properties."""

    nodes = text_nodes(element)
    if not nodes:
        append_text_run(element, text)
        return
    set_node_text(nodes[0], text)
    for node in nodes[1:]:
        set_node_text(node, "")


def _append_inline(element: Any, tag: str) -> None:
    nodes = text_nodes(element)
    if not nodes:
        append_text_run(element, placeholder(tag))
        return
    node = nodes[-1]
    text = node.text or ""
    separator = "" if not text or text.endswith(" ") else " "
    set_node_text(node, f"{text}{separator}{placeholder(tag)}")


def _insert_table_cell(element: Any, tag: str) -> None:
    text = paragraph_text(element)
    stripped = text.strip()

    if PLACEHOLDER_RE.search(text):
        _append_inline(element, tag)
        return
    if stripped == "%":
        for node in text_nodes(element):
            if "%" in (node.text or ""):
                set_node_text(node, (node.text or "").replace("%", f"{placeholder(tag)} %", 1))
                return
    if not stripped:
        _fill(element, placeholder(tag))
        return
    if stripped.endswith(":"):
        _insert_after_colon(element, tag)
        return
    if len(stripped) < 5 and _LETTER_RE.search(stripped) is None:
        _fill(element, placeholder(tag))
        return
    _append_inline(element, tag)


def _insert_after_glyph(element: Any, tag: str) -> None:
    for node in text_nodes(element):
        text = node.text or ""
        offset = next((position for position, char in enumerate(text) if char in _GLYPHS), None)
        if offset is None:
            continue
        set_node_text(node, f"{text[: offset + 1]} {placeholder(tag)}{text[offset + 1 :]}")
        return
    _append_inline(element, tag)


def _insert_date_range(element: Any, start_tag: str, end_tag: str) -> None:
    replacement = f"du {placeholder(start_tag)} au {placeholder(end_tag)}"
    nodes = text_nodes(element)
    for node in nodes:
        text = node.text or ""
        match = _DATE_BLANK_RE.search(text)
        if match is not None:
            set_node_text(node, text[: match.start()] + replacement + text[match.end() :])
            return
    if not paragraph_text(element).strip():
        _fill(element, replacement)
        return
    node = nodes[-1]
    text = node.text or ""
    separator = "" if text.endswith(" ") else " "
    set_node_text(node, f"{text}{separator}{replacement}")
