"""Yes/no pairing and tag naming for detected checkboxes."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from tagtransfer.context.models import CheckboxPair, ExtractedCheckbox, TargetParagraph
from tagtransfer.context.placeholder_parser import PLACEHOLDER_RE
from tagtransfer.matching.keywords import (
    extract_keywords,
    is_no_label,
    is_yes_label,
    keyword_score,
    strip_accents,
)
from tagtransfer.utils.docx_xml import CHECKED_GLYPHS, UNCHECKED_GLYPHS

_ANSWER_RE = re.compile(rf"\b(oui|non|yes|no)\b|[{CHECKED_GLYPHS}{UNCHECKED_GLYPHS}]", re.IGNORECASE)
_TAG_UNSAFE_RE = re.compile(r"[^A-Z0-9]+")
_WHITESPACE_RE = re.compile(r"\s+")
_MIN_QUESTION_CHARS = 10
_MAX_QUESTION_CHARS = 60
_MAX_TAG_CHARS = 40


@dataclass(frozen=True)
class CheckboxTag:
    """Data-structure entry describing one checkbox or yes/no pair."""

    checked: bool | None
    label: str
    kind: Literal["boolean_pair", "boolean_single"]
    # (index, position) of the box, or of the yes box then the no box
    keys: tuple[tuple[int, int], ...] = ()


def pair_value(yes: ExtractedCheckbox, no: ExtractedCheckbox) -> bool | None:
    if yes.checked and not no.checked:
        return True
    if no.checked and not yes.checked:
        return False
    return None


def find_checkbox_pairs(
    checkboxes: Sequence[ExtractedCheckbox],
    window: int = 5,
    paragraphs: Sequence[TargetParagraph] | None = None,
) -> list[CheckboxPair]:
    """Group yes/no checkboxes lying within `window` paragraphs of each other.

    Each "yes" takes the nearest unused "no" that follows it, else the
    nearest one before it.
    """

    ordered = sorted(checkboxes, key=lambda item: item.key)
    no_boxes = [checkbox for checkbox in ordered if is_no_label(checkbox.label)]
    used: set[tuple[int, int]] = set()
    pairs: list[CheckboxPair] = []

    for yes in ordered:
        if not is_yes_label(yes.label):
            continue
        following = [
            no
            for no in no_boxes
            if no.key not in used and no.key > yes.key and no.index - yes.index <= window
        ]
        preceding = [
            no
            for no in no_boxes
            if no.key not in used and no.key < yes.key and yes.index - no.index <= window
        ]
        if following:
            no = following[0]
        elif preceding:
            no = preceding[-1]
        else:
            continue
        used.add(no.key)
        pairs.append(
            CheckboxPair(
                question=question_context(yes, len(pairs), paragraphs),
                paragraph_index=yes.index,
                yes=yes,
                no=no,
                value=pair_value(yes, no),
            )
        )
    return pairs


def question_context(
    checkbox: ExtractedCheckbox,
    ordinal: int,
    paragraphs: Sequence[TargetParagraph] | None = None,
) -> str:
    """Question text of a yes/no pair, without the answers and glyphs."""

    candidates = [checkbox.label]
    if paragraphs is not None:
        by_index = {paragraph.index: paragraph for paragraph in paragraphs}
        for index in (checkbox.index, checkbox.index - 1):
            paragraph = by_index.get(index)
            if paragraph is not None:
                candidates.append(paragraph.text)

    for candidate in candidates:
        question = _strip_answers(candidate)
        if len(question) >= _MIN_QUESTION_CHARS:
            return question[:_MAX_QUESTION_CHARS]
    return f"Question_{ordinal + 1}"


def sanitize_tag_name(label: str) -> str:
    name = strip_accents(label.upper())
    name = _TAG_UNSAFE_RE.sub("_", name).strip("_")[:_MAX_TAG_CHARS].strip("_")
    return name or "CHECKBOX"


def generate_checkbox_tags(
    checkboxes: Sequence[ExtractedCheckbox],
    pairs: Sequence[CheckboxPair],
) -> dict[str, CheckboxTag]:
    """Name every pair and standalone checkbox; duplicate names get a suffix."""

    tags: dict[str, CheckboxTag] = {}
    paired: set[tuple[int, int]] = set()

    for pair in pairs:
        paired.update((pair.yes.key, pair.no.key))
        name = _unique(sanitize_tag_name(pair.question), tags)
        tags[name] = CheckboxTag(
            checked=pair.value,
            label=pair.question,
            kind="boolean_pair",
            keys=(pair.yes.key, pair.no.key),
        )

    for checkbox in checkboxes:
        if checkbox.key in paired:
            continue
        name = _unique(sanitize_tag_name(checkbox.label), tags)
        tags[name] = CheckboxTag(
            checked=checkbox.checked,
            label=checkbox.label,
            kind="boolean_single",
            keys=(checkbox.key,),
        )
    return tags


def _strip_answers(text: str) -> str:
    text = PLACEHOLDER_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", _ANSWER_RE.sub(" ", text)).strip(" :?-")


def _unique(name: str, existing: dict[str, CheckboxTag]) -> str:
    if name not in existing:
        return name
    suffix = 2
    while f"{name}_{suffix}" in existing:
        suffix += 1
    return f"{name}_{suffix}"


def match_checkbox_pairs(
    reference_pairs: Sequence[CheckboxPair],
    target_pairs: Sequence[CheckboxPair],
    min_score: int = 4,
) -> list[tuple[CheckboxPair, CheckboxPair]]:
    """Align reference pairs with target pairs by question keywords, else by order."""

    used: set[int] = set()
    aligned: list[tuple[CheckboxPair, CheckboxPair]] = []
    for ordinal, reference in enumerate(reference_pairs):
        keywords = [] if _is_generated(reference.question) else extract_keywords(reference.question)
        best: int | None = None
        best_score = 0
        for position, target in enumerate(target_pairs):
            if position in used or not keywords:
                continue
            score = keyword_score(keywords, target.question)
            if score > best_score:
                best_score = score
                best = position
        if best is None or best_score < min_score:
            best = ordinal if ordinal < len(target_pairs) and ordinal not in used else None
        if best is None:
            continue
        used.add(best)
        aligned.append((reference, target_pairs[best]))
    return aligned


def _is_generated(question: str) -> bool:
    return question.startswith("Question_")
