"""Keyword extraction and scoring shared by the matchers, prompts and validation."""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Collection, Iterable

from tagtransfer.context.models import (
    ExtractedCheckbox,
    InsertionPoint,
    TagContext,
    TargetParagraph,
)
from tagtransfer.utils.docx_xml import CHECKED_GLYPHS, UNCHECKED_GLYPHS

STOPWORDS = frozenset(
    {
        "le", "la", "les", "de", "du", "des", "un", "une", "et", "ou", "à", "au", "aux",
        "en", "pour", "par", "sur", "dans", "avec", "sans", "ce", "cette", "ces",
        "est", "sont", "être", "avoir", "qui", "que", "dont", "où",
    }
)

_APOSTROPHE_RE = re.compile("[’‘`´]")
_NON_LETTER_RE = re.compile(r"[^a-zàâäéèêëïîôùûüÿçœæ\s]")
_NON_WORD_RE = re.compile(r"[^\w\s]")
_GLYPH_RE = re.compile(f"[{CHECKED_GLYPHS}{UNCHECKED_GLYPHS}]")
_WHITESPACE_RE = re.compile(r"\s+")

_YES_WORDS = ("oui", "yes")
_NO_WORDS = ("non", "no")


def normalize_apostrophes(text: str) -> str:
    return _APOSTROPHE_RE.sub("'", text)


def normalize_text(text: str) -> str:
    """Lowercase with typographic apostrophes folded to ASCII."""

    return normalize_apostrophes(text.lower())


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def extract_keywords(label: str) -> list[str]:
    """Significant words of a label: letters only, at least 3 chars, no stopwords."""

    cleaned = _NON_LETTER_RE.sub(" ", normalize_text(label))
    keywords: list[str] = []
    for word in cleaned.split():
        if len(word) < 3 or word in STOPWORDS or word in keywords:
            continue
        keywords.append(word)
    return keywords


def keyword_score(keywords: Iterable[str], text: str) -> int:
    """Sum of the lengths of the keywords found in text."""

    haystack = normalize_text(text)
    return sum(len(keyword) for keyword in keywords if keyword in haystack)


def shares_keyword(keywords: Iterable[str], text: str) -> bool:
    haystack = normalize_text(text)
    return any(keyword in haystack for keyword in keywords)


def choose_insertion_point(paragraph: TargetParagraph) -> InsertionPoint:
    if paragraph.ends_with_colon:
        return "after_colon"
    if paragraph.is_table_cell:
        return "table_cell"
    if len(paragraph.text.strip()) < 5:
        return "replace_empty"
    return "inline"


def candidate_score(context: TagContext, paragraph: TargetParagraph) -> int:
    score = keyword_score(extract_keywords(context.label_before), paragraph.text)
    if paragraph.ends_with_colon:
        score += 5
    if context.section and paragraph.section == context.section:
        score += 3
    if context.type == "table_cell" and paragraph.is_table_cell:
        score += 5
    if paragraph.row_header and paragraph.row_header[:20] in context.label_before:
        score += 10
    return score


def best_candidate(
    context: TagContext,
    paragraphs: Iterable[TargetParagraph],
    used: Collection[int] = (),
    min_score: int = 5,
) -> TargetParagraph | None:
    """Best unused, untagged paragraph for a tag by label keywords."""

    if not extract_keywords(context.label_before):
        return None

    best: TargetParagraph | None = None
    best_score = 0
    for paragraph in paragraphs:
        if paragraph.has_existing_tag or paragraph.index in used:
            continue
        score = candidate_score(context, paragraph)
        if score > best_score:
            best_score = score
            best = paragraph
    return best if best_score >= min_score else None


def normalize_label(label: str) -> str:
    text = _GLYPH_RE.sub("", label.lower())
    text = _NON_WORD_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def is_yes_label(label: str) -> bool:
    normalized = normalize_label(label)
    return any(normalized == word or normalized.startswith(f"{word} ") for word in _YES_WORDS)


def is_no_label(label: str) -> bool:
    normalized = normalize_label(label)
    return any(normalized == word or normalized.startswith(f"{word} ") for word in _NO_WORDS)


def label_match_score(reference_label: str, target_label: str) -> int:
    target = normalize_label(target_label)
    words = [word for word in normalize_label(reference_label).split() if len(word) >= 3]
    return sum(len(word) for word in words if word in target)


def best_checkbox_match(
    reference: ExtractedCheckbox,
    targets: Iterable[ExtractedCheckbox],
    used: Collection[tuple[int, int]] = (),
    min_score: int = 4,
) -> ExtractedCheckbox | None:
    """Target checkbox carrying the same yes/no answer or the closest label."""

    candidates = [target for target in targets if target.key not in used]
    if is_yes_label(reference.label):
        return next((target for target in candidates if is_yes_label(target.label)), None)
    if is_no_label(reference.label):
        return next((target for target in candidates if is_no_label(target.label)), None)

    best: ExtractedCheckbox | None = None
    best_score = 0
    for target in candidates:
        score = label_match_score(reference.label, target.label)
        if score > best_score:
            best_score = score
            best = target
    return best if best_score >= min_score else None
