"""Semantic fallback used when the oracle loop fails or exhausts its budget."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Collection, Sequence

from tagtransfer.checkbox.transfer import deterministic_decisions
from tagtransfer.config.models import MatchingSettings
from tagtransfer.context.models import (
    CheckboxDecision,
    CheckboxPair,
    ExtractedCheckbox,
    MatchResult,
    TagContext,
    TargetParagraph,
)
from tagtransfer.matching.keywords import best_candidate, choose_insertion_point
from tagtransfer.matching.pattern_matcher import pattern_based_matching

FALLBACK_CONFIDENCE = 0.75
CELL_GROUP_CONFIDENCE = 0.95


def semantic_fallback(
    tag_contexts: Sequence[TagContext],
    paragraphs: Sequence[TargetParagraph],
    used_indices: Collection[int] = (),
    settings: MatchingSettings | None = None,
) -> list[MatchResult]:
    """Place tags without the oracle.

    Reference cell groups go first, onto the target cell at the same table
    position; the pattern cascade and then the keyword scorer handle the rest.
    Tags that shared a reference cell always end on one target paragraph.
    """

    config = settings or MatchingSettings()
    used = set(used_indices)
    matches = _place_cell_groups(tag_contexts, paragraphs, used)
    placed = {match.tag for match in matches}

    remaining = [context for context in tag_contexts if context.tag not in placed]
    available = [paragraph for paragraph in paragraphs if paragraph.index not in used]
    for match in pattern_based_matching(remaining, available, config.pattern):
        matches.append(match)
        placed.add(match.tag)
        used.add(match.target_index)

    for context in tag_contexts:
        if context.tag in placed:
            continue
        candidate = best_candidate(context, paragraphs, used, config.pattern.candidate_min_score)
        if candidate is None:
            continue
        used.add(candidate.index)
        placed.add(context.tag)
        matches.append(
            MatchResult(
                tag=context.tag,
                target_index=candidate.index,
                confidence=FALLBACK_CONFIDENCE,
                insertion_point=choose_insertion_point(candidate),
                reason="keyword fallback",
            )
        )
    return unify_cell_groups(matches, tag_contexts)


def checkbox_fallback(
    reference_checkboxes: Sequence[ExtractedCheckbox],
    target_checkboxes: Sequence[ExtractedCheckbox],
    reference_pairs: Sequence[CheckboxPair],
    target_pairs: Sequence[CheckboxPair],
    settings: MatchingSettings | None = None,
) -> list[CheckboxDecision]:
    config = settings or MatchingSettings()
    return deterministic_decisions(
        reference_checkboxes,
        target_checkboxes,
        reference_pairs,
        target_pairs,
        confidence=FALLBACK_CONFIDENCE,
        min_score=config.checkbox.label_match_min_score,
    )


def unify_cell_groups(
    matches: Sequence[MatchResult], tag_contexts: Sequence[TagContext]
) -> list[MatchResult]:
    """Move every member of a reference cell group onto its most confident placement."""

    groups: dict[str, list[str]] = defaultdict(list)
    for context in tag_contexts:
        if context.table_position is not None:
            groups[context.table_position.key].append(context.tag)

    anchor_for: dict[str, MatchResult] = {}
    by_tag = {match.tag: match for match in matches}
    for tags in groups.values():
        members = [by_tag[tag] for tag in tags if tag in by_tag]
        if len(members) < 2 or len({member.target_index for member in members}) == 1:
            continue
        anchor = max(members, key=lambda member: member.confidence)
        for member in members:
            anchor_for[member.tag] = anchor

    unified: list[MatchResult] = []
    for match in matches:
        anchor = anchor_for.get(match.tag)
        if anchor is None or anchor.target_index == match.target_index:
            unified.append(match)
            continue
        unified.append(
            MatchResult(
                tag=match.tag,
                target_index=anchor.target_index,
                confidence=match.confidence,
                insertion_point=anchor.insertion_point,
                reason=f"cell group with {anchor.tag}",
            )
        )
    return unified


def _place_cell_groups(
    tag_contexts: Sequence[TagContext],
    paragraphs: Sequence[TargetParagraph],
    used: set[int],
) -> list[MatchResult]:
    groups: dict[str, list[TagContext]] = defaultdict(list)
    for context in tag_contexts:
        if context.table_position is not None:
            groups[context.table_position.key].append(context)

    matches: list[MatchResult] = []
    for members in groups.values():
        if len(members) < 2:
            continue
        position = members[0].table_position
        cell = next(
            (
                paragraph
                for paragraph in paragraphs
                if paragraph.table_position == position
                and paragraph.index not in used
                and not paragraph.has_existing_tag
            ),
            None,
        )
        if cell is None:
            continue
        used.add(cell.index)
        for context in members:
            matches.append(
                MatchResult(
                    tag=context.tag,
                    target_index=cell.index,
                    confidence=CELL_GROUP_CONFIDENCE,
                    insertion_point="table_cell",
                    reason=f"cell group {position.key}",
                )
            )
    return matches
