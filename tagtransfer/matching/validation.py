"""Validation engine for candidate match sets and checkbox decisions.

Every rule yields human-readable issue strings; nothing here raises. The
strings are fed back to the oracle as correction feedback and end up in the
debug section of the report.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence

from tagtransfer.checkbox.pairing import match_checkbox_pairs
from tagtransfer.config.models import MatchingSettings
from tagtransfer.context.models import (
    CheckboxDecision,
    CheckboxPair,
    MatchResult,
    TagContext,
    TargetParagraph,
)
from tagtransfer.matching.keywords import extract_keywords, shares_keyword


def validate_mapping(
    matches: Sequence[MatchResult],
    tag_contexts: Sequence[TagContext],
    paragraphs: Sequence[TargetParagraph],
    decisions: Sequence[CheckboxDecision] = (),
    reference_pairs: Sequence[CheckboxPair] = (),
    target_pairs: Sequence[CheckboxPair] = (),
    settings: MatchingSettings | None = None,
) -> list[str]:
    config = settings or MatchingSettings()
    contexts = {context.tag: context for context in tag_contexts}
    by_index = {paragraph.index: paragraph for paragraph in paragraphs}

    issues: list[str] = []
    issues.extend(_unknown_indices(matches, by_index))
    issues.extend(_collisions(matches, contexts, by_index))
    issues.extend(_cell_groups(matches, tag_contexts))
    issues.extend(_semantic_plausibility(matches, contexts, by_index, config))
    issues.extend(_coverage(matches, tag_contexts, config))
    issues.extend(validate_checkbox_decisions(decisions, reference_pairs, target_pairs))
    return issues


def validate_checkbox_decisions(
    decisions: Sequence[CheckboxDecision],
    reference_pairs: Sequence[CheckboxPair],
    target_pairs: Sequence[CheckboxPair],
) -> list[str]:
    """Pair exclusivity and pair fidelity over the decided target states."""

    if not decisions:
        return []
    decided = {decision.key: decision.checked for decision in decisions}
    issues: list[str] = []

    for pair in target_pairs:
        if pair.yes.key not in decided and pair.no.key not in decided:
            continue
        yes_state = decided.get(pair.yes.key, pair.yes.checked)
        no_state = decided.get(pair.no.key, pair.no.checked)
        if yes_state and no_state:
            issues.append(
                f"Checkbox pair '{pair.question}' (idx {pair.yes.index}/{pair.no.index}): "
                "both Oui and Non are checked"
            )

    for reference, target in match_checkbox_pairs(reference_pairs, target_pairs):
        if reference.value is None:
            continue
        if target.yes.key not in decided and target.no.key not in decided:
            continue
        yes_state = decided.get(target.yes.key, target.yes.checked)
        no_state = decided.get(target.no.key, target.no.checked)
        if yes_state != reference.value or no_state == reference.value:
            expected = "Oui" if reference.value else "Non"
            issues.append(
                f"Checkbox pair '{target.question}' (idx {target.yes.index}/{target.no.index}): "
                f"reference answer is {expected}"
            )
    return issues


def _unknown_indices(
    matches: Sequence[MatchResult], by_index: dict[int, TargetParagraph]
) -> list[str]:
    return [
        f"Tag {match.tag}: targetIdx {match.target_index} is not a listed paragraph"
        for match in matches
        if match.target_index not in by_index
    ]


def _colocated(tags: list[str], contexts: dict[str, TagContext]) -> bool:
    """Whether all tags shared one cell, or one paragraph, in the reference."""

    known = [contexts[tag] for tag in tags if tag in contexts]
    if len(known) != len(tags):
        return False
    positions = {context.table_position for context in known}
    if len(positions) == 1 and None not in positions:
        return True
    paragraph_indices = {context.paragraph_index for context in known}
    return len(paragraph_indices) == 1 and None not in paragraph_indices


def _collisions(
    matches: Sequence[MatchResult],
    contexts: dict[str, TagContext],
    by_index: dict[int, TargetParagraph],
) -> list[str]:
    tags_by_index: dict[int, list[str]] = defaultdict(list)
    for match in matches:
        if match.tag not in tags_by_index[match.target_index]:
            tags_by_index[match.target_index].append(match.tag)

    issues: list[str] = []
    for index, tags in sorted(tags_by_index.items()):
        paragraph = by_index.get(index)
        if len(tags) < 2 or paragraph is None or paragraph.is_table_cell:
            continue
        if _colocated(tags, contexts):
            continue
        issues.append(f"Duplicate placement: {', '.join(tags)} all target idx {index}")
    return issues


def _cell_groups(matches: Sequence[MatchResult], tag_contexts: Sequence[TagContext]) -> list[str]:
    targets = {match.tag: match.target_index for match in matches}
    groups: dict[str, list[str]] = defaultdict(list)
    for context in tag_contexts:
        if context.table_position is not None:
            groups[context.table_position.key].append(context.tag)

    issues: list[str] = []
    for cell, tags in groups.items():
        if len(tags) < 2:
            continue
        placed = {targets[tag] for tag in tags if tag in targets}
        if len(placed) > 1:
            indices = ", ".join(str(index) for index in sorted(placed))
            issues.append(
                f"Cell group {cell} ({', '.join(tags)}) split across paragraphs {indices}; "
                "tags sharing a cell must share one targetIdx"
            )
    return issues


def _semantic_plausibility(
    matches: Sequence[MatchResult],
    contexts: dict[str, TagContext],
    by_index: dict[int, TargetParagraph],
    config: MatchingSettings,
) -> list[str]:
    issues: list[str] = []
    for match in matches:
        context = contexts.get(match.tag)
        paragraph = by_index.get(match.target_index)
        if context is None or paragraph is None:
            continue
        if context.type in ("table_cell", "checkbox") or paragraph.is_table_cell:
            continue
        keywords = extract_keywords(context.label_before)
        if len(keywords) < config.semantic_min_keywords:
            continue

        text = paragraph.text
        # An empty field paragraph is judged by the label just above it.
        previous = by_index.get(paragraph.index - 1)
        if len(text.strip()) < 5 and previous is not None:
            text = f"{previous.text} {text}"
        if not shares_keyword(keywords, text):
            issues.append(
                f"Tag {match.tag}: idx {match.target_index} ('{paragraph.text[:40]}') "
                f"shares no keyword with label '{context.label_before[:40]}'"
            )
    return issues


def _coverage(
    matches: Sequence[MatchResult],
    tag_contexts: Sequence[TagContext],
    config: MatchingSettings,
) -> list[str]:
    expected = {context.tag for context in tag_contexts}
    if not expected:
        return []
    missing = expected - {match.tag for match in matches}
    if len(missing) / len(expected) > config.coverage_floor:
        return [
            f"Coverage: {len(missing)}/{len(expected)} tags unmatched ({', '.join(sorted(missing))})"
        ]
    return []
