"""Checkbox state transfer from the reference to the target."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from tagtransfer.checkbox.pairing import find_checkbox_pairs, match_checkbox_pairs
from tagtransfer.config.models import MatchingSettings
from tagtransfer.context.models import (
    CheckboxDecision,
    CheckboxPair,
    ExtractedCheckbox,
    TargetParagraph,
)
from tagtransfer.matching.keywords import best_checkbox_match
from tagtransfer.matching.oracle import Oracle, normalize_oracle_response
from tagtransfer.matching.prompt_builder import build_checkbox_prompt, build_correction_feedback
from tagtransfer.matching.response_parser import parse_checkbox_decisions
from tagtransfer.matching.validation import validate_checkbox_decisions

logger = logging.getLogger("tagtransfer.checkbox")

CheckboxMode = Literal["deterministic", "content_aware"]


@dataclass
class CheckboxTransfer:
    decisions: list[CheckboxDecision] = field(default_factory=list)
    reference_pairs: list[CheckboxPair] = field(default_factory=list)
    target_pairs: list[CheckboxPair] = field(default_factory=list)
    mode: str = "deterministic"
    issues: list[str] = field(default_factory=list)


def deterministic_decisions(
    reference_checkboxes: Sequence[ExtractedCheckbox],
    target_checkboxes: Sequence[ExtractedCheckbox],
    reference_pairs: Sequence[CheckboxPair],
    target_pairs: Sequence[CheckboxPair],
    confidence: float = 1.0,
    min_score: int = 4,
) -> list[CheckboxDecision]:
    """Copy reference states: pairs by resolved value, standalone boxes by label.

    A pair whose reference value is ambiguous leaves the target pair untouched.
    """

    decisions: list[CheckboxDecision] = []
    for reference, target in match_checkbox_pairs(reference_pairs, target_pairs, min_score):
        if reference.value is None:
            continue
        reason = f"reference pair '{reference.question}'"
        decisions.append(
            CheckboxDecision(
                target_index=target.yes.index,
                position=target.yes.position,
                checked=reference.value,
                confidence=confidence,
                label=target.yes.label,
                reason=reason,
            )
        )
        decisions.append(
            CheckboxDecision(
                target_index=target.no.index,
                position=target.no.position,
                checked=not reference.value,
                confidence=confidence,
                label=target.no.label,
                reason=reason,
            )
        )

    paired_reference = {key for pair in reference_pairs for key in (pair.yes.key, pair.no.key)}
    paired_target = {key for pair in target_pairs for key in (pair.yes.key, pair.no.key)}
    standalone_targets = [checkbox for checkbox in target_checkboxes if checkbox.key not in paired_target]
    used: set[tuple[int, int]] = set()

    for reference_box in reference_checkboxes:
        if reference_box.key in paired_reference:
            continue
        target_box = best_checkbox_match(reference_box, standalone_targets, used, min_score)
        if target_box is None:
            continue
        used.add(target_box.key)
        decisions.append(
            CheckboxDecision(
                target_index=target_box.index,
                position=target_box.position,
                checked=reference_box.checked,
                confidence=confidence,
                label=target_box.label,
                reason=f"reference checkbox '{reference_box.label[:40]}'",
            )
        )
    return decisions


async def transfer_checkbox_states(
    reference_checkboxes: Sequence[ExtractedCheckbox],
    target_checkboxes: Sequence[ExtractedCheckbox],
    mode: CheckboxMode = "deterministic",
    *,
    oracle: Oracle | None = None,
    target_paragraphs: Sequence[TargetParagraph] = (),
    reference_paragraphs: Sequence[TargetParagraph] | None = None,
    settings: MatchingSettings | None = None,
) -> CheckboxTransfer:
    """Decide target checkbox states in deterministic or content-aware mode.

    Content-aware decisions must pass pair exclusivity and pair fidelity;
    oracle failures and invalid answers fall back to deterministic copying.
    """

    config = settings or MatchingSettings()
    window = config.checkbox.pair_window
    reference_pairs = find_checkbox_pairs(reference_checkboxes, window, reference_paragraphs)
    target_pairs = find_checkbox_pairs(target_checkboxes, window, target_paragraphs or None)
    result = CheckboxTransfer(reference_pairs=reference_pairs, target_pairs=target_pairs)

    if not target_checkboxes:
        return result

    if mode == "content_aware" and oracle is not None:
        decisions, issues = await _content_aware_decisions(
            oracle,
            reference_checkboxes,
            target_checkboxes,
            reference_pairs,
            target_pairs,
            target_paragraphs,
            config,
        )
        if decisions:
            result.decisions = decisions
            result.mode = "content_aware"
            return result
        result.issues = issues
        result.mode = "content_aware_fallback"

    result.decisions = deterministic_decisions(
        reference_checkboxes,
        target_checkboxes,
        reference_pairs,
        target_pairs,
        min_score=config.checkbox.label_match_min_score,
    )
    return result


async def _content_aware_decisions(
    oracle: Oracle,
    reference_checkboxes: Sequence[ExtractedCheckbox],
    target_checkboxes: Sequence[ExtractedCheckbox],
    reference_pairs: Sequence[CheckboxPair],
    target_pairs: Sequence[CheckboxPair],
    target_paragraphs: Sequence[TargetParagraph],
    config: MatchingSettings,
) -> tuple[list[CheckboxDecision], list[str]]:
    known = {checkbox.key for checkbox in target_checkboxes}
    feedback = ""
    issues: list[str] = []

    for iteration in range(1, config.max_iterations + 1):
        prompt = build_checkbox_prompt(
            reference_checkboxes,
            reference_pairs,
            target_checkboxes,
            target_paragraphs,
            correction_feedback=feedback,
            limits=config.prompt,
        )
        try:
            response = await oracle.invoke(prompt)
        except Exception as exc:  # any oracle failure degrades to deterministic copying
            logger.warning("checkbox oracle failed at iteration %d: %s", iteration, exc)
            return [], [str(exc)]

        decisions = [
            decision
            for decision in parse_checkbox_decisions(
                normalize_oracle_response(response), config.confidence_threshold
            )
            if decision.key in known
        ]
        if not decisions:
            return [], ["oracle returned no usable checkbox decision"]

        issues = validate_checkbox_decisions(decisions, reference_pairs, target_pairs)
        if not issues:
            return decisions, []
        feedback = build_correction_feedback(issues, [], decisions, config.prompt)
    return [], issues
