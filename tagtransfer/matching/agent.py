"""Oracle-assisted matching loop.

ACT -> OBSERVE -> VERIFY -> (ACCEPT | CORRECT -> ACT | EXHAUSTED), bounded by
`max_iterations`. Each step is recorded in `AgentState.actions` so a run can
be inspected without a real oracle.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Literal

from tagtransfer.config.models import MatchingSettings
from tagtransfer.context.models import (
    CheckboxDecision,
    CheckboxPair,
    ExtractedCheckbox,
    MatchResult,
    TagContext,
    TargetParagraph,
)
from tagtransfer.matching.fallback import checkbox_fallback, semantic_fallback, unify_cell_groups
from tagtransfer.matching.oracle import Oracle, normalize_oracle_response
from tagtransfer.matching.prompt_builder import (
    build_correction_feedback,
    build_mapping_prompt,
    validate_prompt_size,
)
from tagtransfer.matching.response_parser import ParsedResponse, parse_oracle_response
from tagtransfer.matching.validation import validate_checkbox_decisions, validate_mapping

logger = logging.getLogger("tagtransfer.agent")

MatchingMode = Literal["oracle", "segmented_oracle", "hybrid", "pattern_fallback"]
PlacementStatus = Literal["pending", "matched", "failed"]
PromptFactory = Callable[[str], str]


@dataclass
class ExpectedPlacement:
    tag: str
    expected_position: str
    template_context: str
    status: PlacementStatus = "pending"


@dataclass(frozen=True)
class AgentAction:
    iteration: int
    phase: str
    detail: str


@dataclass
class AgentState:
    iteration: int = 0
    expected_placements: list[ExpectedPlacement] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    satisfaction: float = 0.0
    actions: list[AgentAction] = field(default_factory=list)

    @classmethod
    def start(cls, tag_contexts: Sequence[TagContext]) -> AgentState:
        placements = []
        for context in tag_contexts:
            if context.table_position is not None:
                position = context.table_position.key
            else:
                position = f"p{context.paragraph_index}" if context.paragraph_index is not None else "?"
            placements.append(
                ExpectedPlacement(
                    tag=context.tag,
                    expected_position=position,
                    template_context=context.label_before,
                )
            )
        return cls(expected_placements=placements)

    def record(self, phase: str, detail: str) -> None:
        self.actions.append(AgentAction(iteration=self.iteration, phase=phase, detail=detail))
        logger.debug("iteration %d %s: %s", self.iteration, phase, detail)

    def observe(self, matches: Sequence[MatchResult], final: bool = False) -> None:
        """Refresh placement statuses and satisfaction (matched / expected x 100)."""

        matched = {match.tag for match in matches}
        for placement in self.expected_placements:
            if placement.tag in matched:
                placement.status = "matched"
            else:
                placement.status = "failed" if final else "pending"
        if self.expected_placements:
            done = sum(1 for placement in self.expected_placements if placement.status == "matched")
            self.satisfaction = done / len(self.expected_placements) * 100
        else:
            self.satisfaction = 100.0


@dataclass
class MatchingOutcome:
    matches: list[MatchResult]
    decisions: list[CheckboxDecision]
    mode: MatchingMode
    state: AgentState
    raw_response: str | None = None


async def run_matching_loop(
    oracle: Oracle,
    tag_contexts: Sequence[TagContext],
    paragraphs: Sequence[TargetParagraph],
    *,
    reference_checkboxes: Sequence[ExtractedCheckbox] = (),
    target_checkboxes: Sequence[ExtractedCheckbox] = (),
    reference_pairs: Sequence[CheckboxPair] = (),
    target_pairs: Sequence[CheckboxPair] = (),
    doc_type: str = "document",
    prompt_factory: PromptFactory | None = None,
    accept_mode: MatchingMode = "oracle",
    settings: MatchingSettings | None = None,
) -> MatchingOutcome:
    """Ask the oracle, verify its answer, and correct it until it validates.

    Oracle failures and empty answers leave the loop early; the result then
    comes from the last usable answer plus the semantic fallback (`hybrid`),
    or from the fallback alone (`pattern_fallback`).
    """

    config = settings or MatchingSettings()
    state = AgentState.start(tag_contexts)
    known_tags = {context.tag for context in tag_contexts}
    known_boxes = {checkbox.key for checkbox in target_checkboxes}

    if prompt_factory is None:

        def prompt_factory(feedback: str) -> str:
            return build_mapping_prompt(
                tag_contexts,
                paragraphs,
                reference_checkboxes,
                target_checkboxes,
                reference_pairs,
                doc_type=doc_type,
                correction_feedback=feedback,
                limits=config.prompt,
            )

    feedback = ""
    last: ParsedResponse | None = None
    raw: str | None = None

    while state.iteration < config.max_iterations:
        state.iteration += 1

        prompt = prompt_factory(feedback)
        if not validate_prompt_size(prompt, config.prompt.max_prompt_chars):
            state.record("act", f"prompt is {len(prompt)} chars, above {config.prompt.max_prompt_chars}")
        state.record("act", "invoking oracle")
        try:
            response = await oracle.invoke(prompt)
        except Exception as exc:  # any oracle failure degrades to the fallback
            logger.warning("oracle call failed at iteration %d: %s", state.iteration, exc)
            state.record("act", f"oracle error: {exc}")
            break

        raw = normalize_oracle_response(response)
        parsed = parse_oracle_response(raw, config.confidence_threshold)
        parsed = ParsedResponse(
            matches=[match for match in parsed.matches if match.tag in known_tags],
            decisions=[decision for decision in parsed.decisions if decision.key in known_boxes],
        )
        state.record("observe", f"{len(parsed.matches)} matches, {len(parsed.decisions)} decisions")
        if parsed.is_empty:
            break
        last = parsed
        state.observe(parsed.matches)

        issues = validate_mapping(
            parsed.matches,
            tag_contexts,
            paragraphs,
            parsed.decisions,
            reference_pairs,
            target_pairs,
            config,
        )
        state.issues = issues
        state.record("verify", f"{len(issues)} issues")
        if not issues:
            state.record("accept", f"satisfaction {state.satisfaction:.0f}")
            state.observe(parsed.matches, final=True)
            return MatchingOutcome(
                matches=parsed.matches,
                decisions=parsed.decisions,
                mode=accept_mode,
                state=state,
                raw_response=raw,
            )

        feedback = build_correction_feedback(issues, parsed.matches, parsed.decisions, config.prompt)
        state.record("correct", "; ".join(issues)[:200])

    state.record("exhausted", "falling back")
    return _finish_with_fallback(
        state,
        last,
        raw,
        tag_contexts,
        paragraphs,
        reference_checkboxes,
        target_checkboxes,
        reference_pairs,
        target_pairs,
        config,
    )


def fallback_outcome(
    tag_contexts: Sequence[TagContext],
    paragraphs: Sequence[TargetParagraph],
    *,
    reference_checkboxes: Sequence[ExtractedCheckbox] = (),
    target_checkboxes: Sequence[ExtractedCheckbox] = (),
    reference_pairs: Sequence[CheckboxPair] = (),
    target_pairs: Sequence[CheckboxPair] = (),
    settings: MatchingSettings | None = None,
) -> MatchingOutcome:
    """Oracle-free result built from the pattern cascade and the keyword scorer."""

    config = settings or MatchingSettings()
    state = AgentState.start(tag_contexts)
    return _finish_with_fallback(
        state,
        None,
        None,
        tag_contexts,
        paragraphs,
        reference_checkboxes,
        target_checkboxes,
        reference_pairs,
        target_pairs,
        config,
    )


def _finish_with_fallback(
    state: AgentState,
    last: ParsedResponse | None,
    raw: str | None,
    tag_contexts: Sequence[TagContext],
    paragraphs: Sequence[TargetParagraph],
    reference_checkboxes: Sequence[ExtractedCheckbox],
    target_checkboxes: Sequence[ExtractedCheckbox],
    reference_pairs: Sequence[CheckboxPair],
    target_pairs: Sequence[CheckboxPair],
    config: MatchingSettings,
) -> MatchingOutcome:
    listed = {paragraph.index for paragraph in paragraphs}

    if last is not None and last.matches:
        kept: list[MatchResult] = []
        placed: set[str] = set()
        for match in last.matches:
            if match.target_index in listed and match.tag not in placed:
                kept.append(match)
                placed.add(match.tag)
        missing = [context for context in tag_contexts if context.tag not in placed]
        used = {match.target_index for match in kept}
        filled = semantic_fallback(missing, paragraphs, used, config) if missing else []
        matches = unify_cell_groups(kept + filled, tag_contexts)
        mode: MatchingMode = "hybrid"
        state.record("fallback", f"kept {len(kept)} oracle matches, filled {len(filled)}")
    else:
        matches = semantic_fallback(tag_contexts, paragraphs, (), config)
        mode = "pattern_fallback"
        state.record("fallback", f"pattern fallback placed {len(matches)} tags")

    decisions: list[CheckboxDecision] = []
    if target_checkboxes:
        if last is not None and last.decisions and not validate_checkbox_decisions(
            last.decisions, reference_pairs, target_pairs
        ):
            decisions = last.decisions
        else:
            decisions = checkbox_fallback(
                reference_checkboxes, target_checkboxes, reference_pairs, target_pairs, config
            )

    state.observe(matches, final=True)
    return MatchingOutcome(matches=matches, decisions=decisions, mode=mode, state=state, raw_response=raw)
