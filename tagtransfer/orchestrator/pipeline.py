"""Mapping pipeline: extract -> match -> transfer checkboxes -> apply -> report."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from tagtransfer.apply.checkbox_applicator import apply_checkbox_decisions
from tagtransfer.apply.tag_applicator import apply_tag_matches
from tagtransfer.checkbox.pairing import find_checkbox_pairs, generate_checkbox_tags
from tagtransfer.checkbox.transfer import transfer_checkbox_states
from tagtransfer.config.loader import load_settings
from tagtransfer.config.models import MatchingSettings
from tagtransfer.context.extractor import (
    ExtractedDocument,
    build_reference_context,
    extract_document,
    load_document,
    serialize_document,
)
from tagtransfer.context.models import (
    CheckboxDecision,
    CheckboxPair,
    MatchResult,
    ReferenceContext,
    TargetParagraph,
)
from tagtransfer.context.placeholder_parser import find_placeholders
from tagtransfer.matching.agent import MatchingOutcome, fallback_outcome, run_matching_loop
from tagtransfer.matching.fallback import unify_cell_groups
from tagtransfer.matching.oracle import Oracle
from tagtransfer.matching.prompt_builder import build_segment_prompt
from tagtransfer.orchestrator.models import (
    AppliedTag,
    BatchItemResult,
    CheckboxStats,
    FailedTag,
    MappingMode,
    MappingOutput,
    MappingReport,
    SegmentationInfo,
)
from tagtransfer.render.docx_filler import build_data_structure
from tagtransfer.segment.planner import (
    ParagraphCache,
    combine_segment_results,
    prepare_segment_plan,
    resolve_segmentation,
)
from tagtransfer.segment.segmenter import segment_document
from tagtransfer.utils.docx_xml import paragraph_elements, paragraph_text
from tagtransfer.utils.errors import DocumentInputError

logger = logging.getLogger("tagtransfer.pipeline")

DocumentSource = bytes | Path | str


class MappingOptions(BaseModel):
    """Caller options for one mapping run."""

    model_config = ConfigDict(extra="forbid")

    segmentation: Literal["auto", "always", "never"] = "auto"
    checkbox_mode: Literal["deterministic", "content_aware"] = "deterministic"
    debug: bool = False
    doc_type: str = "document"
    output_name: str | None = None


@dataclass
class _MatchingRun:
    matches: list[MatchResult]
    mode: MappingMode
    segmentation: SegmentationInfo
    outcomes: list[MatchingOutcome] = field(default_factory=list)
    decisions: list[CheckboxDecision] | None = None


def output_filename(source_name: str, override: str | None = None) -> str:
    """`<stem>_TEMPLATE.docx` unless an explicit name is given."""

    if override:
        return override if override.lower().endswith(".docx") else f"{override}.docx"
    stem = Path(source_name).stem or "document"
    return f"{stem}_TEMPLATE.docx"


async def map_documents(
    reference: DocumentSource,
    target: DocumentSource,
    oracle: Oracle | None = None,
    options: MappingOptions | None = None,
    settings: MatchingSettings | None = None,
    *,
    target_name: str | None = None,
    cache: ParagraphCache | None = None,
) -> MappingOutput:
    """Transfer placeholders and checkbox states from `reference` into `target`.

    Raises DocumentInputError for unusable inputs; every other failure is
    degraded and reported.
    """

    opts = options or MappingOptions()
    config = settings or load_settings()
    paragraph_cache = cache or ParagraphCache(config.segmentation.cache_timeout_seconds)
    if target_name is None:
        target_name = Path(target).name if isinstance(target, (str, Path)) else "target.docx"

    with paragraph_cache:
        return await _map(reference, target, oracle, opts, config, paragraph_cache, target_name)


async def map_batch(
    reference: DocumentSource,
    items: Sequence[tuple[str, DocumentSource]],
    oracle: Oracle | None = None,
    options: MappingOptions | None = None,
    settings: MatchingSettings | None = None,
) -> list[BatchItemResult]:
    """Map one reference onto several targets, in order.

    Input errors mark the item failed and the batch continues. The paragraph
    cache is reset for every item and cleared when the batch ends.
    """

    opts = options or MappingOptions()
    config = settings or load_settings()
    cache = ParagraphCache(config.segmentation.cache_timeout_seconds)
    results: list[BatchItemResult] = []

    try:
        for name, source in items:
            item_options = opts.model_copy(update={"output_name": None})
            try:
                output = await map_documents(
                    reference,
                    source,
                    oracle,
                    item_options,
                    config,
                    target_name=name,
                    cache=cache,
                )
            except DocumentInputError as exc:
                logger.warning("batch item %s failed: %s", name, exc)
                results.append(BatchItemResult(name=name, ok=False, error=str(exc)))
                continue
            results.append(
                BatchItemResult(
                    name=name,
                    ok=True,
                    output_name=output.report.output_name,
                    report=output.report,
                    content=output.content,
                )
            )
    finally:
        cache.clear()
    return results


async def _map(
    reference_source: DocumentSource,
    target_source: DocumentSource,
    oracle: Oracle | None,
    options: MappingOptions,
    config: MatchingSettings,
    cache: ParagraphCache,
    target_name: str,
) -> MappingOutput:
    reference_extracted = extract_document(load_document(reference_source, field="reference"))
    reference = build_reference_context(reference_extracted)
    target_document = load_document(target_source, field="target")
    target_extracted = extract_document(target_document)
    target_paragraphs = cache.get(target_extracted.layout.body_xml, lambda: target_extracted.paragraphs)
    target_checkboxes = target_extracted.checkbox_scan.checkboxes

    window = config.checkbox.pair_window
    reference_pairs = find_checkbox_pairs(reference.checkboxes, window, reference.paragraphs)
    target_pairs = find_checkbox_pairs(target_checkboxes, window, target_paragraphs)
    checkboxes_in_loop = options.checkbox_mode == "content_aware" and oracle is not None

    run = await _match_tags(
        oracle,
        reference,
        reference_extracted,
        target_extracted,
        target_paragraphs,
        reference_pairs,
        target_pairs,
        checkboxes_in_loop,
        options,
        config,
        cache,
    )

    if run.decisions is not None and run.decisions:
        decisions = run.decisions
        checkbox_mode = "content_aware" if run.mode == "oracle" else "deterministic_fallback"
    else:
        transfer = await transfer_checkbox_states(
            reference.checkboxes,
            target_checkboxes,
            options.checkbox_mode,
            oracle=oracle,
            target_paragraphs=target_paragraphs,
            reference_paragraphs=reference.paragraphs,
            settings=config,
        )
        decisions = transfer.decisions
        checkbox_mode = transfer.mode

    # Checkboxes first: tag insertion rewrites text nodes that hold glyphs.
    checkbox_result = apply_checkbox_decisions(decisions, target_extracted.checkbox_scan.nodes)
    tag_result = apply_tag_matches(target_document, run.matches, reference.tag_contexts)

    missing_after_apply = _verify_round_trip(target_document, tag_result.applied_tags)
    applied = [
        AppliedTag(
            tag=item.tag,
            target_index=item.target_index,
            insertion_point=item.insertion_point,
            confidence=item.confidence,
        )
        for item in tag_result.applied
        if item.tag not in missing_after_apply
    ]
    failed = [
        FailedTag(tag=item.tag, reason=item.reason, target_index=item.target_index)
        for item in tag_result.failed
    ]
    failed.extend(FailedTag(tag=tag, reason="placeholder lost after apply") for tag in missing_after_apply)
    handled = {item.tag for item in applied} | {item.tag for item in failed}
    failed.extend(FailedTag(tag=tag, reason="no match") for tag in reference.tags if tag not in handled)

    output_name = output_filename(target_name, options.output_name)
    report = MappingReport(
        tags_applied=len(applied),
        tags_failed=len(failed),
        applied=applied,
        failed=failed,
        checkbox_stats=CheckboxStats(
            reference_total=len(reference.checkboxes),
            target_total=len(target_checkboxes),
            reference_pairs=len(reference_pairs),
            target_pairs=len(target_pairs),
            decisions=len(decisions),
            applied=len(checkbox_result.applied),
            changed=checkbox_result.changed,
            failed=len(checkbox_result.failed),
            mode=checkbox_mode,
        ),
        mode=run.mode,
        segmentation=run.segmentation,
        output_name=output_name,
        data_structure=build_data_structure(
            [item.tag for item in applied],
            generate_checkbox_tags(target_checkboxes, target_pairs),
        ),
        debug=_debug_payload(run, reference_pairs, target_pairs) if options.debug else None,
    )
    logger.info(
        "mapped %s: mode=%s applied=%d failed=%d checkboxes=%d",
        output_name,
        report.mode,
        report.tags_applied,
        report.tags_failed,
        report.checkbox_stats.applied,
    )
    return MappingOutput(
        document=target_document,
        content=serialize_document(target_document),
        report=report,
    )


async def _match_tags(
    oracle: Oracle | None,
    reference: ReferenceContext,
    reference_extracted: ExtractedDocument,
    target_extracted: ExtractedDocument,
    target_paragraphs: list[TargetParagraph],
    reference_pairs: list[CheckboxPair],
    target_pairs: list[CheckboxPair],
    checkboxes_in_loop: bool,
    options: MappingOptions,
    config: MatchingSettings,
    cache: ParagraphCache,
) -> _MatchingRun:
    tag_contexts = reference.tag_contexts

    if oracle is None:
        outcome = fallback_outcome(tag_contexts, target_paragraphs, settings=config)
        return _MatchingRun(
            matches=outcome.matches,
            mode=outcome.mode,
            segmentation=SegmentationInfo(),
            outcomes=[outcome],
        )

    segmented = resolve_segmentation(
        options.segmentation, reference.body_xml, tag_contexts, config.segmentation
    )
    if not segmented:
        checkbox_kwargs: dict[str, Any] = {}
        if checkboxes_in_loop:
            checkbox_kwargs = {
                "reference_checkboxes": reference.checkboxes,
                "target_checkboxes": target_extracted.checkbox_scan.checkboxes,
                "reference_pairs": reference_pairs,
                "target_pairs": target_pairs,
            }
        outcome = await run_matching_loop(
            oracle,
            tag_contexts,
            target_paragraphs,
            doc_type=options.doc_type,
            settings=config,
            **checkbox_kwargs,
        )
        return _MatchingRun(
            matches=outcome.matches,
            mode=outcome.mode,
            segmentation=SegmentationInfo(),
            outcomes=[outcome],
            decisions=outcome.decisions if checkboxes_in_loop else None,
        )

    reference_segments = segment_document(
        reference_extracted.layout.blocks,
        reference.paragraphs,
        tag_contexts,
        "hybrid",
        config.segmentation,
    )
    target_segments = segment_document(
        target_extracted.layout.blocks,
        target_paragraphs,
        (),
        "hybrid",
        config.segmentation,
    )
    plan = prepare_segment_plan(
        tag_contexts,
        reference_segments,
        target_segments,
        cache.get(target_extracted.layout.body_xml, lambda: target_extracted.paragraphs),
        config.segmentation,
    )

    outcomes: list[MatchingOutcome] = []
    # Sequential awaits: each loop's feedback depends on its previous answer.
    for pair in plan.matched_pairs:
        outcome = await run_matching_loop(
            oracle,
            pair.tag_contexts,
            pair.paragraphs,
            prompt_factory=partial(
                _segment_prompt, pair=pair, doc_type=options.doc_type, config=config
            ),
            accept_mode="segmented_oracle",
            settings=config,
        )
        outcomes.append(outcome)

    matches = combine_segment_results([outcome.matches for outcome in outcomes], plan.matched_pairs)
    placed = {match.tag for match in matches}
    remaining = [context for context in tag_contexts if context.tag not in placed]
    if remaining:
        used = {match.target_index for match in matches}
        available = [paragraph for paragraph in target_paragraphs if paragraph.index not in used]
        outcome = await run_matching_loop(
            oracle,
            remaining,
            available,
            doc_type=options.doc_type,
            settings=config,
        )
        outcomes.append(outcome)
        matches.extend(outcome.matches)

    return _MatchingRun(
        matches=unify_cell_groups(matches, tag_contexts),
        mode=_combined_mode(outcomes),
        segmentation=SegmentationInfo(
            used=True,
            strategy=target_segments.strategy,
            reference_segments=len(reference_segments.segments),
            target_segments=len(target_segments.segments),
            matched_segments=len(plan.matched_pairs),
            unmatched_tags=list(plan.unmatched_tags),
        ),
        outcomes=outcomes,
    )


def _segment_prompt(feedback: str, *, pair, doc_type: str, config: MatchingSettings) -> str:
    return build_segment_prompt(pair, doc_type, feedback, config.prompt)


def _combined_mode(outcomes: Sequence[MatchingOutcome]) -> MappingMode:
    modes = {outcome.mode for outcome in outcomes}
    if not modes or modes == {"pattern_fallback"}:
        return "pattern_fallback"
    if modes <= {"segmented_oracle", "oracle"}:
        return "segmented_oracle"
    return "hybrid"


def _verify_round_trip(document, applied_tags: Sequence[str]) -> list[str]:
    """Applied tags whose placeholder cannot be parsed back from the output."""

    found = {
        tag for element in paragraph_elements(document) for tag in find_placeholders(paragraph_text(element))
    }
    missing = [tag for tag in applied_tags if tag not in found]
    if missing:
        logger.warning("placeholders missing after apply: %s", ", ".join(missing))
    return missing


def _debug_payload(
    run: _MatchingRun,
    reference_pairs: Sequence[CheckboxPair],
    target_pairs: Sequence[CheckboxPair],
) -> dict[str, Any]:
    return {
        "loops": [
            {
                "mode": outcome.mode,
                "iterations": outcome.state.iteration,
                "satisfaction": round(outcome.state.satisfaction, 1),
                "issues": list(outcome.state.issues),
                "actions": [
                    {"iteration": action.iteration, "phase": action.phase, "detail": action.detail}
                    for action in outcome.state.actions
                ],
                "rawResponse": outcome.raw_response,
            }
            for outcome in run.outcomes
        ],
        "matches": [
            {
                "tag": match.tag,
                "targetIdx": match.target_index,
                "insertionPoint": match.insertion_point,
                "confidence": match.confidence,
                "reason": match.reason,
            }
            for match in run.matches
        ],
        "referencePairs": [_pair_payload(pair) for pair in reference_pairs],
        "targetPairs": [_pair_payload(pair) for pair in target_pairs],
    }


def _pair_payload(pair: CheckboxPair) -> dict[str, Any]:
    return {
        "question": pair.question,
        "yesIdx": pair.yes.index,
        "noIdx": pair.no.index,
        "value": pair.value,
    }
