"""Segment-scoped matching plans and the request-scoped paragraph cache."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Literal

from tagtransfer.config.models import SegmentationSettings
from tagtransfer.context.models import MatchResult, TagContext, TargetParagraph
from tagtransfer.segment.models import (
    PlanStats,
    SegmentationResult,
    SegmentMatchingPlan,
    SegmentPair,
)
from tagtransfer.segment.segmenter import match_segments, paragraphs_in_segment

logger = logging.getLogger("tagtransfer.segment")

SegmentationMode = Literal["auto", "always", "never"]


class ParagraphCache:
    """Target paragraph list reused across the segments of one mapping run.

    Entries expire after `timeout_seconds`. Use as a context manager so the
    cache is empty on entry and cleared again on every exit path.
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout = timeout_seconds
        self._clock = clock
        self._key: str | None = None
        self._paragraphs: list[TargetParagraph] | None = None
        self._stored_at = 0.0
        self.hits = 0
        self.misses = 0

    def __enter__(self) -> ParagraphCache:
        self.reset()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.clear()
        return False

    @property
    def is_empty(self) -> bool:
        return self._paragraphs is None

    def get(self, body_xml: str, loader: Callable[[], list[TargetParagraph]]) -> list[TargetParagraph]:
        now = self._clock()
        if (
            self._paragraphs is not None
            and self._key == body_xml
            and now - self._stored_at <= self._timeout
        ):
            self.hits += 1
            return self._paragraphs

        self.misses += 1
        self._paragraphs = list(loader())
        self._key = body_xml
        self._stored_at = now
        return self._paragraphs

    def reset(self) -> None:
        self.clear()
        self.hits = 0
        self.misses = 0

    def clear(self) -> None:
        self._key = None
        self._paragraphs = None
        self._stored_at = 0.0


def prepare_segment_plan(
    tag_contexts: Sequence[TagContext],
    reference: SegmentationResult,
    target: SegmentationResult,
    target_paragraphs: Sequence[TargetParagraph],
    settings: SegmentationSettings | None = None,
) -> SegmentMatchingPlan:
    """Pair reference and target segments and collect what each pair must place.

    Tags of reference segments without a partner end up in `unmatched_tags`
    and must be handled by the global loop.
    """

    config = settings or SegmentationSettings()
    contexts_by_tag = {context.tag: context for context in tag_contexts}
    plan = SegmentMatchingPlan()
    assigned: set[str] = set()

    for match in match_segments(reference.segments, target.segments, config.segment_match_min_score):
        tags = tuple(tag for tag in match.reference.tags if tag in contexts_by_tag and tag not in assigned)
        if not tags:
            continue
        if match.target is None:
            logger.debug("no target segment for %s (score %.1f)", match.reference.id, match.score)
            continue
        paragraphs = paragraphs_in_segment(match.target, target_paragraphs)
        if not paragraphs:
            continue
        plan.matched_pairs.append(
            SegmentPair(
                reference=match.reference,
                target=match.target,
                score=match.score,
                tags=tags,
                tag_contexts=[contexts_by_tag[tag] for tag in tags],
                paragraphs=paragraphs,
            )
        )
        assigned.update(tags)

    plan.unmatched_tags = [context.tag for context in tag_contexts if context.tag not in assigned]
    plan.stats = PlanStats(
        total_template_segments=len(reference.segments),
        total_target_segments=len(target.segments),
        matched_segments=len(plan.matched_pairs),
        total_tags_to_transfer=len(assigned),
    )
    return plan


def combine_segment_results(
    results_by_segment: Sequence[Sequence[MatchResult]],
    pairs: Sequence[SegmentPair],
) -> list[MatchResult]:
    """Merge per-segment matches in pair order; the first match of a tag wins."""

    combined: list[MatchResult] = []
    seen: set[str] = set()
    for pair, results in zip(pairs, results_by_segment):
        allowed = set(pair.tags)
        for match in results:
            if match.tag in seen or match.tag not in allowed:
                continue
            seen.add(match.tag)
            combined.append(match)
    return combined


def tag_prefix(tag: str) -> str:
    return tag.split("_", 1)[0]


def should_use_segmentation(
    body_xml: str,
    tag_contexts: Sequence[TagContext],
    settings: SegmentationSettings | None = None,
) -> bool:
    """Segment only when at least two size criteria hold."""

    config = settings or SegmentationSettings()
    prefixes = {tag_prefix(context.tag) for context in tag_contexts}
    criteria = [
        len(body_xml) > config.large_document_chars,
        len(tag_contexts) > config.many_tags,
        len(prefixes) >= config.distinct_prefixes,
    ]
    return sum(criteria) >= config.min_criteria


def resolve_segmentation(
    mode: SegmentationMode,
    body_xml: str,
    tag_contexts: Sequence[TagContext],
    settings: SegmentationSettings | None = None,
) -> bool:
    if mode == "always":
        return True
    if mode == "never":
        return False
    return should_use_segmentation(body_xml, tag_contexts, settings)
