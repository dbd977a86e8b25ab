"""Few-shot prompt construction for the semantic oracle.

Prompts list target paragraphs with their document-global `idx`; the oracle
must answer with those indices only, which keeps its answers verifiable.
"""

from __future__ import annotations

import json
from collections import defaultdict
from collections.abc import Sequence

from tagtransfer.config.models import PromptLimits
from tagtransfer.context.models import (
    CheckboxDecision,
    CheckboxPair,
    ExtractedCheckbox,
    MatchResult,
    TagContext,
    TargetParagraph,
)
from tagtransfer.matching.keywords import best_candidate, extract_keywords, keyword_score
from tagtransfer.segment.models import SegmentPair

VALIDATION_RULES = """VALIDATION RULES
1. Tags that shared one table cell in the reference share one targetIdx.
2. Turnover columns (CA_N, CA_N1, CA_N2 and their PART_ variants) go to different cells.
3. Never place two unrelated tags on the same non-table paragraph.
4. A yes/no pair never has both boxes checked."""

INSERTION_RULES = """INSERTION POINTS
| insertionPoint | when |
| after_colon    | the paragraph is a label ending with ":" |
| table_cell     | the paragraph is a table cell to fill |
| replace_empty  | the paragraph is empty or holds only filler (dots, spaces) |
| inline         | append at the end of the paragraph text |"""

RESPONSE_FORMAT = """RESPONSE FORMAT (JSON only)
{"tags": [{"tag": "TAG", "targetIdx": 12, "insertionPoint": "after_colon", "confidence": 0.9, "reason": "..."}],
 "checkboxes": [{"targetIdx": 30, "pos": 0, "checked": true, "confidence": 0.9, "reason": "..."}]}"""


def build_mapping_prompt(
    tag_contexts: Sequence[TagContext],
    paragraphs: Sequence[TargetParagraph],
    reference_checkboxes: Sequence[ExtractedCheckbox] = (),
    target_checkboxes: Sequence[ExtractedCheckbox] = (),
    reference_pairs: Sequence[CheckboxPair] = (),
    doc_type: str = "document",
    correction_feedback: str = "",
    limits: PromptLimits | None = None,
) -> str:
    """Render the whole-document mapping prompt."""

    caps = limits or PromptLimits()
    listed = _listed_paragraphs(paragraphs, caps.max_paragraphs)
    sections: list[str] = []

    if correction_feedback:
        sections.append("CORRECTION REQUIRED\n" + correction_feedback)

    sections.append(
        f"You transfer {{{{TAG}}}} placeholders from an annotated {doc_type} to an "
        f"unannotated {doc_type} of the same kind. For each tag, pick the target "
        "paragraph that plays the role its label describes."
    )
    sections.append(
        "REFERENCE TAGS\n"
        + _render_tag_examples(tag_contexts[: caps.max_tag_contexts], listed, caps.label_chars)
    )
    sections.append(VALIDATION_RULES)

    if reference_checkboxes or reference_pairs:
        sections.append(_render_checkbox_examples(reference_checkboxes, reference_pairs, caps))

    sections.append(
        f"TARGET PARAGRAPHS {_index_range(listed)}\n"
        + "\n".join(_paragraph_line(paragraph, caps.paragraph_text_chars) for paragraph in listed)
    )

    if target_checkboxes:
        sections.append(
            "TARGET CHECKBOXES\n"
            + "\n".join(
                _checkbox_line(checkbox, caps.label_chars)
                for checkbox in target_checkboxes[: caps.max_target_checkboxes]
            )
        )

    sections.append(INSERTION_RULES)
    sections.append(RESPONSE_FORMAT)
    return "\n\n".join(sections)


def build_segment_prompt(
    pair: SegmentPair,
    doc_type: str = "document",
    correction_feedback: str = "",
    limits: PromptLimits | None = None,
) -> str:
    """Render a prompt scoped to one matched segment pair."""

    caps = limits or PromptLimits()
    listed = _listed_paragraphs(pair.paragraphs, caps.max_segment_paragraphs)
    contexts = pair.tag_contexts[: caps.max_segment_tag_contexts]

    lines: list[str] = []
    for context in contexts:
        line = f'- {{{{{context.tag}}}}} label: "{context.label_before[: caps.label_chars]}"'
        if context.label_after:
            line += f' | after: "{context.label_after[: caps.label_chars]}"'
        candidate = _segment_candidate(context, listed)
        if candidate is not None:
            line += f' | candidate: idx {candidate.index} "{candidate.text[: caps.segment_text_chars]}"'
        lines.append(line)

    sections: list[str] = []
    if correction_feedback:
        sections.append("CORRECTION REQUIRED\n" + correction_feedback)
    sections.append(
        f"Segment '{pair.reference.title}' of the reference {doc_type} corresponds to "
        f"segment '{pair.target.title}' of the target. Place these tags inside it."
    )
    sections.append("REFERENCE TAGS\n" + "\n".join(lines))
    sections.append(VALIDATION_RULES)
    sections.append(
        f"TARGET PARAGRAPHS {_index_range(listed)}\n"
        + "\n".join(_paragraph_line(paragraph, caps.segment_text_chars) for paragraph in listed)
    )
    sections.append(INSERTION_RULES)
    sections.append(RESPONSE_FORMAT)
    return "\n\n".join(sections)


def build_checkbox_prompt(
    reference_checkboxes: Sequence[ExtractedCheckbox],
    reference_pairs: Sequence[CheckboxPair],
    target_checkboxes: Sequence[ExtractedCheckbox],
    target_paragraphs: Sequence[TargetParagraph],
    correction_feedback: str = "",
    limits: PromptLimits | None = None,
) -> str:
    """Ask which target checkboxes the target's own content implies."""

    caps = limits or PromptLimits()
    context = "\n".join(paragraph.text for paragraph in target_paragraphs if paragraph.text.strip())
    sections: list[str] = []
    if correction_feedback:
        sections.append("CORRECTION REQUIRED\n" + correction_feedback)
    sections.append(
        "Decide the state of each target checkbox from the content of the target "
        "document. The reference shows how such boxes were answered before."
    )
    sections.append(_render_checkbox_examples(reference_checkboxes, reference_pairs, caps))
    sections.append("TARGET DOCUMENT\n" + context[: caps.checkbox_context_chars])
    sections.append(
        "TARGET CHECKBOXES\n"
        + "\n".join(
            _checkbox_line(checkbox, caps.label_chars)
            for checkbox in target_checkboxes[: caps.max_target_checkboxes]
        )
    )
    sections.append(
        'RESPONSE FORMAT (JSON only)\n{"checkboxes": [{"targetIdx": 3, "pos": 0, '
        '"checked": true, "confidence": 0.9, "reason": "..."}]}'
    )
    return "\n\n".join(sections)


def build_correction_feedback(
    issues: Sequence[str],
    matches: Sequence[MatchResult],
    decisions: Sequence[CheckboxDecision] = (),
    limits: PromptLimits | None = None,
) -> str:
    caps = limits or PromptLimits()
    lines = ["Your previous answer violated these rules:"]
    lines.extend(f"- {issue}" for issue in issues)
    lines.append("")
    lines.append(VALIDATION_RULES)
    lines.append("")
    lines.append("Your previous matches:")
    for match in matches[: caps.correction_match_preview]:
        lines.append(f"- {match.tag} -> idx {match.target_index} ({match.insertion_point})")
    if len(matches) > caps.correction_match_preview:
        lines.append(f"- ... {len(matches) - caps.correction_match_preview} more")
    if decisions:
        lines.append("Your previous checkbox decisions:")
        for decision in decisions:
            state = "checked" if decision.checked else "unchecked"
            lines.append(f"- idx {decision.target_index} pos {decision.position}: {state}")
    lines.append("Answer again with a corrected, complete JSON object.")
    return "\n".join(lines)


def validate_prompt_size(prompt: str, max_chars: int = 60000) -> bool:
    return len(prompt) <= max_chars


def _listed_paragraphs(paragraphs: Sequence[TargetParagraph], cap: int) -> list[TargetParagraph]:
    listed = [
        paragraph
        for paragraph in paragraphs
        if not paragraph.has_existing_tag and len(paragraph.text.strip()) > 2
    ]
    return listed[:cap]


def _index_range(paragraphs: Sequence[TargetParagraph]) -> str:
    if not paragraphs:
        return "(none)"
    indices = [paragraph.index for paragraph in paragraphs]
    return f"(valid targetIdx: only the idx values listed, range {min(indices)}-{max(indices)})"


def _paragraph_line(paragraph: TargetParagraph, text_chars: int) -> str:
    return json.dumps(
        {
            "idx": paragraph.index,
            "text": paragraph.text.strip()[:text_chars],
            "section": paragraph.section,
            "isCell": paragraph.is_table_cell,
            "endsWithColon": paragraph.ends_with_colon,
        },
        ensure_ascii=False,
    )


def _checkbox_line(checkbox: ExtractedCheckbox, label_chars: int) -> str:
    return json.dumps(
        {
            "idx": checkbox.index,
            "pos": checkbox.position,
            "label": checkbox.label[:label_chars],
            "state": "checked" if checkbox.checked else "unchecked",
            "type": checkbox.kind,
        },
        ensure_ascii=False,
    )


def _render_tag_examples(
    contexts: Sequence[TagContext],
    paragraphs: Sequence[TargetParagraph],
    label_chars: int,
) -> str:
    cells: dict[str, list[str]] = defaultdict(list)
    for context in contexts:
        if context.table_position is not None:
            cells[context.table_position.key].append(context.tag)

    lines: list[str] = []
    for context in contexts:
        parts = [
            f"{{{{{context.tag}}}}}",
            f'label: "{context.label_before[:label_chars]}"',
            f"type: {context.type}",
        ]
        if context.label_after:
            parts.insert(2, f'after: "{context.label_after[:label_chars]}"')
        if context.section:
            parts.append(f"section: {context.section}")
        if context.table_position is not None:
            key = context.table_position.key
            parts.append(f"position: {key}")
            peers = [tag for tag in cells[key] if tag != context.tag]
            if peers:
                parts.append(f"same cell as: {', '.join(peers)}")
        candidate = best_candidate(context, paragraphs)
        if candidate is not None:
            parts.append(f'candidate: idx {candidate.index} "{candidate.text.strip()[:label_chars]}"')
        lines.append("- " + " | ".join(parts))
    return "\n".join(lines)


def _render_checkbox_examples(
    checkboxes: Sequence[ExtractedCheckbox],
    pairs: Sequence[CheckboxPair],
    caps: PromptLimits,
) -> str:
    lines = ["REFERENCE CHECKBOXES (if in doubt, do not check)"]
    for pair in pairs[: caps.max_pair_examples]:
        if pair.value is None:
            answer = "unanswered"
        else:
            answer = "Oui" if pair.value else "Non"
        lines.append(f"- {pair.question}: {answer}")
    for checkbox in checkboxes[: caps.max_checkbox_examples]:
        mark = "[x]" if checkbox.checked else "[ ]"
        lines.append(f"- {mark} {checkbox.label[: caps.label_chars]}")
    return "\n".join(lines)


def _segment_candidate(
    context: TagContext, paragraphs: Sequence[TargetParagraph]
) -> TargetParagraph | None:
    keywords = extract_keywords(context.label_before)
    best: TargetParagraph | None = None
    best_score = 0
    for paragraph in paragraphs:
        score = keyword_score(keywords, paragraph.text)
        if score == 0:
            continue
        if paragraph.ends_with_colon:
            score += 5
        if score > best_score:
            best_score = score
            best = paragraph
    return best if best_score >= 4 else None
