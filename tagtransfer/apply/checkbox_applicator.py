"""Write checkbox decisions back into glyphs, form fields and content controls."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from tagtransfer.context.models import CheckboxDecision
from tagtransfer.utils.docx_xml import (
    CheckboxNode,
    set_content_control_state,
    set_form_field_state,
    set_glyph_state,
)

logger = logging.getLogger("tagtransfer.apply")


@dataclass(frozen=True)
class FailedDecision:
    decision: CheckboxDecision
    reason: str


@dataclass
class CheckboxApplyResult:
    applied: list[CheckboxDecision] = field(default_factory=list)
    changed: int = 0
    failed: list[FailedDecision] = field(default_factory=list)


def apply_checkbox_decisions(
    decisions: Sequence[CheckboxDecision],
    handles: Mapping[tuple[int, int], CheckboxNode],
) -> CheckboxApplyResult:
    """Set each decided checkbox; the last decision for one checkbox wins."""

    result = CheckboxApplyResult()
    final: dict[tuple[int, int], CheckboxDecision] = {}
    for decision in decisions:
        final[decision.key] = decision

    for key, decision in final.items():
        node = handles.get(key)
        if node is None:
            result.failed.append(FailedDecision(decision, "unknown checkbox"))
            continue
        if node.checked == decision.checked:
            result.applied.append(decision)
            continue

        if node.kind == "glyph":
            if not set_glyph_state(node.element, node.offset, decision.checked):
                result.failed.append(FailedDecision(decision, "glyph not found"))
                continue
        elif node.kind == "form_field":
            set_form_field_state(node.element, decision.checked)
        else:
            set_content_control_state(node.element, decision.checked)
        result.applied.append(decision)
        result.changed += 1

    logger.debug("checkboxes: %d applied, %d changed", len(result.applied), result.changed)
    return result
