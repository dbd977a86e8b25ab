"""Checkbox detection over glyph, legacy form field and content control encodings."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from tagtransfer.context.models import ExtractedCheckbox
from tagtransfer.context.paragraphs import ParagraphContext
from tagtransfer.utils.docx_xml import CheckboxNode, paragraph_checkbox_layout

_WHITESPACE_RE = re.compile(r"\s+")
_MAX_LABEL_CHARS = 100


@dataclass
class CheckboxScan:
    """Checkbox records plus the XML nodes needed to change their state."""

    checkboxes: list[ExtractedCheckbox] = field(default_factory=list)
    nodes: dict[tuple[int, int], CheckboxNode] = field(default_factory=dict)


def detect_checkboxes(paragraphs: list[ParagraphContext]) -> CheckboxScan:
    """Find every checkbox and label it with its neighbouring text."""

    scan = CheckboxScan()
    for context in paragraphs:
        layout = paragraph_checkbox_layout(context.paragraph._p)
        markers = [position for position, item in enumerate(layout) if isinstance(item, CheckboxNode)]
        for ordinal, layout_position in enumerate(markers):
            node = layout[layout_position]
            assert isinstance(node, CheckboxNode)
            next_marker = markers[ordinal + 1] if ordinal + 1 < len(markers) else len(layout)
            previous_marker = markers[ordinal - 1] + 1 if ordinal > 0 else 0
            label = _join_text(layout[layout_position + 1 : next_marker])
            if not label:
                label = _join_text(layout[previous_marker:layout_position])

            checkbox = ExtractedCheckbox(
                index=context.index,
                checked=node.checked,
                kind="unicode" if node.kind == "glyph" else "form_control",
                label=label[:_MAX_LABEL_CHARS],
                section=context.section,
                position=ordinal,
            )
            scan.checkboxes.append(checkbox)
            scan.nodes[checkbox.key] = node
    return scan


def _join_text(items: list[str | CheckboxNode]) -> str:
    text = "".join(item for item in items if isinstance(item, str))
    return _WHITESPACE_RE.sub(" ", text).strip()
