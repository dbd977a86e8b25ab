"""Placeholder parser for {{TAG}} tokens in body paragraphs and table cells.

Header and footer content is ignored.
"""

from __future__ import annotations

import bisect
import re
from collections.abc import Iterable

from docx.document import Document as DocxDocument

from tagtransfer.context.models import Occurrence, ParseResult, UnsupportedOccurrence
from tagtransfer.context.paragraphs import ParagraphContext, iter_paragraph_run_contexts
from tagtransfer.utils.errors import TemplateError

PLACEHOLDER_RE = re.compile(r"\{\{([A-Z0-9_]+)\}\}")
_BRACED_RE = re.compile(r"\{\{([^{}]*)\}\}")
_FIELD_NAME_RE = re.compile(r"[A-Z0-9_]+")


def find_placeholders(text: str) -> list[str]:
    """Return placeholder names in order of appearance."""

    return [match.group(1) for match in PLACEHOLDER_RE.finditer(text)]


def parse_placeholders(
    document: DocxDocument,
    strict: bool = False,
    contexts: Iterable[ParagraphContext] | None = None,
) -> ParseResult:
    """Parse {{FIELD}} placeholders from document body and tables.

    FIELD allows only A-Z, 0-9 and underscore. A placeholder split over
    several runs is reported as `cross_run`; braces around anything else are
    `invalid_format`; a `{{` never closed is `unclosed_brace`.

    `contexts` lets the extractor reuse a paragraph walk it already did.
    With `strict`, any unsupported entry raises TemplateError.
    """

    result = ParseResult()
    paragraph_contexts = contexts if contexts is not None else iter_paragraph_run_contexts(document)

    for context in paragraph_contexts:
        runs = _RunLayout(context)
        if not runs.text:
            continue

        for match in PLACEHOLDER_RE.finditer(runs.text):
            first = runs.run_at(match.start())
            last = runs.run_at(match.end() - 1)
            if first is None or first != last:
                result.unsupported.append(runs.unsupported("cross_run", match.start(), match.end()))
                continue

            offset = runs.starts[first]
            result.occurrences.append(
                Occurrence(
                    field_name=match.group(1),
                    run_id=context.run_ids[first],
                    paragraph_index=context.index,
                    start=match.start() - offset,
                    end=match.end() - offset,
                )
            )
            if match.group(1) not in result.fields:
                result.fields.append(match.group(1))

        for match in _BRACED_RE.finditer(runs.text):
            if not _FIELD_NAME_RE.fullmatch(match.group(1)):
                result.unsupported.append(runs.unsupported("invalid_format", match.start(), match.end()))

        unclosed = _unclosed_brace_start(runs.text)
        if unclosed is not None:
            result.unsupported.append(runs.unsupported("unclosed_brace", unclosed, len(runs.text)))

    if strict and result.unsupported:
        raise TemplateError("Unsupported placeholders found in template", result=result)

    return result


class _RunLayout:
    """Merged paragraph text with the start offset of every run."""

    def __init__(self, context: ParagraphContext) -> None:
        self.run_ids = context.run_ids
        self.starts: list[int] = []
        pieces: list[str] = []
        cursor = 0
        for run in context.paragraph.runs:
            self.starts.append(cursor)
            piece = run.text or ""
            pieces.append(piece)
            cursor += len(piece)
        self.text = "".join(pieces)

    def run_at(self, position: int) -> int | None:
        if not 0 <= position < len(self.text):
            return None
        # empty runs share their start with the next run; bisect_right skips them
        return bisect.bisect_right(self.starts, position) - 1

    def unsupported(self, kind: str, start: int, end: int) -> UnsupportedOccurrence:
        run_index = self.run_at(start)
        return UnsupportedOccurrence(
            kind=kind,
            text=self.text[start:end],
            run_id=self.run_ids[run_index] if run_index is not None else None,
            start=start,
            end=end,
        )


def _unclosed_brace_start(text: str) -> int | None:
    cursor = 0
    while (start := text.find("{{", cursor)) != -1:
        close = text.find("}}", start + 2)
        if close == -1:
            return start
        cursor = close + 2
    return None
