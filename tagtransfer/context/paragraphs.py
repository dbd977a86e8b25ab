"""Paragraph iteration with document-global indices and run IDs."""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass

from docx.document import Document as DocxDocument
from docx.text.paragraph import Paragraph

from tagtransfer.context.models import TablePosition
from tagtransfer.utils.docx_xml import (
    BodyBlock,
    iter_paragraph_elements,
    paragraph_offsets_in_block,
    row_first_cell_text,
    serialize_body,
    table_elements,
    table_position_of,
)

_SECTION_RE = re.compile(r"^([A-Z])\s*[-–—:.]")


@dataclass(frozen=True)
class ParagraphContext:
    """A body or table-cell paragraph in document order.

    Paths follow the run id convention:
    - body: p{n}:r{k}
    - table: t{t}.r{row}.c{cell}.p{n}:r{k}
    """

    paragraph: Paragraph
    index: int
    paragraph_path: str
    run_ids: list[str]
    in_table: bool
    table_position: TablePosition | None
    row_header: str | None
    xml_start: int
    section: str | None


@dataclass(frozen=True)
class DocumentLayout:
    """Serialized body markup plus its paragraph contexts."""

    body_xml: str
    blocks: list[BodyBlock]
    paragraphs: list[ParagraphContext]


def detect_section_letter(text: str) -> str | None:
    """Return the section letter when text opens with `X -`, `X:` or `X.`."""

    match = _SECTION_RE.match(text.strip())
    if match is None:
        return None
    return match.group(1)


def build_layout(document: DocxDocument) -> DocumentLayout:
    """Walk the body once and index every paragraph, table cells included."""

    body_xml, blocks = serialize_body(document)
    table_ids = {id(table): index for index, table in enumerate(table_elements(document))}
    body_counter = 0
    cell_counters: dict[tuple[int, int, int], int] = {}
    current_section: str | None = None
    contexts: list[ParagraphContext] = []

    for block in blocks:
        elements = list(iter_paragraph_elements(block.element))
        offsets = paragraph_offsets_in_block(block)
        for position, element in enumerate(elements):
            paragraph = Paragraph(element, document._body)
            text = paragraph.text
            letter = detect_section_letter(text)
            if letter is not None:
                current_section = letter

            coords = table_position_of(element, table_ids)
            if coords is None:
                paragraph_path = f"p{body_counter}"
                body_counter += 1
                table_position = None
            else:
                cell_paragraph = cell_counters.get(coords, 0)
                cell_counters[coords] = cell_paragraph + 1
                paragraph_path = f"t{coords[0]}.r{coords[1]}.c{coords[2]}.p{cell_paragraph}"
                table_position = TablePosition(*coords)

            xml_start = offsets[position] if position < len(offsets) else block.start
            contexts.append(
                ParagraphContext(
                    paragraph=paragraph,
                    index=len(contexts),
                    paragraph_path=paragraph_path,
                    run_ids=[
                        f"{paragraph_path}:r{run_index}"
                        for run_index, _ in enumerate(paragraph.runs)
                    ],
                    in_table=table_position is not None,
                    table_position=table_position,
                    row_header=row_first_cell_text(element) if table_position else None,
                    xml_start=xml_start,
                    section=current_section,
                )
            )

    return DocumentLayout(body_xml=body_xml, blocks=blocks, paragraphs=contexts)


def iter_paragraph_run_contexts(document: DocxDocument) -> Iterator[ParagraphContext]:
    """Yield paragraph contexts with stable run IDs in document order."""

    yield from build_layout(document).paragraphs
