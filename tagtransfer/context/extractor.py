"""Document collaborator: load docx packages and extract matching records."""

from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass
from pathlib import Path

from docx import Document
from docx.document import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError

from tagtransfer.checkbox.detector import CheckboxScan, detect_checkboxes
from tagtransfer.context.models import (
    ReferenceContext,
    TagContext,
    TagType,
    TargetContext,
    TargetParagraph,
)
from tagtransfer.context.paragraphs import DocumentLayout, ParagraphContext, build_layout
from tagtransfer.context.placeholder_parser import PLACEHOLDER_RE
from tagtransfer.utils.docx_xml import CHECKED_GLYPHS, UNCHECKED_GLYPHS
from tagtransfer.utils.errors import DocumentInputError, NoPlaceholdersError

_ZIP_MAGIC = b"PK\x03\x04"
_MAX_LABEL_CHARS = 120
_LABEL_LOOKBACK = 3
_GLYPHS = set(CHECKED_GLYPHS + UNCHECKED_GLYPHS)


@dataclass
class ExtractedDocument:
    """A loaded document with its layout, paragraph records and checkboxes."""

    document: DocxDocument
    layout: DocumentLayout
    paragraphs: list[TargetParagraph]
    checkbox_scan: CheckboxScan

    def target_context(self) -> TargetContext:
        return TargetContext(
            paragraphs=list(self.paragraphs),
            checkboxes=list(self.checkbox_scan.checkboxes),
            body_xml=self.layout.body_xml,
        )


def load_document(source: bytes | Path | str, *, field: str = "document") -> DocxDocument:
    """Open a docx package from raw bytes or a filesystem path."""

    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.is_file():
            raise DocumentInputError(f"{field} not found: {path}", field=field)
        payload = path.read_bytes()
    else:
        payload = source

    if not payload:
        raise DocumentInputError(f"{field} is empty", field=field)
    if payload[:4] != _ZIP_MAGIC:
        raise DocumentInputError(f"{field} is not a valid .docx package", field=field)

    try:
        return Document(io.BytesIO(payload))
    except (zipfile.BadZipFile, PackageNotFoundError, KeyError, ValueError) as exc:
        raise DocumentInputError(f"{field} could not be opened: {exc}", field=field) from exc


def serialize_document(document: DocxDocument) -> bytes:
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def extract_document(document: DocxDocument) -> ExtractedDocument:
    layout = build_layout(document)
    paragraphs = [_paragraph_record(context) for context in layout.paragraphs]
    return ExtractedDocument(
        document=document,
        layout=layout,
        paragraphs=paragraphs,
        checkbox_scan=detect_checkboxes(layout.paragraphs),
    )


def extract_target(document: DocxDocument) -> TargetContext:
    return extract_document(document).target_context()


def extract_reference(document: DocxDocument) -> ReferenceContext:
    return build_reference_context(extract_document(document))


def build_reference_context(extracted: ExtractedDocument) -> ReferenceContext:
    """Build one TagContext per placeholder; the first occurrence of a tag wins."""

    contexts: list[TagContext] = []
    seen: set[str] = set()

    for context, record in zip(extracted.layout.paragraphs, extracted.paragraphs, strict=True):
        for match in PLACEHOLDER_RE.finditer(record.text):
            tag = match.group(1)
            if tag in seen:
                continue
            seen.add(tag)
            contexts.append(
                TagContext(
                    tag=tag,
                    label_before=_label_before(record, match.start(), extracted.paragraphs),
                    label_after=_label_after(record, match.end(), extracted.paragraphs),
                    section=record.section,
                    type=_tag_type(tag, record.text, match.start(), match.end(), context),
                    table_position=record.table_position,
                    paragraph_index=record.index,
                )
            )

    if not contexts:
        raise NoPlaceholdersError("No {{TAG}} placeholders found in reference", field="reference")

    return ReferenceContext(
        tag_contexts=contexts,
        paragraphs=extracted.paragraphs,
        checkboxes=list(extracted.checkbox_scan.checkboxes),
        body_xml=extracted.layout.body_xml,
    )


def _paragraph_record(context: ParagraphContext) -> TargetParagraph:
    text = context.paragraph.text
    return TargetParagraph(
        index=context.index,
        text=text,
        section=context.section,
        is_table_cell=context.in_table,
        has_existing_tag=PLACEHOLDER_RE.search(text) is not None,
        table_position=context.table_position,
        xml_start=context.xml_start,
        row_header=context.row_header,
    )


def _strip_placeholders(text: str) -> str:
    return " ".join(PLACEHOLDER_RE.sub(" ", text).split())


def _label_before(record: TargetParagraph, start: int, paragraphs: list[TargetParagraph]) -> str:
    label = _strip_placeholders(record.text[:start])
    if len(label) >= 3:
        return label[-_MAX_LABEL_CHARS:]

    if record.is_table_cell and record.row_header:
        return _strip_placeholders(record.row_header)[-_MAX_LABEL_CHARS:]

    for offset in range(1, _LABEL_LOOKBACK + 1):
        position = record.index - offset
        if position < 0:
            break
        candidate = _strip_placeholders(paragraphs[position].text)
        if len(candidate) >= 3:
            return candidate[-_MAX_LABEL_CHARS:]
    return label


def _label_after(record: TargetParagraph, end: int, paragraphs: list[TargetParagraph]) -> str:
    label = _strip_placeholders(record.text[end:])
    if label:
        return label[:_MAX_LABEL_CHARS]
    following = record.index + 1
    if following < len(paragraphs):
        return _strip_placeholders(paragraphs[following].text)[:_MAX_LABEL_CHARS]
    return ""


def _tag_type(tag: str, text: str, start: int, end: int, context: ParagraphContext) -> TagType:
    window = text[max(0, start - 3) : end + 3]
    if tag.startswith("CHECK_") or any(char in _GLYPHS for char in window):
        return "checkbox"
    if "DATE" in tag or tag.endswith("_DEBUT") or tag.endswith("_FIN"):
        return "date"
    if context.in_table:
        return "table_cell"
    return "text"
