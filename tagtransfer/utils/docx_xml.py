"""Utilities for docx XML operations.

All XML-level operations on docx content must be implemented here.
Do not spread XML manipulation logic across other modules.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Literal

from docx.document import Document as DocxDocument
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from lxml import etree

W14_NS = "http://schemas.microsoft.com/office/word/2010/wordml"

CHECKED_GLYPHS = "☑✓✔☒■"
UNCHECKED_GLYPHS = "☐□○◯◻"
_GLYPH_TO_CHECKED = {"☐": "☑", "□": "■", "◻": "☑", "○": "☑", "◯": "☑"}
_GLYPH_TO_UNCHECKED = {"☑": "☐", "☒": "☐", "✓": "☐", "✔": "☐", "■": "□"}

_PARAGRAPH_OPEN_RE = re.compile(r"<w:p(?=[\s>/])")
_SPACE_ATTR = "{http://www.w3.org/XML/1998/namespace}space"


@dataclass(frozen=True)
class BodyBlock:
    """Top-level body child with its span inside the serialized body markup."""

    element: Any
    kind: Literal["paragraph", "table", "other"]
    start: int
    end: int
    xml: str


@dataclass(frozen=True)
class CheckboxNode:
    """Checkbox marker located inside a paragraph.

    `element` is the owning w:t for glyphs, w:checkBox for legacy form fields,
    and w14:checkbox for content controls.
    """

    kind: Literal["glyph", "form_field", "content_control"]
    element: Any
    checked: bool
    offset: int = 0


def w14(tag: str) -> str:
    return f"{{{W14_NS}}}{tag}"


def serialize_body(document: DocxDocument) -> tuple[str, list[BodyBlock]]:
    """Serialize each top-level body child and record its offsets.

    The body markup is the concatenation of the blocks; section properties
    are skipped.
    """

    blocks: list[BodyBlock] = []
    chunks: list[str] = []
    cursor = 0
    for child in document.element.body.iterchildren():
        if child.tag == qn("w:sectPr"):
            continue
        xml = etree.tostring(child, encoding="unicode")
        if child.tag == qn("w:p"):
            kind: Literal["paragraph", "table", "other"] = "paragraph"
        elif child.tag == qn("w:tbl"):
            kind = "table"
        else:
            kind = "other"
        blocks.append(
            BodyBlock(element=child, kind=kind, start=cursor, end=cursor + len(xml), xml=xml)
        )
        chunks.append(xml)
        cursor += len(xml)
    return "".join(chunks), blocks


def paragraph_offsets_in_block(block: BodyBlock) -> list[int]:
    """Absolute offsets of every w:p opening tag in a block, in preorder."""

    return [block.start + match.start() for match in _PARAGRAPH_OPEN_RE.finditer(block.xml)]


def iter_paragraph_elements(block_element: Any) -> Iterator[Any]:
    if block_element.tag == qn("w:p"):
        yield block_element
        return
    yield from block_element.iter(qn("w:p"))


def table_elements(document: DocxDocument) -> list[Any]:
    return list(document.element.body.iter(qn("w:tbl")))


def table_position_of(paragraph_element: Any, table_ids: dict[int, int]) -> tuple[int, int, int] | None:
    """Return (table_index, row, column) of the nearest enclosing cell."""

    cell = _nearest_ancestor(paragraph_element, qn("w:tc"))
    if cell is None:
        return None
    row = cell.getparent()
    table = row.getparent() if row is not None else None
    if row is None or table is None or table.tag != qn("w:tbl"):
        return None
    rows = [child for child in table.iterchildren(qn("w:tr"))]
    cells = [child for child in row.iterchildren(qn("w:tc"))]
    table_index = table_ids.get(id(table))
    if table_index is None:
        return None
    return table_index, rows.index(row), cells.index(cell)


def row_first_cell_text(paragraph_element: Any) -> str | None:
    cell = _nearest_ancestor(paragraph_element, qn("w:tc"))
    if cell is None:
        return None
    row = cell.getparent()
    first = next(row.iterchildren(qn("w:tc")), None) if row is not None else None
    if first is None or first is cell:
        return None
    text = "".join(node.text or "" for node in first.iter(qn("w:t"))).strip()
    return text or None


def table_column_count(table_element: Any) -> int:
    grid = table_element.find(qn("w:tblGrid"))
    if grid is not None:
        columns = grid.findall(qn("w:gridCol"))
        if columns:
            return len(columns)
    first_row = table_element.find(qn("w:tr"))
    if first_row is None:
        return 0
    return len(first_row.findall(qn("w:tc")))


def block_has_page_break(block_element: Any) -> bool:
    for br in block_element.iter(qn("w:br")):
        if br.get(qn("w:type")) == "page":
            return True
    return False


def text_nodes(paragraph_element: Any) -> list[Any]:
    """All w:t nodes of a paragraph in document order."""

    return list(paragraph_element.iter(qn("w:t")))


def set_node_text(node: Any, text: str) -> None:
    node.text = text
    if text != text.strip():
        node.set(_SPACE_ATTR, "preserve")


def append_text_run(paragraph_element: Any, text: str) -> Any:
    """Give a paragraph without text nodes a w:t holding `text`.

    The first existing run receives the node after its rPr; otherwise a new
    run is created whose rPr copies the paragraph mark run properties.
    """

    node = OxmlElement("w:t")
    set_node_text(node, text)

    first_run = paragraph_element.find(qn("w:r"))
    if first_run is not None:
        first_run.append(node)
        return node

    run = OxmlElement("w:r")
    p_pr = paragraph_element.find(qn("w:pPr"))
    mark_r_pr = p_pr.find(qn("w:rPr")) if p_pr is not None else None
    if mark_r_pr is not None:
        r_pr = OxmlElement("w:rPr")
        for child in mark_r_pr.iterchildren():
            if child.tag in (qn("w:ins"), qn("w:del"), qn("w:moveFrom"), qn("w:moveTo")):
                continue
            r_pr.append(copy.deepcopy(child))
        run.append(r_pr)
    run.append(node)
    paragraph_element.append(run)
    return node


def paragraph_checkbox_layout(paragraph_element: Any) -> list[str | CheckboxNode]:
    """Flatten a paragraph into text chunks and checkbox markers in order."""

    layout: list[str | CheckboxNode] = []
    _walk_checkbox_layout(paragraph_element, layout)
    return layout


def _walk_checkbox_layout(element: Any, layout: list[str | CheckboxNode]) -> None:
    for child in element.iterchildren():
        tag = child.tag
        if not isinstance(tag, str):
            continue
        if tag == qn("w:sdt"):
            checkbox = _content_control_checkbox(child)
            if checkbox is not None:
                checked_el = checkbox.find(w14("checked"))
                checked = checked_el is not None and checked_el.get(w14("val")) in ("1", "true")
                layout.append(CheckboxNode(kind="content_control", element=checkbox, checked=checked))
                continue
        if tag == qn("w:fldChar") and child.get(qn("w:fldCharType")) == "begin":
            form_checkbox = _form_field_checkbox(child)
            if form_checkbox is not None:
                layout.append(
                    CheckboxNode(
                        kind="form_field",
                        element=form_checkbox,
                        checked=_form_field_checked(form_checkbox),
                    )
                )
            continue
        if tag == qn("w:t"):
            _append_text_with_glyphs(child, layout)
            continue
        if tag == qn("w:tab"):
            layout.append("\t")
            continue
        _walk_checkbox_layout(child, layout)


def _append_text_with_glyphs(node: Any, layout: list[str | CheckboxNode]) -> None:
    text = node.text or ""
    buffer: list[str] = []
    for offset, char in enumerate(text):
        if char in CHECKED_GLYPHS or char in UNCHECKED_GLYPHS:
            if buffer:
                layout.append("".join(buffer))
                buffer = []
            layout.append(
                CheckboxNode(
                    kind="glyph",
                    element=node,
                    checked=char in CHECKED_GLYPHS,
                    offset=offset,
                )
            )
            continue
        buffer.append(char)
    if buffer:
        layout.append("".join(buffer))


def _content_control_checkbox(sdt: Any) -> Any | None:
    sdt_pr = sdt.find(qn("w:sdtPr"))
    if sdt_pr is None:
        return None
    return sdt_pr.find(w14("checkbox"))


def _form_field_checkbox(fld_char: Any) -> Any | None:
    ff_data = fld_char.find(qn("w:ffData"))
    if ff_data is None:
        return None
    return ff_data.find(qn("w:checkBox"))


def _form_field_checked(checkbox: Any) -> bool:
    checked = checkbox.find(qn("w:checked"))
    if checked is not None:
        return checked.get(qn("w:val"), "1") in ("1", "true", "on")
    default = checkbox.find(qn("w:default"))
    if default is not None:
        return default.get(qn("w:val")) in ("1", "true", "on")
    return False


def set_glyph_state(node: Any, offset: int, checked: bool) -> bool:
    """Swap the glyph at `offset`; return whether the text changed."""

    text = node.text or ""
    if offset >= len(text):
        return False
    current = text[offset]
    if checked:
        replacement = current if current in CHECKED_GLYPHS else _GLYPH_TO_CHECKED.get(current)
    else:
        replacement = current if current in UNCHECKED_GLYPHS else _GLYPH_TO_UNCHECKED.get(current)
    if replacement is None:
        return False
    set_node_text(node, text[:offset] + replacement + text[offset + 1 :])
    return True


def set_form_field_state(checkbox: Any, checked: bool) -> None:
    value = "1" if checked else "0"
    default = checkbox.find(qn("w:default"))
    if default is None:
        default = OxmlElement("w:default")
        anchor = checkbox.find(qn("w:size"))
        if anchor is None:
            anchor = checkbox.find(qn("w:sizeAuto"))
        if anchor is not None:
            anchor.addnext(default)
        else:
            checkbox.insert(0, default)
    default.set(qn("w:val"), value)

    checked_el = checkbox.find(qn("w:checked"))
    if checked_el is not None:
        checked_el.set(qn("w:val"), value)


def set_content_control_state(checkbox: Any, checked: bool) -> None:
    checked_el = checkbox.find(w14("checked"))
    if checked_el is None:
        checked_el = etree.SubElement(checkbox, w14("checked"))
    checked_el.set(w14("val"), "1" if checked else "0")

    state_el = checkbox.find(w14("checkedState" if checked else "uncheckedState"))
    glyph = "☒" if checked else "☐"
    if state_el is not None and state_el.get(w14("val")):
        try:
            glyph = chr(int(state_el.get(w14("val")), 16))
        except ValueError:
            pass

    sdt = checkbox.getparent().getparent()
    content = sdt.find(qn("w:sdtContent"))
    if content is None:
        return
    for node in content.iter(qn("w:t")):
        if node.text:
            set_node_text(node, glyph)
            return


def _nearest_ancestor(element: Any, tag: str) -> Any | None:
    parent = element.getparent()
    while parent is not None:
        if parent.tag == tag:
            return parent
        parent = parent.getparent()
    return None


def paragraph_elements(document: DocxDocument) -> list[Any]:
    """Every w:p of the body in document order, matching the layout indices."""

    elements: list[Any] = []
    for child in document.element.body.iterchildren():
        if child.tag == qn("w:sectPr"):
            continue
        elements.extend(iter_paragraph_elements(child))
    return elements


def paragraph_text(paragraph_element: Any) -> str:
    return "".join(node.text or "" for node in text_nodes(paragraph_element))
