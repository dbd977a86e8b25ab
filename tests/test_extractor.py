from __future__ import annotations

import io
from pathlib import Path

import pytest
from docx import Document
from docx.oxml import parse_xml

from tagtransfer.context.extractor import (
    extract_document,
    extract_reference,
    extract_target,
    load_document,
    serialize_document,
)
from tagtransfer.context.models import TablePosition
from tagtransfer.utils.errors import DocumentInputError, NoPlaceholdersError

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
W14_NS = "http://schemas.microsoft.com/office/word/2010/wordml"


def _reference_document():
    document = Document()
    document.add_paragraph("Raison sociale : {{NOM_SOCIETE}}")
    document.add_paragraph("Adresse :")
    document.add_paragraph("{{ADRESSE}}")
    table = document.add_table(rows=1, cols=2)
    table.cell(0, 0).paragraphs[0].text = "SIRET"
    table.cell(0, 1).paragraphs[0].text = "{{SIRET}}"
    return document


def _append_form_checkbox(paragraph, checked: bool, label: str) -> None:
    value = "1" if checked else "0"
    paragraph._p.append(
        parse_xml(
            f'<w:r xmlns:w="{W_NS}"><w:fldChar w:fldCharType="begin"><w:ffData>'
            f'<w:checkBox><w:sizeAuto/><w:default w:val="{value}"/></w:checkBox>'
            "</w:ffData></w:fldChar></w:r>"
        )
    )
    paragraph._p.append(parse_xml(f'<w:r xmlns:w="{W_NS}"><w:fldChar w:fldCharType="end"/></w:r>'))
    paragraph.add_run(f" {label}")


def _append_content_control(paragraph, checked: bool, label: str) -> None:
    value = "1" if checked else "0"
    glyph = "☒" if checked else "☐"
    paragraph._p.append(
        parse_xml(
            f'<w:sdt xmlns:w="{W_NS}" xmlns:w14="{W14_NS}"><w:sdtPr><w14:checkbox>'
            f'<w14:checked w14:val="{value}"/>'
            '<w14:checkedState w14:val="2612"/><w14:uncheckedState w14:val="2610"/>'
            f"</w14:checkbox></w:sdtPr><w:sdtContent><w:r><w:t>{glyph}</w:t></w:r></w:sdtContent></w:sdt>"
        )
    )
    paragraph.add_run(f" {label}")


def test_extract_reference_builds_tag_contexts_in_document_order() -> None:
    reference = extract_reference(_reference_document())

    assert reference.tags == ["NOM_SOCIETE", "ADRESSE", "SIRET"]
    by_tag = {context.tag: context for context in reference.tag_contexts}
    assert by_tag["NOM_SOCIETE"].label_before == "Raison sociale :"
    assert by_tag["NOM_SOCIETE"].type == "text"
    assert by_tag["NOM_SOCIETE"].paragraph_index == 0
    assert by_tag["ADRESSE"].label_before == "Adresse :"
    assert by_tag["SIRET"].type == "table_cell"
    assert by_tag["SIRET"].label_before == "SIRET"
    assert by_tag["SIRET"].table_position == TablePosition(table_index=0, row=0, column=1)
    assert reference.body_xml


def test_extract_reference_keeps_first_occurrence_of_repeated_tag() -> None:
    document = Document()
    document.add_paragraph("Nom : {{NOM}}")
    document.add_paragraph("Rappel du nom : {{NOM}}")

    reference = extract_reference(document)

    assert reference.tags == ["NOM"]
    assert reference.tag_contexts[0].paragraph_index == 0


def test_extract_reference_types_date_tags() -> None:
    document = Document()
    document.add_paragraph("Exercice du {{DATE_DEBUT_EXERCICE}} au {{DATE_FIN_EXERCICE}}")

    reference = extract_reference(document)

    assert [context.type for context in reference.tag_contexts] == ["date", "date"]


def test_extract_reference_without_placeholders_raises() -> None:
    document = Document()
    document.add_paragraph("Nom :")

    with pytest.raises(NoPlaceholdersError):
        extract_reference(document)


def test_extract_target_indexes_body_and_cell_paragraphs_globally() -> None:
    document = Document()
    document.add_paragraph("Nom :")
    table = document.add_table(rows=2, cols=2)
    table.cell(1, 0).paragraphs[0].text = "SIRET"
    document.add_paragraph("Fin")

    target = extract_target(document)

    assert [paragraph.index for paragraph in target.paragraphs] == list(range(6))
    cell = target.paragraphs[4]
    assert cell.is_table_cell
    assert cell.table_position == TablePosition(table_index=0, row=1, column=1)
    assert cell.row_header == "SIRET"
    assert target.paragraphs[5].text == "Fin"
    starts = [paragraph.xml_start for paragraph in target.paragraphs]
    assert starts == sorted(starts)


def test_extract_target_tracks_section_letters() -> None:
    document = Document()
    document.add_paragraph("A - Identification")
    document.add_paragraph("Nom :")
    document.add_paragraph("B - Activité")
    document.add_paragraph("Chiffre :")

    target = extract_target(document)

    assert [paragraph.section for paragraph in target.paragraphs] == ["A", "A", "B", "B"]


def test_detects_glyph_checkboxes_with_positions_and_labels() -> None:
    document = Document()
    document.add_paragraph("Êtes-vous assujetti ? ☑ Oui ☐ Non")

    checkboxes = extract_target(document).checkboxes

    assert [(box.index, box.position) for box in checkboxes] == [(0, 0), (0, 1)]
    assert [box.label for box in checkboxes] == ["Oui", "Non"]
    assert [box.checked for box in checkboxes] == [True, False]
    assert {box.kind for box in checkboxes} == {"unicode"}


def test_detects_form_field_and_content_control_checkboxes() -> None:
    document = Document()
    _append_form_checkbox(document.add_paragraph(), True, "Oui")
    _append_content_control(document.add_paragraph(), False, "Non")

    extracted = extract_document(document)
    checkboxes = extracted.checkbox_scan.checkboxes

    assert [(box.label, box.checked, box.kind) for box in checkboxes] == [
        ("Oui", True, "form_control"),
        ("Non", False, "form_control"),
    ]
    assert extracted.checkbox_scan.nodes[(0, 0)].kind == "form_field"
    assert extracted.checkbox_scan.nodes[(1, 0)].kind == "content_control"


def test_load_document_rejects_invalid_inputs(tmp_path: Path) -> None:
    with pytest.raises(DocumentInputError, match="empty"):
        load_document(b"", field="target")
    with pytest.raises(DocumentInputError, match="not a valid .docx"):
        load_document(b"plain text", field="target")
    with pytest.raises(DocumentInputError, match="not found") as excinfo:
        load_document(tmp_path / "missing.docx", field="reference")
    assert excinfo.value.field == "reference"


def test_load_document_round_trips_serialized_bytes(tmp_path: Path) -> None:
    payload = serialize_document(_reference_document())
    path = tmp_path / "reference.docx"
    path.write_bytes(payload)

    from_bytes = load_document(payload)
    from_path = load_document(path)

    assert extract_reference(from_bytes).tags == extract_reference(from_path).tags
    assert Document(io.BytesIO(payload)).paragraphs[0].text == "Raison sociale : {{NOM_SOCIETE}}"
