from __future__ import annotations

import pytest
from docx import Document

from tagtransfer.checkbox.pairing import CheckboxTag
from tagtransfer.render.docx_filler import build_data_structure, fill_template, render_value
from tagtransfer.utils.errors import TemplateError


def test_fill_replaces_values_and_keeps_run_formatting() -> None:
    document = Document()
    paragraph = document.add_paragraph()
    paragraph.add_run("Raison sociale : ")
    run = paragraph.add_run("{{NOM}}")
    run.bold = True

    output = fill_template(document, {"NOM": "ACME SAS"})

    assert output.document.paragraphs[0].text == "Raison sociale : ACME SAS"
    assert output.document.paragraphs[0].runs[1].bold is True
    assert output.parse_result.fields == ["NOM"]
    assert output.report.summary.replaced_count == 1
    assert output.report.touched_runs == ["p0:r1"]


def test_replacement_orders_same_run_occurrences_by_desc_start() -> None:
    document = Document()
    document.add_paragraph().add_run("{{A}}{{B}}")

    output = fill_template(document, {"A": "LONGA", "B": "X"})

    assert output.document.paragraphs[0].runs[0].text == "LONGAX"
    assert [entry.field_name for entry in output.report.entries] == ["B", "A"]


def test_missing_values_are_logged_and_left_in_place_when_kept() -> None:
    document = Document()
    document.add_paragraph("{{A}} / {{B}}")

    output = fill_template(document, {"A": "1", "B": None}, keep_empty_tags=True)

    assert output.document.paragraphs[0].text == "1 / {{B}}"
    missing = [entry for entry in output.report.entries if entry.status == "missing"]
    assert [(entry.field_name, entry.reason) for entry in missing] == [("B", "missing_field")]
    assert output.report.summary.missing_count == 1


def test_missing_values_are_removed_by_default() -> None:
    document = Document()
    document.add_paragraph("Nom : {{NOM}} / Ville : {{VILLE}}")

    output = fill_template(document, {"NOM": "ACME"})

    assert document.paragraphs[0].text == "Nom : ACME / Ville : "
    assert output.report.summary.missing_count == 1
    assert output.report.touched_runs == ["p0:r0"]


def test_boolean_values_render_as_checkbox_glyphs() -> None:
    document = Document()
    document.add_paragraph("PME {{EST_PME}} / Groupement {{GROUPEMENT}}")

    fill_template(document, {"EST_PME": True, "GROUPEMENT": False})

    assert document.paragraphs[0].text == "PME ☑ / Groupement ☐"
    assert render_value(12) == "12"


def test_error_mode_raises_with_fill_report() -> None:
    document = Document()
    paragraph = document.add_paragraph()
    paragraph.add_run("{{OK}} et ")
    paragraph.add_run("{{BA")
    paragraph.add_run("D}}")

    with pytest.raises(TemplateError) as excinfo:
        fill_template(document, {"OK": "VALUE"})

    report = excinfo.value.fill_report
    assert report is not None
    assert report.summary.unsupported_count == 1
    assert report.summary.replaced_count == 0
    assert document.paragraphs[0].runs[0].text == "{{OK}} et "


def test_warn_mode_replaces_supported_and_reports_unsupported() -> None:
    document = Document()
    paragraph = document.add_paragraph()
    paragraph.add_run("{{OK}} et ")
    paragraph.add_run("{{BA")
    paragraph.add_run("D}}")

    output = fill_template(document, {"OK": "VALUE"}, unsupported_mode="warn")

    assert output.document.paragraphs[0].runs[0].text == "VALUE et "
    assert output.report.summary.unsupported_mode == "warn"
    unsupported = [entry for entry in output.report.entries if entry.status == "unsupported"]
    assert [entry.reason for entry in unsupported] == ["cross_run"]
    assert unsupported[0].paragraph_path == "p0"


def test_invalid_unsupported_mode_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported mode"):
        fill_template(Document(), {}, unsupported_mode="ignore")  # type: ignore[arg-type]


def test_build_data_structure_lists_text_and_checkbox_tags() -> None:
    structure = build_data_structure(
        ["NOM", "SIRET"],
        {"EST_PME": CheckboxTag(checked=True, label="PME", kind="boolean_pair")},
    )

    assert structure == {"NOM": "", "SIRET": "", "EST_PME": False}


@pytest.mark.parametrize(
    ("style", "expected"),
    [("unicode", "PME ☑ / Groupement ☐"), ("text", "PME X / Groupement  "), ("boolean", "PME true / Groupement false")],
)
def test_checkbox_style_controls_boolean_rendering(style: str, expected: str) -> None:
    document = Document()
    document.add_paragraph("PME {{EST_PME}} / Groupement {{GROUPEMENT}}")

    fill_template(document, {"EST_PME": True, "GROUPEMENT": False}, checkbox_style=style)  # type: ignore[arg-type]

    assert document.paragraphs[0].text == expected


def test_invalid_checkbox_style_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported checkbox style"):
        fill_template(Document(), {}, checkbox_style="emoji")  # type: ignore[arg-type]


def test_checkbox_keys_set_the_matching_pair() -> None:
    document = Document()
    document.add_paragraph("Raison sociale : {{NOM}}")
    document.add_paragraph("Le candidat est-il une PME ? ☑ Oui ☐ Non")

    output = fill_template(document, {"NOM": "ACME", "LE_CANDIDAT_EST_IL_UNE_PME": False})

    assert [paragraph.text for paragraph in document.paragraphs] == [
        "Raison sociale : ACME",
        "Le candidat est-il une PME ? ☐ Oui ☑ Non",
    ]
    checkbox = [entry for entry in output.report.entries if entry.status == "checkbox"]
    assert [(entry.field_name, entry.new_text) for entry in checkbox] == [("LE_CANDIDAT_EST_IL_UNE_PME", "☐")]
    assert output.report.summary.checkbox_count == 1


def test_unknown_and_non_boolean_keys_are_reported_unused() -> None:
    document = Document()
    document.add_paragraph("Le candidat est-il une PME ? ☐ Oui ☐ Non")

    output = fill_template(document, {"INCONNU": "x", "LE_CANDIDAT_EST_IL_UNE_PME": "peut-être"})

    unused = sorted((entry.field_name, entry.reason) for entry in output.report.entries if entry.status == "unused")
    assert unused == [("INCONNU", "no_placeholder_or_checkbox"), ("LE_CANDIDAT_EST_IL_UNE_PME", "not_boolean")]
    assert output.report.summary.unused_count == 2
    assert document.paragraphs[0].text == "Le candidat est-il une PME ? ☐ Oui ☐ Non"
