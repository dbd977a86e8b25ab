from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from docx import Document
from typer.testing import CliRunner

from apps.cli.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _no_oracle_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TAGTRANSFER_ORACLE_URL", raising=False)


def _write_reference(path: Path, *, extra_tag: bool = False) -> None:
    document = Document()
    document.add_paragraph("Numéro SIRET : {{SIRET}}")
    document.add_paragraph("Adresse électronique : {{EMAIL}}")
    if extra_tag:
        document.add_paragraph("N° : {{DIVERS}}")
    document.save(str(path))


def _write_target(path: Path) -> None:
    document = Document()
    document.add_paragraph("Numéro SIRET :")
    document.add_paragraph("")
    document.add_paragraph("Adresse électronique :")
    document.add_paragraph("Cachet de la société")
    document.save(str(path))


def _map_args(reference: Path, target: Path, out_dir: Path, *extra: str) -> list[str]:
    return ["map", "--reference", str(reference), "--target", str(target), "--out-dir", str(out_dir), *extra]


def test_map_writes_document_report_and_data(tmp_path: Path) -> None:
    reference = tmp_path / "reference.docx"
    target = tmp_path / "dc1.docx"
    out_dir = tmp_path / "out"
    _write_reference(reference)
    _write_target(target)

    result = runner.invoke(app, _map_args(reference, target, out_dir))

    assert result.exit_code == 0, result.output
    assert "mode=pattern_fallback applied=2 failed=0" in result.output
    tagged = Document(str(out_dir / "dc1_TEMPLATE.docx"))
    assert [paragraph.text for paragraph in tagged.paragraphs][:3] == [
        "Numéro SIRET :",
        "{{SIRET}}",
        "Adresse électronique : {{EMAIL}}",
    ]
    report = json.loads((out_dir / "out.report.json").read_text(encoding="utf-8"))
    assert report["tagsApplied"] == 2
    assert report["outputName"] == "dc1_TEMPLATE.docx"
    data = yaml.safe_load((out_dir / "out.data.yaml").read_text(encoding="utf-8"))
    assert data == {"SIRET": "", "EMAIL": ""}


def test_map_with_unplaced_tags_returns_3(tmp_path: Path) -> None:
    reference = tmp_path / "reference.docx"
    target = tmp_path / "target.docx"
    _write_reference(reference, extra_tag=True)
    _write_target(target)

    result = runner.invoke(app, _map_args(reference, target, tmp_path / "out", "--output-name", "modele"))

    assert result.exit_code == 3
    assert (tmp_path / "out" / "modele.docx").exists()
    report = json.loads((tmp_path / "out" / "out.report.json").read_text(encoding="utf-8"))
    assert report["failed"] == [{"reason": "no match", "tag": "DIVERS"}]


def test_map_invalid_document_returns_2_and_writes_error_report(tmp_path: Path) -> None:
    reference = tmp_path / "reference.docx"
    target = tmp_path / "target.docx"
    _write_reference(reference)
    target.write_text("not a word document", encoding="utf-8")

    result = runner.invoke(app, _map_args(reference, target, tmp_path / "out"))

    assert result.exit_code == 2
    assert "input error (target)" in result.output
    report = json.loads((tmp_path / "out" / "out.report.json").read_text(encoding="utf-8"))
    assert report["error"]["stage"] == "input"
    assert report["error"]["error_type"] == "DocumentInputError"


def test_map_rejects_invalid_options(tmp_path: Path) -> None:
    reference = tmp_path / "reference.docx"
    target = tmp_path / "target.docx"
    _write_reference(reference)
    _write_target(target)

    bad_mode = runner.invoke(app, _map_args(reference, target, tmp_path, "--segmentation", "sometimes"))
    both_flags = runner.invoke(app, _map_args(reference, target, tmp_path, "--force", "--no-overwrite"))

    assert bad_mode.exit_code == 1
    assert "--segmentation must be one of" in bad_mode.output
    assert both_flags.exit_code == 1


def test_map_no_overwrite_refuses_existing_outputs(tmp_path: Path) -> None:
    reference = tmp_path / "reference.docx"
    target = tmp_path / "target.docx"
    out_dir = tmp_path / "out"
    _write_reference(reference)
    _write_target(target)
    out_dir.mkdir()
    (out_dir / "out.report.json").write_text("{}", encoding="utf-8")

    refused = runner.invoke(app, _map_args(reference, target, out_dir, "--no-overwrite"))
    overwritten = runner.invoke(app, _map_args(reference, target, out_dir))

    assert refused.exit_code == 1
    assert "--no-overwrite" in refused.output
    assert overwritten.exit_code == 0
    assert "overwriting existing outputs: out.report.json" in overwritten.output


def test_batch_maps_every_docx_and_continues_past_failures(tmp_path: Path) -> None:
    reference = tmp_path / "reference.docx"
    targets = tmp_path / "targets"
    out_dir = tmp_path / "out"
    targets.mkdir()
    _write_reference(reference)
    _write_target(targets / "a.docx")
    (targets / "b.docx").write_bytes(b"broken")
    (targets / "~$a.docx").write_bytes(b"lock")
    (targets / "notes.txt").write_text("ignored", encoding="utf-8")

    result = runner.invoke(
        app, ["batch", "--reference", str(reference), "--targets-dir", str(targets), "--out-dir", str(out_dir)]
    )

    assert result.exit_code == 3
    assert "OK a.docx -> a_TEMPLATE.docx" in result.output
    assert "FAILED b.docx" in result.output
    assert (out_dir / "a_TEMPLATE.docx").exists()
    report = json.loads((out_dir / "out.batch_report.json").read_text(encoding="utf-8"))
    assert (report["total"], report["succeeded"], report["failed"]) == (2, 1, 1)
    assert [item["name"] for item in report["items"]] == ["a.docx", "b.docx"]


def test_batch_without_documents_returns_2(tmp_path: Path) -> None:
    reference = tmp_path / "reference.docx"
    targets = tmp_path / "targets"
    targets.mkdir()
    _write_reference(reference)

    result = runner.invoke(app, ["batch", "--reference", str(reference), "--targets-dir", str(targets)])

    assert result.exit_code == 2


def _write_template(path: Path, *, cross_run: bool = False) -> None:
    document = Document()
    paragraph = document.add_paragraph()
    paragraph.add_run("Raison sociale : {{NOM}}")
    if cross_run:
        paragraph.add_run(" {{BA")
        paragraph.add_run("D}}")
    document.add_paragraph("PME : {{EST_PME}}")
    document.save(str(path))


def test_fill_replaces_values_from_yaml(tmp_path: Path) -> None:
    template = tmp_path / "template.docx"
    data = tmp_path / "values.yaml"
    out = tmp_path / "filled" / "out.docx"
    _write_template(template)
    data.write_text("NOM: ACME SAS\nEST_PME: true\n", encoding="utf-8")

    result = runner.invoke(app, ["fill", "--template", str(template), "--data", str(data), "--out", str(out)])

    assert result.exit_code == 0, result.output
    assert [paragraph.text for paragraph in Document(str(out)).paragraphs] == [
        "Raison sociale : ACME SAS",
        "PME : ☑",
    ]
    report = json.loads((tmp_path / "filled" / "out.fill_report.json").read_text(encoding="utf-8"))
    assert report["summary"]["replaced_count"] == 2


def test_fill_missing_value_returns_3(tmp_path: Path) -> None:
    template = tmp_path / "template.docx"
    data = tmp_path / "values.json"
    _write_template(template)
    data.write_text(json.dumps({"NOM": "ACME"}), encoding="utf-8")

    result = runner.invoke(
        app, ["fill", "--template", str(template), "--data", str(data), "--out", str(tmp_path / "out.docx")]
    )

    assert result.exit_code == 3
    assert "missing=1" in result.output


def test_fill_input_errors_return_2(tmp_path: Path) -> None:
    template = tmp_path / "template.docx"
    broken = tmp_path / "broken.docx"
    values = tmp_path / "values.yaml"
    not_a_mapping = tmp_path / "list.yaml"
    _write_template(template, cross_run=True)
    values.write_text("NOM: ACME\n", encoding="utf-8")
    not_a_mapping.write_text("- a\n- b\n", encoding="utf-8")
    broken.write_bytes(b"")

    unsupported = runner.invoke(app, ["fill", "--template", str(template), "--data", str(values)])
    bad_data = runner.invoke(app, ["fill", "--template", str(template), "--data", str(not_a_mapping)])
    empty = runner.invoke(app, ["fill", "--template", str(broken), "--data", str(values)])

    assert unsupported.exit_code == 2
    assert "unsupported placeholders (count=1)" in unsupported.output
    assert bad_data.exit_code == 2
    assert empty.exit_code == 2


def test_segments_prints_json(tmp_path: Path) -> None:
    path = tmp_path / "form.docx"
    document = Document()
    document.add_paragraph("A - Identification du candidat")
    document.add_paragraph("Numéro SIRET de l'établissement qui exécutera la prestation : {{SIRET}}")
    document.add_paragraph("B - Capacités économiques et financières")
    document.add_paragraph("Chiffre d'affaires global hors taxes des trois derniers exercices : {{CA_N}}")
    document.save(str(path))

    result = runner.invoke(app, ["segments", "--document", str(path), "--strategy", "sections"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["strategy"] == "sections"
    assert payload["stats"]["total_tags"] == 2
    assert [tag for segment in payload["segments"] for tag in segment["tags"]] == ["SIRET", "CA_N"]


def test_segments_rejects_unknown_strategy(tmp_path: Path) -> None:
    path = tmp_path / "form.docx"
    Document().save(str(path))

    result = runner.invoke(app, ["segments", "--document", str(path), "--strategy", "chapters"])

    assert result.exit_code == 1


def test_fill_checkbox_style_and_empty_tag_options(tmp_path: Path) -> None:
    template = tmp_path / "template.docx"
    full = tmp_path / "full.yaml"
    partial = tmp_path / "partial.yaml"
    _write_template(template)
    full.write_text("NOM: ACME SAS\nEST_PME: true\n", encoding="utf-8")
    partial.write_text("NOM: ACME SAS\n", encoding="utf-8")

    styled = runner.invoke(
        app,
        [
            "fill",
            "--template",
            str(template),
            "--data",
            str(full),
            "--out",
            str(tmp_path / "text.docx"),
            "--checkbox-style",
            "text",
        ],
    )
    kept = runner.invoke(
        app,
        [
            "fill",
            "--template",
            str(template),
            "--data",
            str(partial),
            "--out",
            str(tmp_path / "kept.docx"),
            "--keep-empty-tags",
        ],
    )
    dropped = runner.invoke(
        app,
        ["fill", "--template", str(template), "--data", str(partial), "--out", str(tmp_path / "dropped.docx")],
    )
    invalid = runner.invoke(
        app, ["fill", "--template", str(template), "--data", str(full), "--checkbox-style", "emoji"]
    )

    assert styled.exit_code == 0, styled.output
    assert Document(str(tmp_path / "text.docx")).paragraphs[1].text == "PME : X"
    assert kept.exit_code == 3
    assert Document(str(tmp_path / "kept.docx")).paragraphs[1].text == "PME : {{EST_PME}}"
    assert dropped.exit_code == 3
    assert Document(str(tmp_path / "dropped.docx")).paragraphs[1].text == "PME : "
    assert invalid.exit_code == 1
    assert "--checkbox-style must be one of" in invalid.output
