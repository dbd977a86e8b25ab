"""CLI I/O helpers for atomic output writing."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import yaml  # type: ignore[import-untyped]
from docx.document import Document as DocxDocument

from tagtransfer.orchestrator.models import BatchItemResult, MappingOutput
from tagtransfer.render.models import FillOutput


@dataclass(frozen=True)
class OutputPaths:
    """Artifact paths for one mapping run."""

    docx: Path
    report: Path
    data: Path


def build_output_paths(out_dir: Path, output_name: str) -> OutputPaths:
    return OutputPaths(
        docx=out_dir / output_name,
        report=out_dir / "out.report.json",
        data=out_dir / "out.data.yaml",
    )


def build_batch_report_path(out_dir: Path) -> Path:
    return out_dir / "out.batch_report.json"


def build_fill_report_path(out: Path) -> Path:
    return out.with_name("out.fill_report.json")


def existing_output_files(paths: OutputPaths, extra_paths: list[Path] | None = None) -> list[Path]:
    """Return existing output files among the artifact paths."""

    candidates = [paths.docx, paths.report, paths.data]
    if extra_paths:
        candidates.extend(extra_paths)
    return [path for path in candidates if path.exists()]


def write_mapping_output_atomic(paths: OutputPaths, output: MappingOutput) -> None:
    """Write the tagged docx, its report and the data skeleton atomically."""

    paths.docx.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_bytes(paths.docx, output.content)
    _atomic_write_json(paths.report, output.report.to_json_dict())
    _atomic_write_yaml(paths.data, output.report.data_structure)


def write_batch_output_atomic(out_dir: Path, results: list[BatchItemResult]) -> Path:
    """Write each successful document plus one batch report; return the report path."""

    out_dir.mkdir(parents=True, exist_ok=True)
    for item in results:
        if item.ok and item.content is not None and item.output_name:
            _atomic_write_bytes(out_dir / item.output_name, item.content)

    report_path = build_batch_report_path(out_dir)
    _atomic_write_json(
        report_path,
        {
            "total": len(results),
            "succeeded": sum(1 for item in results if item.ok),
            "failed": sum(1 for item in results if not item.ok),
            "items": [item.model_dump(mode="json", by_alias=True, exclude_none=True) for item in results],
        },
    )
    return report_path


def write_fill_output_atomic(out: Path, output: FillOutput) -> Path:
    """Write a filled document and its fill report; return the report path."""

    out.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_docx(out, output.document)
    report_path = build_fill_report_path(out)
    _atomic_write_json(report_path, output.report.model_dump(mode="json"))
    return report_path


def write_error_report_atomic(path: Path, *, error_type: str, error_message: str, stage: str) -> None:
    """Write a report carrying only the error block."""

    path.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_json(
        path,
        {"error": {"error_type": error_type, "error_message": error_message, "stage": stage}},
    )


def load_values(path: Path) -> dict[str, Any]:
    """Read fill values from a JSON or YAML mapping."""

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("Data file must contain a mapping")
    return raw


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    def write(tmp_path: Path) -> None:
        text = json.dumps(payload, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
        tmp_path.write_text(text, encoding="utf-8")

    _replace_atomically(path, write)


def _atomic_write_yaml(path: Path, payload: dict[str, Any]) -> None:
    def write(tmp_path: Path) -> None:
        with tmp_path.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(payload, handle, allow_unicode=True, sort_keys=False)

    _replace_atomically(path, write)


def _atomic_write_bytes(path: Path, content: bytes) -> None:
    _replace_atomically(path, lambda tmp_path: tmp_path.write_bytes(content))


def _atomic_write_docx(path: Path, document: DocxDocument) -> None:
    _replace_atomically(path, lambda tmp_path: document.save(str(tmp_path)))


def _replace_atomically(path: Path, write: Callable[[Path], object]) -> None:
    """Write through a sibling temp file, then rename it over `path`."""

    fd, raw_tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f"{path.name}.", suffix=".tmp")
    os.close(fd)
    tmp_path = Path(raw_tmp_path)
    try:
        write(tmp_path)
        tmp_path.replace(path)
    finally:
        tmp_path.unlink(missing_ok=True)
