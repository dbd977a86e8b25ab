"""Typer CLI entrypoint for tagtransfer."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Annotated

import typer

from apps.cli.io import (
    build_batch_report_path,
    build_output_paths,
    existing_output_files,
    load_values,
    write_batch_output_atomic,
    write_error_report_atomic,
    write_fill_output_atomic,
    write_mapping_output_atomic,
)
from tagtransfer.config.loader import load_settings
from tagtransfer.config.models import MatchingSettings
from tagtransfer.context.extractor import build_reference_context, extract_document, load_document
from tagtransfer.matching.oracle import HttpChatOracle, OracleSettings
from tagtransfer.orchestrator.models import MappingOutput
from tagtransfer.orchestrator.pipeline import MappingOptions, map_batch, map_documents, output_filename
from tagtransfer.render.docx_filler import fill_template
from tagtransfer.segment.segmenter import segment_document
from tagtransfer.utils.errors import DocumentInputError, NoPlaceholdersError, TemplateError

app = typer.Typer(help="Transfer {{TAG}} placeholders between DOCX documents", rich_markup_mode=None)

EXIT_OK = 0
EXIT_INTERNAL = 1
EXIT_INPUT = 2
EXIT_PARTIAL = 3

_SEGMENTATION_MODES = {"auto", "always", "never"}
_CHECKBOX_MODES = {"deterministic", "content_aware"}
_STRATEGIES = {"auto", "hybrid", "sections", "tables", "pages"}
_CHECKBOX_STYLES = ("unicode", "text", "boolean")


@app.callback()
def cli_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log progress to stderr.")] = False,
) -> None:
    """Map a tagged reference onto an untagged target, in the target's own layout."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command("map")
def map_command(
    reference: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    target: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    out_dir: Annotated[Path, typer.Option()] = Path("."),
    segmentation: Annotated[str, typer.Option()] = "auto",
    checkbox_mode: Annotated[str, typer.Option()] = "deterministic",
    doc_type: Annotated[str, typer.Option()] = "document",
    output_name: Annotated[str | None, typer.Option()] = None,
    debug: Annotated[bool, typer.Option("--debug", help="Include loop traces in the report.")] = False,
    oracle_url: Annotated[str | None, typer.Option(help="Chat-completions base URL.")] = None,
    oracle_model: Annotated[str | None, typer.Option()] = None,
    settings: Annotated[Path | None, typer.Option(exists=True, dir_okay=False)] = None,
    force: Annotated[
        bool, typer.Option("--force", help="Overwrite outputs when they already exist.")
    ] = False,
    no_overwrite: Annotated[
        bool, typer.Option("--no-overwrite", help="Fail when outputs already exist.")
    ] = False,
) -> None:
    """Tag one target document and write `<name>_TEMPLATE.docx` plus `out.report.json`."""

    options = _build_options(segmentation, checkbox_mode, doc_type, output_name, debug)
    config = _load_settings_or_exit(settings)
    _check_overwrite_flags(force, no_overwrite)

    paths = build_output_paths(out_dir, output_filename(target.name, output_name))
    existing = existing_output_files(paths)
    if existing and no_overwrite:
        typer.echo("ERROR: outputs already exist and --no-overwrite is enabled.")
        raise typer.Exit(code=EXIT_INTERNAL)
    if existing:
        typer.echo(f"INFO: overwriting existing outputs: {', '.join(path.name for path in existing)}")

    try:
        oracle = _build_oracle(oracle_url, oracle_model)
        output = asyncio.run(
            map_documents(reference, target, oracle, options, config, target_name=target.name)
        )
    except DocumentInputError as exc:
        typer.echo(f"ERROR: input error ({exc.field or 'document'}): {exc}")
        _safe_write_error_report(paths.report, type(exc).__name__, str(exc), "input")
        raise typer.Exit(code=EXIT_INPUT) from exc
    except Exception as exc:  # noqa: BLE001
        typer.echo(f"ERROR: {type(exc).__name__}: {exc}")
        _safe_write_error_report(paths.report, type(exc).__name__, str(exc), "pipeline")
        raise typer.Exit(code=EXIT_INTERNAL) from exc

    try:
        write_mapping_output_atomic(paths, output)
    except Exception as exc:  # noqa: BLE001
        typer.echo(f"ERROR: write output failed: {exc}")
        raise typer.Exit(code=EXIT_INTERNAL) from exc

    typer.echo(_summary_line(output))
    typer.echo(f"INFO: wrote {paths.docx}")
    raise typer.Exit(code=EXIT_PARTIAL if output.report.tags_failed else EXIT_OK)


@app.command("batch")
def batch_command(
    reference: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    targets_dir: Annotated[Path, typer.Option(..., exists=True, dir_okay=True, file_okay=False)],
    out_dir: Annotated[Path, typer.Option()] = Path("."),
    segmentation: Annotated[str, typer.Option()] = "auto",
    checkbox_mode: Annotated[str, typer.Option()] = "deterministic",
    doc_type: Annotated[str, typer.Option()] = "document",
    oracle_url: Annotated[str | None, typer.Option(help="Chat-completions base URL.")] = None,
    oracle_model: Annotated[str | None, typer.Option()] = None,
    settings: Annotated[Path | None, typer.Option(exists=True, dir_okay=False)] = None,
) -> None:
    """Tag every `.docx` of a directory against one reference."""

    options = _build_options(segmentation, checkbox_mode, doc_type, None, False)
    config = _load_settings_or_exit(settings)

    targets = sorted(
        path
        for path in targets_dir.iterdir()
        if path.is_file() and path.suffix.lower() == ".docx" and not path.name.startswith("~$")
    )
    if not targets:
        typer.echo(f"ERROR: no .docx files in {targets_dir}")
        raise typer.Exit(code=EXIT_INPUT)

    try:
        oracle = _build_oracle(oracle_url, oracle_model)
        results = asyncio.run(
            map_batch(reference, [(path.name, path) for path in targets], oracle, options, config)
        )
    except Exception as exc:  # noqa: BLE001
        typer.echo(f"ERROR: {type(exc).__name__}: {exc}")
        _safe_write_error_report(build_batch_report_path(out_dir), type(exc).__name__, str(exc), "batch")
        raise typer.Exit(code=EXIT_INTERNAL) from exc

    try:
        report_path = write_batch_output_atomic(out_dir, results)
    except Exception as exc:  # noqa: BLE001
        typer.echo(f"ERROR: write output failed: {exc}")
        raise typer.Exit(code=EXIT_INTERNAL) from exc

    for item in results:
        if item.ok and item.report is not None:
            typer.echo(
                f"OK {item.name} -> {item.output_name} "
                f"(applied={item.report.tags_applied}, failed={item.report.tags_failed})"
            )
        else:
            typer.echo(f"FAILED {item.name}: {item.error}")
    typer.echo(f"INFO: wrote {report_path}")

    if all(not item.ok for item in results):
        raise typer.Exit(code=EXIT_INPUT)
    partial = any(not item.ok or (item.report is not None and item.report.tags_failed) for item in results)
    raise typer.Exit(code=EXIT_PARTIAL if partial else EXIT_OK)


@app.command("fill")
def fill_command(
    template: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    data: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    out: Annotated[Path, typer.Option()] = Path("out.docx"),
    unsupported_mode: Annotated[str, typer.Option()] = "error",
    checkbox_style: Annotated[str, typer.Option(help="unicode, text or boolean.")] = "unicode",
    keep_empty_tags: Annotated[bool, typer.Option("--keep-empty-tags/--drop-empty-tags")] = False,
) -> None:
    """Fill a tagged template from a JSON or YAML mapping of values.

    Keys of the mapping report's data skeleton that name checkboxes set those
    checkboxes. Placeholders left without a value are removed unless
    --keep-empty-tags is given.
    """

    normalized_mode = unsupported_mode.lower().strip()
    if normalized_mode not in {"error", "warn"}:
        typer.echo("ERROR: --unsupported-mode must be one of: error, warn.")
        raise typer.Exit(code=EXIT_INTERNAL)
    style = checkbox_style.lower().strip()
    if style not in _CHECKBOX_STYLES:
        typer.echo(f"ERROR: --checkbox-style must be one of: {', '.join(_CHECKBOX_STYLES)}.")
        raise typer.Exit(code=EXIT_INTERNAL)

    try:
        values = load_values(data)
        document = load_document(template, field="template")
        output = fill_template(
            document,
            values,
            normalized_mode,  # type: ignore[arg-type]
            checkbox_style=style,  # type: ignore[arg-type]
            keep_empty_tags=keep_empty_tags,
        )
    except DocumentInputError as exc:
        typer.echo(f"ERROR: input error: {exc}")
        raise typer.Exit(code=EXIT_INPUT) from exc
    except TemplateError as exc:
        count = exc.fill_report.summary.unsupported_count if exc.fill_report else 0
        typer.echo(f"ERROR: template has unsupported placeholders (count={count})")
        raise typer.Exit(code=EXIT_INPUT) from exc
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INPUT) from exc

    report_path = write_fill_output_atomic(out, output)
    summary = output.report.summary
    typer.echo(
        f"INFO: replaced={summary.replaced_count} missing={summary.missing_count} "
        f"unsupported={summary.unsupported_count} checkboxes={summary.checkbox_count} "
        f"unused={summary.unused_count}"
    )
    typer.echo(f"INFO: wrote {out} and {report_path}")
    raise typer.Exit(code=EXIT_PARTIAL if summary.missing_count else EXIT_OK)


@app.command("segments")
def segments_command(
    document: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    strategy: Annotated[str, typer.Option()] = "auto",
    settings: Annotated[Path | None, typer.Option(exists=True, dir_okay=False)] = None,
) -> None:
    """Print how a document splits into segments, as JSON."""

    if strategy not in _STRATEGIES:
        typer.echo(f"ERROR: --strategy must be one of: {', '.join(sorted(_STRATEGIES))}.")
        raise typer.Exit(code=EXIT_INTERNAL)
    config = _load_settings_or_exit(settings)

    try:
        extracted = extract_document(load_document(document, field="document"))
    except DocumentInputError as exc:
        typer.echo(f"ERROR: input error: {exc}")
        raise typer.Exit(code=EXIT_INPUT) from exc

    try:
        tag_contexts = build_reference_context(extracted).tag_contexts
    except NoPlaceholdersError:
        tag_contexts = []

    result = segment_document(
        extracted.layout.blocks,
        extracted.paragraphs,
        tag_contexts,
        strategy,  # type: ignore[arg-type]
        config.segmentation,
    )
    payload = {
        "strategy": result.strategy,
        "stats": asdict(result.stats),
        "segments": [
            {
                "id": segment.id,
                "kind": segment.kind,
                "title": segment.title,
                "span": list(segment.xml_span),
                "paragraphs": segment.paragraph_count,
                "tags": list(segment.tags),
                "relevance": segment.metadata.relevance_score,
            }
            for segment in result.segments
        ],
    }
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))


def _build_options(
    segmentation: str,
    checkbox_mode: str,
    doc_type: str,
    output_name: str | None,
    debug: bool,
) -> MappingOptions:
    normalized_segmentation = segmentation.lower().strip()
    if normalized_segmentation not in _SEGMENTATION_MODES:
        typer.echo("ERROR: --segmentation must be one of: auto, always, never.")
        raise typer.Exit(code=EXIT_INTERNAL)
    normalized_checkbox_mode = checkbox_mode.lower().strip().replace("-", "_")
    if normalized_checkbox_mode not in _CHECKBOX_MODES:
        typer.echo("ERROR: --checkbox-mode must be one of: deterministic, content_aware.")
        raise typer.Exit(code=EXIT_INTERNAL)
    return MappingOptions(
        segmentation=normalized_segmentation,  # type: ignore[arg-type]
        checkbox_mode=normalized_checkbox_mode,  # type: ignore[arg-type]
        debug=debug,
        doc_type=doc_type,
        output_name=output_name,
    )


def _check_overwrite_flags(force: bool, no_overwrite: bool) -> None:
    if force and no_overwrite:
        typer.echo("ERROR: --force and --no-overwrite cannot be used together.")
        raise typer.Exit(code=EXIT_INTERNAL)


def _load_settings_or_exit(path: Path | None) -> MatchingSettings:
    try:
        return load_settings(path)
    except ValueError as exc:
        typer.echo(f"ERROR: {exc}")
        raise typer.Exit(code=EXIT_INTERNAL) from exc


def _build_oracle(url: str | None, model: str | None) -> HttpChatOracle | None:
    """Oracle from explicit options, else from TAGTRANSFER_ORACLE_* variables."""

    env_settings = OracleSettings.from_env()
    if url:
        values = env_settings.model_dump() if env_settings is not None else {}
        values["base_url"] = url
        if model:
            values["model"] = model
        return HttpChatOracle(OracleSettings(**values))
    if env_settings is None:
        return None
    if model:
        env_settings = env_settings.model_copy(update={"model": model})
    return HttpChatOracle(env_settings)


def _safe_write_error_report(path: Path, error_type: str, error_message: str, stage: str) -> None:
    try:
        write_error_report_atomic(path, error_type=error_type, error_message=error_message, stage=stage)
    except OSError:
        logging.getLogger("tagtransfer.cli").warning("could not write error report to %s", path)


def _summary_line(output: MappingOutput) -> str:
    report = output.report
    return (
        f"INFO: mode={report.mode} applied={report.tags_applied} failed={report.tags_failed} "
        f"checkboxes={report.checkbox_stats.applied}/{report.checkbox_stats.target_total}"
    )


def main() -> None:
    """Console script entrypoint."""

    app()


if __name__ == "__main__":
    main()
