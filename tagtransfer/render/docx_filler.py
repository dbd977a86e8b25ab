"""Fill a tagged template with values using run-level replacement.

Keys naming a `{{TAG}}` placeholder replace it. Keys naming a checkbox tag
(see `generate_checkbox_tags`) set the matching checkbox or yes/no pair, so the
`data_structure` skeleton of a mapping report can be filled as-is. Any other
key is reported as unused.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping
from typing import Any, Literal

from docx.document import Document as DocxDocument
from docx.text.run import Run

from tagtransfer.apply.checkbox_applicator import apply_checkbox_decisions
from tagtransfer.checkbox.pairing import CheckboxTag, find_checkbox_pairs, generate_checkbox_tags
from tagtransfer.context.extractor import extract_document
from tagtransfer.context.models import CheckboxDecision, Occurrence, ParseResult
from tagtransfer.context.paragraphs import iter_paragraph_run_contexts
from tagtransfer.context.placeholder_parser import parse_placeholders
from tagtransfer.render.models import FillLogEntry, FillOutput, FillReport, FillSummary
from tagtransfer.utils.errors import TemplateError

CheckboxStyle = Literal["unicode", "text", "boolean"]

CHECKED_MARK = "☑"
UNCHECKED_MARK = "☐"

_BOOLEAN_MARKS: dict[str, tuple[str, str]] = {
    "unicode": (CHECKED_MARK, UNCHECKED_MARK),
    "text": ("X", " "),
    "boolean": ("true", "false"),
}
_TRUE_WORDS = {"true", "oui", "yes", "1", "x", CHECKED_MARK}
_FALSE_WORDS = {"false", "non", "no", "0", "", UNCHECKED_MARK}


def fill_template(
    document: DocxDocument,
    values: Mapping[str, Any],
    unsupported_mode: Literal["error", "warn"] = "error",
    *,
    checkbox_style: CheckboxStyle = "unicode",
    keep_empty_tags: bool = False,
    pair_window: int = 5,
) -> FillOutput:
    """Replace {{TAG}} occurrences with values, keeping each run's formatting.

    Placeholders without a value are logged as missing and removed, unless
    `keep_empty_tags` is set. Booleans render according to `checkbox_style`.
    """

    if unsupported_mode not in {"error", "warn"}:
        raise ValueError(f"Unsupported mode: {unsupported_mode}")
    if checkbox_style not in _BOOLEAN_MARKS:
        raise ValueError(f"Unsupported checkbox style: {checkbox_style}")

    parse_result = parse_placeholders(document, strict=False)
    entries: list[FillLogEntry] = [
        FillLogEntry(
            status="unsupported",
            run_id=item.run_id,
            paragraph_path=_paragraph_path_from_run_id(item.run_id),
            start=item.start,
            end=item.end,
            original_text=item.text,
            reason=item.kind,
        )
        for item in parse_result.unsupported
    ]

    if parse_result.unsupported and unsupported_mode == "error":
        report = _build_report(parse_result, entries, set(), unsupported_mode)
        raise TemplateError(
            "Unsupported placeholders found in template",
            result=parse_result,
            fill_report=report,
        )

    # Glyph swaps keep text lengths, so placeholder offsets stay valid afterwards.
    extra_keys = {
        name: value for name, value in values.items() if name not in parse_result.fields and value is not None
    }
    if extra_keys:
        entries.extend(_fill_checkboxes(document, extra_keys, pair_window))

    rendered = {
        name: render_value(value, checkbox_style) for name, value in values.items() if value is not None
    }
    replaced, touched_runs = _replace_occurrences(
        parse_result.occurrences, _build_run_lookup(document), rendered, keep_empty_tags
    )
    entries.extend(replaced)

    return FillOutput(
        document=document,
        parse_result=parse_result,
        report=_build_report(parse_result, entries, touched_runs, unsupported_mode),
    )


def render_value(value: Any, checkbox_style: CheckboxStyle = "unicode") -> str:
    if isinstance(value, bool):
        checked, unchecked = _BOOLEAN_MARKS[checkbox_style]
        return checked if value else unchecked
    return str(value)


def build_data_structure(
    tags: Iterable[str],
    checkbox_tags: Mapping[str, CheckboxTag] | None = None,
) -> dict[str, str | bool]:
    """Skeleton values a caller fills: "" per text tag, False per checkbox tag."""

    structure: dict[str, str | bool] = {tag: "" for tag in tags}
    for name in checkbox_tags or {}:
        structure.setdefault(name, False)
    return structure


def _fill_checkboxes(document: DocxDocument, values: Mapping[str, Any], pair_window: int) -> list[FillLogEntry]:
    extracted = extract_document(document)
    checkboxes = extracted.checkbox_scan.checkboxes
    tags = generate_checkbox_tags(checkboxes, find_checkbox_pairs(checkboxes, pair_window, extracted.paragraphs))

    entries: list[FillLogEntry] = []
    decisions: list[CheckboxDecision] = []
    for name, value in values.items():
        tag = tags.get(name)
        state = _as_bool(value)
        if tag is None or state is None:
            reason = "no_placeholder_or_checkbox" if tag is None else "not_boolean"
            entries.append(FillLogEntry(status="unused", field_name=name, reason=reason))
            continue
        for key, checked in zip(tag.keys, (state, not state)):
            decisions.append(CheckboxDecision(target_index=key[0], position=key[1], checked=checked, label=name))
        entries.append(
            FillLogEntry(status="checkbox", field_name=name, new_text=CHECKED_MARK if state else UNCHECKED_MARK)
        )

    apply_checkbox_decisions(decisions, extracted.checkbox_scan.nodes)
    return entries


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return None


def _replace_occurrences(
    occurrences: list[Occurrence],
    run_lookup: Mapping[str, Run],
    values: dict[str, str],
    keep_empty_tags: bool = True,
) -> tuple[list[FillLogEntry], set[str]]:
    by_run: dict[str, list[Occurrence]] = defaultdict(list)
    for occurrence in occurrences:
        by_run[occurrence.run_id].append(occurrence)

    entries: list[FillLogEntry] = []
    touched_runs: set[str] = set()
    for run_id in sorted(by_run):
        run = run_lookup.get(run_id)
        if run is None:
            continue
        run_entries, changed = _fill_run(run, run_id, by_run[run_id], values, keep_empty_tags)
        if changed:
            touched_runs.add(run_id)
        entries.extend(run_entries)
    return entries, touched_runs


def _fill_run(
    run: Run,
    run_id: str,
    occurrences: list[Occurrence],
    values: dict[str, str],
    keep_empty_tags: bool,
) -> tuple[list[FillLogEntry], bool]:
    """Rewrite one run right to left so earlier offsets stay valid."""

    original = run.text or ""
    text = original
    path = _paragraph_path_from_run_id(run_id)
    entries: list[FillLogEntry] = []
    for occurrence in sorted(occurrences, key=lambda item: item.start, reverse=True):
        value = values.get(occurrence.field_name)
        entries.append(
            FillLogEntry(
                status="missing" if value is None else "replaced",
                field_name=occurrence.field_name,
                run_id=run_id,
                paragraph_path=path,
                start=occurrence.start,
                end=occurrence.end,
                original_text=original[occurrence.start : occurrence.end],
                new_text=value,
                reason="missing_field" if value is None else None,
            )
        )
        if value is None and keep_empty_tags:
            continue
        text = text[: occurrence.start] + (value or "") + text[occurrence.end :]

    if text == original:
        return entries, False
    run.text = text
    return entries, True


def _build_run_lookup(document: DocxDocument) -> dict[str, Run]:
    return {
        run_id: run
        for context in iter_paragraph_run_contexts(document)
        for run_id, run in zip(context.run_ids, context.paragraph.runs, strict=False)
    }


def _build_report(
    parse_result: ParseResult,
    entries: list[FillLogEntry],
    touched_runs: set[str],
    unsupported_mode: Literal["error", "warn"],
) -> FillReport:
    counts = Counter(entry.status for entry in entries)
    summary = FillSummary(
        total_placeholders=len(parse_result.occurrences) + len(parse_result.unsupported),
        replaced_count=counts["replaced"],
        missing_count=counts["missing"],
        unsupported_count=counts["unsupported"],
        checkbox_count=counts["checkbox"],
        unused_count=counts["unused"],
        unsupported_mode=unsupported_mode,
    )
    return FillReport(entries=entries, summary=summary, touched_runs=sorted(touched_runs))


def _paragraph_path_from_run_id(run_id: str | None) -> str | None:
    if run_id is None:
        return None
    return run_id.partition(":r")[0]
