"""Deterministic, oracle-free placement cascade.

Identification fields, multi-column numeric tables and date ranges each need
different positional reasoning, so dedicated steps run before the generic
keyword scorer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from tagtransfer.config.models import PatternSettings
from tagtransfer.context.models import MatchResult, TagContext, TargetParagraph
from tagtransfer.matching.keywords import choose_insertion_point, normalize_text

TAG_PATTERNS: dict[str, tuple[str, ...]] = {
    "NOM_COMMERCIAL": ("nom commercial", "dénomination", "raison sociale", "société"),
    "DENOMINATION": ("dénomination", "raison sociale"),
    "ADRESSE": ("adresse postale", "siège social", "adresses postale"),
    "ADRESSE_SIEGE": ("siège social", "adresse du siège"),
    "CODE_POSTAL": ("code postal", "cp"),
    "VILLE": ("ville", "commune", "localité"),
    "EMAIL": ("adresse électronique", "email", "courriel", "mail", "e-mail"),
    "TELEPHONE": ("téléphone", "télécopie", "tél", "tel", "numéro de téléphone"),
    "SIRET": ("siret", "siren", "numéro siret", "n° siret"),
    "FORME_JURIDIQUE": ("forme juridique", "statut juridique", "type de société"),
    "CA_N": ("chiffre d'affaires global",),
    "CA_N1": ("chiffre d'affaires global",),
    "CA_N2": ("chiffre d'affaires global",),
    "PART_CA_N": ("part du chiffre d'affaires",),
    "PART_CA_N1": ("part du chiffre d'affaires",),
    "PART_CA_N2": ("part du chiffre d'affaires",),
    "EFFECTIF": ("effectif", "nombre de salariés", "employés"),
    "DATE": ("date", "le ", "fait à", "fait le"),
    "MONTANT": ("montant", "prix", "somme", "€", "euros"),
    "CHECK_": ("☐", "☑", "oui", "non", "case"),
}

IDENTIFICATION_LABELS: dict[str, tuple[str, ...]] = {
    "NOM_COMMERCIAL": ("nom commercial et dénomination sociale",),
    "ADRESSE": ("adresses postale et du siège", "adresse postale"),
    "EMAIL": ("adresse électronique",),
    "TELEPHONE": ("numéros de téléphone",),
    "SIRET": ("numéro siret",),
}

EXERCISE_DATE_TAGS: tuple[tuple[str, str], ...] = (
    ("CA_N_DEBUT", "CA_N_FIN"),
    ("CA_N1_DEBUT", "CA_N1_FIN"),
    ("CA_N2_DEBUT", "CA_N2_FIN"),
)
TURNOVER_TAGS = ("CA_N", "CA_N1", "CA_N2")
TURNOVER_SHARE_TAGS = ("PART_CA_N", "PART_CA_N1", "PART_CA_N2")

_TURNOVER_LABEL = "chiffre d'affaires global"
_SHARE_LABEL = "part du chiffre d'affaires"
_EXERCISE_DATE_RE = re.compile(r"^CA_N\d?_(DEBUT|FIN)$")


@dataclass
class _CascadeState:
    paragraphs: list[TargetParagraph]
    tags: set[str]
    matches: list[MatchResult] = field(default_factory=list)
    used_paragraphs: set[int] = field(default_factory=set)
    used_tags: set[str] = field(default_factory=set)

    def place(self, match: MatchResult, *, reserve: bool = True) -> None:
        self.matches.append(match)
        self.used_tags.add(match.tag)
        if reserve:
            self.used_paragraphs.add(match.target_index)

    def free(self, paragraph: TargetParagraph) -> bool:
        return paragraph.index not in self.used_paragraphs


def pattern_based_matching(
    tag_contexts: list[TagContext],
    paragraphs: list[TargetParagraph],
    settings: PatternSettings | None = None,
) -> list[MatchResult]:
    """Run the five-step cascade; the same input always yields the same matches."""

    config = settings or PatternSettings()
    state = _CascadeState(
        paragraphs=sorted(paragraphs, key=lambda item: item.index),
        tags={context.tag for context in tag_contexts},
    )

    _match_exercise_dates(state)
    _match_turnover_columns(state, config)
    _match_turnover_shares(state, config)
    _match_identification_tags(state, tag_contexts, config)
    _match_remaining_tags(state, tag_contexts, config)
    return state.matches


def patterns_for_tag(tag: str) -> list[str]:
    patterns: list[str] = []
    for key, values in TAG_PATTERNS.items():
        if key in tag:
            patterns.extend(values)
    return patterns


def _match_exercise_dates(state: _CascadeState) -> None:
    rows = [
        paragraph
        for paragraph in state.paragraphs
        if paragraph.is_table_cell
        and "exercice" in normalize_text(paragraph.text)
        and "du" in paragraph.text
        and "au" in paragraph.text
    ]
    for row, (start_tag, end_tag) in zip(rows, EXERCISE_DATE_TAGS):
        if start_tag not in state.tags or end_tag not in state.tags:
            continue
        for tag in (start_tag, end_tag):
            state.place(
                MatchResult(
                    tag=tag,
                    target_index=row.index,
                    confidence=0.95,
                    insertion_point="table_cell",
                    reason="exercise date row",
                )
            )


def _match_turnover_columns(state: _CascadeState, config: PatternSettings) -> None:
    label = _first_cell_containing(state.paragraphs, _TURNOVER_LABEL)
    if label is None:
        return
    share_label = _first_cell_containing(state.paragraphs, _SHARE_LABEL, after=label.index)
    limit = share_label.index if share_label is not None else label.index + config.turnover_cell_window

    empty_cells = [
        paragraph
        for paragraph in state.paragraphs
        if label.index < paragraph.index < limit
        and paragraph.is_table_cell
        and paragraph.is_empty
        and state.free(paragraph)
    ]

    columns: list[list[int]] = []
    if len(empty_cells) > 3 and empty_cells[1].index == empty_cells[0].index + 1:
        columns.append([empty_cells[0].index, empty_cells[1].index])
        columns.extend([cell.index] for cell in empty_cells[2:])
    else:
        columns.extend([cell.index] for cell in empty_cells)

    present = [tag for tag in TURNOVER_TAGS if tag in state.tags and tag not in state.used_tags]
    for tag, column in zip(present, columns):
        state.place(
            MatchResult(
                tag=tag,
                target_index=column[0],
                confidence=0.90,
                insertion_point="table_cell",
                reason="turnover column",
            )
        )


def _match_turnover_shares(state: _CascadeState, config: PatternSettings) -> None:
    label = _first_cell_containing(state.paragraphs, _SHARE_LABEL)
    if label is None:
        return

    percent_cells = [
        paragraph
        for paragraph in state.paragraphs
        if paragraph.index > label.index
        and paragraph.is_table_cell
        and paragraph.text.strip() == "%"
        and state.free(paragraph)
    ]
    present = [tag for tag in TURNOVER_SHARE_TAGS if tag in state.tags and tag not in state.used_tags]
    for tag, cell in zip(present, percent_cells):
        if cell.index - label.index > config.percent_cell_window:
            continue
        state.place(
            MatchResult(
                tag=tag,
                target_index=cell.index,
                confidence=0.90,
                insertion_point="table_cell",
                reason="percentage cell",
            )
        )


def _match_identification_tags(
    state: _CascadeState,
    tag_contexts: list[TagContext],
    config: PatternSettings,
) -> None:
    for tag in IDENTIFICATION_LABELS:
        if tag in state.used_tags or tag not in state.tags:
            continue

        label_paragraph = _find_identification_label(state, tag, config)
        if label_paragraph is None:
            continue

        following = _paragraph_at(state.paragraphs, label_paragraph.index + 1)
        if following is not None and following.is_empty and state.free(following):
            state.place(
                MatchResult(
                    tag=tag,
                    target_index=following.index,
                    confidence=0.85,
                    insertion_point="table_cell" if following.is_table_cell else "replace_empty",
                    reason=f"empty field after label {label_paragraph.index}",
                )
            )
            continue

        if label_paragraph.ends_with_colon:
            state.place(
                MatchResult(
                    tag=tag,
                    target_index=label_paragraph.index,
                    confidence=0.85,
                    insertion_point="after_colon",
                    reason="identification label",
                )
            )
            continue

        short_field = _first_after(
            state,
            label_paragraph.index,
            config.identification_window,
            lambda paragraph: len(paragraph.text.strip()) < 5,
        )
        if short_field is not None:
            state.place(
                MatchResult(
                    tag=tag,
                    target_index=short_field.index,
                    confidence=0.80,
                    insertion_point="table_cell" if short_field.is_table_cell else "replace_empty",
                    reason="short field near label",
                )
            )
            continue

        colon_field = _first_after(
            state,
            label_paragraph.index,
            config.identification_colon_window,
            lambda paragraph: paragraph.ends_with_colon,
        )
        if colon_field is not None:
            state.place(
                MatchResult(
                    tag=tag,
                    target_index=colon_field.index,
                    confidence=0.80,
                    insertion_point="after_colon",
                    reason="colon field near label",
                )
            )


def _find_identification_label(
    state: _CascadeState, tag: str, config: PatternSettings
) -> TargetParagraph | None:
    if tag == "NOM_COMMERCIAL":
        candidates = [
            paragraph
            for paragraph in state.paragraphs
            if "nom commercial" in normalize_text(paragraph.text)
            and paragraph.ends_with_colon
            and paragraph.section == "C"
            and state.free(paragraph)
        ]
        # The first occurrence describes the section; the second is the field.
        if len(candidates) >= 2:
            return candidates[1]
        if candidates:
            return candidates[0]

    labels = IDENTIFICATION_LABELS.get(tag, ()) + TAG_PATTERNS.get(tag, ())
    for label in labels:
        for paragraph in state.paragraphs:
            if (
                normalize_text(paragraph.text).strip().startswith(label)
                and paragraph.ends_with_colon
                and state.free(paragraph)
            ):
                return paragraph
        for paragraph in state.paragraphs:
            if (
                label in normalize_text(paragraph.text)
                and paragraph.ends_with_colon
                and len(paragraph.text) < config.description_max_chars
                and state.free(paragraph)
            ):
                return paragraph
    return None


def _match_remaining_tags(
    state: _CascadeState,
    tag_contexts: list[TagContext],
    config: PatternSettings,
) -> None:
    for context in tag_contexts:
        if context.tag in state.used_tags or _EXERCISE_DATE_RE.match(context.tag):
            continue

        patterns = patterns_for_tag(context.tag)
        if not patterns and context.label_before:
            patterns = [word for word in normalize_text(context.label_before).split() if len(word) > 3]

        best: TargetParagraph | None = None
        best_score = 0
        for paragraph in state.paragraphs:
            if not state.free(paragraph) or paragraph.has_existing_tag or len(paragraph.text) < 3:
                continue
            text = normalize_text(paragraph.text)
            score = sum(10 for pattern in patterns if pattern in text)
            if context.section and paragraph.section == context.section:
                score += 5
            if paragraph.ends_with_colon:
                score += 3
            if context.type == "table_cell" and paragraph.is_table_cell:
                score += 5
            if score > best_score:
                best_score = score
                best = paragraph

        if best is None or best_score < config.score_floor:
            continue
        state.place(
            MatchResult(
                tag=context.tag,
                target_index=best.index,
                confidence=min(best_score / 20, 1.0),
                insertion_point=choose_insertion_point(best),
                reason=f"pattern score {best_score}",
            )
        )


def _first_cell_containing(
    paragraphs: list[TargetParagraph], needle: str, after: int = -1
) -> TargetParagraph | None:
    for paragraph in paragraphs:
        if paragraph.index > after and paragraph.is_table_cell and needle in normalize_text(paragraph.text):
            return paragraph
    return None


def _paragraph_at(paragraphs: list[TargetParagraph], index: int) -> TargetParagraph | None:
    for paragraph in paragraphs:
        if paragraph.index == index:
            return paragraph
        if paragraph.index > index:
            break
    return None


def _first_after(state: _CascadeState, start: int, window: int, predicate) -> TargetParagraph | None:
    for paragraph in state.paragraphs:
        if paragraph.index <= start:
            continue
        if paragraph.index > start + window:
            break
        if state.free(paragraph) and predicate(paragraph):
            return paragraph
    return None
