from __future__ import annotations

from tagtransfer.context.models import (
    CheckboxDecision,
    CheckboxPair,
    ExtractedCheckbox,
    MatchResult,
    TablePosition,
    TagContext,
    TargetParagraph,
)
from tagtransfer.matching.validation import validate_checkbox_decisions, validate_mapping


def _match(tag: str, index: int, point: str = "after_colon") -> MatchResult:
    return MatchResult(tag=tag, target_index=index, confidence=0.9, insertion_point=point)  # type: ignore[arg-type]


def _pair(index: int, yes_checked: bool, no_checked: bool, question: str) -> CheckboxPair:
    yes = ExtractedCheckbox(index=index, checked=yes_checked, kind="unicode", label="Oui", position=0)
    no = ExtractedCheckbox(index=index, checked=no_checked, kind="unicode", label="Non", position=1)
    value = True if yes_checked and not no_checked else False if no_checked and not yes_checked else None
    return CheckboxPair(question=question, paragraph_index=index, yes=yes, no=no, value=value)


PARAGRAPHS = [
    TargetParagraph(index=0, text="Numéro SIRET :"),
    TargetParagraph(index=1, text=""),
    TargetParagraph(index=2, text="Adresse électronique :"),
    TargetParagraph(index=3, text="Cachet de la société"),
]


def test_valid_mapping_has_no_issues() -> None:
    contexts = [
        TagContext(tag="SIRET", label_before="Numéro SIRET"),
        TagContext(tag="EMAIL", label_before="Adresse électronique"),
    ]

    issues = validate_mapping([_match("SIRET", 1, "replace_empty"), _match("EMAIL", 2)], contexts, PARAGRAPHS)

    assert issues == []


def test_unknown_index_and_coverage_are_reported() -> None:
    contexts = [TagContext(tag=tag, label_before="x") for tag in ("A", "B", "C")]

    issues = validate_mapping([_match("A", 99)], contexts, PARAGRAPHS)

    assert any("targetIdx 99 is not a listed paragraph" in issue for issue in issues)
    assert any(issue.startswith("Coverage: 2/3") for issue in issues)


def test_collision_outside_tables_is_reported_unless_tags_shared_a_paragraph() -> None:
    separate = [
        TagContext(tag="NOM", label_before="Nom", paragraph_index=0),
        TagContext(tag="VILLE", label_before="Ville", paragraph_index=5),
    ]
    shared = [
        TagContext(tag="DATE_DEBUT", label_before="du", paragraph_index=3),
        TagContext(tag="DATE_FIN", label_before="au", paragraph_index=3),
    ]

    collided = validate_mapping([_match("NOM", 0), _match("VILLE", 0)], separate, PARAGRAPHS)
    allowed = validate_mapping([_match("DATE_DEBUT", 3), _match("DATE_FIN", 3)], shared, PARAGRAPHS)

    assert any(issue.startswith("Duplicate placement: NOM, VILLE") for issue in collided)
    assert not any("Duplicate" in issue for issue in allowed)


def test_split_cell_group_is_reported() -> None:
    cell = TablePosition(0, 2, 1)
    contexts = [
        TagContext(tag="CA_N_DEBUT", label_before="Exercice", type="table_cell", table_position=cell),
        TagContext(tag="CA_N_FIN", label_before="Exercice", type="table_cell", table_position=cell),
    ]
    paragraphs = [
        TargetParagraph(index=7, text="Exercice du", is_table_cell=True),
        TargetParagraph(index=8, text="au", is_table_cell=True),
    ]

    issues = validate_mapping(
        [_match("CA_N_DEBUT", 7, "table_cell"), _match("CA_N_FIN", 8, "table_cell")], contexts, paragraphs
    )

    assert len(issues) == 1
    assert issues[0].startswith("Cell group T0R2C1")


def test_semantic_mismatch_is_reported_and_empty_field_uses_label_above() -> None:
    contexts = [TagContext(tag="EMAIL", label_before="Adresse électronique")]

    wrong = validate_mapping([_match("EMAIL", 3, "inline")], contexts, PARAGRAPHS)
    empty_after_label = validate_mapping(
        [_match("EMAIL", 1, "replace_empty")],
        contexts,
        [TargetParagraph(index=0, text="Adresse électronique :"), TargetParagraph(index=1, text="")],
    )

    assert any("shares no keyword" in issue for issue in wrong)
    assert empty_after_label == []


def test_checkbox_exclusivity_and_fidelity() -> None:
    reference = [_pair(4, True, False, "Le candidat est-il une PME")]
    target = [_pair(10, False, False, "Le candidat est-il une PME")]

    both = validate_checkbox_decisions(
        [
            CheckboxDecision(target_index=10, position=0, checked=True),
            CheckboxDecision(target_index=10, position=1, checked=True),
        ],
        reference,
        target,
    )
    inverted = validate_checkbox_decisions(
        [
            CheckboxDecision(target_index=10, position=0, checked=False),
            CheckboxDecision(target_index=10, position=1, checked=True),
        ],
        reference,
        target,
    )
    faithful = validate_checkbox_decisions(
        [
            CheckboxDecision(target_index=10, position=0, checked=True),
            CheckboxDecision(target_index=10, position=1, checked=False),
        ],
        reference,
        target,
    )

    assert any("both Oui and Non are checked" in issue for issue in both)
    assert any("reference answer is Oui" in issue for issue in inverted)
    assert faithful == []


def test_untouched_target_pairs_are_not_judged() -> None:
    reference = [_pair(4, True, False, "Le candidat est-il une PME")]
    target = [_pair(10, True, True, "Le candidat est-il une PME")]

    assert validate_checkbox_decisions([CheckboxDecision(target_index=50, checked=True)], reference, target) == []


def test_one_shared_short_keyword_is_enough() -> None:
    contexts = [TagContext(tag="TVA", label_before="Numéro TVA intracommunautaire :")]
    paragraphs = [TargetParagraph(index=0, text="Identifiant TVA :")]

    assert validate_mapping([_match("TVA", 0)], contexts, paragraphs) == []
