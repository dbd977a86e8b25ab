from __future__ import annotations

from tagtransfer.context.models import TablePosition, TagContext, TargetParagraph
from tagtransfer.matching.pattern_matcher import pattern_based_matching, patterns_for_tag


def _paragraph(index: int, text: str, *, section: str | None = None, cell: bool = False) -> TargetParagraph:
    return TargetParagraph(
        index=index,
        text=text,
        section=section,
        is_table_cell=cell,
        table_position=TablePosition(0, index, 0) if cell else None,
    )


def _context(tag: str, label: str = "", *, type_: str = "text") -> TagContext:
    return TagContext(tag=tag, label_before=label, type=type_)  # type: ignore[arg-type]


def _by_tag(matches):
    return {match.tag: match for match in matches}


def test_siret_goes_into_empty_paragraph_after_its_label() -> None:
    paragraphs = [
        _paragraph(0, "C - Identification du candidat", section="C"),
        _paragraph(1, "Numéro SIRET :", section="C"),
        _paragraph(2, "", section="C"),
        _paragraph(3, "Forme juridique :", section="C"),
    ]

    matches = _by_tag(pattern_based_matching([_context("SIRET", "Numéro SIRET")], paragraphs))

    assert matches["SIRET"].target_index == 2
    assert matches["SIRET"].insertion_point == "replace_empty"
    assert matches["SIRET"].confidence == 0.85


def test_identification_label_with_text_after_uses_colon() -> None:
    paragraphs = [
        _paragraph(0, "Adresse électronique :"),
        _paragraph(1, "Les échanges se feront par courrier."),
    ]

    matches = _by_tag(pattern_based_matching([_context("EMAIL", "Adresse électronique")], paragraphs))

    assert matches["EMAIL"].target_index == 0
    assert matches["EMAIL"].insertion_point == "after_colon"


def test_exercise_date_pair_shares_one_row() -> None:
    paragraphs = [
        _paragraph(0, "Chiffres clés"),
        _paragraph(1, "Exercice du ............ au ............", cell=True),
    ]
    contexts = [_context("CA_N_DEBUT", "Exercice du"), _context("CA_N_FIN", "au")]

    matches = _by_tag(pattern_based_matching(contexts, paragraphs))

    assert matches["CA_N_DEBUT"].target_index == 1
    assert matches["CA_N_FIN"].target_index == 1
    assert {match.insertion_point for match in matches.values()} == {"table_cell"}
    assert matches["CA_N_DEBUT"].confidence == 0.95


def test_turnover_columns_and_percentage_cells() -> None:
    paragraphs = [
        _paragraph(10, "Chiffre d'affaires global", cell=True),
        _paragraph(11, "", cell=True),
        _paragraph(12, "", cell=True),
        _paragraph(13, "", cell=True),
        _paragraph(14, "Part du chiffre d'affaires concerné par le marché", cell=True),
        _paragraph(15, "%", cell=True),
        _paragraph(16, "%", cell=True),
        _paragraph(17, "%", cell=True),
    ]
    contexts = [
        _context(tag, "Chiffre d'affaires global", type_="table_cell")
        for tag in ("CA_N", "CA_N1", "CA_N2", "PART_CA_N", "PART_CA_N1", "PART_CA_N2")
    ]

    matches = _by_tag(pattern_based_matching(contexts, paragraphs))

    assert [matches[tag].target_index for tag in ("CA_N", "CA_N1", "CA_N2")] == [11, 12, 13]
    assert [matches[tag].target_index for tag in ("PART_CA_N", "PART_CA_N1", "PART_CA_N2")] == [15, 16, 17]
    assert {matches[tag].confidence for tag in matches} == {0.90}


def test_remaining_tags_use_keyword_patterns_with_floor() -> None:
    paragraphs = [
        _paragraph(0, "Forme juridique :"),
        _paragraph(1, "Texte libre sans rapport"),
    ]
    contexts = [_context("FORME_JURIDIQUE", "Forme juridique"), _context("ZZZ", "")]

    matches = _by_tag(pattern_based_matching(contexts, paragraphs))

    assert set(matches) == {"FORME_JURIDIQUE"}
    assert matches["FORME_JURIDIQUE"].insertion_point == "after_colon"
    assert matches["FORME_JURIDIQUE"].confidence == 13 / 20


def test_pattern_matching_is_deterministic_and_never_reuses_paragraphs() -> None:
    paragraphs = [
        _paragraph(0, "Numéro SIRET :"),
        _paragraph(1, ""),
        _paragraph(2, "Adresse électronique :"),
        _paragraph(3, "Numéros de téléphone :"),
        _paragraph(4, "Forme juridique :"),
    ]
    contexts = [
        _context("SIRET", "Numéro SIRET"),
        _context("EMAIL", "Adresse électronique"),
        _context("TELEPHONE", "Numéros de téléphone"),
        _context("FORME_JURIDIQUE", "Forme juridique"),
    ]

    first = pattern_based_matching(contexts, paragraphs)
    second = pattern_based_matching(contexts, paragraphs)

    assert first == second
    indices = [match.target_index for match in first]
    assert len(indices) == len(set(indices))
    assert {match.tag for match in first} == {"SIRET", "EMAIL", "TELEPHONE", "FORME_JURIDIQUE"}


def test_patterns_for_tag_collects_every_matching_key() -> None:
    patterns = patterns_for_tag("ADRESSE_SIEGE")

    assert "adresse postale" in patterns
    assert "adresse du siège" in patterns
    assert patterns_for_tag("UNKNOWN") == []
