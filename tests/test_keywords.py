from __future__ import annotations

from tagtransfer.context.models import ExtractedCheckbox, TagContext, TargetParagraph
from tagtransfer.matching.keywords import (
    best_candidate,
    best_checkbox_match,
    choose_insertion_point,
    extract_keywords,
    is_no_label,
    is_yes_label,
    keyword_score,
    normalize_text,
    shares_keyword,
)


def test_extract_keywords_drops_stopwords_short_words_and_punctuation() -> None:
    assert extract_keywords("Nom commercial et dénomination sociale :") == [
        "nom",
        "commercial",
        "dénomination",
        "sociale",
    ]
    assert extract_keywords("N° : de la") == []


def test_keyword_score_sums_lengths_of_found_keywords() -> None:
    assert keyword_score(["siret", "numéro"], "Numéro SIRET") == 11
    assert keyword_score(["siret"], "Adresse") == 0


def test_shares_keyword_accepts_any_single_hit() -> None:
    assert shares_keyword(["numéro", "tva"], "Identifiant TVA :")
    assert not shares_keyword(["siret"], "Adresse")


def test_normalize_text_folds_typographic_apostrophes() -> None:
    assert normalize_text("Chiffre d’affaires") == "chiffre d'affaires"


def test_choose_insertion_point_by_paragraph_shape() -> None:
    assert choose_insertion_point(TargetParagraph(index=0, text="Nom :")) == "after_colon"
    assert choose_insertion_point(TargetParagraph(index=0, text="12", is_table_cell=True)) == "table_cell"
    assert choose_insertion_point(TargetParagraph(index=0, text="")) == "replace_empty"
    assert choose_insertion_point(TargetParagraph(index=0, text="Nom du gérant")) == "inline"


def test_best_candidate_skips_tagged_and_used_paragraphs() -> None:
    context = TagContext(tag="SIRET", label_before="Numéro SIRET")
    paragraphs = [
        TargetParagraph(index=0, text="Numéro SIRET : {{SIRET}}", has_existing_tag=True),
        TargetParagraph(index=1, text="Numéro SIRET :"),
        TargetParagraph(index=2, text="SIRET de l'établissement :"),
    ]

    assert best_candidate(context, paragraphs).index == 1
    assert best_candidate(context, paragraphs, used={1}).index == 2
    assert best_candidate(TagContext(tag="X", label_before=":"), paragraphs) is None


def test_yes_no_labels() -> None:
    assert is_yes_label("Oui")
    assert is_yes_label("☐ oui, précisez")
    assert is_no_label("Non")
    assert not is_no_label("Nom")
    assert not is_yes_label("Non")


def test_best_checkbox_match_prefers_same_answer_then_label_overlap() -> None:
    targets = [
        ExtractedCheckbox(index=4, checked=False, kind="unicode", label="Non"),
        ExtractedCheckbox(index=4, checked=False, kind="unicode", label="Oui", position=1),
        ExtractedCheckbox(index=7, checked=False, kind="unicode", label="Marché public de travaux"),
    ]
    yes = ExtractedCheckbox(index=1, checked=True, kind="unicode", label="Oui")
    works = ExtractedCheckbox(index=2, checked=True, kind="unicode", label="Travaux")
    other = ExtractedCheckbox(index=3, checked=True, kind="unicode", label="Fournitures")

    assert best_checkbox_match(yes, targets).key == (4, 1)
    assert best_checkbox_match(works, targets).index == 7
    assert best_checkbox_match(other, targets) is None
