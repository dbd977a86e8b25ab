from __future__ import annotations

from tagtransfer.matching.response_parser import (
    extract_json,
    parse_checkbox_decisions,
    parse_oracle_response,
)


def test_extract_json_prefers_fenced_block() -> None:
    text = 'Voici {pas du json}\n```json\n{"tags": []}\n```\nfin'

    assert extract_json(text) == {"tags": []}


def test_extract_json_falls_back_to_outer_braces() -> None:
    assert extract_json('Result: {"matches": [{"tag": "A"}]} done') == {"matches": [{"tag": "A"}]}
    assert extract_json("no json here") is None
    assert extract_json("{broken") is None


def test_parse_oracle_response_reads_tags_and_checkboxes() -> None:
    text = """
    {"tags": [
        {"tag": "SIRET", "targetIdx": 12, "insertionPoint": "table_cell", "confidence": 0.92,
         "reason": "row label"},
        {"tag": "NOM", "targetParagraphIndex": 4, "confidence": 0.75}
     ],
     "checkboxes": [
        {"targetIdx": 20, "pos": 1, "checked": true, "confidence": 0.9},
        {"targetIndex": 21, "shouldBeChecked": false}
     ]}
    """

    parsed = parse_oracle_response(text)

    assert [(match.tag, match.target_index, match.insertion_point) for match in parsed.matches] == [
        ("SIRET", 12, "table_cell"),
        ("NOM", 4, "after_colon"),
    ]
    assert parsed.matches[0].reason == "row label"
    assert [(item.key, item.checked, item.confidence) for item in parsed.decisions] == [
        ((20, 1), True, 0.9),
        ((21, 0), False, 0.8),
    ]


def test_parse_oracle_response_drops_low_confidence_and_malformed_entries() -> None:
    text = """{"matches": [
        {"tag": "LOW", "targetIdx": 1, "confidence": 0.5},
        {"tag": "NEG", "targetIdx": -1},
        {"tag": "FLOAT", "targetIdx": 2.5},
        {"tag": "", "targetIdx": 3},
        {"targetIdx": 3},
        "junk",
        {"tag": "OK", "targetIdx": 7.0}
    ]}"""

    parsed = parse_oracle_response(text)

    assert [(match.tag, match.target_index, match.confidence) for match in parsed.matches] == [("OK", 7, 0.8)]


def test_parse_oracle_response_is_empty_without_json() -> None:
    parsed = parse_oracle_response("Je ne peux pas répondre.")

    assert parsed.is_empty


def test_parse_checkbox_decisions_accepts_decisions_key() -> None:
    decisions = parse_checkbox_decisions('{"decisions": [{"idx": 3, "checked": true, "label": "Oui"}]}')

    assert len(decisions) == 1
    assert decisions[0].key == (3, 0)
    assert decisions[0].label == "Oui"
