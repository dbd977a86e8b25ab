"""Parse oracle text into matches and checkbox decisions."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from tagtransfer.context.models import INSERTION_POINTS, CheckboxDecision, MatchResult

logger = logging.getLogger("tagtransfer.agent")

DEFAULT_CONFIDENCE = 0.8
CONFIDENCE_THRESHOLD = 0.7

_FENCE_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


@dataclass
class ParsedResponse:
    matches: list[MatchResult] = field(default_factory=list)
    decisions: list[CheckboxDecision] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.matches and not self.decisions


def extract_json(text: str) -> dict[str, Any] | None:
    """Locate a JSON object in free text: fenced block first, then the outer braces."""

    candidates: list[str] = []
    fenced = _FENCE_RE.search(text)
    if fenced is not None:
        candidates.append(fenced.group(1))
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            return payload
    return None


def parse_oracle_response(text: str, threshold: float = CONFIDENCE_THRESHOLD) -> ParsedResponse:
    """Read `tags|matches` and `checkboxes|checkboxDecisions`; never raises."""

    payload = extract_json(text)
    if payload is None:
        logger.debug("oracle response carried no JSON object")
        return ParsedResponse()

    raw_matches = payload.get("tags", payload.get("matches", []))
    raw_decisions = payload.get("checkboxes", payload.get("checkboxDecisions", []))
    return ParsedResponse(
        matches=_parse_matches(raw_matches, threshold),
        decisions=_parse_decisions(raw_decisions, threshold),
    )


def parse_checkbox_decisions(text: str, threshold: float = CONFIDENCE_THRESHOLD) -> list[CheckboxDecision]:
    payload = extract_json(text)
    if payload is None:
        return []
    raw = payload.get("checkboxes", payload.get("checkboxDecisions", payload.get("decisions", [])))
    return _parse_decisions(raw, threshold)


def _parse_matches(raw: Any, threshold: float) -> list[MatchResult]:
    if not isinstance(raw, list):
        return []

    matches: list[MatchResult] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        tag = entry.get("tag")
        index = _first_present(entry, "targetIdx", "targetParagraphIndex")
        if not isinstance(tag, str) or not tag or not _is_index(index):
            continue
        confidence = _confidence(entry.get("confidence"))
        if confidence < threshold:
            continue
        insertion_point = entry.get("insertionPoint")
        if insertion_point not in INSERTION_POINTS:
            insertion_point = "after_colon"
        reason = entry.get("reason")
        matches.append(
            MatchResult(
                tag=tag,
                target_index=int(index),
                confidence=confidence,
                insertion_point=insertion_point,
                reason=reason if isinstance(reason, str) else None,
            )
        )
    return matches


def _parse_decisions(raw: Any, threshold: float) -> list[CheckboxDecision]:
    if not isinstance(raw, list):
        return []

    decisions: list[CheckboxDecision] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        index = _first_present(entry, "targetIdx", "targetIndex", "idx")
        checked = _first_present(entry, "checked", "shouldBeChecked")
        if not _is_index(index) or not isinstance(checked, bool):
            continue
        confidence = _confidence(entry.get("confidence"))
        if confidence < threshold:
            continue
        position = _first_present(entry, "pos", "position")
        reason = entry.get("reason")
        label = entry.get("label")
        decisions.append(
            CheckboxDecision(
                target_index=int(index),
                checked=checked,
                confidence=confidence,
                label=label if isinstance(label, str) else "",
                position=int(position) if _is_index(position) else 0,
                reason=reason if isinstance(reason, str) else None,
            )
        )
    return decisions


def _first_present(entry: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in entry:
            return entry[key]
    return None


def _is_index(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return value >= 0 and float(value).is_integer()


def _confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    return max(0.0, min(float(value), 1.0))
