"""Tunable matching parameters loaded from YAML."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class PromptLimits(BaseModel):
    """Caps that keep oracle prompts bounded and their index answers verifiable."""

    model_config = ConfigDict(extra="forbid")

    max_prompt_chars: int = 60000
    max_tag_contexts: int = 40
    max_paragraphs: int = 80
    paragraph_text_chars: int = 80
    label_chars: int = 60
    max_segment_tag_contexts: int = 30
    max_segment_paragraphs: int = 60
    segment_text_chars: int = 60
    max_checkbox_examples: int = 15
    max_pair_examples: int = 5
    max_target_checkboxes: int = 20
    checkbox_context_chars: int = 4000
    correction_match_preview: int = 15


class PatternSettings(BaseModel):
    """Windows and floors of the deterministic cascade."""

    model_config = ConfigDict(extra="forbid")

    score_floor: int = 10
    percent_cell_window: int = 15
    turnover_cell_window: int = 10
    identification_window: int = 5
    identification_colon_window: int = 3
    description_max_chars: int = 150
    candidate_min_score: int = 5


class CheckboxSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pair_window: int = 5
    label_match_min_score: int = 4


class SegmentationSettings(BaseModel):
    """Segmentation decision criteria and segment sizing."""

    model_config = ConfigDict(extra="forbid")

    large_document_chars: int = 50000
    many_tags: int = 10
    distinct_prefixes: int = 3
    min_criteria: int = 2
    min_segment_chars: int = 50
    merge_segment_chars: int = 100
    segment_match_min_score: float = 30.0
    cache_timeout_seconds: float = 30.0


class MatchingSettings(BaseModel):
    """Complete settings tree for one mapping run."""

    model_config = ConfigDict(extra="forbid")

    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_iterations: int = Field(default=3, ge=1)
    coverage_floor: float = 0.3
    semantic_min_keywords: int = 2
    prompt: PromptLimits = Field(default_factory=PromptLimits)
    pattern: PatternSettings = Field(default_factory=PatternSettings)
    checkbox: CheckboxSettings = Field(default_factory=CheckboxSettings)
    segmentation: SegmentationSettings = Field(default_factory=SegmentationSettings)
