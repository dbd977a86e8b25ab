from __future__ import annotations

from pathlib import Path

import pytest

from tagtransfer.config.loader import default_settings_path, load_settings
from tagtransfer.config.models import MatchingSettings


def test_load_default_settings() -> None:
    settings = load_settings()

    assert default_settings_path().name == "settings.yaml"
    assert settings.confidence_threshold == 0.7
    assert settings.max_iterations == 3
    assert settings.pattern.score_floor == 10
    assert settings.checkbox.pair_window == 5
    assert settings == MatchingSettings()


def test_empty_settings_file_gives_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("", encoding="utf-8")

    assert load_settings(path) == MatchingSettings()


def test_partial_settings_override_only_given_values(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("max_iterations: 5\npattern:\n  score_floor: 12\n", encoding="utf-8")

    settings = load_settings(path)

    assert settings.max_iterations == 5
    assert settings.pattern.score_floor == 12
    assert settings.pattern.candidate_min_score == 5


def test_load_settings_raises_for_unknown_key(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("max_iterations: 3\nsatisfaction_target: 90\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid settings schema"):
        load_settings(path)


def test_load_settings_raises_for_out_of_range_threshold(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("confidence_threshold: 1.5\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid settings schema"):
        load_settings(path)


def test_load_settings_raises_for_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")

    with pytest.raises(ValueError, match="must contain a mapping"):
        load_settings(path)


def test_load_settings_raises_for_invalid_yaml(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("pattern: [unclosed\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid YAML"):
        load_settings(path)


def test_load_settings_raises_for_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Settings file not found"):
        load_settings(tmp_path / "missing.yaml")
