"""Tests for core.config: defaults, ranges, dynamic threshold, loading and env overrides."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
import yaml
from pydantic import ValidationError

from nliscore.core.config import (
    CategoryConfig,
    LabelConfig,
    ModifierConfig,
    RuntimeConfig,
    ScoreConfig,
    apply_env_overrides,
    check_buildable,
    load_config,
    score_config_errors,
)
from nliscore.core.exceptions import ConfigError


class TestDefaults:
    def test_label_defaults(self) -> None:
        label = LabelConfig(hypothesis="This is a greeting.")
        assert label.weight == 0.50
        assert label.threshold == 0.70
        assert (label.platt_a, label.platt_b) == (1.0, 0.0)

    def test_score_defaults(self) -> None:
        cfg = ScoreConfig()
        assert cfg.threshold == 0.75
        assert cfg.top_k == 2
        assert cfg.modifiers.short_text_limit == 20
        assert cfg.modifiers.long_text_limit == 200
        assert cfg.modifiers.short_text_delta == 0.05
        assert cfg.modifiers.long_text_delta == 0.05
        assert cfg.categories == {}
        assert cfg.model.batch_tokens == 128

    def test_runtime_defaults(self) -> None:
        cfg = RuntimeConfig()
        assert cfg.output is None
        assert cfg.strict is False
        assert cfg.concurrency == 4
        assert cfg.batch_size == 8
        assert cfg.score == ScoreConfig()

    def test_category_top_k_falls_back_to_root(self) -> None:
        cfg = ScoreConfig(
            top_k=3,
            categories={
                "a": CategoryConfig(labels={"x": LabelConfig(hypothesis="x")}),
                "b": CategoryConfig(top_k=1, labels={"y": LabelConfig(hypothesis="y")}),
            },
        )
        assert cfg.category_top_k("a") == 3
        assert cfg.category_top_k("b") == 1


class TestRanges:
    @pytest.mark.parametrize("field", ["weight", "threshold"])
    @pytest.mark.parametrize("value", [-0.01, 1.01, float("nan"), float("inf")])
    def test_label_unit_fields_rejected_out_of_range(self, field: str, value: float) -> None:
        with pytest.raises(ValidationError):
            LabelConfig(hypothesis="h", **{field: value})

    def test_empty_hypothesis_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LabelConfig(hypothesis="")

    def test_non_finite_platt_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LabelConfig(hypothesis="h", platt_a=float("nan"))

    def test_limits_must_be_ordered(self) -> None:
        with pytest.raises(ValidationError, match="short_text_limit must be less than long_text_limit"):
            ModifierConfig(short_text_limit=200, long_text_limit=200)

    def test_limits_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            ModifierConfig(short_text_limit=0)

    def test_top_k_at_least_one(self) -> None:
        with pytest.raises(ValidationError):
            CategoryConfig(top_k=0)

    def test_concurrency_and_batch_size_at_least_one(self) -> None:
        with pytest.raises(ValidationError):
            RuntimeConfig(concurrency=0)
        with pytest.raises(ValidationError):
            RuntimeConfig(batch_size=0)

    def test_unknown_keys_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ScoreConfig.model_validate({"treshold": 0.5})


class TestThresholdOf:
    @pytest.mark.parametrize(
        ("text_len", "expected"),
        [
            (10, 0.70),
            (20, 0.70),
            (21, 0.75),
            (200, 0.75),
            (201, 0.80),
            (250, 0.80),
        ],
    )
    def test_dynamic_threshold_boundaries(self, text_len: int, expected: float) -> None:
        assert ScoreConfig().threshold_of(text_len) == pytest.approx(expected)


class TestLookups:
    def test_label_names_follow_config_order(self, score_config: ScoreConfig) -> None:
        assert score_config.label_names() == ["todo", "reminder", "phatic"]
        assert score_config.category_names() == ["task", "context"]

    def test_label_lookup(self, score_config: ScoreConfig) -> None:
        label = score_config.label("phatic")
        assert label is not None and label.threshold == 0.8
        assert score_config.label("missing") is None

    def test_hypothesis_fallback(self, score_config: ScoreConfig) -> None:
        assert score_config.hypothesis("todo") == "The speaker needs to do something."
        assert score_config.hypothesis("weather") == "This example is weather."


class TestBuildChecks:
    def test_valid_config_has_no_errors(self, score_config: ScoreConfig) -> None:
        assert score_config_errors(score_config) == []
        check_buildable(score_config)

    def test_no_categories(self) -> None:
        with pytest.raises(ConfigError, match="At least one category"):
            check_buildable(ScoreConfig())

    def test_empty_category(self) -> None:
        cfg = ScoreConfig(categories={"empty": CategoryConfig()})
        with pytest.raises(ConfigError, match="Category 'empty': at least one label"):
            check_buildable(cfg)

    def test_empty_names(self) -> None:
        cfg = ScoreConfig(categories={"": CategoryConfig(labels={"": LabelConfig(hypothesis="h")})})
        errors = score_config_errors(cfg)
        assert "Category names must not be empty" in errors
        assert "Category '': label names must not be empty" in errors

    def test_constructed_out_of_range_values_are_caught(self) -> None:
        label = LabelConfig.model_construct(
            hypothesis="h", weight=1.5, threshold=0.7, platt_a=1.0, platt_b=0.0,
        )
        cfg = ScoreConfig(categories={"c": CategoryConfig(labels={"l": label})})
        with pytest.raises(ConfigError) as excinfo:
            check_buildable(cfg)
        assert "Category 'c', Label 'l': weight" in excinfo.value.message
        assert len(excinfo.value.details["errors"]) == 1

    def test_constructed_unordered_limits_are_caught(self, score_config: ScoreConfig) -> None:
        mods = ModifierConfig.model_construct(
            short_text_limit=50, long_text_limit=10, short_text_delta=0.05, long_text_delta=0.05,
        )
        cfg = score_config.model_copy(update={"modifiers": mods})
        assert "short_text_limit must be less than long_text_limit" in score_config_errors(cfg)


class TestLoadConfig:
    @pytest.fixture()
    def runtime_doc(self, score_config_data: dict[str, Any]) -> dict[str, Any]:
        return {"strict": True, "batch_size": 4, "layers": {"score": score_config_data}}

    def test_json_yaml_toml_are_equivalent(self, tmp_path: Path, runtime_doc: dict[str, Any]) -> None:
        json_path = tmp_path / "c.json"
        json_path.write_text(json.dumps(runtime_doc))
        yaml_path = tmp_path / "c.yaml"
        yaml_path.write_text(yaml.safe_dump(runtime_doc, sort_keys=False))
        toml_path = tmp_path / "c.toml"
        toml_path.write_text(
            "strict = true\n"
            "batch_size = 4\n"
            "[layers.score]\nthreshold = 0.75\ntop_k = 2\n"
            "[layers.score.modifiers]\nshort_text_limit = 20\nlong_text_limit = 200\n"
            "short_text_delta = 0.05\nlong_text_delta = 0.05\n"
            "[layers.score.categories.task]\ntop_k = 1\n"
            "[layers.score.categories.task.labels.todo]\n"
            "hypothesis = \"The speaker needs to do something.\"\nweight = 1.0\nthreshold = 0.6\n"
            "[layers.score.categories.task.labels.reminder]\n"
            "hypothesis = \"The speaker wants to remember something.\"\nweight = 1.0\nthreshold = 0.6\n"
            "[layers.score.categories.context]\ntop_k = 1\n"
            "[layers.score.categories.context.labels.phatic]\n"
            "hypothesis = \"This is small talk.\"\nweight = 1.0\nthreshold = 0.8\n"
        )

        from_json = load_config(json_path, env={})
        assert from_json.strict is True
        assert from_json.batch_size == 4
        assert load_config(yaml_path, env={}) == from_json
        assert load_config(toml_path, env={}) == from_json

    def test_bare_score_section(self, tmp_path: Path, score_config_data: dict[str, Any]) -> None:
        path = tmp_path / "score.json"
        path.write_text(json.dumps(score_config_data))
        cfg = load_config(path, env={})
        assert cfg.score.label_names() == ["todo", "reminder", "phatic"]

    def test_env_overrides(self, tmp_path: Path, runtime_doc: dict[str, Any]) -> None:
        path = tmp_path / "c.json"
        path.write_text(json.dumps(runtime_doc))
        env = {
            "NLISCORE_BATCH__SIZE": "32",
            "NLISCORE_LAYERS_SCORE_THRESHOLD": "0.8",
            "NLISCORE_LAYERS_SCORE_MODIFIERS_SHORT__TEXT__LIMIT": "10",
            "OTHER_BATCH__SIZE": "99",
        }
        cfg = load_config(path, env=env)
        assert cfg.batch_size == 32
        assert cfg.score.threshold == 0.8
        assert cfg.score.modifiers.short_text_limit == 10

    def test_env_override_creates_missing_sections(self) -> None:
        doc = apply_env_overrides({}, {"NLISCORE_OUTPUT": "out/dir", "NLISCORE_STRICT": "true"})
        assert doc == {"output": "out/dir", "strict": True}

    def test_invalid_value_raises_config_error(self, tmp_path: Path, runtime_doc: dict[str, Any]) -> None:
        runtime_doc["layers"]["score"]["threshold"] = 1.5
        path = tmp_path / "c.yaml"
        path.write_text(yaml.safe_dump(runtime_doc))
        with pytest.raises(ConfigError, match="Invalid config"):
            load_config(path, env={})

    def test_missing_file_raises_config_error(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Cannot read config"):
            load_config(tmp_path / "nope.yaml", env={})

    def test_unsupported_suffix_raises_config_error(self, tmp_path: Path) -> None:
        path = tmp_path / "c.ini"
        path.write_text("[x]\n")
        with pytest.raises(ConfigError, match="Unsupported file format"):
            load_config(path, env={})

    def test_malformed_yaml_raises_config_error(self, tmp_path: Path) -> None:
        path = tmp_path / "c.yaml"
        path.write_text("layers: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(path, env={})
