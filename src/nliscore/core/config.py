"""Scoring and runtime configuration.

The configuration is a tree of frozen pydantic models.  The root
:class:`RuntimeConfig` carries the evaluation knobs and a
``layers.score`` section holding the :class:`ScoreConfig` that drives
the scorer.

Config files may be JSON, YAML or TOML; all three carry the same
schema.  Environment variables prefixed with ``NLISCORE_`` override
file values: after the prefix a single ``_`` separates path segments
and ``__`` stands for a literal underscore::

    NLISCORE_BATCH__SIZE=32                    -> batch_size = 32
    NLISCORE_LAYERS_SCORE_THRESHOLD=0.8        -> layers.score.threshold = 0.8

Usage::

    from nliscore.core.config import load_config

    cfg = load_config(Path("config.yaml"))
    cfg.layers.score.threshold_of(42)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Iterator, Literal, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from nliscore.core.defaults import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_BATCH_TOKENS,
    DEFAULT_CONCURRENCY,
    DEFAULT_LABEL_THRESHOLD,
    DEFAULT_LABEL_WEIGHT,
    DEFAULT_LONG_TEXT_DELTA,
    DEFAULT_LONG_TEXT_LIMIT,
    DEFAULT_MODEL_DEVICE,
    DEFAULT_MODEL_NAME,
    DEFAULT_PLATT_A,
    DEFAULT_PLATT_B,
    DEFAULT_SCORE_THRESHOLD,
    DEFAULT_SHORT_TEXT_DELTA,
    DEFAULT_SHORT_TEXT_LIMIT,
    DEFAULT_STRICT,
    DEFAULT_TOP_K,
    ENV_PREFIX,
    HYPOTHESIS_FALLBACK_TEMPLATE,
)
from nliscore.core.exceptions import ConfigError
from nliscore.core.store import read_document

logger = logging.getLogger(__name__)

_STRICT_CONFIG = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)


class LabelConfig(BaseModel):
    """Per-label hypothesis, gating and calibration parameters."""

    model_config = _STRICT_CONFIG

    hypothesis: str = Field(min_length=1)
    weight: float = Field(DEFAULT_LABEL_WEIGHT, ge=0.0, le=1.0)
    threshold: float = Field(DEFAULT_LABEL_THRESHOLD, ge=0.0, le=1.0)
    platt_a: float = DEFAULT_PLATT_A
    platt_b: float = DEFAULT_PLATT_B


class CategoryConfig(BaseModel):
    """A named group of labels aggregated by top-k mean.

    ``top_k`` falls back to :attr:`ScoreConfig.top_k` when omitted.
    """

    model_config = _STRICT_CONFIG

    top_k: int | None = Field(None, ge=1)
    labels: dict[str, LabelConfig] = Field(default_factory=dict)


class ModifierConfig(BaseModel):
    """Text-length adjustments to the overall threshold."""

    model_config = _STRICT_CONFIG

    short_text_limit: int = Field(DEFAULT_SHORT_TEXT_LIMIT, ge=1)
    long_text_limit: int = Field(DEFAULT_LONG_TEXT_LIMIT, ge=1)
    short_text_delta: float = Field(DEFAULT_SHORT_TEXT_DELTA, ge=0.0, le=1.0)
    long_text_delta: float = Field(DEFAULT_LONG_TEXT_DELTA, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _limits_ordered(self) -> ModifierConfig:
        if self.short_text_limit >= self.long_text_limit:
            raise ValueError("short_text_limit must be less than long_text_limit")
        return self


class ModelConfig(BaseModel):
    """Which NLI checkpoint to load and how to run it."""

    model_config = _STRICT_CONFIG

    name: str = Field(DEFAULT_MODEL_NAME, min_length=1)
    device: Literal["auto", "cpu", "cuda", "mps"] = DEFAULT_MODEL_DEVICE
    batch_tokens: int = Field(DEFAULT_BATCH_TOKENS, ge=1)


class ScoreConfig(BaseModel):
    """Root of the scoring layer configuration.

    Category and label order is the insertion order of the mappings and
    is the authority for mapping model predictions back to labels.
    """

    model_config = _STRICT_CONFIG

    model: ModelConfig = Field(default_factory=ModelConfig)
    threshold: float = Field(DEFAULT_SCORE_THRESHOLD, ge=0.0, le=1.0)
    top_k: int = Field(DEFAULT_TOP_K, ge=1)
    modifiers: ModifierConfig = Field(default_factory=ModifierConfig)
    categories: dict[str, CategoryConfig] = Field(default_factory=dict)

    def threshold_of(self, text_len: int) -> float:
        """Return the overall threshold adjusted for a text of *text_len* UTF-8 bytes.

        The short branch is inclusive on ``short_text_limit``; the long
        branch is strict on ``long_text_limit``.
        """
        mods = self.modifiers
        if text_len <= mods.short_text_limit:
            return self.threshold - mods.short_text_delta
        if text_len > mods.long_text_limit:
            return self.threshold + mods.long_text_delta
        return self.threshold

    def category(self, name: str) -> CategoryConfig | None:
        return self.categories.get(name)

    def category_names(self) -> list[str]:
        return list(self.categories)

    def category_top_k(self, name: str) -> int:
        category = self.categories[name]
        return category.top_k if category.top_k is not None else self.top_k

    def iter_labels(self) -> Iterator[tuple[str, str, LabelConfig]]:
        """Yield ``(category, label, config)`` in category then label order."""
        for cat_name, category in self.categories.items():
            for label_name, label in category.labels.items():
                yield cat_name, label_name, label

    def label(self, name: str) -> LabelConfig | None:
        """Return the first label called *name* in config order, if any."""
        for _, label_name, label in self.iter_labels():
            if label_name == name:
                return label
        return None

    def label_names(self) -> list[str]:
        """Distinct label names in config order."""
        return list(dict.fromkeys(name for _, name, _ in self.iter_labels()))

    def hypothesis(self, name: str) -> str:
        label = self.label(name)
        if label is None:
            return HYPOTHESIS_FALLBACK_TEMPLATE.format(label=name)
        return label.hypothesis


class LayersConfig(BaseModel):
    model_config = _STRICT_CONFIG

    score: ScoreConfig = Field(default_factory=ScoreConfig)


class RuntimeConfig(BaseModel):
    """Evaluation run settings plus the per-layer configuration.

    ``concurrency`` is accepted and validated but currently has no
    effect: a single model instance serves every batch.
    """

    model_config = _STRICT_CONFIG

    output: Path | None = None
    strict: bool = DEFAULT_STRICT
    concurrency: int = Field(DEFAULT_CONCURRENCY, ge=1)
    batch_size: int = Field(DEFAULT_BATCH_SIZE, ge=1)
    layers: LayersConfig = Field(default_factory=LayersConfig)

    @property
    def score(self) -> ScoreConfig:
        return self.layers.score


# -- build-time checks --------------------------------------------------------


def _unit_range_errors(prefix: str, values: Mapping[str, float]) -> list[str]:
    errors: list[str] = []
    for field, value in values.items():
        if not isinstance(value, (int, float)) or not (0.0 <= value <= 1.0):
            errors.append(f"{prefix}{field} must be a finite number in [0, 1], got {value!r}")
    return errors


def score_config_errors(config: ScoreConfig) -> list[str]:
    """Collect every reason *config* cannot be built into a scorer.

    Pydantic validation already enforces ranges on loaded configs; this
    re-checks them so configs assembled via ``model_construct`` are
    caught too, and adds the structural rules that only apply at build
    time (at least one category, no empty categories, non-empty names).

    Returns:
        Human-readable error messages; empty when the config is buildable.
    """
    mods = config.modifiers
    errors = _unit_range_errors("", {"threshold": config.threshold})
    errors += _unit_range_errors("modifiers.", {
        "short_text_delta": mods.short_text_delta,
        "long_text_delta": mods.long_text_delta,
    })
    if mods.short_text_limit >= mods.long_text_limit:
        errors.append("short_text_limit must be less than long_text_limit")
    if config.top_k < 1:
        errors.append(f"top_k must be at least 1, got {config.top_k}")
    if not config.categories:
        errors.append("At least one category must be configured")

    for cat_name, category in config.categories.items():
        if not cat_name.strip():
            errors.append("Category names must not be empty")
        if category.top_k is not None and category.top_k < 1:
            errors.append(f"Category '{cat_name}': top_k must be at least 1")
        if not category.labels:
            errors.append(f"Category '{cat_name}': at least one label must be configured")
        for label_name, label in category.labels.items():
            prefix = f"Category '{cat_name}', Label '{label_name}': "
            if not label_name.strip():
                errors.append(f"Category '{cat_name}': label names must not be empty")
            if not label.hypothesis:
                errors.append(f"{prefix}hypothesis must not be empty")
            errors += _unit_range_errors(prefix, {
                "weight": label.weight,
                "threshold": label.threshold,
            })
    return errors


def check_buildable(config: ScoreConfig) -> None:
    """Raise :class:`ConfigError` if *config* cannot be built into a scorer."""
    errors = score_config_errors(config)
    if errors:
        raise ConfigError(
            "Invalid score config: " + "; ".join(errors),
            details={"errors": errors},
        )


# -- loading ------------------------------------------------------------------


def _env_key_path(key: str) -> list[str]:
    """Split an env var suffix into config path segments.

    ``_`` separates segments and ``__`` is a literal underscore.
    """
    parts: list[str] = [""]
    for i, chunk in enumerate(key.lower().split("__")):
        if i:
            parts[-1] += "_"
        segments = chunk.split("_")
        parts[-1] += segments[0]
        parts.extend(segments[1:])
    return parts


def _deep_set(doc: dict[str, Any], path: list[str], value: Any) -> None:
    node = doc
    for segment in path[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            child = {}
            node[segment] = child
        node = child
    node[path[-1]] = value


def apply_env_overrides(
    doc: dict[str, Any],
    env: Mapping[str, str],
    prefix: str = ENV_PREFIX,
) -> dict[str, Any]:
    """Merge ``<prefix>*`` variables from *env* into *doc* in place.

    Values are parsed as YAML scalars so ``0.8`` becomes a float and
    ``true`` a bool.

    Returns:
        The updated *doc*.
    """
    for key in sorted(env):
        if not key.startswith(prefix) or len(key) == len(prefix):
            continue
        path = _env_key_path(key[len(prefix):])
        if any(not segment for segment in path):
            logger.warning("Ignoring malformed config override %s", key)
            continue
        try:
            value = yaml.safe_load(env[key])
        except yaml.YAMLError:
            value = env[key]
        _deep_set(doc, path, value)
        logger.debug("Config override %s -> %s", key, ".".join(path))
    return doc


def _as_runtime_document(doc: Any) -> dict[str, Any]:
    if doc is None:
        return {}
    if not isinstance(doc, dict):
        raise ConfigError(f"Config root must be a mapping, got {type(doc).__name__}")
    # A bare score section is accepted as shorthand for layers.score.
    if "categories" in doc and "layers" not in doc:
        return {"layers": {"score": doc}}
    return doc


def parse_config(
    doc: Any,
    env: Mapping[str, str] | None = None,
) -> RuntimeConfig:
    """Validate a decoded config document, applying env overrides first.

    Raises:
        ConfigError: If the document does not validate.
    """
    data = _as_runtime_document(doc)
    if env:
        data = apply_env_overrides(data, env)
    try:
        return RuntimeConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(
            f"Invalid config: {exc}",
            details={"errors": exc.errors(include_url=False)},
        ) from exc


def load_config(
    path: Path,
    env: Mapping[str, str] | None = None,
) -> RuntimeConfig:
    """Load a JSON, YAML or TOML config file.

    Args:
        path: Config file path.  The codec is chosen by suffix.
        env: Environment to read ``NLISCORE_`` overrides from.
            Defaults to :data:`os.environ`.

    Returns:
        The validated runtime config.

    Raises:
        ConfigError: If the file is missing, does not parse, or does
            not validate.
    """
    try:
        doc = read_document(path)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Cannot read config {path}: {exc}") from exc
    config = parse_config(doc, os.environ if env is None else env)
    logger.info(
        "Loaded config from %s (%d categories, %d labels)",
        path,
        len(config.score.categories),
        len(config.score.label_names()),
    )
    return config
