"""Score aggregation and the acceptance gate.

Raw per-label entailment probabilities are turned into a
:class:`ScoreResult` in three steps:

1. **Label**: calibrate, then keep ``calibrated * weight`` only when
   the calibrated score clears the label threshold.
2. **Category**: mean of the top-k label scores.
3. **Overall**: max over category scores.

:func:`evaluate_gate` then decides accept/reject from the result, the
config and the input length.  The gate is a pure function of those
three inputs, so it can be re-applied to any stored result.
"""

from __future__ import annotations

from typing import Mapping

from pydantic import BaseModel

from nliscore.core.config import LabelConfig, ScoreConfig
from nliscore.core.defaults import PHATIC_LABEL, PHATIC_THRESHOLD_FLOOR
from nliscore.core.types import Decision
from nliscore.infer.calibration import calibrator_for


class ScoreLabel(BaseModel, frozen=True):
    """Per-label result.

    Attributes:
        raw_score: Model probability before calibration.
        score: Calibrated and weighted score, or ``0.0`` below threshold.
        sentence: Source sentence index (always ``0`` for whole-text input).
    """

    raw_score: float
    score: float
    sentence: int = 0

    @classmethod
    def from_raw(cls, raw: float, label: LabelConfig) -> ScoreLabel:
        calibrated = calibrator_for(label).calibrate(raw)
        score = calibrated * label.weight if calibrated >= label.threshold else 0.0
        return cls(raw_score=raw, score=score)


class ScoreCategory(BaseModel, frozen=True):
    score: float
    labels: dict[str, ScoreLabel]

    @classmethod
    def from_labels(cls, labels: dict[str, ScoreLabel], top_k: int) -> ScoreCategory:
        """Aggregate *labels* as the mean of the ``top_k`` highest scores.

        ``k`` is clamped to ``[1, len(labels)]``; ties keep insertion order.
        """
        if not labels:
            return cls(score=0.0, labels={})
        k = max(min(top_k, len(labels)), 1)
        ranked = sorted((l.score for l in labels.values()), reverse=True)
        return cls(score=sum(ranked[:k]) / k, labels=labels)


class ScoreResult(BaseModel, frozen=True):
    """Overall score plus every category and label result."""

    score: float
    categories: dict[str, ScoreCategory]

    @classmethod
    def from_categories(cls, categories: dict[str, ScoreCategory]) -> ScoreResult:
        score = max((c.score for c in categories.values()), default=0.0)
        return cls(score=score, categories=categories)

    def label(self, name: str) -> ScoreLabel | None:
        """First label called *name* in category order, if any."""
        for category in self.categories.values():
            if name in category.labels:
                return category.labels[name]
        return None

    def label_score(self, name: str) -> float | None:
        label = self.label(name)
        return label.score if label is not None else None

    def raw_scores(self) -> dict[str, float]:
        """Raw model probability per distinct label name, in category order."""
        raw: dict[str, float] = {}
        for category in self.categories.values():
            for name, label in category.labels.items():
                raw.setdefault(name, label.raw_score)
        return raw


def build_score_result(config: ScoreConfig, raw_scores: Mapping[str, float]) -> ScoreResult:
    """Turn raw model probabilities into a :class:`ScoreResult`.

    Args:
        config: Score config supplying weights, thresholds, Platt
            parameters and top-k per category.
        raw_scores: Entailment probability per label name.  Labels
            missing from the mapping score ``0.0``.

    Returns:
        The aggregated result.
    """
    categories: dict[str, ScoreCategory] = {}
    for cat_name, category in config.categories.items():
        labels = {
            name: ScoreLabel.from_raw(float(raw_scores.get(name, 0.0)), label)
            for name, label in category.labels.items()
        }
        categories[cat_name] = ScoreCategory.from_labels(labels, config.category_top_k(cat_name))
    return ScoreResult.from_categories(categories)


# ---------------------------------------------------------------------------
# Acceptance gate
# ---------------------------------------------------------------------------


class GateOutcome(BaseModel, frozen=True):
    """Accept/reject decision with the quantities it was made from."""

    decision: Decision
    score: float
    effective_threshold: float
    phatic_score: float | None = None
    phatic_threshold: float = PHATIC_THRESHOLD_FLOOR
    vetoed: bool = False

    @property
    def accepted(self) -> bool:
        return self.decision == Decision.accept


def phatic_threshold(config: ScoreConfig) -> float:
    """Configured threshold of the ``phatic`` label, else the fixed floor."""
    label = config.label(PHATIC_LABEL)
    return label.threshold if label is not None else PHATIC_THRESHOLD_FLOOR


def evaluate_gate(result: ScoreResult, config: ScoreConfig, text_len: int) -> GateOutcome:
    """Decide whether *result* is accepted.

    Rejects when the overall score is below the length-adjusted
    threshold, or when the weighted ``phatic`` label score reaches the
    phatic threshold.

    Args:
        result: Aggregated score result.
        config: Config the result was produced with.
        text_len: UTF-8 byte length of the scored text.

    Returns:
        The gate outcome.
    """
    effective = config.threshold_of(text_len)
    p_threshold = phatic_threshold(config)
    p_score = result.label_score(PHATIC_LABEL)
    vetoed = p_score is not None and p_score >= p_threshold
    rejected = result.score < effective or vetoed
    return GateOutcome(
        decision=Decision.reject if rejected else Decision.accept,
        score=result.score,
        effective_threshold=effective,
        phatic_score=p_score,
        phatic_threshold=p_threshold,
        vetoed=vetoed,
    )
