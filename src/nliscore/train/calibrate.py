"""Per-label Platt calibration training from exported raw scores.

Provides the training-side logic for label calibration:

* :func:`fit_platt_params`: fits ``(a, b)`` for one label by gradient
  descent on the sigmoid cross-entropy with Platt's smoothed targets.
* :func:`train_platt_params`: runs the fit for every label found in a
  :class:`RawScoreExport`, skipping labels without enough positive and
  negative examples.
* :func:`generate_config_snippet`: renders trained parameters as a YAML
  fragment that can be pasted into a score config.

The step size, iteration count and minimum class size are fixed so
that the same export always yields the same parameters.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from pydantic import BaseModel, Field

from nliscore.core.defaults import (
    PLATT_LEARNING_RATE,
    PLATT_MIN_CLASS_SAMPLES,
    PLATT_NUM_ITERATIONS,
    PLATT_PROB_CLIP,
)
from nliscore.core.store import load, save
from nliscore.infer.calibration import PlattParams

logger = logging.getLogger(__name__)


class SampleScores(BaseModel, frozen=True):
    """Raw model scores for one sample plus its expected labels."""

    id: str
    text: str
    scores: dict[str, float] = Field(default_factory=dict)
    expected_labels: list[str] = Field(default_factory=list)


class RawScoreExport(BaseModel, frozen=True):
    samples: list[SampleScores] = Field(default_factory=list)


class LabelStats(BaseModel, frozen=True):
    positive: int
    negative: int
    skipped: bool


class PlattTrainingMetadata(BaseModel, frozen=True):
    total_samples: int
    samples_per_label: dict[str, LabelStats] = Field(default_factory=dict)


class PlattTrainingResult(BaseModel, frozen=True):
    """Trained parameters per label and the data each fit saw."""

    params: dict[str, PlattParams] = Field(default_factory=dict)
    metadata: PlattTrainingMetadata

    def trained_labels(self) -> list[str]:
        return [name for name, s in self.metadata.samples_per_label.items() if not s.skipped]

    def skipped_labels(self) -> list[str]:
        return [name for name, s in self.metadata.samples_per_label.items() if s.skipped]


def _to_float32(value: float) -> float:
    return float(np.float32(value))


def fit_platt_params(raw_scores: np.ndarray, targets: np.ndarray) -> PlattParams:
    """Fit Platt parameters by batch gradient descent.

    Targets are smoothed to ``(n_pos + 1) / (n_pos + 2)`` for positives
    and ``1 / (n_neg + 2)`` for negatives.  Starting from the identity
    ``(1, 0)``, each iteration steps both parameters against the mean
    cross-entropy gradient with predictions clipped away from 0 and 1.

    Args:
        raw_scores: Raw model probabilities, shape ``(n,)``.
        targets: ``1`` where the label was expected, ``0`` otherwise.

    Returns:
        Fitted parameters rounded to single precision; the identity for
        empty input.
    """
    raw = np.asarray(raw_scores, dtype=np.float64)
    is_pos = np.asarray(targets, dtype=np.float64) > 0.5
    if raw.size == 0:
        return PlattParams()

    n_pos = int(is_pos.sum())
    n_neg = int(raw.size - n_pos)
    t_pos = (n_pos + 1.0) / (n_pos + 2.0)
    t_neg = 1.0 / (n_neg + 2.0)
    corrected = np.where(is_pos, t_pos, t_neg)

    a, b = 1.0, 0.0
    for _ in range(PLATT_NUM_ITERATIONS):
        logits = a * raw + b
        p = np.clip(1.0 / (1.0 + np.exp(-logits)), PLATT_PROB_CLIP, 1.0 - PLATT_PROB_CLIP)
        diff = p - corrected
        grad_a = float(np.mean(diff * raw))
        grad_b = float(np.mean(diff))
        a -= PLATT_LEARNING_RATE * grad_a
        b -= PLATT_LEARNING_RATE * grad_b

    return PlattParams(a=_to_float32(a), b=_to_float32(b))


def train_platt_params(export: RawScoreExport) -> PlattTrainingResult:
    """Train Platt parameters for every label present in *export*.

    Labels are the union of all ``scores`` keys.  A label's training
    pairs come only from samples that carry a score for it.  Labels
    with fewer than the minimum number of positive or negative pairs
    keep the identity and are marked skipped.

    Args:
        export: Raw scores and expected labels per sample.

    Returns:
        Parameters and per-label sample statistics.
    """
    label_names = sorted({name for s in export.samples for name in s.scores})
    params: dict[str, PlattParams] = {}
    stats: dict[str, LabelStats] = {}

    for label in label_names:
        pairs = [
            (s.scores[label], 1.0 if label in s.expected_labels else 0.0)
            for s in export.samples
            if label in s.scores
        ]
        raw = np.array([p[0] for p in pairs], dtype=np.float64)
        targets = np.array([p[1] for p in pairs], dtype=np.float64)
        n_pos = int(targets.sum())
        n_neg = len(pairs) - n_pos

        if n_pos < PLATT_MIN_CLASS_SAMPLES or n_neg < PLATT_MIN_CLASS_SAMPLES:
            logger.info(
                "Skipping %s: insufficient data (%d positive, %d negative)",
                label, n_pos, n_neg,
            )
            params[label] = PlattParams()
            stats[label] = LabelStats(positive=n_pos, negative=n_neg, skipped=True)
            continue

        params[label] = fit_platt_params(raw, targets)
        stats[label] = LabelStats(positive=n_pos, negative=n_neg, skipped=False)
        logger.info(
            "Fitted %s: a=%.4f, b=%.4f (%d positive, %d negative)",
            label, params[label].a, params[label].b, n_pos, n_neg,
        )

    return PlattTrainingResult(
        params=params,
        metadata=PlattTrainingMetadata(
            total_samples=len(export.samples), samples_per_label=stats,
        ),
    )


def generate_config_snippet(result: PlattTrainingResult) -> str:
    """Render trained parameters as a YAML fragment keyed by label.

    Skipped labels are emitted as comments so the snippet can be pasted
    under a category's ``labels`` mapping without overriding them.
    """
    lines = [f"# Platt parameters trained on {result.metadata.total_samples} sample(s)"]
    for label, params in result.params.items():
        stats = result.metadata.samples_per_label.get(label)
        if stats is not None and stats.skipped:
            lines.append(
                f"# {label}: skipped, insufficient data "
                f"({stats.positive} positive, {stats.negative} negative)"
            )
            continue
        lines.append(f"{label}:")
        lines.append(f"  platt_a: {params.a:.4f}")
        lines.append(f"  platt_b: {params.b:.4f}")
    return "\n".join(lines) + "\n"


def save_training_result(result: PlattTrainingResult, path: Path) -> Path:
    return save(path, result)


def load_training_result(path: Path) -> PlattTrainingResult:
    return load(path, PlattTrainingResult)


def load_raw_scores(path: Path) -> RawScoreExport:
    return load(path, RawScoreExport)
