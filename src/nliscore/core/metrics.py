"""Evaluation metrics: per-label counters, precision/recall/F1 and macro averages."""

from __future__ import annotations

from typing import Iterable, Mapping

import pandas as pd
from pydantic import BaseModel


# ---------------------------------------------------------------------------
# Accumulators
# ---------------------------------------------------------------------------


class LabelResult(BaseModel):
    """Running detection counts for one label."""

    expected_count: int = 0
    detected_count: int = 0
    true_positives: int = 0
    false_positives: int = 0
    false_negatives: int = 0


class CategoryResult(BaseModel):
    """Running decision accuracy counts for one primary category."""

    total: int = 0
    correct: int = 0

    def record(self, correct: bool) -> None:
        self.total += 1
        if correct:
            self.correct += 1


def update_label_results(
    per_label: dict[str, LabelResult],
    expected_labels: Iterable[str],
    detected_labels: Iterable[str],
) -> None:
    """Fold one sample's expected and detected labels into *per_label*.

    Every expected label counts once towards ``expected_count`` and is
    either a true positive or a false negative.  Every detected label
    counts once towards ``detected_count`` and is a false positive when
    it was not expected.
    """
    expected = list(expected_labels)
    detected = list(detected_labels)
    expected_set = set(expected)
    detected_set = set(detected)

    for label in expected:
        result = per_label.setdefault(label, LabelResult())
        result.expected_count += 1
        if label in detected_set:
            result.true_positives += 1
        else:
            result.false_negatives += 1

    for label in detected:
        result = per_label.setdefault(label, LabelResult())
        result.detected_count += 1
        if label not in expected_set:
            result.false_positives += 1


# ---------------------------------------------------------------------------
# Derived metrics
# ---------------------------------------------------------------------------


class LabelMetrics(BaseModel, frozen=True):
    precision: float
    recall: float
    f1: float


class CategoryMetrics(BaseModel, frozen=True):
    total: int
    correct: int
    accuracy: float


class EvalMetrics(BaseModel, frozen=True):
    """Overall accuracy plus macro precision/recall/F1 over labels."""

    accuracy: float
    precision: float
    recall: float
    f1: float
    per_category: dict[str, CategoryMetrics]
    per_label: dict[str, LabelMetrics]


def safe_ratio(numerator: float, denominator: float) -> float:
    """Return ``numerator / denominator`` or ``0.0`` when the denominator is zero."""
    return numerator / denominator if denominator else 0.0


def f1_from(precision: float, recall: float) -> float:
    """Harmonic mean of *precision* and *recall*; ``0.0`` when both are zero."""
    total = precision + recall
    return 2 * precision * recall / total if total > 0 else 0.0


def label_metrics(result: LabelResult) -> LabelMetrics:
    """Precision, recall and F1 for one label's counts.

    Args:
        result: Accumulated counts for the label.

    Returns:
        A :class:`LabelMetrics`; each ratio is ``0.0`` when its
        denominator is zero.
    """
    precision = safe_ratio(result.true_positives, result.true_positives + result.false_positives)
    recall = safe_ratio(result.true_positives, result.true_positives + result.false_negatives)
    return LabelMetrics(precision=precision, recall=recall, f1=f1_from(precision, recall))


def macro_average(
    per_label: Mapping[str, LabelResult],
) -> tuple[float, float, float]:
    """Macro precision, recall and F1 over labels with ``expected_count > 0``.

    F1 is computed from the averaged precision and recall, not by
    averaging per-label F1 values.

    Returns:
        ``(precision, recall, f1)``; all ``0.0`` if no label was expected.
    """
    supported = [label_metrics(r) for r in per_label.values() if r.expected_count > 0]
    if not supported:
        return 0.0, 0.0, 0.0
    precision = sum(m.precision for m in supported) / len(supported)
    recall = sum(m.recall for m in supported) / len(supported)
    return precision, recall, f1_from(precision, recall)


def compute_eval_metrics(
    total: int,
    correct: int,
    per_category: Mapping[str, CategoryResult],
    per_label: Mapping[str, LabelResult],
) -> EvalMetrics:
    """Derive every reported metric from evaluation accumulators.

    Args:
        total: Samples evaluated.
        correct: Samples whose decision matched the expected decision.
        per_category: Decision counts keyed by primary category.
        per_label: Detection counts keyed by label.

    Returns:
        A frozen :class:`EvalMetrics`.
    """
    precision, recall, f1 = macro_average(per_label)
    return EvalMetrics(
        accuracy=safe_ratio(correct, total),
        precision=precision,
        recall=recall,
        f1=f1,
        per_category={
            name: CategoryMetrics(
                total=c.total, correct=c.correct, accuracy=safe_ratio(c.correct, c.total),
            )
            for name, c in sorted(per_category.items())
        },
        per_label={name: label_metrics(r) for name, r in sorted(per_label.items())},
    )


def label_metrics_frame(per_label: Mapping[str, LabelResult]) -> pd.DataFrame:
    """Tabulate per-label counts and metrics, one row per label sorted by name.

    Returns:
        DataFrame with columns ``label``, ``expected``, ``detected``,
        ``tp``, ``fp``, ``fn``, ``precision``, ``recall``, ``f1``.
    """
    rows = []
    for name, result in sorted(per_label.items()):
        m = label_metrics(result)
        rows.append({
            "label": name,
            "expected": result.expected_count,
            "detected": result.detected_count,
            "tp": result.true_positives,
            "fp": result.false_positives,
            "fn": result.false_negatives,
            "precision": round(m.precision, 4),
            "recall": round(m.recall, 4),
            "f1": round(m.f1, 4),
        })
    columns = ["label", "expected", "detected", "tp", "fp", "fn", "precision", "recall", "f1"]
    return pd.DataFrame(rows, columns=columns)
