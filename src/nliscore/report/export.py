"""Evaluation export: hierarchical score report, results summary, and CSV tables."""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd
from pydantic import BaseModel

from nliscore.core.metrics import (
    EvalMetrics,
    LabelResult,
    label_metrics,
    safe_ratio,
    update_label_results,
)
from nliscore.core.store import save, write_text_atomic
from nliscore.core.types import Decision, Sample, SampleDataset
from nliscore.train.evaluate import EvalResult, RawScoreMap, SampleResult

logger = logging.getLogger(__name__)


class LabelExport(BaseModel, frozen=True):
    name: str
    expected_count: int
    detected_count: int
    true_positives: int
    false_positives: int
    false_negatives: int
    precision: float
    recall: float
    f1: float


class SampleExport(BaseModel, frozen=True):
    id: str
    text: str
    score: float
    raw_scores: dict[str, float]
    expected_decision: Decision
    actual_decision: Decision
    correct: bool
    expected_labels: list[str]
    detected_labels: list[str]


class CategoryExport(BaseModel, frozen=True):
    """One primary category: its accuracy, scoped label stats and samples."""

    name: str
    total: int
    correct: int
    accuracy: float
    labels: list[LabelExport]
    samples: list[SampleExport]


class ScoreExport(BaseModel, frozen=True):
    """Top-level hierarchical score export."""

    total: int
    correct: int
    accuracy: float
    precision: float
    recall: float
    f1: float
    categories: list[CategoryExport]


class EvalReport(BaseModel, frozen=True):
    """Summary metrics plus the full per-sample evaluation outcome."""

    metrics: EvalMetrics
    elapsed_ms: float
    throughput: float
    sample_results: list[SampleResult]


def _label_exports(per_label: dict[str, LabelResult]) -> list[LabelExport]:
    exports = []
    for name, counts in sorted(per_label.items()):
        m = label_metrics(counts)
        exports.append(LabelExport(
            name=name,
            expected_count=counts.expected_count,
            detected_count=counts.detected_count,
            true_positives=counts.true_positives,
            false_positives=counts.false_positives,
            false_negatives=counts.false_negatives,
            precision=m.precision,
            recall=m.recall,
            f1=m.f1,
        ))
    return exports


def build_score_export(
    dataset: SampleDataset,
    result: EvalResult,
    raw_scores: RawScoreMap,
) -> ScoreExport:
    """Assemble the hierarchical export from an evaluation run.

    Samples are grouped by ``primary_category``.  Each category's label
    summary is recomputed from that category's samples only.
    Categories and labels are sorted by name; samples keep dataset order.

    Args:
        dataset: The dataset that was evaluated (after any filtering).
        result: Evaluation result, whose ``sample_results`` align with
            ``dataset.samples``.
        raw_scores: Raw label scores keyed by sample ID.

    Returns:
        The export model.

    Raises:
        ValueError: If *result* does not align with *dataset*.
    """
    if len(dataset.samples) != len(result.sample_results):
        raise ValueError(
            f"Evaluation result has {len(result.sample_results)} sample(s) "
            f"but dataset has {len(dataset.samples)}"
        )

    grouped: dict[str, list[tuple[Sample, SampleResult]]] = {}
    for sample, sample_result in zip(dataset.samples, result.sample_results):
        if sample.id != sample_result.id:
            raise ValueError(f"Sample order mismatch: {sample.id!r} vs {sample_result.id!r}")
        grouped.setdefault(sample.primary_category, []).append((sample, sample_result))

    categories: list[CategoryExport] = []
    for name in sorted(grouped):
        members = grouped[name]
        per_label: dict[str, LabelResult] = {}
        samples: list[SampleExport] = []
        for sample, sr in members:
            update_label_results(per_label, sr.expected_labels, sr.detected_labels)
            samples.append(SampleExport(
                id=sample.id,
                text=sample.text,
                score=sr.score,
                raw_scores=raw_scores.get(sample.id, {}),
                expected_decision=sr.expected_decision,
                actual_decision=sr.actual_decision,
                correct=sr.correct,
                expected_labels=sr.expected_labels,
                detected_labels=sr.detected_labels,
            ))
        correct = sum(1 for _, sr in members if sr.correct)
        categories.append(CategoryExport(
            name=name,
            total=len(members),
            correct=correct,
            accuracy=safe_ratio(correct, len(members)),
            labels=_label_exports(per_label),
            samples=samples,
        ))

    metrics = result.metrics()
    return ScoreExport(
        total=result.total,
        correct=result.correct,
        accuracy=metrics.accuracy,
        precision=metrics.precision,
        recall=metrics.recall,
        f1=metrics.f1,
        categories=categories,
    )


def build_eval_report(result: EvalResult) -> EvalReport:
    return EvalReport(
        metrics=result.metrics(),
        elapsed_ms=result.elapsed_ms,
        throughput=result.throughput,
        sample_results=result.sample_results,
    )


def export_score_json(export: ScoreExport, path: Path) -> Path:
    """Write the hierarchical export to *path* as indented JSON.

    Returns:
        The *path* that was written.
    """
    save(path, export)
    logger.info("Wrote score export for %d sample(s) to %s", export.total, path)
    return path


def export_eval_report_json(report: EvalReport, path: Path) -> Path:
    save(path, report)
    logger.info("Wrote evaluation results to %s", path)
    return path


def label_summary_frame(export: ScoreExport) -> pd.DataFrame:
    """Flatten the per-category label summaries into one row per ``(category, label)``."""
    rows = [
        {"category": category.name, **label.model_dump()}
        for category in export.categories
        for label in category.labels
    ]
    columns = ["category", *LabelExport.model_fields]
    return pd.DataFrame(rows, columns=columns).rename(columns={"name": "label"})


def export_label_summary_csv(export: ScoreExport, path: Path) -> Path:
    """Write the per-category label summaries as a flat CSV.

    Columns: ``category``, ``label``, the detection counts, and
    ``precision``/``recall``/``f1``.

    Returns:
        The *path* that was written.
    """
    write_text_atomic(path, label_summary_frame(export).to_csv(index=False))
    return path
