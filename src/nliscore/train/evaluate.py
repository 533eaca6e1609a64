"""Batched dataset evaluation against a shared scorer.

The evaluator walks a dataset in fixed-size windows.  Each window is
scored in a worker thread via :func:`asyncio.to_thread`; the thread
takes the scorer's lock, runs :meth:`Scorer.score_batch`, and releases
it before control returns to the event loop, so the lock is never held
across an ``await``.  Windows are submitted one at a time and results
are folded into the accumulators in dataset order.

A window whose model call fails is not fatal: every sample in it is
recorded as rejected with score ``0.0`` and no detected labels.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import AsyncIterator, Callable, Sequence

from pydantic import BaseModel, Field

from nliscore.core.config import ScoreConfig
from nliscore.core.exceptions import ScoringError
from nliscore.core.metrics import (
    CategoryResult,
    EvalMetrics,
    LabelResult,
    compute_eval_metrics,
    update_label_results,
)
from nliscore.core.types import Decision, Progress, Sample, SampleDataset
from nliscore.infer.scorer import Scorer, ScoreOutput
from nliscore.train.calibrate import RawScoreExport, SampleScores

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Progress], None]
RawScoreMap = dict[str, dict[str, float]]


class SampleResult(BaseModel, frozen=True):
    """Outcome of evaluating one sample."""

    id: str
    expected_decision: Decision
    actual_decision: Decision
    correct: bool
    score: float
    expected_labels: list[str]
    detected_labels: list[str]


class EvalResult(BaseModel):
    """Accumulated evaluation outcome over a dataset."""

    total: int = 0
    correct: int = 0
    per_category: dict[str, CategoryResult] = Field(default_factory=dict)
    per_label: dict[str, LabelResult] = Field(default_factory=dict)
    sample_results: list[SampleResult] = Field(default_factory=list)
    elapsed_ms: float = 0.0
    throughput: float = 0.0

    def record(
        self,
        sample: Sample,
        actual_decision: Decision,
        score: float,
        detected_labels: list[str],
    ) -> SampleResult:
        """Fold one sample's outcome into every accumulator."""
        correct = actual_decision == sample.expected_decision
        sample_result = SampleResult(
            id=sample.id,
            expected_decision=sample.expected_decision,
            actual_decision=actual_decision,
            correct=correct,
            score=score,
            expected_labels=list(sample.expected_labels),
            detected_labels=list(detected_labels),
        )
        self.total += 1
        if correct:
            self.correct += 1
        self.per_category.setdefault(sample.primary_category, CategoryResult()).record(correct)
        update_label_results(self.per_label, sample.expected_labels, detected_labels)
        self.sample_results.append(sample_result)
        return sample_result

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0

    def metrics(self) -> EvalMetrics:
        return compute_eval_metrics(self.total, self.correct, self.per_category, self.per_label)

    def misclassified(self, limit: int | None = None) -> list[SampleResult]:
        wrong = [r for r in self.sample_results if not r.correct]
        return wrong if limit is None else wrong[:limit]


class SharedScorer:
    """A :class:`Scorer` behind an exclusive lock, shareable across threads."""

    def __init__(self, scorer: Scorer) -> None:
        self._scorer = scorer
        self._lock = threading.Lock()

    @property
    def config(self) -> ScoreConfig:
        return self._scorer.config

    def score_batch(self, texts: Sequence[str]) -> list[ScoreOutput]:
        with self._lock:
            return self._scorer.score_batch(texts)


def _shared(scorer: Scorer | SharedScorer) -> SharedScorer:
    return scorer if isinstance(scorer, SharedScorer) else SharedScorer(scorer)


async def _iter_batches(
    shared: SharedScorer,
    samples: list[Sample],
    batch_size: int,
) -> AsyncIterator[tuple[list[Sample], list[ScoreOutput] | None]]:
    """Yield each window with its outputs, or ``None`` if its model call failed."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    for start in range(0, len(samples), batch_size):
        batch = samples[start:start + batch_size]
        texts = [s.text for s in batch]
        try:
            outputs = await asyncio.to_thread(shared.score_batch, texts)
        except ScoringError as exc:
            logger.warning(
                "Batch %d-%d failed, recording %d sample(s) as rejected: %s",
                start, start + len(batch) - 1, len(batch), exc,
            )
            outputs = None
        yield batch, outputs


def _finish_timing(result: EvalResult, started: float) -> None:
    elapsed = time.perf_counter() - started
    result.elapsed_ms = elapsed * 1000.0
    result.throughput = result.total / elapsed if elapsed > 0 else 0.0


async def evaluate_with_scores(
    scorer: Scorer | SharedScorer,
    dataset: SampleDataset,
    batch_size: int,
    on_progress: ProgressCallback | None = None,
) -> tuple[EvalResult, RawScoreMap]:
    """Evaluate *dataset* and also return each sample's raw label scores.

    Args:
        scorer: Scorer to run; wrapped in a :class:`SharedScorer` if needed.
        dataset: Samples to evaluate.
        batch_size: Samples per model call window.
        on_progress: Called after every sample, in dataset order.

    Returns:
        ``(result, raw_scores)`` where *raw_scores* maps sample ID to
        ``{label: raw_probability}``; samples from failed windows map to
        an empty dict.
    """
    shared = _shared(scorer)
    samples = list(dataset.samples)
    result = EvalResult()
    raw_scores: RawScoreMap = {}
    started = time.perf_counter()
    logger.info("Evaluation started: %d sample(s), batch_size=%d", len(samples), batch_size)

    async for batch, outputs in _iter_batches(shared, samples, batch_size):
        for i, sample in enumerate(batch):
            if outputs is None:
                sample_result = result.record(sample, Decision.reject, 0.0, [])
                raw_scores[sample.id] = {}
            else:
                output = outputs[i]
                sample_result = result.record(
                    sample, output.decision, output.score, output.detected_labels(),
                )
                raw_scores[sample.id] = output.raw_scores()
            if on_progress is not None:
                on_progress(Progress(
                    current=result.total,
                    total=len(samples),
                    sample_id=sample.id,
                    correct=sample_result.correct,
                ))

    _finish_timing(result, started)
    logger.info(
        "Evaluation complete: %d/%d correct (%.1f%%) in %.0f ms (%.1f samples/s)",
        result.correct, result.total, result.accuracy * 100, result.elapsed_ms, result.throughput,
    )
    return result, raw_scores


async def evaluate(
    scorer: Scorer | SharedScorer,
    dataset: SampleDataset,
    batch_size: int,
    on_progress: ProgressCallback | None = None,
) -> EvalResult:
    """Evaluate *dataset*; see :func:`evaluate_with_scores`."""
    result, _ = await evaluate_with_scores(scorer, dataset, batch_size, on_progress)
    return result


async def export_scores(
    scorer: Scorer | SharedScorer,
    dataset: SampleDataset,
    batch_size: int,
    on_progress: ProgressCallback | None = None,
) -> RawScoreExport:
    """Collect raw label scores for every sample as calibration training input.

    No decisions are evaluated; progress events always report
    ``correct=True``.  Samples from failed windows get empty scores.
    """
    shared = _shared(scorer)
    samples = list(dataset.samples)
    exported: list[SampleScores] = []
    logger.info("Raw score export started: %d sample(s), batch_size=%d", len(samples), batch_size)

    async for batch, outputs in _iter_batches(shared, samples, batch_size):
        for i, sample in enumerate(batch):
            exported.append(SampleScores(
                id=sample.id,
                text=sample.text,
                scores=outputs[i].raw_scores() if outputs is not None else {},
                expected_labels=list(sample.expected_labels),
            ))
            if on_progress is not None:
                on_progress(Progress(
                    current=len(exported), total=len(samples), sample_id=sample.id, correct=True,
                ))

    logger.info("Raw score export complete: %d sample(s)", len(exported))
    return RawScoreExport(samples=exported)


# -- synchronous entry points --------------------------------------------------


def run_evaluation(
    scorer: Scorer | SharedScorer,
    dataset: SampleDataset,
    batch_size: int,
    on_progress: ProgressCallback | None = None,
) -> EvalResult:
    return asyncio.run(evaluate(scorer, dataset, batch_size, on_progress))


def run_evaluation_with_scores(
    scorer: Scorer | SharedScorer,
    dataset: SampleDataset,
    batch_size: int,
    on_progress: ProgressCallback | None = None,
) -> tuple[EvalResult, RawScoreMap]:
    return asyncio.run(evaluate_with_scores(scorer, dataset, batch_size, on_progress))


def run_export(
    scorer: Scorer | SharedScorer,
    dataset: SampleDataset,
    batch_size: int,
    on_progress: ProgressCallback | None = None,
) -> RawScoreExport:
    return asyncio.run(export_scores(scorer, dataset, batch_size, on_progress))
