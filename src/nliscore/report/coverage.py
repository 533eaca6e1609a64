"""Dataset coverage: how samples spread over decisions, categories and labels."""

from __future__ import annotations

from collections import Counter
from typing import Collection

from pydantic import BaseModel

from nliscore.core.types import Decision, SampleDataset


class CoverageReport(BaseModel, frozen=True):
    """Sample counts per decision, category and label.

    ``missing_labels`` lists configured labels that no sample expects;
    it is empty when the report was built without a label set.
    """

    total_samples: int
    accept_count: int
    reject_count: int
    samples_by_category: dict[str, int]
    samples_by_label: dict[str, int]
    missing_labels: list[str]


def build_coverage_report(
    dataset: SampleDataset,
    all_labels: Collection[str] | None = None,
) -> CoverageReport:
    """Count how well *dataset* covers the decision, category and label space.

    Args:
        dataset: Dataset to inspect.
        all_labels: Configured label names used to find labels with no
            samples.  Skipped when ``None``.

    Returns:
        A :class:`CoverageReport` with counts sorted by name.
    """
    decisions = Counter(s.expected_decision for s in dataset.samples)
    by_category = Counter(s.primary_category for s in dataset.samples)
    by_label = Counter(label for s in dataset.samples for label in s.expected_labels)
    missing = sorted(l for l in (all_labels or ()) if l not in by_label)

    return CoverageReport(
        total_samples=len(dataset.samples),
        accept_count=decisions[Decision.accept],
        reject_count=decisions[Decision.reject],
        samples_by_category=dict(sorted(by_category.items())),
        samples_by_label=dict(sorted(by_label.items())),
        missing_labels=missing,
    )
