"""Dataset validation: duplicate IDs, empty texts, missing and unknown labels.

Validation is pure: it never calls the model and never mutates the
dataset.  Callers decide what to do with the issues via
:func:`apply_validation_policy` (abort in strict mode, filter otherwise).
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from enum import StrEnum

from pydantic import BaseModel

from nliscore.core.exceptions import DatasetValidationError
from nliscore.core.types import Sample, SampleDataset

logger = logging.getLogger(__name__)


class Check(StrEnum):
    DUPLICATE_ID = "duplicate_id"
    EMPTY_TEXT = "empty_text"
    NO_EXPECTED_LABELS = "no_expected_labels"
    UNKNOWN_CATEGORY = "unknown_category"
    UNKNOWN_LABEL = "unknown_label"


class DatasetIssue(BaseModel, frozen=True):
    """One problem found on one sample."""

    sample_id: str
    check: Check
    message: str

    def __str__(self) -> str:
        return f"[{self.sample_id}] {self.message}"


_UNKNOWN_CHECKS: frozenset[Check] = frozenset({Check.UNKNOWN_CATEGORY, Check.UNKNOWN_LABEL})


def validate_dataset(
    dataset: SampleDataset,
    valid_categories: Collection[str] | None = None,
    valid_labels: Collection[str] | None = None,
) -> list[DatasetIssue]:
    """Run every dataset check and return the issues found.

    Args:
        dataset: Dataset to inspect.
        valid_categories: Allowed ``primary_category`` values.  The
            category check is skipped when ``None``.
        valid_labels: Allowed ``expected_labels`` values.  The label
            check is skipped when ``None``.

    Returns:
        Issues in sample order; one issue per unknown label.
    """
    issues: list[DatasetIssue] = []
    seen: set[str] = set()
    for sample in dataset.samples:
        _check_duplicate(sample, seen, issues)
        _check_text(sample, issues)
        _check_expected_labels(sample, issues)
        if valid_categories is not None:
            _check_category(sample, valid_categories, issues)
        if valid_labels is not None:
            _check_labels(sample, valid_labels, issues)
    return issues


def _check_duplicate(sample: Sample, seen: set[str], issues: list[DatasetIssue]) -> None:
    if sample.id in seen:
        issues.append(DatasetIssue(
            sample_id=sample.id, check=Check.DUPLICATE_ID, message="Duplicate sample ID",
        ))
    seen.add(sample.id)


def _check_text(sample: Sample, issues: list[DatasetIssue]) -> None:
    if not sample.text.strip():
        issues.append(DatasetIssue(
            sample_id=sample.id, check=Check.EMPTY_TEXT, message="Empty text",
        ))


def _check_expected_labels(sample: Sample, issues: list[DatasetIssue]) -> None:
    if not sample.expected_labels:
        issues.append(DatasetIssue(
            sample_id=sample.id, check=Check.NO_EXPECTED_LABELS, message="No expected labels",
        ))


def _check_category(
    sample: Sample, valid_categories: Collection[str], issues: list[DatasetIssue],
) -> None:
    if sample.primary_category not in valid_categories:
        issues.append(DatasetIssue(
            sample_id=sample.id,
            check=Check.UNKNOWN_CATEGORY,
            message=f"Invalid category: '{sample.primary_category}'",
        ))


def _check_labels(
    sample: Sample, valid_labels: Collection[str], issues: list[DatasetIssue],
) -> None:
    for label in sample.expected_labels:
        if label not in valid_labels:
            issues.append(DatasetIssue(
                sample_id=sample.id,
                check=Check.UNKNOWN_LABEL,
                message=f"Invalid label: '{label}'",
            ))


def filter_known_samples(
    dataset: SampleDataset,
    valid_categories: Collection[str] | None = None,
    valid_labels: Collection[str] | None = None,
) -> tuple[SampleDataset, int]:
    """Drop samples whose category or any expected label is unknown.

    Returns:
        ``(filtered_dataset, skipped_count)``.
    """
    kept: list[Sample] = []
    for sample in dataset.samples:
        if valid_categories is not None and sample.primary_category not in valid_categories:
            continue
        if valid_labels is not None and any(l not in valid_labels for l in sample.expected_labels):
            continue
        kept.append(sample)
    return dataset.with_samples(kept), len(dataset.samples) - len(kept)


def apply_validation_policy(
    dataset: SampleDataset,
    issues: list[DatasetIssue],
    *,
    strict: bool,
    valid_categories: Collection[str] | None = None,
    valid_labels: Collection[str] | None = None,
) -> tuple[SampleDataset, int]:
    """Abort or filter according to *strict*.

    In strict mode any issue raises.  Otherwise samples with an unknown
    category or label are filtered out and the remaining issues are
    logged; evaluation proceeds with what is left.

    Returns:
        ``(dataset_to_evaluate, skipped_count)``.

    Raises:
        DatasetValidationError: In strict mode when *issues* is non-empty,
            or when filtering leaves no samples.
    """
    if strict:
        if issues:
            raise DatasetValidationError(issues)
        return dataset, 0

    filtered, skipped = filter_known_samples(dataset, valid_categories, valid_labels)
    remaining = [i for i in issues if i.check not in _UNKNOWN_CHECKS]
    for issue in remaining:
        logger.warning("Dataset issue %s", issue)
    if skipped:
        logger.warning("Skipped %d sample(s) with unknown category or labels", skipped)
    if not filtered.samples:
        raise DatasetValidationError(
            issues, "No valid samples remain after filtering unknown categories and labels",
        )
    return filtered, skipped
