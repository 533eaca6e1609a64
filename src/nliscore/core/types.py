"""Core data contracts: decisions, labeled samples, datasets and progress events."""

from __future__ import annotations

import datetime as dt
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from nliscore.core.defaults import DATASET_DATE_FORMAT, DATASET_VERSION


class Decision(StrEnum):
    """Outcome of the acceptance gate."""

    accept = "accept"
    reject = "reject"


class Difficulty(StrEnum):
    """Annotator-assigned difficulty of a dataset sample."""

    easy = "easy"
    medium = "medium"
    hard = "hard"


class Sample(BaseModel, frozen=True):
    """One labeled dataset record.

    ``expected_labels`` lists every label the annotator expects the
    scorer to detect; ``primary_category`` is the category the sample
    is counted under in per-category accuracy.
    """

    id: str
    text: str
    context: str | None = None
    expected_decision: Decision
    expected_labels: list[str] = Field(default_factory=list)
    primary_category: str
    difficulty: Difficulty = Difficulty.medium
    notes: str | None = None
    metadata: dict[str, Any] | None = None


def _today() -> str:
    return dt.date.today().strftime(DATASET_DATE_FORMAT)


class SampleDataset(BaseModel, frozen=True):
    """A versioned collection of :class:`Sample` records."""

    version: str = DATASET_VERSION
    created: str = Field(default_factory=_today)
    samples: list[Sample] = Field(default_factory=list)

    @field_validator("created")
    @classmethod
    def _created_is_date(cls, v: str) -> str:
        dt.datetime.strptime(v, DATASET_DATE_FORMAT)
        return v

    def __len__(self) -> int:
        return len(self.samples)

    def with_samples(self, samples: list[Sample]) -> SampleDataset:
        """Return a copy carrying *samples* but the same version and date."""
        return self.model_copy(update={"samples": list(samples)})


class Progress(BaseModel, frozen=True):
    """Per-sample progress event emitted by the evaluator."""

    current: int
    total: int
    sample_id: str
    correct: bool
