"""Shared fixtures for the nliscore test suite."""

from __future__ import annotations

from typing import Any, Callable, Sequence

import pytest

from nliscore.core.config import ScoreConfig
from nliscore.core.types import SampleDataset


class FakeNliModel:
    """Deterministic stand-in for an NLI model.

    Returns the probabilities in *scores* keyed by text then label;
    labels absent from a text's mapping are omitted from the prediction.
    Texts listed in *fail_on* make the whole call raise.
    """

    def __init__(
        self,
        scores: dict[str, dict[str, float]] | None = None,
        fail_on: set[str] | None = None,
    ) -> None:
        self.scores = scores or {}
        self.fail_on = fail_on or set()
        self.calls: list[dict[str, Any]] = []

    def predict_multilabel(
        self,
        texts: Sequence[str],
        labels: Sequence[str],
        hypothesis_fn: Callable[[str], str],
        batch_tokens: int,
    ) -> list[list[tuple[str, float]]]:
        self.calls.append({
            "texts": list(texts),
            "labels": list(labels),
            "hypotheses": [hypothesis_fn(l) for l in labels],
            "batch_tokens": batch_tokens,
        })
        if any(t in self.fail_on for t in texts):
            raise RuntimeError("inference exploded")
        return [
            [(l, self.scores[t][l]) for l in labels if l in self.scores.get(t, {})]
            for t in texts
        ]


@pytest.fixture()
def score_config_data() -> dict[str, Any]:
    """Two-category score config as it would appear in a config file."""
    return {
        "threshold": 0.75,
        "top_k": 2,
        "modifiers": {
            "short_text_limit": 20,
            "long_text_limit": 200,
            "short_text_delta": 0.05,
            "long_text_delta": 0.05,
        },
        "categories": {
            "task": {
                "top_k": 1,
                "labels": {
                    "todo": {"hypothesis": "The speaker needs to do something.", "weight": 1.0, "threshold": 0.6},
                    "reminder": {"hypothesis": "The speaker wants to remember something.", "weight": 1.0, "threshold": 0.6},
                },
            },
            "context": {
                "top_k": 1,
                "labels": {
                    "phatic": {"hypothesis": "This is small talk.", "weight": 1.0, "threshold": 0.8},
                },
            },
        },
    }


@pytest.fixture()
def score_config(score_config_data: dict[str, Any]) -> ScoreConfig:
    return ScoreConfig.model_validate(score_config_data)


def _sample_row(
    sample_id: str,
    text: str,
    *,
    decision: str = "accept",
    labels: list[str] | None = None,
    category: str = "task",
) -> dict[str, Any]:
    return {
        "id": sample_id,
        "text": text,
        "expected_decision": decision,
        "expected_labels": ["todo"] if labels is None else labels,
        "primary_category": category,
        "difficulty": "easy",
    }


@pytest.fixture()
def make_sample() -> Callable[..., dict[str, Any]]:
    """Factory for dataset sample rows; accepts by default with label ``todo``."""
    return _sample_row


@pytest.fixture()
def dataset_data() -> dict[str, Any]:
    """Four samples: two tasks, one reminder, one small-talk rejection."""
    return {
        "version": "1.0.0",
        "created": "2026-01-15",
        "samples": [
            _sample_row("s1", "I need to buy milk after work today"),
            _sample_row("s2", "Remember to call mom on Sunday evening", labels=["reminder"]),
            _sample_row("s3", "hey how are you", decision="reject", labels=["phatic"], category="context"),
            _sample_row("s4", "Finish the quarterly report before Friday", labels=["todo", "reminder"]),
        ],
    }


@pytest.fixture()
def dataset(dataset_data: dict[str, Any]) -> SampleDataset:
    return SampleDataset.model_validate(dataset_data)


@pytest.fixture()
def fake_scores() -> dict[str, dict[str, float]]:
    """Model probabilities for the texts in :func:`dataset_data`."""
    return {
        "I need to buy milk after work today": {"todo": 0.9, "reminder": 0.3, "phatic": 0.05},
        "Remember to call mom on Sunday evening": {"todo": 0.2, "reminder": 0.85, "phatic": 0.0},
        "hey how are you": {"todo": 0.01, "reminder": 0.0, "phatic": 0.95},
        "Finish the quarterly report before Friday": {"todo": 0.7, "reminder": 0.1},
    }


@pytest.fixture()
def fake_model(fake_scores: dict[str, dict[str, float]]) -> FakeNliModel:
    return FakeNliModel(fake_scores)


@pytest.fixture()
def make_model() -> Callable[..., FakeNliModel]:
    """Factory for fake models with their own scores or failing texts."""
    return FakeNliModel
