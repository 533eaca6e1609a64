"""Exception hierarchy for configuration, dataset and scoring failures."""

from __future__ import annotations

from typing import Any, Sequence


class NliScoreError(Exception):
    """Base exception for all nliscore errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigError(NliScoreError):
    """Config is malformed, out of range, or cannot be built into a scorer."""

    pass


class DatasetValidationError(NliScoreError):
    """Strict-mode evaluation aborted because the dataset has issues.

    Attributes:
        issues: The per-sample issues that caused the abort.
    """

    def __init__(self, issues: Sequence[Any], message: str | None = None) -> None:
        self.issues = list(issues)
        super().__init__(
            message or f"Dataset has {len(self.issues)} validation error(s)",
            details={"issues": [str(i) for i in self.issues]},
        )


class ModelBuildError(NliScoreError):
    """Loading or initializing the NLI model failed."""

    pass


class ScoringError(NliScoreError):
    """Base class for failures raised by a scorer call."""

    pass


class BadArgumentsError(ScoringError):
    """The supplied model cannot serve zero-shot classification."""

    pass


class ModelFailureError(ScoringError):
    """The underlying model raised during inference."""

    pass


class ScoreRejectedError(ScoringError):
    """The acceptance gate rejected a single-text score.

    Attributes:
        score: Overall score of the rejected result.
        effective_threshold: Length-adjusted threshold the score was held to.
        vetoed: ``True`` when the rejection came from the phatic veto.
    """

    def __init__(
        self,
        score: float,
        effective_threshold: float,
        *,
        vetoed: bool = False,
    ) -> None:
        self.score = score
        self.effective_threshold = effective_threshold
        self.vetoed = vetoed
        if vetoed:
            message = f"score {score} rejected by phatic veto"
        else:
            message = f"score {score} is less than minimum threshold {effective_threshold}"
        super().__init__(
            message,
            details={"score": score, "effective_threshold": effective_threshold},
        )
