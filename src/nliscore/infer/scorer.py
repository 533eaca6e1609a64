"""The scorer: text in, calibrated :class:`ScoreResult` and gate decision out."""

from __future__ import annotations

import logging
from typing import Sequence

from pydantic import BaseModel

from nliscore.core.config import ScoreConfig, check_buildable
from nliscore.core.defaults import DEFAULT_SCORER_BATCH_SIZE
from nliscore.core.exceptions import BadArgumentsError, ModelFailureError, ScoreRejectedError
from nliscore.core.types import Decision
from nliscore.infer.model import NliModel, load_nli_model
from nliscore.infer.scoring import GateOutcome, ScoreResult, build_score_result, evaluate_gate

logger = logging.getLogger(__name__)


class ScoreOutput(BaseModel, frozen=True):
    """A score result together with the gate decision made on it."""

    result: ScoreResult
    gate: GateOutcome

    @property
    def score(self) -> float:
        return self.result.score

    @property
    def decision(self) -> Decision:
        return self.gate.decision

    @property
    def effective_threshold(self) -> float:
        return self.gate.effective_threshold

    def raw_scores(self) -> dict[str, float]:
        return self.result.raw_scores()

    def detected_labels(self) -> list[str]:
        """Labels the model gave any non-zero probability, in config order."""
        return [name for name, raw in self.raw_scores().items() if raw > 0]


class Scorer:
    """Zero-shot NLI scorer bound to one config and one loaded model.

    Build with :meth:`build`, which validates the config before the
    model is touched.  The instance is stateless apart from the model
    and is not safe for concurrent use; callers that share it across
    threads must serialise access.

    Args:
        config: Validated score config.
        model: Loaded NLI model.
        batch_tokens: Max tokens per ``(text, hypothesis)`` pair.
        batch_size: Max texts per model call on the batch path.
    """

    def __init__(
        self,
        config: ScoreConfig,
        model: NliModel,
        *,
        batch_tokens: int | None = None,
        batch_size: int = DEFAULT_SCORER_BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._config = config
        self._model = model
        self._batch_tokens = batch_tokens or config.model.batch_tokens
        self._batch_size = batch_size
        self._label_names = config.label_names()

    @classmethod
    def build(
        cls,
        config: ScoreConfig,
        model: NliModel | None = None,
        *,
        batch_tokens: int | None = None,
        batch_size: int = DEFAULT_SCORER_BATCH_SIZE,
    ) -> Scorer:
        """Validate *config*, load the model if none is given, and return a scorer.

        Raises:
            ConfigError: If the config cannot be built.
            BadArgumentsError: If *model* is not a zero-shot NLI model.
            ModelBuildError: If the configured model cannot be loaded.
        """
        check_buildable(config)
        if model is None:
            model = load_nli_model(config.model)
        elif not isinstance(model, NliModel):
            raise BadArgumentsError(
                "ScoreLayer requires a ZeroShotClassification model",
                details={"model_type": type(model).__name__},
            )
        logger.info(
            "Built scorer: %d categories, %d labels, threshold=%.2f",
            len(config.categories),
            len(config.label_names()),
            config.threshold,
        )
        return cls(config, model, batch_tokens=batch_tokens, batch_size=batch_size)

    @property
    def config(self) -> ScoreConfig:
        return self._config

    @property
    def batch_tokens(self) -> int:
        return self._batch_tokens

    def _predict(self, texts: Sequence[str]) -> list[dict[str, float]]:
        try:
            predictions = self._model.predict_multilabel(
                list(texts), self._label_names, self._config.hypothesis, self._batch_tokens,
            )
        except Exception as exc:
            raise ModelFailureError(f"Model inference failed: {exc}") from exc
        if len(predictions) != len(texts):
            raise ModelFailureError(
                f"Model returned {len(predictions)} prediction(s) for {len(texts)} text(s)",
            )
        try:
            return [dict(pairs) for pairs in predictions]
        except (TypeError, ValueError) as exc:
            raise ModelFailureError(f"Malformed model output: {exc}") from exc

    def _output(self, text: str, raw: dict[str, float]) -> ScoreOutput:
        result = build_score_result(self._config, raw)
        text_len = len(text.encode("utf-8"))
        return ScoreOutput(result=result, gate=evaluate_gate(result, self._config, text_len))

    def score(self, text: str) -> ScoreOutput:
        """Score one text and apply the acceptance gate.

        Raises:
            ModelFailureError: If inference fails.
            ScoreRejectedError: If the gate rejects the result.
        """
        output = self._output(text, self._predict([text])[0])
        if output.decision == Decision.reject:
            gate = output.gate
            raise ScoreRejectedError(
                gate.score,
                gate.effective_threshold,
                vetoed=gate.vetoed and gate.score >= gate.effective_threshold,
            )
        return output

    def score_batch(self, texts: Sequence[str]) -> list[ScoreOutput]:
        """Score many texts; rejections are recorded on each output, not raised.

        Raises:
            ModelFailureError: If any model call fails.
        """
        outputs: list[ScoreOutput] = []
        for start in range(0, len(texts), self._batch_size):
            chunk = texts[start:start + self._batch_size]
            for text, raw in zip(chunk, self._predict(chunk)):
                outputs.append(self._output(text, raw))
        logger.debug("Scored batch of %d text(s)", len(outputs))
        return outputs
