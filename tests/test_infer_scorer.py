"""Tests for infer.scorer: building, single-text scoring and batch scoring."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from nliscore.core.config import ScoreConfig
from nliscore.core.exceptions import (
    BadArgumentsError,
    ConfigError,
    ModelFailureError,
    ScoreRejectedError,
)
from nliscore.core.types import Decision
from nliscore.infer.scorer import Scorer


MILK = "I need to buy milk after work today"
MOM = "Remember to call mom on Sunday evening"
HEY = "hey how are you"
REPORT = "Finish the quarterly report before Friday"


class _ShortModel:
    """Returns one prediction fewer than asked for."""

    def predict_multilabel(self, texts: Any, labels: Any, hypothesis_fn: Any, batch_tokens: int) -> list:
        return [[] for _ in list(texts)[1:]]


class _MalformedModel:
    """Returns the given object as every prediction."""

    def __init__(self, prediction: Any) -> None:
        self.prediction = prediction

    def predict_multilabel(self, texts: Any, labels: Any, hypothesis_fn: Any, batch_tokens: int) -> list:
        return [self.prediction for _ in texts]


class TestBuild:
    def test_rejects_unbuildable_config(self, fake_model: Any) -> None:
        with pytest.raises(ConfigError, match="At least one category"):
            Scorer.build(ScoreConfig(), fake_model)
        assert fake_model.calls == []

    def test_rejects_non_model(self, score_config: ScoreConfig) -> None:
        with pytest.raises(BadArgumentsError, match="ZeroShotClassification"):
            Scorer.build(score_config, object())  # type: ignore[arg-type]

    def test_loads_model_when_none_given(
        self, score_config: ScoreConfig, fake_model: Any, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        requested: list[Any] = []

        def _load(cfg: Any) -> Any:
            requested.append(cfg)
            return fake_model

        monkeypatch.setattr("nliscore.infer.scorer.load_nli_model", _load)
        scorer = Scorer.build(score_config)
        assert requested == [score_config.model]
        assert scorer.score(MILK).score == pytest.approx(0.9)

    def test_config_never_loads_model_when_invalid(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def _load(cfg: Any) -> None:
            raise AssertionError("model should not be loaded")

        monkeypatch.setattr("nliscore.infer.scorer.load_nli_model", _load)
        with pytest.raises(ConfigError):
            Scorer.build(ScoreConfig())

    def test_batch_tokens_default_from_config(self, score_config: ScoreConfig, fake_model: Any) -> None:
        assert Scorer.build(score_config, fake_model).batch_tokens == 128
        assert Scorer.build(score_config, fake_model, batch_tokens=64).batch_tokens == 64

    def test_invalid_batch_size(self, score_config: ScoreConfig, fake_model: Any) -> None:
        with pytest.raises(ValueError, match="batch_size"):
            Scorer(score_config, fake_model, batch_size=0)


class TestScore:
    def test_accepts_and_exposes_result(self, score_config: ScoreConfig, fake_model: Any) -> None:
        output = Scorer.build(score_config, fake_model).score(MILK)
        assert output.decision == Decision.accept
        assert output.score == pytest.approx(0.9)
        assert output.effective_threshold == pytest.approx(0.75)
        assert output.raw_scores() == {"todo": 0.9, "reminder": 0.3, "phatic": 0.05}
        assert output.detected_labels() == ["todo", "reminder", "phatic"]

    def test_passes_labels_hypotheses_and_token_budget(
        self, score_config: ScoreConfig, fake_model: Any,
    ) -> None:
        Scorer.build(score_config, fake_model, batch_tokens=96).score(MILK)
        call = fake_model.calls[0]
        assert call["texts"] == [MILK]
        assert call["labels"] == ["todo", "reminder", "phatic"]
        assert call["hypotheses"] == [
            "The speaker needs to do something.",
            "The speaker wants to remember something.",
            "This is small talk.",
        ]
        assert call["batch_tokens"] == 96

    def test_below_threshold_raises(self, score_config: ScoreConfig, fake_model: Any) -> None:
        with pytest.raises(ScoreRejectedError) as excinfo:
            Scorer.build(score_config, fake_model).score(REPORT)
        err = excinfo.value
        assert err.score == pytest.approx(0.7)
        assert err.effective_threshold == pytest.approx(0.75)
        assert not err.vetoed
        assert "less than minimum threshold" in err.message

    def test_phatic_veto_raises(self, score_config: ScoreConfig, fake_model: Any) -> None:
        with pytest.raises(ScoreRejectedError) as excinfo:
            Scorer.build(score_config, fake_model).score(HEY)
        err = excinfo.value
        assert err.vetoed
        assert err.score >= err.effective_threshold
        assert "phatic veto" in err.message

    def test_unknown_text_scores_zero(self, score_config: ScoreConfig, make_model: Callable[..., Any]) -> None:
        with pytest.raises(ScoreRejectedError) as excinfo:
            Scorer.build(score_config, make_model()).score("something else entirely")
        assert excinfo.value.score == 0.0

    def test_model_exception_wrapped(self, score_config: ScoreConfig, make_model: Callable[..., Any]) -> None:
        scorer = Scorer.build(score_config, make_model(fail_on={MILK}))
        with pytest.raises(ModelFailureError, match="inference exploded") as excinfo:
            scorer.score(MILK)
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    def test_prediction_count_mismatch(self, score_config: ScoreConfig) -> None:
        scorer = Scorer.build(score_config, _ShortModel())
        with pytest.raises(ModelFailureError, match="0 prediction"):
            scorer.score(MILK)

    @pytest.mark.parametrize("prediction", [5, [("todo",)], [("todo", 0.5, "extra")]])
    def test_malformed_prediction_wrapped(self, score_config: ScoreConfig, prediction: Any) -> None:
        scorer = Scorer.build(score_config, _MalformedModel(prediction))
        with pytest.raises(ModelFailureError, match="Malformed model output"):
            scorer.score(MILK)


class TestTextLength:
    """The length modifiers count UTF-8 bytes, not characters."""

    def test_short_ascii_text_lowers_threshold(self, score_config: ScoreConfig, fake_model: Any) -> None:
        [output] = Scorer.build(score_config, fake_model).score_batch(["a" * 20])
        assert output.effective_threshold == pytest.approx(0.70)

    def test_multibyte_text_counted_in_bytes(self, score_config: ScoreConfig, fake_model: Any) -> None:
        text = "\u00bfC\u00f3mo est\u00e1s, amigo?"
        assert (len(text), len(text.encode("utf-8"))) == (19, 22)
        [output] = Scorer.build(score_config, fake_model).score_batch([text])
        assert output.effective_threshold == pytest.approx(0.75)

    def test_long_multibyte_text_raises_threshold(self, score_config: ScoreConfig, fake_model: Any) -> None:
        text = "\u00e9" * 150
        [output] = Scorer.build(score_config, fake_model).score_batch([text])
        assert output.effective_threshold == pytest.approx(0.80)


class TestScoreBatch:
    def test_decisions_recorded_not_raised(self, score_config: ScoreConfig, fake_model: Any) -> None:
        outputs = Scorer.build(score_config, fake_model).score_batch([MILK, MOM, HEY, REPORT])
        assert [o.decision for o in outputs] == [
            Decision.accept, Decision.accept, Decision.reject, Decision.reject,
        ]
        assert outputs[2].gate.vetoed
        assert outputs[3].score == pytest.approx(0.7)

    def test_chunks_by_batch_size(self, score_config: ScoreConfig, fake_model: Any) -> None:
        scorer = Scorer.build(score_config, fake_model, batch_size=3)
        outputs = scorer.score_batch([MILK, MOM, HEY, REPORT])
        assert len(outputs) == 4
        assert [c["texts"] for c in fake_model.calls] == [[MILK, MOM, HEY], [REPORT]]

    def test_empty_batch_skips_model(self, score_config: ScoreConfig, fake_model: Any) -> None:
        assert Scorer.build(score_config, fake_model).score_batch([]) == []
        assert fake_model.calls == []

    def test_batch_matches_single_scoring(self, score_config: ScoreConfig, fake_model: Any) -> None:
        scorer = Scorer.build(score_config, fake_model)
        [batch_output] = scorer.score_batch([MOM])
        assert batch_output == scorer.score(MOM)

    def test_failure_propagates(self, score_config: ScoreConfig, make_model: Callable[..., Any]) -> None:
        scorer = Scorer.build(score_config, make_model(fail_on={HEY}))
        with pytest.raises(ModelFailureError):
            scorer.score_batch([MILK, HEY])
