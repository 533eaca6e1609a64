"""NLI model adapter for zero-shot multi-label classification.

The scorer only depends on the :class:`NliModel` protocol.  The
concrete :class:`TransformersNliModel` wraps a Hugging Face sequence
classification checkpoint trained on MNLI-style data and scores each
``(text, hypothesis)`` pair independently: the entailment probability
is the softmax over the contradiction and entailment logits.

``torch`` and ``transformers`` are imported when a model is loaded, so
the rest of the package works without the ``nli`` extra installed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Protocol, Sequence, runtime_checkable

from nliscore.core.config import ModelConfig
from nliscore.core.exceptions import BadArgumentsError, ModelBuildError

if TYPE_CHECKING:
    import torch

logger = logging.getLogger(__name__)

HypothesisFn = Callable[[str], str]
Prediction = list[tuple[str, float]]


@runtime_checkable
class NliModel(Protocol):
    """Zero-shot classifier contract consumed by the scorer.

    Implementations return, per input text, ``(label, probability)``
    pairs with probabilities in ``[0, 1]``.  Labels may be omitted;
    the scorer treats a missing label as probability ``0.0``.
    """

    def predict_multilabel(
        self,
        texts: Sequence[str],
        labels: Sequence[str],
        hypothesis_fn: HypothesisFn,
        batch_tokens: int,
    ) -> list[Prediction]:
        ...  # pragma: no cover


def _resolve_device(name: str) -> torch.device:
    import torch

    if name != "auto":
        return torch.device(name)
    if torch.backends.mps.is_available():
        return torch.device("mps")
    if torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


def _nli_label_ids(label2id: dict[str, int]) -> tuple[int, int]:
    """Find the ``(contradiction, entailment)`` class indices of an NLI head."""
    entailment = contradiction = None
    for name, idx in label2id.items():
        lowered = name.lower()
        if lowered.startswith("entail"):
            entailment = idx
        elif lowered.startswith("contradict"):
            contradiction = idx
    if entailment is None or contradiction is None:
        raise BadArgumentsError(
            "ScoreLayer requires a ZeroShotClassification model",
            details={"label2id": dict(label2id)},
        )
    return contradiction, entailment


class TransformersNliModel:
    """Hugging Face NLI checkpoint adapted to :class:`NliModel`.

    Args:
        model: A loaded ``AutoModelForSequenceClassification``.
        tokenizer: The matching tokenizer.
        device: Device the model lives on.
    """

    def __init__(self, model: Any, tokenizer: Any, device: torch.device) -> None:
        self._model = model
        self._tokenizer = tokenizer
        self._device = device
        self._contradiction_id, self._entailment_id = _nli_label_ids(model.config.label2id)

    @classmethod
    def load(cls, config: ModelConfig) -> TransformersNliModel:
        """Download (or read from cache) and initialise the checkpoint in *config*."""
        from transformers import AutoModelForSequenceClassification, AutoTokenizer

        logger.info("Loading NLI model: %s", config.name)
        tokenizer = AutoTokenizer.from_pretrained(config.name)
        model = AutoModelForSequenceClassification.from_pretrained(config.name)
        model.eval()

        device = _resolve_device(config.device)
        model.to(device)
        logger.info("NLI model loaded: %s on %s", config.name, device)
        return cls(model, tokenizer, device)

    def predict_multilabel(
        self,
        texts: Sequence[str],
        labels: Sequence[str],
        hypothesis_fn: HypothesisFn,
        batch_tokens: int,
    ) -> list[Prediction]:
        import torch

        if not labels:
            return [[] for _ in texts]
        hypotheses = [hypothesis_fn(label) for label in labels]
        predictions: list[Prediction] = []
        with torch.no_grad():
            for text in texts:
                encoded = self._tokenizer(
                    [text] * len(hypotheses),
                    hypotheses,
                    truncation=True,
                    max_length=batch_tokens,
                    padding=True,
                    return_tensors="pt",
                ).to(self._device)
                logits = self._model(**encoded).logits
                pair = logits[:, [self._contradiction_id, self._entailment_id]]
                entailment = torch.softmax(pair, dim=-1)[:, 1].float().cpu().tolist()
                predictions.append(list(zip(labels, entailment)))
        return predictions


def load_nli_model(config: ModelConfig) -> NliModel:
    """Load the NLI model described by *config*.

    Raises:
        BadArgumentsError: If the checkpoint is not an NLI classifier.
        ModelBuildError: If the checkpoint or its runtime cannot be loaded.
    """
    try:
        return TransformersNliModel.load(config)
    except BadArgumentsError:
        raise
    except ImportError as exc:
        raise ModelBuildError(
            "NLI model support requires the 'nli' extra (torch, transformers)",
            details={"model": config.name},
        ) from exc
    except (OSError, ValueError, RuntimeError) as exc:
        raise ModelBuildError(
            f"Failed to load NLI model {config.name!r}: {exc}",
            details={"model": config.name},
        ) from exc
