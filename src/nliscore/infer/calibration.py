"""Per-label Platt calibration of raw NLI entailment probabilities.

Provides a ``Calibrator`` protocol and concrete implementations:

* :class:`IdentityCalibrator`: no-op pass-through for ``(a, b) == (1, 0)``.
* :class:`PlattCalibrator`: ``1 / (1 + exp(-(a * raw + b)))``.

Trained parameters are fed back into a :class:`ScoreConfig` with
:func:`apply_platt_params`.
"""

from __future__ import annotations

import logging
import math
from typing import Mapping, Protocol, runtime_checkable

from pydantic import BaseModel

from nliscore.core.config import LabelConfig, ScoreConfig
from nliscore.core.defaults import DEFAULT_PLATT_A, DEFAULT_PLATT_B, PLATT_IDENTITY_EPSILON

logger = logging.getLogger(__name__)


class PlattParams(BaseModel, frozen=True):
    """Sigmoid calibration parameters.  The defaults are the identity."""

    a: float = DEFAULT_PLATT_A
    b: float = DEFAULT_PLATT_B

    @property
    def is_identity(self) -> bool:
        return is_identity(self.a, self.b)


def is_identity(a: float, b: float, eps: float = PLATT_IDENTITY_EPSILON) -> bool:
    """``True`` when ``(a, b)`` equals ``(1.0, 0.0)`` within *eps*."""
    return abs(a - 1.0) < eps and abs(b) < eps


def sigmoid(z: float) -> float:
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    e = math.exp(z)
    return e / (1.0 + e)


def platt_scale(raw: float, a: float, b: float) -> float:
    """Calibrate *raw* with Platt parameters.

    Identity parameters return *raw* unchanged; anything else maps
    through ``1 / (1 + exp(-(a * raw + b)))``.
    """
    if is_identity(a, b):
        return raw
    return sigmoid(a * raw + b)


@runtime_checkable
class Calibrator(Protocol):
    """Minimal contract for a per-label score calibrator.

    Implementations must be deterministic and map ``[0, 1]`` into ``[0, 1]``.
    """

    def calibrate(self, raw: float) -> float:
        ...  # pragma: no cover


class IdentityCalibrator:
    """No-op calibrator that returns raw scores unchanged."""

    def calibrate(self, raw: float) -> float:
        return raw


class PlattCalibrator:
    """Two-parameter sigmoid calibrator.

    Args:
        a: Slope applied to the raw score.
        b: Offset added before the sigmoid.
    """

    def __init__(self, a: float = DEFAULT_PLATT_A, b: float = DEFAULT_PLATT_B) -> None:
        if not (math.isfinite(a) and math.isfinite(b)):
            raise ValueError(f"Platt parameters must be finite, got a={a}, b={b}")
        self.a = a
        self.b = b

    def calibrate(self, raw: float) -> float:
        return platt_scale(raw, self.a, self.b)


def calibrator_for(label: LabelConfig) -> Calibrator:
    """Pick the calibrator for a label's configured Platt parameters."""
    if is_identity(label.platt_a, label.platt_b):
        return IdentityCalibrator()
    return PlattCalibrator(label.platt_a, label.platt_b)


def apply_platt_params(
    config: ScoreConfig,
    params: Mapping[str, PlattParams],
) -> ScoreConfig:
    """Return a copy of *config* with ``platt_a``/``platt_b`` replaced from *params*.

    Labels missing from *params* keep their current parameters.  A label
    name shared by several categories is updated in every one of them.

    Args:
        config: Score config to update.
        params: Trained parameters keyed by label name.

    Returns:
        A new validated :class:`ScoreConfig`.
    """
    data = config.model_dump()
    updated = 0
    for category in data["categories"].values():
        for name, label in category["labels"].items():
            if name in params:
                label["platt_a"] = params[name].a
                label["platt_b"] = params[name].b
                updated += 1
    unknown = sorted(set(params) - set(config.label_names()))
    if unknown:
        logger.warning("Ignoring Platt params for unconfigured labels: %s", ", ".join(unknown))
    logger.info("Applied Platt params to %d label(s)", updated)
    return ScoreConfig.model_validate(data)
