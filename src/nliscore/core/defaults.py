"""Centralised default constants for nliscore.

Every project-wide magic number / string lives here.
Import these instead of hard-coding values in function signatures or CLI options.
"""

from __future__ import annotations

from typing import Final

# ── Label ──
DEFAULT_LABEL_WEIGHT: Final[float] = 0.50
DEFAULT_LABEL_THRESHOLD: Final[float] = 0.70
DEFAULT_PLATT_A: Final[float] = 1.0
DEFAULT_PLATT_B: Final[float] = 0.0
PLATT_IDENTITY_EPSILON: Final[float] = 1e-6
HYPOTHESIS_FALLBACK_TEMPLATE: Final[str] = "This example is {label}."

# ── Category / overall gate ──
DEFAULT_TOP_K: Final[int] = 2
DEFAULT_SCORE_THRESHOLD: Final[float] = 0.75
PHATIC_LABEL: Final[str] = "phatic"
PHATIC_THRESHOLD_FLOOR: Final[float] = 0.80

# ── Text length modifiers ──
DEFAULT_SHORT_TEXT_LIMIT: Final[int] = 20
DEFAULT_LONG_TEXT_LIMIT: Final[int] = 200
DEFAULT_SHORT_TEXT_DELTA: Final[float] = 0.05
DEFAULT_LONG_TEXT_DELTA: Final[float] = 0.05

# ── NLI model ──
DEFAULT_MODEL_NAME: Final[str] = "facebook/bart-large-mnli"
DEFAULT_MODEL_DEVICE: Final[str] = "auto"
DEFAULT_BATCH_TOKENS: Final[int] = 128
DEFAULT_SCORER_BATCH_SIZE: Final[int] = 16

# ── Runtime ──
DEFAULT_BATCH_SIZE: Final[int] = 8
DEFAULT_CONCURRENCY: Final[int] = 4
DEFAULT_STRICT: Final[bool] = False
ENV_PREFIX: Final[str] = "NLISCORE_"

# ── Dataset ──
DATASET_VERSION: Final[str] = "1.0.0"
DATASET_DATE_FORMAT: Final[str] = "%Y-%m-%d"

# ── Platt training ──
PLATT_MIN_CLASS_SAMPLES: Final[int] = 5
PLATT_LEARNING_RATE: Final[float] = 0.1
PLATT_NUM_ITERATIONS: Final[int] = 100
PLATT_PROB_CLIP: Final[float] = 1e-7

# ── Output files ──
DEFAULT_RESULTS_FILE: Final[str] = "results.json"
DEFAULT_SCORES_FILE: Final[str] = "scores.json"
DEFAULT_RAW_SCORES_FILE: Final[str] = "raw_scores.json"
DEFAULT_PLATT_PARAMS_FILE: Final[str] = "platt_params.json"

# ── Reporting ──
MAX_MISCLASSIFIED_SHOWN: Final[int] = 10
