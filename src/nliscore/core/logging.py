"""Log redaction for sample payloads.

Scoring and evaluation logs can mention dataset texts, NLI premises and
hypotheses, conversation context or annotator notes as ``key=value``
pairs.  :class:`SanitizingFilter` masks those values on the rendered
message before any handler formats the record, and
:func:`configure_logging` wires it onto the root handlers for CLI runs.
"""

from __future__ import annotations

import logging
import re
from typing import Final, Iterable

REDACTED_KEYS: Final[frozenset[str]] = frozenset({
    "text",
    "premise",
    "hypothesis",
    "context",
    "notes",
})

_MASK: Final[str] = "[REDACTED]"


def _pattern_for(keys: Iterable[str]) -> re.Pattern[str]:
    # Longest keys first so "hypothesis" never loses to a shorter prefix.
    alternatives = "|".join(re.escape(k) for k in sorted(keys, key=len, reverse=True))
    return re.compile(
        rf"\b(?P<key>{alternatives})\s*[=:]\s*(?P<value>\"[^\"]*\"|'[^']*'|\S+)",
        re.IGNORECASE,
    )


_DEFAULT_PATTERN: Final[re.Pattern[str]] = _pattern_for(REDACTED_KEYS)


def redact_message(message: str, pattern: re.Pattern[str] = _DEFAULT_PATTERN) -> str:
    """Mask the value of every redacted ``key=value`` / ``key: value`` pair.

    Quoted values are masked whole; unquoted ones up to the next whitespace.
    """
    return pattern.sub(lambda m: f"{m['key']}={_MASK}", message)


class SanitizingFilter(logging.Filter):
    """Rewrites each record's message with redacted payloads masked.

    The record is rendered once (``msg % args``) and stored back with
    ``args`` cleared, so downstream handlers see only the masked text.

    Args:
        extra_keys: Keys to mask in addition to :data:`REDACTED_KEYS`.
    """

    def __init__(self, extra_keys: Iterable[str] = ()) -> None:
        super().__init__()
        keys = REDACTED_KEYS | {k.lower() for k in extra_keys}
        self._pattern = _DEFAULT_PATTERN if keys == REDACTED_KEYS else _pattern_for(keys)

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact_message(record.getMessage(), self._pattern)
        record.args = None
        return True


def install_sanitizing_filter(
    target: logging.Logger | logging.Handler | None = None,
) -> SanitizingFilter:
    """Attach a new :class:`SanitizingFilter` to *target* (the root logger by default).

    Returns:
        The installed filter, for later ``removeFilter``.
    """
    filt = SanitizingFilter()
    (target or logging.getLogger()).addFilter(filt)
    return filt


def configure_logging(level: str = "WARNING") -> None:
    """Set up root logging for CLI runs with a sanitizing filter on every handler.

    Safe to call repeatedly; handlers that already carry a
    :class:`SanitizingFilter` are left alone.

    Args:
        level: Root log level name, e.g. ``"INFO"``.
    """
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    root = logging.getLogger()
    root.setLevel(level.upper())
    for handler in root.handlers:
        if not any(isinstance(f, SanitizingFilter) for f in handler.filters):
            handler.addFilter(SanitizingFilter())
