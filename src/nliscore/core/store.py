"""Document I/O primitives for persisting pydantic models as JSON or YAML."""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
import tomllib
from enum import StrEnum
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel

M = TypeVar("M", bound=BaseModel)


class Format(StrEnum):
    """On-disk document formats."""

    json = "json"
    yaml = "yaml"
    toml = "toml"


_SUFFIX_FORMATS: dict[str, Format] = {
    ".json": Format.json,
    ".yaml": Format.yaml,
    ".yml": Format.yaml,
    ".toml": Format.toml,
}


def format_for(path: Path) -> Format:
    """Infer the document format from the suffix of *path*.

    Raises:
        ValueError: If the suffix is not one of ``.json``, ``.yaml``,
            ``.yml`` or ``.toml``.
    """
    try:
        return _SUFFIX_FORMATS[path.suffix.lower()]
    except KeyError:
        raise ValueError(
            f"Unsupported file format {path.suffix!r} for {path} "
            f"(expected one of {sorted(_SUFFIX_FORMATS)})"
        ) from None


def write_text_atomic(path: Path, text: str) -> Path:
    """Write *text* to *path* atomically.

    Writes to a temporary file in the same directory first, then
    atomically replaces the target via :func:`os.replace`.  This
    prevents readers from ever seeing a partially-written file.

    Args:
        path: Destination file path.
        text: UTF-8 content to write.

    Returns:
        The *path* that was written, for convenient chaining.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=f"{path.suffix}.tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise
    return path


def read_document(path: Path) -> Any:
    """Parse a JSON, YAML or TOML file into plain Python data.

    Args:
        path: Path to an existing document.

    Returns:
        The decoded document (usually a ``dict``).

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the suffix is unsupported or the content does not parse.
    """
    fmt = format_for(path)
    text = path.read_text("utf-8")
    if fmt is Format.json:
        return json.loads(text)
    if fmt is Format.toml:
        return tomllib.loads(text)
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc


def load(path: Path, model: type[M]) -> M:
    """Read *path* and validate it into an instance of *model*.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the content does not parse or fails validation
            (pydantic's ``ValidationError`` is a ``ValueError``).
    """
    return model.model_validate(read_document(path))


def dump_document(obj: BaseModel, fmt: Format) -> str:
    """Serialise *obj* to a JSON or YAML string."""
    data = obj.model_dump(mode="json")
    if fmt is Format.json:
        return json.dumps(data, indent=2) + "\n"
    if fmt is Format.yaml:
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    raise ValueError(f"Writing {fmt} documents is not supported")


def save(path: Path, obj: BaseModel, fmt: Format | None = None) -> Path:
    """Atomically write *obj* to *path*.

    Args:
        path: Destination file path.
        obj: Pydantic model to persist.
        fmt: Output format.  Inferred from the suffix of *path* when ``None``.

    Returns:
        The *path* that was written.
    """
    return write_text_atomic(path, dump_document(obj, fmt or format_for(path)))
