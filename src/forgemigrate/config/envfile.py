"""
Parsing and writing of .env style KEY=VALUE files.

The format is the flat one Laravel uses: one assignment per line, blank
lines and '#' comments ignored, values optionally wrapped in single or
double quotes. Only one matching pair of surrounding quotes is removed;
anything else (inner quotes, '#', spaces) is part of the value.

Parsing keeps the first position a key was seen at but the value of its
last occurrence, so a file that redefines a key behaves like dotenv loaders
that let later lines win.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)

QUOTE_CHARS = ("'", '"')


def parse_env(text: str) -> dict[str, str]:
    """
    Parse .env text into an ordered mapping.

    Args:
        text: Raw file contents.

    Returns:
        Dictionary of key to unquoted value, in first-seen key order.
    """
    values: dict[str, str] = {}

    # Only \n (and \r\n) end a line; other separators belong to the value.
    for line in text.split("\n"):
        if line.endswith("\r"):
            line = line[:-1]
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        values[key] = _unquote(value)

    return values


def serialize_env(values: Mapping[str, str]) -> str:
    """
    Render a mapping as .env text, one KEY=VALUE line per entry.

    Values that start or end with a quote character are wrapped in double
    quotes so parse_env() gives back exactly the same string.

    Raises:
        ValueError: If a key or value cannot be represented on one line.
    """
    lines = []
    for key, value in values.items():
        _check_key(key)
        if value is None:
            raise ValueError(f"Value for {key} must be a string, not None")
        if "\n" in value or "\r" in value:
            raise ValueError(f"Value for {key} contains a line break")
        lines.append(f"{key}={_quote(value)}")

    return "".join(f"{line}\n" for line in lines)


def get_value(values: Mapping[str, str], key: str) -> str | None:
    """Return the value for key, or None when the key is absent."""
    return values.get(key)


def read_env_file(path: Path) -> dict[str, str]:
    """
    Read and parse a .env file.

    Raises:
        OSError: If the file cannot be read.
    """
    text = Path(path).read_text(encoding="utf-8")
    values = parse_env(text)
    logger.debug(f"Read {len(values)} keys from {path}")
    return values


def write_env_file(path: Path, values: Mapping[str, str]) -> None:
    """
    Write a mapping to a .env file atomically.

    The content goes to a sibling temporary file first and is then moved
    over the target, so readers never see a half-written file.
    """
    path = Path(path)
    data = serialize_env(values)
    temp_path = path.with_name(path.name + ".new")

    try:
        temp_path.write_text(data, encoding="utf-8")
        if path.exists():
            try:
                os.chmod(temp_path, path.stat().st_mode & 0o777)
            except OSError:
                pass
        os.replace(temp_path, path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise

    logger.debug(f"Wrote {len(values)} keys to {path}")


def _unquote(value: str) -> str:
    """Strip one pair of matching surrounding quotes."""
    if len(value) >= 2 and value[0] in QUOTE_CHARS and value[-1] == value[0]:
        return value[1:-1]
    return value


def _quote(value: str) -> str:
    if value and (value[0] in QUOTE_CHARS or value[-1] in QUOTE_CHARS):
        return f'"{value}"'
    return value


def _check_key(key: str) -> None:
    if not isinstance(key, str) or not key:
        raise ValueError("Keys must be non-empty strings")
    if key != key.strip():
        raise ValueError(f"Key {key!r} has surrounding whitespace")
    if "=" in key or "\n" in key or "\r" in key:
        raise ValueError(f"Key {key!r} contains '=' or a line break")
    if key.startswith("#"):
        raise ValueError(f"Key {key!r} would be read back as a comment")
