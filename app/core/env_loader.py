"""Lightweight .env loader for local development without Docker."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Iterable

DEFAULT_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"


def _strip_quotes(raw: str) -> str:
    if len(raw) >= 2 and raw[0] in {"'", '"'} and raw[-1] == raw[0]:
        return raw[1:-1]
    return raw


def parse_env_lines(lines: Iterable[str]) -> Dict[str, str]:
    """Parse ``KEY=value`` lines, skipping comments and blank lines."""

    values: Dict[str, str] = {}
    for line in lines:
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        stripped = stripped.removeprefix("export ").strip()
        key, separator, value = stripped.partition("=")
        if not separator or not key.strip():
            continue
        values[key.strip()] = _strip_quotes(value.strip())
    return values


def load_env_file(path: Path | None = None) -> int:
    """Populate os.environ from .env without overriding existing variables.

    ``RNG_ENV_FILE`` selects another file. Returns the number of variables set.
    """

    env_path = path or Path(os.getenv("RNG_ENV_FILE", str(DEFAULT_ENV_PATH)))
    if not env_path.is_file():
        return 0

    with env_path.open("r", encoding="utf-8") as handle:
        values = parse_env_lines(handle)

    loaded = 0
    for key, value in values.items():
        if key not in os.environ:
            os.environ[key] = value
            loaded += 1
    return loaded


__all__ = ["load_env_file", "parse_env_lines"]
