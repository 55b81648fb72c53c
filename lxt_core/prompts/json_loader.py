from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger("lxt_core.prompts")

_CACHE: dict[str, tuple[int | None, dict[str, Any]]] = {}


def _data_dir() -> Path:
    override = os.getenv("LXT_PROMPTS_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(__file__).with_name("data")


def _deep_merge(base: Any, override: Any) -> Any:
    if isinstance(base, dict) and isinstance(override, dict):
        merged = {key: copy.deepcopy(value) for key, value in base.items()}
        for key, value in override.items():
            merged[key] = _deep_merge(merged[key], value) if key in merged else copy.deepcopy(value)
        return merged
    return copy.deepcopy(override)


def _parse_file(path: Path) -> dict[str, Any] | None:
    try:
        payload = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Failed to read prompt JSON %s (%s). Using defaults.", path, exc)
        return None
    if not isinstance(payload, dict):
        logger.warning("Prompt JSON root must be an object: %s (using defaults)", path)
        return None
    return payload


def load_prompt_json(filename: str, defaults: dict[str, Any]) -> dict[str, Any]:
    """Defaults merged with an optional ``data/<filename>`` override, cached by mtime."""
    path = _data_dir() / filename
    cache_key = str(path.resolve())

    mtime_ns: int | None = None
    if path.exists():
        try:
            mtime_ns = path.stat().st_mtime_ns
        except OSError:
            mtime_ns = None

    cached = _CACHE.get(cache_key)
    if cached is not None and cached[0] == mtime_ns:
        return copy.deepcopy(cached[1])

    merged: dict[str, Any] = copy.deepcopy(defaults)
    if mtime_ns is not None:
        override = _parse_file(path)
        if override is not None:
            merged = _deep_merge(merged, override)

    _CACHE[cache_key] = (mtime_ns, copy.deepcopy(merged))
    return merged


def prompt_text(cfg: dict[str, Any], key: str, defaults: dict[str, Any]) -> str:
    value = cfg.get(key)
    if isinstance(value, list):
        value = "\n".join(str(line) for line in value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return str(defaults[key]).strip()
