"""Shared configuration constants used by the engine and the API host."""
from __future__ import annotations

import os
from pathlib import Path


def _env_flag(name: str, default: bool = False) -> bool:
    """Read boolean env flag."""
    val = os.environ.get(name, "").strip().lower()
    if not val:
        return default
    return val in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    """Read int env value; falls back to default when unset or invalid."""
    val = os.environ.get(name, "").strip()
    if not val:
        return default
    try:
        return int(val)
    except ValueError:
        return default


# Project root: resolve relative to this file's location
_PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Story corpora live in <STORY_DATA_DIR>/<story_id>/{characters,locations,story_beats,lore}.json
STORY_DATA_DIR = os.environ.get("STORY_DATA_DIR", str(_PROJECT_ROOT / "data" / "stories"))

# Corpus validation: strict mode raises on malformed beats; lenient mode logs and drops them
CORPUS_STRICT_VALIDATION = _env_flag("CORPUS_STRICT_VALIDATION", default=True)
