"""Warning aggregation helpers for the turn pipeline."""
from __future__ import annotations

from typing import Any


def _get_container(target: Any) -> list[str] | None:
    """Return a mutable warnings list from target (list, dict, or object with .warnings)."""
    if target is None:
        return None
    if isinstance(target, list):
        return target
    if isinstance(target, dict):
        return target.setdefault("warnings", [])
    warnings = getattr(target, "warnings", None)
    return warnings if isinstance(warnings, list) else None


def add_warning(target: Any, message: str) -> None:
    """Append a warning to the target's warning list (deduped)."""
    if not message:
        return
    warnings = _get_container(target)
    if warnings is None:
        return
    if message not in warnings:
        warnings.append(message)
