"""Process-wide cache registry with reset support for tests."""
from __future__ import annotations

import threading
from typing import Any, Callable, TypeVar

T = TypeVar("T")

_CACHES: dict[str, Any] = {}
_LOCK = threading.Lock()


def get_cache_value(name: str, default_factory: Callable[[], T] | None = None) -> T:
    """Return cached value; initialize with default_factory when missing."""
    with _LOCK:
        if name in _CACHES:
            return _CACHES[name]
        if default_factory is None:
            raise KeyError(f"Cache '{name}' not initialized")
        value = default_factory()
        _CACHES[name] = value
        return value


def clear_all_caches() -> None:
    """Clear all cached entries."""
    with _LOCK:
        _CACHES.clear()
