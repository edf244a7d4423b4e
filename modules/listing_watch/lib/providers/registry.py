from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .base import RunnerBackedProvider

LOG = logging.getLogger(__name__)

# Global in-process registry: provider key -> provider class
_REGISTRY: dict[str, type[RunnerBackedProvider]] = {}


def register(cls: type[RunnerBackedProvider]) -> type[RunnerBackedProvider]:
    """
    Class decorator registering a provider under its configuration key.
    Requires cls.key to be a non-empty string.
    """
    key = getattr(cls, "key", "") or ""
    if not isinstance(key, str) or not key.strip():
        raise ValueError(f"Cannot register provider {cls!r}: missing/empty 'key'.")
    key = key.strip().lower()
    if key in _REGISTRY and _REGISTRY[key] is not cls:
        raise ValueError(f"Provider key {key!r} already registered to {_REGISTRY[key]!r}.")
    _REGISTRY[key] = cls
    return cls


def get(key: str) -> type[RunnerBackedProvider]:
    """Look up a provider class by key (case-insensitive). Raises KeyError if not found."""
    k = (key or "").strip().lower()
    if k not in _REGISTRY:
        raise KeyError(f"No provider registered for key {key!r}.")
    return _REGISTRY[k]


def all_keys() -> dict[str, type[RunnerBackedProvider]]:
    return dict(_REGISTRY)


def create_providers_for_config(
    config: Mapping[str, str],
    *,
    browser: Any = None,
    http: Any = None,
    location_cache: Any = None,
) -> list[RunnerBackedProvider]:
    """
    Build one provider per configured search, in configuration order.
    Unknown keys are logged and skipped; blank URLs still produce a
    (disabled) provider so health output stays complete.
    """
    providers: list[RunnerBackedProvider] = []
    for key, url in config.items():
        try:
            cls = get(key)
        except KeyError:
            LOG.warning("Unknown provider key %r in search config; skipping.", key)
            continue
        providers.append(cls(url or "", browser=browser, http=http, location_cache=location_cache))
    return providers
