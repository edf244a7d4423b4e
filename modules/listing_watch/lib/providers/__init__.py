# listing_watch/providers/__init__.py
from __future__ import annotations

# Importing the variant modules registers every provider with the registry.
from . import api, dom, embedded, feed
from .base import ListingProvider, ProviderError, RunnerBackedProvider, ScrapeRunner
from .registry import all_keys, create_providers_for_config, get, register

__all__ = [
    "ListingProvider",
    "ProviderError",
    "RunnerBackedProvider",
    "ScrapeRunner",
    "all_keys",
    "api",
    "create_providers_for_config",
    "dom",
    "embedded",
    "feed",
    "get",
    "register",
]
