# modules/listing_watch/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import ConfigError, Settings
from .errors import InfrastructureError, RepositoryError, ScrapeError
from .models import Listing, ProviderStatus, User, UserScrapeResult

# Importing the package registers every built-in provider.
from .providers import registry
from .watch import WatchService

__all__ = [
    "ConfigError",
    "InfrastructureError",
    "Listing",
    "ProviderStatus",
    "RepositoryError",
    "ScrapeError",
    "Settings",
    "User",
    "UserScrapeResult",
    "WatchService",
    "registry",
]
