from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from .providers import registry

if TYPE_CHECKING:
    from .alerting import AdminAlerts
    from .repository import SqliteListingRepository

LOG = logging.getLogger(__name__)


class UserDirectory:
    """
    User and saved-search lifecycle on top of the SQLite repository.

    Changing or removing a search drops that provider's checkpoint so the
    next pass starts fresh (first check reports only the newest listing).
    """

    def __init__(self, repository: SqliteListingRepository, alerts: AdminAlerts) -> None:
        self.repository = repository
        self.alerts = alerts

    def register_user(self, user_id: str, first_name: str, username: str | None = None) -> bool:
        created = self.repository.register_user(user_id, first_name, username)
        if created:
            LOG.info("Registered user %s (%s)", user_id, username or first_name)
            self.alerts.user_registered(user_id, username, first_name)
        return created

    def set_search(self, user_id: str, provider_key: str, url: str) -> Literal["added", "updated"]:
        cls = registry.get(provider_key)
        key = cls.key
        url = (url or "").strip()
        if not url:
            raise ValueError("Search URL cannot be empty.")

        user = self._require_user(user_id)
        previous = self.repository.get_user_provider(user_id, key)
        self.repository.set_user_provider(user_id, key, url)
        self.repository.clear_provider_checkpoint(user_id, cls.name)

        if previous is None:
            self.alerts.search_added(user_id, user.name, cls.name, url)
            return "added"
        self.alerts.search_updated(user_id, user.name, cls.name, url)
        return "updated"

    def remove_search(self, user_id: str, provider_key: str) -> bool:
        cls = registry.get(provider_key)
        user = self._require_user(user_id)
        previous = self.repository.get_user_provider(user_id, cls.key)
        removed = self.repository.delete_user_provider(user_id, cls.key)
        self.repository.clear_provider_checkpoint(user_id, cls.name)
        if removed:
            self.alerts.search_removed(user_id, user.name, cls.name, previous)
        return removed

    def clear_user(self, user_id: str) -> None:
        """Remove all searches and checkpoints; the user stays registered."""
        user = self._require_user(user_id)
        removed = self.repository.delete_all_user_providers(user_id)
        self.repository.clear_user(user_id)
        if removed:
            self.alerts.search_removed(user_id, user.name, "all", None)
        LOG.info("Cleared searches and checkpoints for %s", user_id)

    def _require_user(self, user_id: str):
        user = self.repository.get_user(user_id)
        if user is None:
            raise KeyError(f"Unknown user {user_id!r}; register first.")
        return user
