"""
Checkpoint-based "new since last check" detection.

A checkpoint is the first CHECKPOINT_COUNT hashes of the last non-empty
scrape for one (user, provider) pair, newest first.

Known trade-off: if none of the current hashes matches the checkpoint
(site reordered results, or more than a page of new ads appeared since the
last check) every current listing is reported as new. This favors not
missing listings over avoiding a burst of duplicates and is kept on purpose.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from .models import Listing

if TYPE_CHECKING:
    from .repository import ListingRepository

CHECKPOINT_COUNT = 5


def compute_new(current: Sequence[Listing], stored_hashes: Iterable[str]) -> list[Listing]:
    stored = set(stored_hashes)
    if not stored:
        # First check for this pair: confirm with the newest listing only.
        return list(current[:1])

    new: list[Listing] = []
    for listing in current:
        if listing.hash in stored:
            break
        new.append(listing)
    return new


def checkpoint_hashes(current: Sequence[Listing], k: int = CHECKPOINT_COUNT) -> list[str]:
    return [listing.hash for listing in current[:k]]


def update_checkpoint(
    repository: ListingRepository,
    user_id: str,
    provider: str,
    current: Sequence[Listing],
    k: int = CHECKPOINT_COUNT,
) -> bool:
    """Overwrite the stored checkpoint; an empty scrape never touches it. Returns True if written."""
    if not current:
        return False
    repository.set_checkpoints(user_id, provider, checkpoint_hashes(current, k))
    return True
