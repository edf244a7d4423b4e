# tests/test_repository_sqlite.py
import sqlite3

import pytest

from modules.listing_watch.lib.errors import RepositoryError
from modules.listing_watch.lib.repository import SqliteListingRepository


def test_init_creates_database_and_directory(tmp_path):
    path = tmp_path / "nested" / "dir" / "watch.db"
    repo = SqliteListingRepository(str(path))
    assert path.exists()
    assert repo.count_rows("checkpoints") == 0
    # idempotent
    repo.init_db()


def test_checkpoints_roundtrip_and_overwrite(sqlite_repo):
    assert sqlite_repo.get_checkpoints("u1", "Immowelt") == []
    sqlite_repo.set_checkpoints("u1", "Immowelt", ["h1", "h2"])
    sqlite_repo.set_checkpoints("u1", "Immowelt", ["h3"])
    sqlite_repo.set_checkpoints("u1", "Immonet", ["x"])
    assert sqlite_repo.get_checkpoints("u1", "Immowelt") == ["h3"]
    assert sqlite_repo.get_provider_count_for_user("u1") == 2
    assert sqlite_repo.count_rows("checkpoints") == 2


def test_clear_user_drops_checkpoints_but_keeps_searches(sqlite_repo):
    sqlite_repo.register_user("u1", "Anna")
    sqlite_repo.set_user_provider("u1", "immowelt", "https://www.immowelt.de/s")
    sqlite_repo.set_checkpoints("u1", "Immowelt", ["h1"])
    sqlite_repo.set_checkpoints("u2", "Immowelt", ["h2"])

    sqlite_repo.clear_user("u1")

    assert sqlite_repo.get_provider_count_for_user("u1") == 0
    assert sqlite_repo.get_checkpoints("u2", "Immowelt") == ["h2"]
    assert sqlite_repo.get_user_provider("u1", "immowelt") == "https://www.immowelt.de/s"


def test_register_user_is_idempotent(sqlite_repo):
    assert sqlite_repo.register_user("u1", "Anna", "anna_m") is True
    assert sqlite_repo.register_user("u1", "Anna", "anna_m") is False
    assert sqlite_repo.get_user("u1").name == "Anna"
    assert sqlite_repo.get_user("missing") is None


def test_user_searches(sqlite_repo):
    sqlite_repo.register_user("u1", "Anna")
    sqlite_repo.register_user("u2", "Ben")
    sqlite_repo.set_user_provider("u1", "immowelt", "https://a")
    sqlite_repo.set_user_provider("u1", "immowelt", "https://b")
    sqlite_repo.set_user_provider("u1", "sparkasse", "https://c")

    users = {u.id: u for u in sqlite_repo.get_all_users()}
    assert users["u1"].providers == {"immowelt": "https://b", "sparkasse": "https://c"}
    assert users["u2"].providers == {}

    assert sqlite_repo.delete_user_provider("u1", "sparkasse") is True
    assert sqlite_repo.delete_user_provider("u1", "sparkasse") is False
    assert sqlite_repo.delete_all_user_providers("u1") == 1
    assert sqlite_repo.get_user("u1").providers == {}


def test_location_cache(sqlite_repo):
    geometry = {"type": "Polygon", "coordinates": [[[11.5, 48.1]]]}
    assert sqlite_repo.get_cached_location("loc", "planethome") is None
    sqlite_repo.set_cached_location("loc", "planethome", 48.1, 11.5, geometry)
    assert sqlite_repo.get_cached_location("loc", "planethome") == {
        "latitude": 48.1,
        "longitude": 11.5,
        "geometry": geometry,
    }
    sqlite_repo.invalidate_cached_location("loc", "planethome")
    assert sqlite_repo.get_cached_location("loc", "planethome") is None


def test_count_rows_rejects_unknown_table(sqlite_repo):
    with pytest.raises(ValueError):
        sqlite_repo.count_rows("sqlite_master; DROP TABLE users")


def test_unusable_path_raises_repository_error(tmp_path, read_log):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    with pytest.raises(RepositoryError):
        SqliteListingRepository(str(blocker / "watch.db"))
    (record,) = read_log("error")
    assert record["component"] == "listing_watch.repository"
    assert record["op"] == "init_db"


def _store_raw_checkpoint(repo, hashes_text):
    with sqlite3.connect(repo.sqlite_path) as conn:
        conn.execute(
            "INSERT INTO checkpoints (user_id, provider, hashes, updated_at) VALUES (?, ?, ?, ?)",
            ("u1", "Immowelt", hashes_text, "2025-01-01T00:00:00Z"),
        )
    conn.close()


@pytest.mark.parametrize("hashes_text", ["not json [", '{"h": 1}'])
def test_corrupt_checkpoint_raises_repository_error(sqlite_repo, read_log, hashes_text):
    _store_raw_checkpoint(sqlite_repo, hashes_text)
    with pytest.raises(RepositoryError, match="get_checkpoints failed"):
        sqlite_repo.get_checkpoints("u1", "Immowelt")
    (record,) = read_log("error")
    assert record["op"] == "get_checkpoints"
