# tests/test_users.py
import pytest
from conftest import RecordingTransport

from modules.listing_watch.lib.alerting import AdminAlerts
from modules.listing_watch.lib.users import UserDirectory


@pytest.fixture
def directory(sqlite_repo, alerts):
    return UserDirectory(sqlite_repo, alerts)


def test_register_user_alerts_only_once(directory, transport, read_log):
    assert directory.register_user("tg_1", "Anna", "anna_m") is True
    assert directory.register_user("tg_1", "Anna", "anna_m") is False
    assert transport.sent == ["👤 New user: @anna_m"]
    events = [r["event"] for r in read_log("activity")]
    assert events == ["USER_REGISTERED"]


def test_set_search_added_then_updated_resets_checkpoint(directory, sqlite_repo, transport):
    directory.register_user("tg_1", "Anna")
    assert directory.set_search("tg_1", "Immowelt", " https://www.immowelt.de/s?a=1 ") == "added"
    sqlite_repo.set_checkpoints("tg_1", "Immowelt", ["h1"])

    assert directory.set_search("tg_1", "immowelt", "https://www.immowelt.de/s?a=2") == "updated"

    assert sqlite_repo.get_user_provider("tg_1", "immowelt") == "https://www.immowelt.de/s?a=2"
    assert sqlite_repo.get_checkpoints("tg_1", "Immowelt") == []
    assert transport.sent[-2:] == ["➕ Anna added Immowelt search", "✏️ Anna updated Immowelt search"]


def test_set_search_validates_input(directory):
    directory.register_user("tg_1", "Anna")
    with pytest.raises(KeyError):
        directory.set_search("tg_1", "nope", "https://x")
    with pytest.raises(ValueError):
        directory.set_search("tg_1", "immowelt", "   ")
    with pytest.raises(KeyError):
        directory.set_search("tg_unknown", "immowelt", "https://x")


def test_remove_search(directory, sqlite_repo, transport):
    directory.register_user("tg_1", "Anna")
    directory.set_search("tg_1", "sparkasse", "https://immobilien.sparkasse.de/s")
    sqlite_repo.set_checkpoints("tg_1", "Sparkasse", ["h1"])

    assert directory.remove_search("tg_1", "sparkasse") is True
    assert directory.remove_search("tg_1", "sparkasse") is False
    assert sqlite_repo.get_checkpoints("tg_1", "Sparkasse") == []
    assert transport.sent[-1] == "➖ Anna removed Sparkasse search"


def test_clear_user_removes_searches_and_checkpoints(directory, sqlite_repo):
    directory.register_user("tg_1", "Anna")
    directory.set_search("tg_1", "immowelt", "https://a")
    directory.set_search("tg_1", "immonet", "https://b")
    sqlite_repo.set_checkpoints("tg_1", "Immowelt", ["h1"])

    directory.clear_user("tg_1")

    assert sqlite_repo.get_user("tg_1").providers == {}
    assert sqlite_repo.get_provider_count_for_user("tg_1") == 0


def test_alert_transport_failure_does_not_break_registration(sqlite_repo):
    directory = UserDirectory(sqlite_repo, AdminAlerts(RecordingTransport(fail=True)))
    assert directory.register_user("tg_2", "Ben") is True
