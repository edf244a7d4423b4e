# tests/test_cli.py
import pytest

from modules.listing_watch import main as listing_watch_main
from service import cli


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(
        f"sqlite_path: {tmp_path / 'data' / 'watch.db'}\nnotify: [log]\n",
        encoding="utf-8",
    )
    return str(path)


def _cli(config_path, *args):
    return cli.main(["--config", config_path, *args])


def test_validate_config_ok(config_path, capsys):
    assert _cli(config_path, "validate-config") == 0
    assert "OK: configuration is valid (0 configured user(s))." in capsys.readouterr().out


def test_validate_config_reports_errors(tmp_path, capsys):
    bad = tmp_path / "bad.yml"
    bad.write_text("notify: [pager]\n", encoding="utf-8")
    assert cli.main(["--config", str(bad), "validate-config"]) == 1
    assert "ERROR: configuration invalid" in capsys.readouterr().err


def test_user_lifecycle(config_path, capsys):
    assert _cli(config_path, "register-user", "tg_1001", "Anna", "--username", "anna_m") == 0
    assert _cli(config_path, "register-user", "tg_1001", "Anna") == 0
    assert _cli(config_path, "set-search", "tg_1001", "immowelt", "https://www.immowelt.de/classified-search?x=1") == 0
    assert _cli(config_path, "set-search", "tg_1001", "immowelt", "https://www.immowelt.de/classified-search?x=2") == 0
    assert _cli(config_path, "set-search", "tg_1001", "kleinanzeigen", "https://www.kleinanzeigen.de/s/c203") == 0

    out = capsys.readouterr().out
    assert "Registered: tg_1001" in out
    assert "Already registered: tg_1001" in out
    assert "Search added: tg_1001 / immowelt" in out
    assert "Search updated: tg_1001 / immowelt" in out

    assert _cli(config_path, "list-users") == 0
    out = capsys.readouterr().out
    assert "| USER" in out
    assert "Anna: immowelt, kleinanzeigen" in out

    assert _cli(config_path, "remove-search", "tg_1001", "kleinanzeigen") == 0
    assert _cli(config_path, "remove-search", "tg_1001", "kleinanzeigen") == 1
    out = capsys.readouterr().out
    assert "Search removed: tg_1001 / kleinanzeigen" in out
    assert "No kleinanzeigen search for tg_1001." in out

    assert _cli(config_path, "clear-user", "tg_1001") == 0
    assert "Cleared searches and checkpoints: tg_1001" in capsys.readouterr().out

    assert _cli(config_path, "list-users") == 0
    assert "No users configured." in capsys.readouterr().out


def test_user_commands_report_bad_input(config_path, capsys):
    assert _cli(config_path, "set-search", "tg_unknown", "immowelt", "https://x") == 1
    assert "register first" in capsys.readouterr().err
    _cli(config_path, "register-user", "tg_1", "Anna")
    assert _cli(config_path, "set-search", "tg_1", "nope", "https://x") == 1
    assert "No provider registered" in capsys.readouterr().err


def test_user_commands_need_a_database(tmp_path, capsys):
    path = tmp_path / "config.yml"
    path.write_text("notify: [log]\n", encoding="utf-8")
    assert cli.main(["--config", str(path), "register-user", "tg_1", "Anna"]) == 1
    assert "needs a database" in capsys.readouterr().err


def test_run_without_users_completes(config_path, capsys, read_log):
    assert _cli(config_path, "run", "--timeout", "30") == 0
    out = capsys.readouterr().out
    assert "Listing check at" in out
    assert "DONE: 0 user(s), 0 new listing(s)." in out
    assert any(r.get("event") == "cli_run" for r in read_log("activity"))


def test_main_run_without_users(tmp_path, read_log):
    results = listing_watch_main.run(sqlite_path=str(tmp_path / "watch.db"), notify=["log"])
    assert results == []
    starts = [r for r in read_log("activity") if r.get("op") == "start"]
    assert starts[0]["component"] == "listing_watch.main"
    assert starts[0]["users"] == []
