# service/cli.py
"""
User-facing command-line entrypoints for the container.

Subcommands
-----------
serve
    - Starts the polling loop via service.scheduler.start()
    - Registers signal handlers for graceful shutdown (browser included)

run [--timeout SEC]
    - Executes one watch cycle ad-hoc via runner.run_cycle_once(...)
    - Prints a per-user summary (listings, new count, provider health)

list-users
    - Prints the users the next cycle would poll and their searches

validate-config
    - Loads/validates config and returns nonzero on error

register-user / set-search / remove-search / clear-user
    - Manage stored users and saved searches (requires sqlite_path)
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable
from datetime import datetime
from types import SimpleNamespace
from typing import Any

from dotenv import load_dotenv

from modules.listing_watch.lib import render
from modules.listing_watch.lib.config import Settings
from modules.listing_watch.lib.http_client import HttpClient
from modules.listing_watch.lib.repository import SqliteListingRepository
from modules.listing_watch.lib.users import UserDirectory
from modules.listing_watch.main import build_alerts, build_service
from service import config_schema as _config_schema
from service import logging_utils as L
from service import runner as _runner
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


# -------------------------- Utility / glue code ------------------------------
def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


def _print_table(rows: Iterable[tuple[str, str]], headers: tuple[str, str] = ("ID", "DETAILS")) -> None:
    """Very simple two-column table printer."""
    rows = list(rows)
    w0 = max(len(headers[0]), *(len(r[0]) for r in rows)) if rows else len(headers[0])
    w1 = max(len(headers[1]), *(len(r[1]) for r in rows)) if rows else len(headers[1])
    sep = f"+-{'-' * w0}-+-{'-' * w1}-+"
    print(sep)
    print(f"| {headers[0].ljust(w0)} | {headers[1].ljust(w1)} |")
    print(sep)
    for c0, c1 in rows:
        print(f"| {c0.ljust(w0)} | {c1.ljust(w1)} |")
    print(sep)


def _load_settings(path: str | None) -> Settings:
    cfg = _config_schema.load_config(path)
    _config_schema.validate(cfg)
    return Settings.from_env_and_kwargs(cfg)


def _user_directory(settings: Settings) -> tuple[UserDirectory, Any]:
    if not settings.sqlite_path:
        raise ValueError("User management needs a database: set 'sqlite_path' or SQLITE_PATH.")
    http = HttpClient()
    repo = SqliteListingRepository(settings.sqlite_path)
    return UserDirectory(repo, build_alerts(settings, http)), http


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        settings = _load_settings(args.config)
        print(f"OK: configuration is valid ({len(settings.users)} configured user(s)).")
        return 0
    except KeyboardInterrupt:
        return 130
    except ValueError as e:
        LOG.error("Configuration validation failed: %s", e)
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1


def cmd_list_users(args: argparse.Namespace) -> int:
    try:
        settings = _load_settings(args.config)
        service = build_service(settings)
        try:
            users = service.load_users()
        finally:
            service.close()
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        LOG.exception("Failed to list users: %s", e)
        print(f"ERROR: failed to list users: {e}", file=sys.stderr)
        return 1

    if not users:
        print("No users configured.")
        return 0
    rows = []
    for u in users:
        searches = ", ".join(sorted(u.providers)) or "(no searches)"
        rows.append((u.id, f"{u.name}: {searches}"))
    _print_table(rows, headers=("USER", "SEARCHES"))
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    start_time = time.monotonic()
    service = None
    try:
        settings = _load_settings(args.config)
        service = build_service(settings)
        outcome = _runner.run_cycle_once(service, timeout_sec=args.timeout, trigger_type="adhoc")

        print(render.format_header())
        for result in outcome.results:
            print(render.format_user_summary(result))
        L.write_activity_log({
            "ts": _now_iso(),
            "event": "cli_run",
            "run_id": outcome.run_id,
            "trigger_type": "adhoc",
            "new_total": outcome.new_total,
            "duration_ms": int((time.monotonic() - start_time) * 1000),
        })
        print(f"DONE: {len(outcome.results)} user(s), {outcome.new_total} new listing(s).")
        return 0

    except KeyboardInterrupt:
        return 130
    except Exception as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({
            "ts": _now_iso(),
            "where": "cli.run",
            "error": repr(e),
            "duration_ms": int((time.monotonic() - start_time) * 1000),
        })
        return 1
    finally:
        if service is not None:
            service.close()


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the polling loop until a termination signal is received."""
    L.write_activity_log({"ts": _now_iso(), "event": "serve_start"})

    stop_event = threading.Event()
    running = SimpleNamespace(sched=None)

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()
        _safe_stop("scheduler", running.sched)

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        running.sched = _scheduler.start(config_path=args.config)
        LOG.info("Scheduler started: %r", running.sched)

        # Main wait loop (respond quickly to signals)
        while not stop_event.is_set():
            time.sleep(0.3)

        _safe_stop("scheduler", running.sched)
        L.write_activity_log({"ts": _now_iso(), "event": "serve_stop"})
        return 0

    except KeyboardInterrupt:
        _graceful_shutdown("KeyboardInterrupt")
        return 130
    except Exception as e:
        LOG.exception("Fatal error in serve: %s", e)
        _graceful_shutdown("UnhandledException")
        return 1


def _safe_stop(name: str, handle: Any) -> None:
    """Best-effort stop & join for the scheduler controller."""
    if handle is None:
        return
    try:
        handle.stop()
        handle.join(timeout=10.0)
    except Exception:  # pragma: no cover
        LOG.exception("Error stopping %s", name)


def _with_directory(args: argparse.Namespace, action) -> int:
    http = None
    try:
        directory, http = _user_directory(_load_settings(args.config))
        return action(directory)
    except (KeyError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        LOG.exception("User command failed: %s", e)
        print(f"FAILURE: {e}", file=sys.stderr)
        return 1
    finally:
        if http is not None:
            http.close()


def cmd_register_user(args: argparse.Namespace) -> int:
    def _do(directory: UserDirectory) -> int:
        created = directory.register_user(args.user_id, args.name, args.username)
        print(f"{'Registered' if created else 'Already registered'}: {args.user_id}")
        return 0

    return _with_directory(args, _do)


def cmd_set_search(args: argparse.Namespace) -> int:
    def _do(directory: UserDirectory) -> int:
        status = directory.set_search(args.user_id, args.provider, args.url)
        print(f"Search {status}: {args.user_id} / {args.provider}")
        return 0

    return _with_directory(args, _do)


def cmd_remove_search(args: argparse.Namespace) -> int:
    def _do(directory: UserDirectory) -> int:
        if directory.remove_search(args.user_id, args.provider):
            print(f"Search removed: {args.user_id} / {args.provider}")
            return 0
        print(f"No {args.provider} search for {args.user_id}.")
        return 1

    return _with_directory(args, _do)


def cmd_clear_user(args: argparse.Namespace) -> int:
    def _do(directory: UserDirectory) -> int:
        directory.clear_user(args.user_id)
        print(f"Cleared searches and checkpoints: {args.user_id}")
        return 0

    return _with_directory(args, _do)


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m service.cli",
        description="Listing watcher command-line tools",
    )
    p.add_argument(
        "--config",
        help="Path to config file (fallbacks to CONFIG_PATH env or defaults).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("serve", help="Poll all providers on the configured interval.")
    sp.set_defaults(func=cmd_serve)

    sp = sub.add_parser("run", help="Run a single watch cycle and print the results.")
    sp.add_argument("--timeout", type=float, default=None, help="Give up waiting after SEC seconds.")
    sp.set_defaults(func=cmd_run)

    sp = sub.add_parser("list-users", help="Print the users and searches the next cycle polls.")
    sp.set_defaults(func=cmd_list_users)

    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    sp = sub.add_parser("register-user", help="Store a user (no-op when already known).")
    sp.add_argument("user_id", help="User id, e.g. tg_123456 for Telegram users.")
    sp.add_argument("name", help="Display / first name.")
    sp.add_argument("--username", default=None)
    sp.set_defaults(func=cmd_register_user)

    sp = sub.add_parser("set-search", help="Add or replace a user's search URL for one provider.")
    sp.add_argument("user_id")
    sp.add_argument("provider", help="Provider key, e.g. immowelt, kleinanzeigen.")
    sp.add_argument("url")
    sp.set_defaults(func=cmd_set_search)

    sp = sub.add_parser("remove-search", help="Remove a user's search for one provider.")
    sp.add_argument("user_id")
    sp.add_argument("provider")
    sp.set_defaults(func=cmd_remove_search)

    sp = sub.add_parser("clear-user", help="Remove all of a user's searches and checkpoints.")
    sp.add_argument("user_id")
    sp.set_defaults(func=cmd_clear_user)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    load_dotenv()
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
