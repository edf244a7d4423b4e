# service/runner.py
from __future__ import annotations

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from service.logging_utils import write_activity_log

if TYPE_CHECKING:
    from modules.listing_watch.lib.models import UserScrapeResult
    from modules.listing_watch.lib.watch import WatchService

log = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Result
# -----------------------------------------------------------------------------
@dataclass
class CycleRunResult:
    run_id: str
    ok: bool
    message: str
    duration_ms: int
    results: list[UserScrapeResult] = field(default_factory=list)

    @property
    def new_total(self) -> int:
        return sum(len(r.new_listings) for r in self.results)


def now_iso() -> str:
    return datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------
def run_cycle_once(
    service: WatchService,
    *,
    timeout_sec: float | None = None,
    trigger_type: str = "scheduled",
    job_context: dict[str, object] | None = None,
) -> CycleRunResult:
    """
    Execute one watch cycle in a worker thread.

    A timed-out cycle keeps running in the background; the caller only stops
    waiting for it. Always writes one activity record.

    Raises:
        Whatever the cycle raised (InfrastructureError, ...) or TimeoutError.
    """
    run_id = uuid.uuid4().hex
    context: dict[str, Any] = {"run_id": run_id, "trigger_type": trigger_type, "started_at": now_iso()}
    if job_context:
        context.update({k: v for k, v in job_context.items() if k not in context})

    exc: BaseException | None = None
    results: list[UserScrapeResult] = []
    t0 = datetime.now()
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cycle")
    try:
        fut = pool.submit(service.run_cycle)
        results = fut.result(timeout=timeout_sec) if timeout_sec else fut.result()
    except FutureTimeout:
        exc = TimeoutError(f"Watch cycle timed out after {timeout_sec}s")
    except Exception as e:
        exc = e
    finally:
        pool.shutdown(wait=False)
    duration_ms = int((datetime.now() - t0).total_seconds() * 1000)

    outcome = CycleRunResult(
        run_id=run_id,
        ok=exc is None,
        message="ok" if exc is None else f"{type(exc).__name__}: {exc}",
        duration_ms=duration_ms,
        results=results,
    )

    try:
        write_activity_log({
            "ts": now_iso(),
            "source": "runner",
            "event": "cycle_run",
            "run_id": run_id,
            "ok": outcome.ok,
            "message": outcome.message,
            "duration_ms": duration_ms,
            "users": len(results),
            "new_total": outcome.new_total,
            "context": context,
        })
    except OSError as e:
        log.warning("write_activity_log failed: %s", e)

    if exc is not None:
        raise exc
    return outcome
