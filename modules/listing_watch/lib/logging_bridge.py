from __future__ import annotations

import logging
from typing import Any

from service import logging_utils

from .utils import now_iso

_ACTIVITY_LOG = logging.getLogger("listing_watch.activity")
_ERROR_LOG = logging.getLogger("listing_watch.error")


def _stamp(record: dict[str, Any]) -> dict[str, Any]:
    if "ts" in record:
        return record
    return {"ts": now_iso(), **record}


def activity(record: dict[str, Any]) -> None:
    """
    Append a structured activity record to the JSONL activity log.
    Falls back to stdlib logging when the log directory is not writable.
    """
    payload = _stamp(record)
    try:
        logging_utils.write_activity_log(payload)
    except OSError:
        _ACTIVITY_LOG.info(logging_utils.redact(payload))


def error(record: dict[str, Any]) -> None:
    """
    Append a structured error record to the JSONL error log.
    Falls back to stdlib logging when the log directory is not writable.
    """
    payload = _stamp(record)
    try:
        logging_utils.write_error_log(payload)
    except OSError:
        _ERROR_LOG.error(logging_utils.redact(payload))
