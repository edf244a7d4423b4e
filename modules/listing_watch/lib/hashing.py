from __future__ import annotations

import hashlib
import time


def build_hash(*inputs: str | int | float | None) -> str:
    """
    SHA-256 fingerprint of the non-empty inputs joined with ",".

    None and "" are dropped before joining, so build_hash("a", None, "b")
    equals build_hash("a", "b"). With nothing usable left the current epoch
    milliseconds are hashed instead (unique, but not stable).
    """
    cleaned = [str(i) for i in inputs if i is not None and str(i) != ""]
    if not cleaned:
        seed = str(int(time.time() * 1000))
        return hashlib.sha256(seed.encode("utf-8")).hexdigest()
    return hashlib.sha256(",".join(cleaned).encode("utf-8")).hexdigest()
