# interviewhub/utils.py
# Small helpers shared by the data layer and the request middleware.

from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

# longest x-request-id we echo back from a caller
MAX_REQUEST_ID_LEN = 64


def utc_now_iso() -> str:
    """Timestamp for `updated_at` columns; PostgREST parses ISO-8601 with offset."""
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds")


@contextmanager
def stopwatch() -> Iterator[Callable[[], float]]:
    """`with stopwatch() as elapsed:` ... `elapsed()` gives seconds so far."""
    start = time.perf_counter()
    yield lambda: time.perf_counter() - start


def new_request_id(incoming: str | None = None) -> str:
    """Keep a caller's x-request-id when it is short and printable, else mint one."""
    if incoming and len(incoming) <= MAX_REQUEST_ID_LEN and incoming.isprintable():
        return incoming
    return uuid.uuid4().hex
