from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Iterator


@dataclass
class DbTimer:
    elapsed_ms: float = 0.0


# Holds a mutable timer so SQL run in a worker thread's copied context still adds to it.
_db_timer: ContextVar[DbTimer | None] = ContextVar("edutrack_db_timer", default=None)


def add_db_time(delta_ms: float) -> None:
    timer = _db_timer.get()
    if timer is None:
        return
    timer.elapsed_ms += delta_ms


def get_db_time_ms() -> float | None:
    timer = _db_timer.get()
    return timer.elapsed_ms if timer is not None else None


@contextmanager
def db_timer() -> Iterator[DbTimer]:
    """Accumulate time spent in SQL statements for the duration of the block."""
    timer = DbTimer()
    token = _db_timer.set(timer)
    try:
        yield timer
    finally:
        _db_timer.reset(token)
