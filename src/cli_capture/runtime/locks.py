"""Exclusive-execution primitives used to serialize output delivery.

The output coordinator only needs one capability: run a block under mutual
exclusion, blocking the caller until the block has run. Any object with a
``run_exclusive(fn)`` method satisfies it. Two implementations ship here:

- ``MutexExecutor``: runs the block on the calling thread while holding a
  lock (``threading.RLock`` by default, or any ``acquire``/``release`` lock).
- ``SerialQueueExecutor``: hands the block to a single worker thread and
  waits for its result, so every block runs on the same thread in
  submission order.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Protocol, TypeVar, runtime_checkable

__all__ = [
    "ExclusiveExecutor",
    "MutexExecutor",
    "SerialQueueExecutor",
    "as_executor",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class ExclusiveExecutor(Protocol):
    """Runs callables one at a time."""

    def run_exclusive(self, fn: Callable[[], T]) -> T:
        ...


class MutexExecutor:
    """Run blocks on the calling thread under a lock.

    The default lock is reentrant so that an event handler may call back
    into helpers (e.g. ``ProcessRunner.print``) that take the same lock.
    """

    def __init__(self, lock: Any = None) -> None:
        self._lock = lock if lock is not None else threading.RLock()

    @property
    def lock(self) -> Any:
        return self._lock

    def run_exclusive(self, fn: Callable[[], T]) -> T:
        self._lock.acquire()
        try:
            return fn()
        finally:
            self._lock.release()

    def __repr__(self) -> str:
        return f"MutexExecutor(lock={self._lock!r})"


class SerialQueueExecutor:
    """Run blocks on one dedicated worker thread, in submission order.

    Calls made from the worker thread itself run inline instead of being
    queued behind themselves.
    """

    def __init__(self, name: str = "cli-capture-output") -> None:
        self._name = name
        self._worker_ident: int | None = None
        self._pool = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=name,
            initializer=self._record_worker,
        )

    def _record_worker(self) -> None:
        self._worker_ident = threading.get_ident()

    def run_exclusive(self, fn: Callable[[], T]) -> T:
        if threading.get_ident() == self._worker_ident:
            return fn()
        return self._pool.submit(fn).result()

    def close(self) -> None:
        """Stop the worker after queued blocks have run."""
        self._pool.shutdown(wait=True)
        logger.debug(f"Serial executor {self._name} shut down")

    def __enter__(self) -> "SerialQueueExecutor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SerialQueueExecutor(name={self._name!r})"


def as_executor(lock: Any = None) -> ExclusiveExecutor:
    """Adapt ``lock`` to an ``ExclusiveExecutor``.

    Args:
        lock: ``None`` (a new ``MutexExecutor``), an object that already has
            ``run_exclusive``, or a lock exposing ``acquire``/``release``.

    Raises:
        TypeError: If ``lock`` offers none of these capabilities
    """
    if lock is None:
        return MutexExecutor()
    if isinstance(lock, ExclusiveExecutor):
        return lock
    if callable(getattr(lock, "acquire", None)) and callable(getattr(lock, "release", None)):
        return MutexExecutor(lock)
    raise TypeError(
        f"{type(lock).__name__} is not a lock: expected run_exclusive() or acquire()/release()"
    )
