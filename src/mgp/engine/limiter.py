# src/mgp/engine/limiter.py
from __future__ import annotations

import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Iterable, Iterator, Tuple, TypeVar

from mgp.engine.errors import ConfigError
from mgp.utils.logger import get_logger

LOG = get_logger("limiter")

T = TypeVar("T")
R = TypeVar("R")

_ALL_SUBMITTED = object()


class Limiter:
    """
    Run at most ``max_parallel`` calls at once and hand results back as they finish.

    A dispatcher thread takes a slot before each submission, so a full
    limiter blocks the dispatcher instead of queueing work. Each limiter
    owns its worker pool; a job running inside one limiter may drive its
    own inner limiter (sample x task) without competing for outer slots.
    """

    def __init__(self, max_parallel: int, name: str = "jobs") -> None:
        if int(max_parallel) < 1:
            raise ConfigError(f"max_parallel must be >= 1 (got {max_parallel})")
        self.max_parallel = int(max_parallel)
        self.name = name

    def imap_unordered(
        self, fn: Callable[[T], R], items: Iterable[T]
    ) -> Iterator[Tuple[T, "Future[R]"]]:
        """Yield ``(item, future)`` in completion order; futures are already done."""
        slots = threading.BoundedSemaphore(self.max_parallel)
        done: "queue.Queue[object]" = queue.Queue()
        dispatch_error: list = []

        with ThreadPoolExecutor(max_workers=self.max_parallel, thread_name_prefix=self.name) as pool:

            def _on_done(item: T, fut: "Future[R]") -> None:
                slots.release()
                done.put((item, fut))

            def _dispatch() -> None:
                submitted = 0
                try:
                    for item in items:
                        slots.acquire()
                        fut = pool.submit(fn, item)
                        fut.add_done_callback(lambda f, it=item: _on_done(it, f))
                        submitted += 1
                except Exception as e:  # iterator blew up; stop feeding, report after draining
                    LOG.error("Dispatch stopped after %d item(s): %s", submitted, e)
                    dispatch_error.append(e)
                finally:
                    done.put((_ALL_SUBMITTED, submitted))

            dispatcher = threading.Thread(target=_dispatch, name=f"{self.name}-dispatch", daemon=True)
            dispatcher.start()

            expected = None
            received = 0
            while expected is None or received < expected:
                first, second = done.get()  # type: ignore[misc]
                if first is _ALL_SUBMITTED:
                    expected = second  # type: ignore[assignment]
                    continue
                received += 1
                yield first, second  # type: ignore[misc]

            dispatcher.join()

        if dispatch_error:
            raise dispatch_error[0]

    def map_unordered(self, fn: Callable[[T], R], items: Iterable[T]) -> Iterator[R]:
        """Like imap_unordered but yields results, re-raising worker exceptions."""
        for _item, fut in self.imap_unordered(fn, items):
            yield fut.result()
