"""
Concurrency helpers for the RAG engine.

- ReadWriteLock: many concurrent readers, one writer, writers preferred
- ConcurrencyController: bounded thread-pool fan-out for blocking I/O calls
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Sequence, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ReadWriteLock:
    """
    Single-writer / multiple-reader lock.

    A waiting writer blocks new readers so a steady stream of queries cannot
    starve ingestion or deletes.

    Usage:
        lock = ReadWriteLock()
        with lock.read():
            ...
        with lock.write():
            ...
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer_active = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer_active or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer_active or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer_active = True

    def release_write(self) -> None:
        with self._cond:
            self._writer_active = False
            self._cond.notify_all()

    @contextmanager
    def read(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class ConcurrencyController:
    """
    Bounded parallel executor for blocking calls (embedding requests, etc).

    Results keep the input order; with ``return_exceptions=True`` a failing
    item yields its exception instead of aborting its siblings.

    Usage:
        controller = ConcurrencyController(max_concurrency=4)
        vectors = controller.map_with_limit(embedder.embed, chunks)
    """

    def __init__(self, max_concurrency: int = 4):
        self.max_concurrency = max(1, int(max_concurrency))
        logger.debug(f"ConcurrencyController initialized: max_concurrency={self.max_concurrency}")

    def map_with_limit(
        self,
        func: Callable[[Any], T],
        items: Sequence[Any],
        return_exceptions: bool = True,
    ) -> List[Union[T, BaseException]]:
        """
        Apply ``func`` to every item with at most ``max_concurrency`` in flight.

        Args:
            func: blocking callable applied to each item
            items: inputs
            return_exceptions: return exceptions as results instead of raising

        Returns:
            List of results, same order as ``items``
        """
        if not items:
            return []

        def guarded(item: Any) -> Union[T, BaseException]:
            try:
                return func(item)
            except Exception as e:
                if not return_exceptions:
                    raise
                return e

        if self.max_concurrency == 1 or len(items) == 1:
            results = [guarded(item) for item in items]
        else:
            workers = min(self.max_concurrency, len(items))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                results = list(executor.map(guarded, items))

        success_count = sum(1 for r in results if not isinstance(r, BaseException))
        logger.debug(f"Completed: {success_count}/{len(items)} successful")
        return results
