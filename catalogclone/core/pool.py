from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Generic, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass(slots=True)
class PoolOutcome(Generic[T, R]):
    item: T
    result: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BoundedPool(Generic[T, R]):
    """Runs a callable over a list in fixed-size windows of concurrent tasks.

    Each window is fully joined before the next one starts, so at most
    ``window_size`` tasks are ever in flight regardless of the list length.
    Exceptions raised by a task are captured on its outcome instead of
    propagating, and outcomes keep the input order.
    """

    def __init__(self, window_size: int, *, thread_name_prefix: str = "bounded-pool"):
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        self._window_size = window_size
        self._thread_name_prefix = thread_name_prefix

    @property
    def window_size(self) -> int:
        return self._window_size

    def windows(self, items: Sequence[T]) -> list[Sequence[T]]:
        return [items[start : start + self._window_size] for start in range(0, len(items), self._window_size)]

    def map(self, func: Callable[[T], R], items: Sequence[T]) -> list[PoolOutcome[T, R]]:
        outcomes: list[PoolOutcome[T, R]] = []
        if not items:
            return outcomes

        with ThreadPoolExecutor(
            max_workers=min(self._window_size, len(items)),
            thread_name_prefix=self._thread_name_prefix,
        ) as executor:
            for window in self.windows(items):
                futures = [(item, executor.submit(func, item)) for item in window]
                for item, future in futures:
                    try:
                        outcomes.append(PoolOutcome(item=item, result=future.result()))
                    except Exception as exc:
                        outcomes.append(PoolOutcome(item=item, error=exc))
        return outcomes
