from __future__ import annotations

import threading
import time

from catalogclone.core.pool import BoundedPool


def test_windows_split_list_into_fixed_chunks() -> None:
    pool: BoundedPool[int, int] = BoundedPool(5)
    windows = pool.windows(list(range(23)))
    assert [len(window) for window in windows] == [5, 5, 5, 5, 3]


def test_map_never_exceeds_window_size_and_keeps_order() -> None:
    pool: BoundedPool[int, int] = BoundedPool(5)
    lock = threading.Lock()
    in_flight = 0
    peak = 0

    def work(value: int) -> int:
        nonlocal in_flight, peak
        with lock:
            in_flight += 1
            peak = max(peak, in_flight)
        time.sleep(0.01)
        with lock:
            in_flight -= 1
        return value * 2

    outcomes = pool.map(work, list(range(23)))

    assert peak <= 5
    assert [outcome.item for outcome in outcomes] == list(range(23))
    assert [outcome.result for outcome in outcomes] == [value * 2 for value in range(23)]
    assert all(outcome.ok for outcome in outcomes)


def test_next_window_starts_only_after_previous_finished() -> None:
    pool: BoundedPool[int, int] = BoundedPool(3)
    lock = threading.Lock()
    finished: list[int] = []
    started_after: dict[int, int] = {}

    def work(value: int) -> int:
        with lock:
            started_after[value] = len(finished)
        time.sleep(0.005)
        with lock:
            finished.append(value)
        return value

    pool.map(work, list(range(7)))

    assert all(started_after[value] == 0 for value in (0, 1, 2))
    assert all(started_after[value] == 3 for value in (3, 4, 5))
    assert started_after[6] == 6


def test_failures_are_captured_per_item() -> None:
    pool: BoundedPool[int, int] = BoundedPool(2)

    def work(value: int) -> int:
        if value == 1:
            raise RuntimeError("boom")
        return value

    outcomes = pool.map(work, [0, 1, 2])

    assert [outcome.ok for outcome in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, RuntimeError)
    assert outcomes[2].result == 2


def test_window_size_must_be_positive() -> None:
    try:
        BoundedPool(0)
    except ValueError:
        pass
    else:
        raise AssertionError("expected ValueError")
