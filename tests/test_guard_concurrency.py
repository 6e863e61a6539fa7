# Concurrent callers: exactly one winner, losers return promptly.

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, List

import pytest

from runonce import create_guard


@pytest.mark.parametrize("workers", [2, 8, 32])
def test_concurrent_callers_increment_counter_once(workers: int) -> None:
    counter = {"n": 0}
    lock = threading.Lock()
    barrier = threading.Barrier(workers)

    def bump(i: int) -> int:
        # widen the race window
        time.sleep(0.01)
        with lock:
            counter["n"] += 1
        return i

    guard = create_guard(bump)

    def call(i: int) -> Any:
        barrier.wait()
        return guard(i)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(call, range(workers)))

    assert counter["n"] == 1
    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert guard.fired is True


def test_losers_return_immediately_by_default() -> None:
    release = threading.Event()
    entered = threading.Event()

    def slow() -> str:
        entered.set()
        release.wait(5)
        return "done"

    guard = create_guard(slow)
    winner_result: List[str] = []
    t = threading.Thread(target=lambda: winner_result.append(guard()))
    t.start()
    assert entered.wait(5)

    started = time.monotonic()
    assert guard() is None
    assert time.monotonic() - started < 1.0

    release.set()
    t.join(5)
    assert winner_result == ["done"]


def test_wait_policy_losers_observe_winner_side_effect() -> None:
    state = {"ready": False}
    entered = threading.Event()

    def init() -> None:
        entered.set()
        time.sleep(0.1)
        state["ready"] = True

    guard = create_guard(init, loser_policy="wait", wait_timeout_s=5)
    t = threading.Thread(target=guard)
    t.start()
    assert entered.wait(5)

    assert guard() is None
    # loser returned only after the winner finished
    assert state["ready"] is True
    t.join(5)


def test_wait_policy_losers_are_released_when_target_fails() -> None:
    entered = threading.Event()

    def boom() -> None:
        entered.set()
        time.sleep(0.05)
        raise RuntimeError("failed init")

    guard = create_guard(boom, loser_policy="wait", wait_timeout_s=5)
    errors: List[BaseException] = []

    def winner() -> None:
        try:
            guard()
        except RuntimeError as exc:
            errors.append(exc)

    t = threading.Thread(target=winner)
    t.start()
    assert entered.wait(5)

    started = time.monotonic()
    assert guard() is None
    assert time.monotonic() - started < 2.0
    t.join(5)
    assert len(errors) == 1


def test_wait_policy_times_out_on_hung_winner() -> None:
    release = threading.Event()
    entered = threading.Event()

    def hang() -> None:
        entered.set()
        release.wait(5)

    guard = create_guard(hang, loser_policy="wait", wait_timeout_s=0.05)
    t = threading.Thread(target=guard)
    t.start()
    assert entered.wait(5)

    started = time.monotonic()
    assert guard() is None
    elapsed = time.monotonic() - started
    assert 0.04 <= elapsed < 2.0

    release.set()
    t.join(5)


def test_reentrant_call_from_target_does_not_deadlock() -> None:
    inner: List[Any] = []

    def target() -> str:
        inner.append(guard())
        return "outer"

    guard = create_guard(target, loser_policy="wait", wait_timeout_s=30)
    started = time.monotonic()
    assert guard() == "outer"
    assert time.monotonic() - started < 5.0
    assert inner == [None]
