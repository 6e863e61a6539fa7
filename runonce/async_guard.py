"""Run-once guard for coroutine targets.

Same contract as ``runonce.guard.Guard``: the first ``invoke`` wins and awaits
the target, every other call returns ``None``. The test-and-set never yields
to the event loop, so concurrent coroutines cannot both win; the flag lock is
a ``threading.Lock`` so guards shared across loops in different threads stay
race-free as well.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import threading
import time
from typing import Any, Callable, Generic, Optional, TypeVar

from runonce import metrics
from runonce.guard import _target_name
from runonce.settings import LoserPolicy, resolve_loser_policy, resolve_wait_timeout
from runonce.telemetry.logging import bind

R = TypeVar("R")

_LOG = logging.getLogger("runonce.guard")


class AsyncGuard(Generic[R]):
    """Coroutine counterpart of ``Guard``: at most one awaited target call.

    ``"wait"`` losers on the winner's event loop await an ``asyncio.Event``.
    Losers on any other loop wait on a ``threading.Event`` in a worker thread,
    since an ``asyncio.Event`` is bound to one loop and cannot be set safely
    from another.
    """

    def __init__(
        self,
        target: Callable[..., Any],
        *,
        name: Optional[str] = None,
        loser_policy: Optional[str] = None,
        wait_timeout_s: Optional[float] = None,
    ) -> None:
        self._target = target
        self._name = name or _target_name(target)
        self._loser_policy: LoserPolicy = resolve_loser_policy(loser_policy)
        self._wait_timeout_s = resolve_wait_timeout(wait_timeout_s)
        self._fired = False
        self._lock = threading.Lock()
        self._done = asyncio.Event()
        self._finished = threading.Event()
        self._winner_loop: asyncio.AbstractEventLoop | None = None
        self._winner_task: asyncio.Task[Any] | None = None
        self._log = bind(_LOG, guard=self._name)
        functools.update_wrapper(self, target, updated=())

    @property
    def name(self) -> str:
        return self._name

    @property
    def loser_policy(self) -> LoserPolicy:
        return self._loser_policy

    @property
    def fired(self) -> bool:
        with self._lock:
            return self._fired

    async def invoke(self, *args: Any, **kwargs: Any) -> Optional[R]:
        if not self._try_fire():
            await self._on_lose()
            return None

        self._log.debug("run-once target firing")
        try:
            result = self._target(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except BaseException as exc:
            self._log.warning("run-once target failed", extra={"error": type(exc).__name__})
            metrics.record_call(self._name, "failed")
            raise
        finally:
            self._mark_done()
        metrics.record_call(self._name, "fired")
        return result

    async def __call__(self, *args: Any, **kwargs: Any) -> Optional[R]:
        return await self.invoke(*args, **kwargs)

    def __get__(self, obj: Any, objtype: Any = None) -> Any:
        if obj is None:
            return self
        return functools.partial(self.invoke, obj)

    def __repr__(self) -> str:
        state = "fired" if self.fired else "unfired"
        return f"<AsyncGuard {self._name} {state}>"

    def _try_fire(self) -> bool:
        with self._lock:
            if self._fired:
                return False
            self._fired = True
            self._winner_loop = asyncio.get_running_loop()
            self._winner_task = asyncio.current_task()
            return True

    def _mark_done(self) -> None:
        self._finished.set()
        self._done.set()

    async def _on_lose(self) -> None:
        self._log.debug("run-once call skipped")
        metrics.record_call(self._name, "skipped")
        if self._loser_policy != "wait":
            return
        # re-entrant await from inside the target: waiting would deadlock
        if self._winner_task is asyncio.current_task():
            return
        started = time.monotonic()
        try:
            if self._winner_loop is asyncio.get_running_loop():
                try:
                    await asyncio.wait_for(self._done.wait(), timeout=self._wait_timeout_s)
                    finished = True
                except asyncio.TimeoutError:
                    finished = False
            else:
                finished = await asyncio.to_thread(self._finished.wait, self._wait_timeout_s)
        finally:
            metrics.observe_wait(self._name, time.monotonic() - started)
        if not finished:
            self._log.debug(
                "run-once wait timed out", extra={"wait_timeout_s": self._wait_timeout_s}
            )


def create_async_guard(
    target: Callable[..., Any],
    *,
    name: Optional[str] = None,
    loser_policy: Optional[str] = None,
    wait_timeout_s: Optional[float] = None,
) -> AsyncGuard[Any]:
    """Return a new unfired ``AsyncGuard`` wrapping ``target``."""
    return AsyncGuard(
        target, name=name, loser_policy=loser_policy, wait_timeout_s=wait_timeout_s
    )
