"""Run-once invocation guard.

A ``Guard`` wraps a target callable and lets exactly one invocation attempt
through. The first call flips the guard to fired and runs the target with that
call's arguments; every later call is a no-op returning ``None``. A target
that raises still fires the guard; the exception reaches only the caller that
triggered it.

States: UNFIRED -> FIRED. There is no way back.
"""

from __future__ import annotations

import functools
import inspect
import logging
import threading
import time
from typing import Any, Callable, Generic, Optional, TypeVar, overload

from runonce import metrics
from runonce.settings import LoserPolicy, resolve_loser_policy, resolve_wait_timeout
from runonce.telemetry.logging import GuardLogAdapter, bind

R = TypeVar("R")

_LOG = logging.getLogger("runonce.guard")


def _target_name(target: Callable[..., Any]) -> str:
    name = getattr(target, "__qualname__", None) or getattr(target, "__name__", None)
    return str(name) if name else type(target).__name__


class Guard(Generic[R]):
    """Thread-safe at-most-once wrapper around ``target``.

    The lock covers only the test-and-set of the fired flag, never the target
    call, so losing callers do not contend with the winner. With
    ``loser_policy="wait"`` losers block on the winner's completion for at
    most ``wait_timeout_s`` seconds before returning ``None``.
    """

    def __init__(
        self,
        target: Callable[..., R],
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
        self._done = threading.Event()
        self._winner_thread: int | None = None
        self._log: GuardLogAdapter = bind(_LOG, guard=self._name)
        functools.update_wrapper(self, target, updated=())

    # ---------------------- public API ----------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def target(self) -> Callable[..., R]:
        return self._target

    @property
    def loser_policy(self) -> LoserPolicy:
        return self._loser_policy

    @property
    def fired(self) -> bool:
        with self._lock:
            return self._fired

    def invoke(self, *args: Any, **kwargs: Any) -> Optional[R]:
        """Run the target if this is the first call; otherwise return None."""
        if not self._try_fire():
            self._on_lose()
            return None

        self._log.debug("run-once target firing")
        try:
            result = self._target(*args, **kwargs)
        except BaseException as exc:
            self._log.warning("run-once target failed", extra={"error": type(exc).__name__})
            metrics.record_call(self._name, "failed")
            raise
        finally:
            self._done.set()
        metrics.record_call(self._name, "fired")
        return result

    __call__ = invoke

    def __get__(self, obj: Any, objtype: Any = None) -> Any:
        # bound access on an instance passes it through as the first argument
        if obj is None:
            return self
        return functools.partial(self.invoke, obj)

    def __repr__(self) -> str:
        state = "fired" if self.fired else "unfired"
        return f"<Guard {self._name} {state}>"

    # ---------------------- helpers ----------------------

    def _try_fire(self) -> bool:
        with self._lock:
            if self._fired:
                return False
            self._fired = True
            self._winner_thread = threading.get_ident()
            return True

    def _on_lose(self) -> None:
        self._log.debug("run-once call skipped")
        metrics.record_call(self._name, "skipped")
        if self._loser_policy != "wait":
            return
        # re-entrant call from inside the target: waiting would deadlock
        if self._winner_thread == threading.get_ident() and not self._done.is_set():
            return
        started = time.monotonic()
        finished = self._done.wait(self._wait_timeout_s)
        metrics.observe_wait(self._name, time.monotonic() - started)
        if not finished:
            self._log.debug(
                "run-once wait timed out", extra={"wait_timeout_s": self._wait_timeout_s}
            )


def create_guard(
    target: Callable[..., R],
    *,
    name: Optional[str] = None,
    loser_policy: Optional[str] = None,
    wait_timeout_s: Optional[float] = None,
) -> Guard[R]:
    """Return a new unfired ``Guard`` wrapping ``target``."""
    return Guard(target, name=name, loser_policy=loser_policy, wait_timeout_s=wait_timeout_s)


@overload
def run_once(func: Callable[..., Any], /) -> Any: ...


@overload
def run_once(
    *,
    name: Optional[str] = None,
    loser_policy: Optional[str] = None,
    wait_timeout_s: Optional[float] = None,
) -> Callable[[Callable[..., Any]], Any]: ...


def run_once(
    func: Optional[Callable[..., Any]] = None,
    /,
    *,
    name: Optional[str] = None,
    loser_policy: Optional[str] = None,
    wait_timeout_s: Optional[float] = None,
) -> Any:
    """Decorator form of ``create_guard``.

        @run_once
        def init() -> None: ...

        @run_once(loser_policy="wait")
        async def connect() -> None: ...

    Coroutine functions get an ``AsyncGuard``. Decorating a method yields one
    guard shared by every instance of the class.
    """

    def decorate(fn: Callable[..., Any]) -> Any:
        if inspect.iscoroutinefunction(fn):
            from runonce.async_guard import AsyncGuard

            return AsyncGuard(
                fn, name=name, loser_policy=loser_policy, wait_timeout_s=wait_timeout_s
            )
        return Guard(fn, name=name, loser_policy=loser_policy, wait_timeout_s=wait_timeout_s)

    if func is not None:
        return decorate(func)
    return decorate
