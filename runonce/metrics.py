"""Prometheus metrics for run-once guards."""
from __future__ import annotations

from prometheus_client import Counter, Histogram

from runonce import settings as settings_module

OUTCOMES = ("fired", "failed", "skipped")

GUARD_CALLS = Counter(
    "runonce_guard_calls_total",
    "Calls made through a run-once guard, by outcome",
    ("guard", "outcome"),
)
# losers usually wait on short setup work; the top bucket matches the wait cap
GUARD_WAIT = Histogram(
    "runonce_guard_wait_seconds",
    "Time losing callers waited for the qualifying call to finish",
    ("guard",),
    buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 300.0, 3600.0),
)


def _enabled() -> bool:
    return bool(getattr(settings_module.settings, "metrics_enabled", True))


def record_call(guard: str, outcome: str) -> None:
    if outcome not in OUTCOMES:
        raise ValueError(f"unknown guard outcome: {outcome!r}")
    if _enabled():
        GUARD_CALLS.labels(guard, outcome).inc()


def observe_wait(guard: str, seconds: float) -> None:
    if _enabled():
        GUARD_WAIT.labels(guard).observe(max(0.0, seconds))


__all__ = ["GUARD_CALLS", "GUARD_WAIT", "OUTCOMES", "observe_wait", "record_call"]
