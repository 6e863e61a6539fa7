"""Run-once invocation guards."""

from __future__ import annotations

from .async_guard import AsyncGuard, create_async_guard
from .guard import Guard, create_guard, run_once

__all__ = [
    "AsyncGuard",
    "Guard",
    "create_async_guard",
    "create_guard",
    "run_once",
]
