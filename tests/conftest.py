# tests/conftest.py
from __future__ import annotations

import asyncio
import inspect
import sys
from pathlib import Path
from typing import Iterable

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from runonce import settings as settings_module  # noqa: E402
from runonce.settings import Settings  # noqa: E402

RUNONCE_ENV_VARS: Iterable[str] = (
    "RUNONCE_LOSER_POLICY",
    "RUNONCE_WAIT_TIMEOUT_S",
    "RUNONCE_METRICS_ENABLED",
    "RUNONCE_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _default_settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    # Each test starts from library defaults regardless of the outer env.
    for key in RUNONCE_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    fresh = Settings()
    monkeypatch.setattr(settings_module, "settings", fresh)
    return fresh


# A deadlocked guard must fail the test rather than hang the run.
ASYNC_TEST_DEADLINE_S = 30.0


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Run ``async def`` tests on a fresh event loop (no pytest-asyncio)."""
    if not inspect.iscoroutinefunction(pyfuncitem.obj):
        return None
    kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
    with asyncio.Runner() as runner:
        runner.run(asyncio.wait_for(pyfuncitem.obj(**kwargs), ASYNC_TEST_DEADLINE_S))
    return True
