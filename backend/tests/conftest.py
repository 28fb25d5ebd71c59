"""Test fixtures for localdex."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("LDX_DB_PATH", str(tmp_path / "ldx.db"))
    monkeypatch.setenv("LDX_SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("LDX_WATCH_ENABLED", "false")
    monkeypatch.delenv("LDX_CONFIG", raising=False)

    from localdex.api import dependencies as deps

    deps.reset_dependencies()
    yield
    deps.reset_dependencies()


@pytest.fixture(scope="session")
def sample_text() -> str:
    return "Title\n\nParagraph one.\n\nParagraph two is here."


@pytest.fixture(params=["memory", "sqlite"])
def stores(request: pytest.FixtureRequest, tmp_path: Path):
    from localdex.db.sqlite import SQLiteDatabase
    from localdex.stores import memory_stores, sqlite_stores

    if request.param == "memory":
        bundle = memory_stores()
    else:
        bundle = sqlite_stores(SQLiteDatabase(tmp_path / "stores.db"))
    yield bundle
    bundle.close()


@pytest.fixture
def harness(stores):
    from helpers import Harness

    return Harness(stores)
