from __future__ import annotations

import pytest

import circuit_guard.guard as guard_mod
from tests.circuit_guard.support.fakes import FakeClock, FakeLogger


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Drive the guard's wall clock by hand."""
    fake = FakeClock()
    monkeypatch.setattr(guard_mod, "_utcnow", fake.now)
    return fake
