"""Shared fixtures."""

from datetime import date

import pytest

from hub_engine.lib.circuit_breaker import CircuitBreaker

TODAY = date(2026, 10, 19)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture(autouse=True)
def reset_breakers():
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()
