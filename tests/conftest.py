"""Shared fixtures for the planning engine tests."""

from datetime import date, datetime

import pytest

from masterplan.constants import PlanningConstants, build_constants
from masterplan.data_loader import normalize_row


# Monday 2025-01-06
MONDAY = date(2025, 1, 6)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def constants() -> PlanningConstants:
    return build_constants()


@pytest.fixture
def today() -> date:
    return MONDAY


@pytest.fixture
def epoch() -> datetime:
    return datetime(2025, 1, 6, 9, 0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def explicit_row() -> dict:
    return {"PO": "100", "PROYECTO": "BAG A", "MATERIAL": "PP", "IMPRESION": "TRUE", "TROQUELADO": "TRUE"}


@pytest.fixture
def fallback_row() -> dict:
    return {"PO": "101", "PROYECTO": "BAG B", "MATERIAL": "PP"}


@pytest.fixture
def make_normalized(constants):
    """Normalize a raw row dict with the default constants."""
    def _make(row: dict, row_number: int = 2):
        return normalize_row(row, row_number, constants)
    return _make
