"""Shared fixtures: an in-memory backed store and a few common entities."""

from datetime import date
from decimal import Decimal

import pytest

from budgetblocks.audit import StoreEventLogger
from budgetblocks.services.storage import InMemoryStateStorage
from budgetblocks.store import EntityStore


@pytest.fixture
def storage():
    return InMemoryStateStorage(storage_key="budget-blocks-test")


@pytest.fixture
def event_logger():
    return StoreEventLogger(level="DEBUG")


@pytest.fixture
def store(storage, event_logger):
    return EntityStore(storage=storage, logger=event_logger)


@pytest.fixture
def base_a(store):
    return store.add_base({"name": "A", "type": "Checking", "balance": Decimal("100")})


@pytest.fixture
def base_b(store):
    return store.add_base({"name": "B", "type": "Savings", "balance": Decimal("500")})


@pytest.fixture
def january_bands(store):
    """Two adjacent bands covering January 2025."""
    b1 = store.add_band({
        "title": "Jan 1 - Jan 14",
        "start_date": date(2025, 1, 1),
        "end_date": date(2025, 1, 14),
    })
    b2 = store.add_band({
        "title": "Jan 15 - Jan 31",
        "start_date": date(2025, 1, 15),
        "end_date": date(2025, 1, 31),
    })
    return b1, b2
