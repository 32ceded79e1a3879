from datetime import date, datetime

import pytest

from zenith_suggest.integration.store import InMemoryTransactionStore
from zenith_suggest.models import Transaction


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def netflix_history() -> list[Transaction]:
    return [
        Transaction(
            id=f"nf-{month}",
            date=datetime(2024, month, 15),
            recipient="Netflix International B.V.",
            description="Netflix Monatsabo",
            amount=-15.99,
            category="Unterhaltung",
        )
        for month in range(1, 6)
    ]


@pytest.fixture
def netflix_store(netflix_history) -> InMemoryTransactionStore:
    return InMemoryTransactionStore(netflix_history)


@pytest.fixture
def empty_store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def mixed_tz_history() -> list[Transaction]:
    # odd months arrive as UTC timestamps, even months as plain dates
    return [
        Transaction(
            id=f"nf-{month}",
            date=f"2024-{month:02d}-15T00:00:00Z" if month % 2 else date(2024, month, 15),
            recipient="Netflix International B.V.",
            description="Netflix Monatsabo",
            amount=-15.99,
            category="Unterhaltung",
        )
        for month in range(1, 6)
    ]
