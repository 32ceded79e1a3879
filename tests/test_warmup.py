from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from zenith_suggest.core.configuration import EngineConfig
from zenith_suggest.manager import SuggestionEngine, cache_key
from zenith_suggest.models import Transaction
from zenith_suggest.services.warmup import WarmupManager


def _imported() -> list[Transaction]:
    return [
        Transaction(date=datetime(2024, 6, day), recipient=recipient, amount=amount)
        for day, recipient, amount in (
            (3, "REWE Markt", -31.2),
            (4, "Shell Tankstelle", -62.0),
            (5, "Netflix", -15.99),
            (6, "Apotheke am Markt", -8.5),
        )
    ]


@pytest.mark.anyio
async def test_warmup_precomputes_every_transaction(empty_store):
    engine = SuggestionEngine(empty_store)
    manager = WarmupManager(engine, batch_size=3)
    transactions = _imported()

    summary = await manager.run(transactions)

    assert summary["stage"] == "complete"
    assert summary["warmed"] == 4
    assert summary["skipped"] == 0
    assert summary["processed"] == 4
    assert all(cache_key(tx) in engine.cache for tx in transactions)
    assert manager.get_status()["active"] is False


@pytest.mark.anyio
async def test_warmup_skips_already_warmed_fingerprints(empty_store):
    engine = SuggestionEngine(empty_store)
    manager = WarmupManager(engine, batch_size=2)
    transactions = _imported()

    await manager.run(transactions[:2])
    summary = await manager.run(transactions)

    assert summary["warmed"] == 2
    assert summary["skipped"] == 2
    assert manager.reset_state() == 4


@pytest.mark.anyio
async def test_warmup_pause_stops_after_current_batch(empty_store):
    engine = SuggestionEngine(empty_store)
    manager = WarmupManager(engine, batch_size=2)

    async def precompute_and_pause(transaction):
        manager.request_pause()
        return True

    engine.precompute_suggestions = AsyncMock(side_effect=precompute_and_pause)

    summary = await manager.run(_imported())

    assert summary["stage"] == "paused"
    assert summary["processed"] == 2
    assert engine.precompute_suggestions.await_count == 2


def test_request_pause_when_idle(empty_store):
    manager = WarmupManager(SuggestionEngine(empty_store))

    assert manager.request_pause() is False
    assert manager.get_status() == {"stage": "idle", "active": False}


@pytest.mark.anyio
async def test_empty_results_are_retried_on_next_run(empty_store):
    engine = SuggestionEngine(empty_store)
    manager = WarmupManager(engine)
    tx = _imported()[0]
    engine.rules.suggest = AsyncMock(return_value=[])

    first = await manager.run([tx])

    assert first["warmed"] == 0
    assert first["skipped"] == 1
    assert cache_key(tx) not in manager.seen_keys
    assert len(engine.cache) == 0

    del engine.rules.suggest
    second = await manager.run([tx])

    assert second["warmed"] == 1
    assert second["skipped"] == 0
    assert cache_key(tx) in engine.cache
    assert cache_key(tx) in manager.seen_keys


@pytest.mark.anyio
async def test_duplicate_fingerprints_in_one_batch_are_warmed_once(empty_store):
    engine = SuggestionEngine(empty_store)
    manager = WarmupManager(engine, batch_size=3)
    tx = _imported()[0]

    summary = await manager.run([tx, tx.model_copy()])

    assert summary["warmed"] == 1
    assert summary["skipped"] == 1


def test_from_config_uses_warmup_batch_size(empty_store):
    manager = WarmupManager.from_config(SuggestionEngine(empty_store), EngineConfig(warmup_batch_size=7))

    assert manager.batch_size == 7
