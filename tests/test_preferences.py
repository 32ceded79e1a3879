from datetime import datetime

import pytest

from zenith_suggest.classifiers.user import UserBehaviorSource
from zenith_suggest.integration.store import InMemoryTransactionStore
from zenith_suggest.models import CategoryUsage, Transaction, UserPreferences
from zenith_suggest.services.preferences import PREFERENCES_KEY, PreferenceManager


@pytest.fixture
def grocery_store():
    return InMemoryTransactionStore([
        Transaction(date=datetime(2024, 5, day), recipient="REWE", amount=-30, category="Lebensmittel")
        for day in (2, 9, 16)
    ] + [
        Transaction(date=datetime(2024, 5, 20), recipient="Shell", amount=-70, category="Transport"),
    ])


@pytest.mark.anyio
async def test_generate_preferences_from_history(grocery_store):
    manager = PreferenceManager(grocery_store)

    preferences = await manager.get()

    assert preferences is not None
    assert [usage.category for usage in preferences.top_categories] == ["Lebensmittel", "Transport"]
    assert preferences.top_categories[0].frequency == 75
    assert preferences.top_categories[0].avg_amount == 30
    assert preferences.preferred_categories == ["Lebensmittel", "Transport"]
    assert preferences.avoided_categories == []
    assert PREFERENCES_KEY in grocery_store.settings


@pytest.mark.anyio
async def test_no_transactions_means_no_preferences(empty_store):
    manager = PreferenceManager(empty_store)

    assert await manager.get() is None
    assert not manager.is_loaded


@pytest.mark.anyio
async def test_stored_preferences_are_loaded():
    stored = UserPreferences(preferred_categories=["Reisen"]).model_dump(mode="json")
    store = InMemoryTransactionStore(settings={PREFERENCES_KEY: stored})
    manager = PreferenceManager(store)

    preferences = await manager.get()

    assert preferences.preferred_categories == ["Reisen"]


@pytest.mark.anyio
async def test_update_moves_selected_to_front_and_caps(grocery_store):
    manager = PreferenceManager(grocery_store)
    await manager.get()

    await manager.update("Transport", ["Shopping", "Shopping"])
    preferences = await manager.update("Lebensmittel", ["Reisen"])

    assert preferences.preferred_categories[:2] == ["Lebensmittel", "Transport"]
    assert preferences.preferred_categories.count("Lebensmittel") == 1
    assert preferences.avoided_categories == ["Shopping", "Reisen"]
    assert grocery_store.settings[PREFERENCES_KEY]["preferred_categories"][0] == "Lebensmittel"

    for index in range(15):
        preferences = await manager.update(f"Kategorie {index}", [f"Abgelehnt {index}", f"Nein {index}"])
    assert len(preferences.preferred_categories) == 10
    assert len(preferences.avoided_categories) == 20


@pytest.mark.anyio
async def test_update_without_any_history_creates_preferences(empty_store):
    manager = PreferenceManager(empty_store)

    preferences = await manager.update("Lebensmittel", [])

    assert preferences.preferred_categories == ["Lebensmittel"]
    assert empty_store.settings[PREFERENCES_KEY]["preferred_categories"] == ["Lebensmittel"]


@pytest.mark.anyio
async def test_user_behavior_source_ranks_top_categories(empty_store):
    manager = PreferenceManager(empty_store)
    manager.preferences = UserPreferences(top_categories=[
        CategoryUsage(category="Lebensmittel", frequency=50, avg_amount=30.0, count=10),
        CategoryUsage(category="Transport", frequency=30, avg_amount=70.0, count=6),
        CategoryUsage(category="Sonstiges", frequency=5, avg_amount=500.0, count=1),
    ])
    source = UserBehaviorSource(manager)
    tx = Transaction(date=datetime(2024, 6, 1), recipient="REWE", amount=-28)
    history = [tx]

    contributions = await source.suggest(tx, history)

    assert [c.category for c in contributions] == ["Lebensmittel"]
    assert contributions[0].original_confidence == pytest.approx(0.7)
    assert contributions[0].evidence["category_rank"] == 1
    assert "(50% Ihrer Transaktionen)" in contributions[0].reasoning


@pytest.mark.anyio
async def test_user_behavior_source_needs_preferences_and_history(empty_store):
    manager = PreferenceManager(empty_store)
    source = UserBehaviorSource(manager)
    tx = Transaction(date=datetime(2024, 6, 1), recipient="REWE", amount=-28)

    assert await source.suggest(tx, [tx]) == []

    manager.preferences = UserPreferences(top_categories=[
        CategoryUsage(category="Lebensmittel", frequency=50, avg_amount=30.0, count=10),
    ])
    assert await source.suggest(tx, []) == []
