from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from zenith_suggest.core.configuration import EngineConfig
from zenith_suggest.integration.store import InMemoryTransactionStore, StoreError
from zenith_suggest.manager import (
    SuggestionEngine,
    apply_user_preferences,
    cache_key,
    generate_combined_reasoning,
    get_confidence_level,
    get_suggested_action,
    merge_contributions,
)
from zenith_suggest.models import (
    PatternContribution,
    RuleContribution,
    SimilarityContribution,
    Suggestion,
    Transaction,
    UserPreferences,
)
from zenith_suggest.services.preferences import PREFERENCES_KEY


def _netflix_tx() -> Transaction:
    return Transaction(
        date=datetime(2024, 6, 15),
        recipient="Netflix International B.V.",
        description="Netflix Monatsabo",
        amount=-15.99,
    )


def _rewe_tx() -> Transaction:
    return Transaction(date=datetime(2024, 6, 8), recipient="REWE Markt Berlin", amount=-23.45)


def test_merge_is_weighted_average_of_raw_confidences():
    merged = merge_contributions([
        SimilarityContribution(category="A", original_confidence=0.8, weight=0.35, reasoning="sim"),
        RuleContribution(category="A", original_confidence=0.6, weight=0.25, rule_id=0, reasoning="rule"),
        RuleContribution(category="B", original_confidence=0.9, weight=0.25, rule_id=1, reasoning="rule b"),
    ])

    by_category = {suggestion.category: suggestion for suggestion in merged}
    assert by_category["A"].confidence == pytest.approx((0.8 * 0.35 + 0.6 * 0.25) / 0.6)
    assert by_category["A"].sources == ["similarity", "rule"]
    assert by_category["A"].reasons == ["sim", "rule"]
    assert set(by_category["A"].evidence) == {"similarity", "rule"}
    assert by_category["B"].confidence == pytest.approx(0.9)


def test_merge_confidence_is_bounded():
    merged = merge_contributions([
        PatternContribution(category="A", original_confidence=1.0, weight=0.3, pattern_type="recurring"),
        PatternContribution(category="A", original_confidence=1.0, weight=0.3, pattern_type="temporal"),
        RuleContribution(category="B", original_confidence=-0.5, weight=0.25, rule_id=0),
    ])

    for suggestion in merged:
        assert 0.0 <= suggestion.confidence <= 0.99
    assert merged[0].sources == ["pattern"]


def test_merge_can_skip_reasons():
    merged = merge_contributions(
        [RuleContribution(category="A", original_confidence=0.9, weight=0.25, rule_id=0, reasoning="x")],
        include_reasons=False,
    )
    assert merged[0].reasons == []


def test_personalization_factors():
    suggestion = Suggestion(category="A", confidence=0.5)

    preferred = apply_user_preferences([suggestion], UserPreferences(preferred_categories=["A"]))
    avoided = apply_user_preferences([suggestion], UserPreferences(avoided_categories=["A"]))
    capped = apply_user_preferences(
        [Suggestion(category="A", confidence=0.95)],
        UserPreferences(preferred_categories=["A"]),
    )

    assert preferred[0].confidence == pytest.approx(0.55)
    assert avoided[0].confidence == pytest.approx(0.4)
    assert capped[0].confidence == 0.99
    assert apply_user_preferences([suggestion], None)[0].confidence == 0.5


@pytest.mark.parametrize(
    ("confidence", "level", "action"),
    [
        (0.95, "HIGH", "auto_apply"),
        (0.86, "HIGH", "suggest_strongly"),
        (0.72, "MEDIUM", "suggest"),
        (0.55, "LOW", "show_option"),
        (0.2, "VERY_LOW", "show_option"),
    ],
)
def test_confidence_level_and_action(confidence, level, action):
    assert get_confidence_level(confidence) == level
    assert get_suggested_action(confidence) == action


def test_combined_reasoning():
    assert generate_combined_reasoning([]) == "Basierend auf Transaktionsanalyse"
    assert generate_combined_reasoning(["a"]) == "a"
    assert generate_combined_reasoning(["a", "b"]) == "a (+1 weitere Indikator)"
    assert generate_combined_reasoning(["a", "b", "c"]) == "a (+2 weitere Indikatoren)"


def test_cache_key_is_fingerprint():
    tx = Transaction(date=datetime(2024, 6, 8), recipient="REWE", description="x" * 80, amount=-5.5)
    assert cache_key(tx) == f"2024-06-08T00:00:00|REWE|-5.5|{'x' * 50}"


@pytest.mark.anyio
async def test_netflix_end_to_end(netflix_store):
    engine = SuggestionEngine(netflix_store)

    suggestions = await engine.get_suggestions(_netflix_tx())

    assert suggestions
    top = suggestions[0]
    assert top.category == "Unterhaltung"
    assert top.confidence_level == "HIGH"
    assert top.suggested_action == "auto_apply"
    assert top.confidence <= 0.99
    assert set(top.sources) == {"similarity", "pattern", "rule", "user_behavior"}
    assert top.usage_count == 5
    assert top.last_used == datetime(2024, 5, 15)
    assert top.icon == "🎬"
    assert top.combined_reasoning.endswith("weitere Indikatoren)")


@pytest.mark.anyio
async def test_rule_only_suggestion_on_empty_store(empty_store):
    engine = SuggestionEngine(empty_store)

    suggestions = await engine.get_suggestions(_rewe_tx())

    assert [s.category for s in suggestions] == ["Lebensmittel"]
    assert suggestions[0].confidence == pytest.approx(0.9)
    assert suggestions[0].sources == ["rule"]
    assert suggestions[0].usage_count == 0
    assert suggestions[0].last_used is None


@pytest.mark.anyio
async def test_min_confidence_filters_everything(empty_store):
    engine = SuggestionEngine(empty_store)

    assert await engine.get_suggestions(_rewe_tx(), min_confidence=0.95) == []
    assert len(engine.cache) == 0


@pytest.mark.anyio
async def test_second_call_is_served_from_cache(empty_store):
    engine = SuggestionEngine(empty_store)
    tx = _rewe_tx()

    first = await engine.get_suggestions(tx)
    engine.rules.suggest = AsyncMock(return_value=[])
    second = await engine.get_suggestions(tx)

    assert second == first
    engine.rules.suggest.assert_not_awaited()


@pytest.mark.anyio
async def test_store_failure_yields_empty_list():
    store = AsyncMock()
    store.get_setting.return_value = None
    store.get_transactions.side_effect = StoreError("database unavailable")
    engine = SuggestionEngine(store)

    assert await engine.get_suggestions(_rewe_tx()) == []


@pytest.mark.anyio
async def test_learn_from_feedback(empty_store):
    engine = SuggestionEngine(empty_store)
    tx = _rewe_tx()

    learned = await engine.learn_from_feedback(tx, "Lebensmittel", ["Shopping"])

    assert learned is True
    preferences = engine.preferences.preferences
    assert preferences.preferred_categories[0] == "Lebensmittel"
    assert "Shopping" in preferences.avoided_categories
    assert empty_store.settings[PREFERENCES_KEY]["avoided_categories"] == ["Shopping"]
    feedback = [value for key, value in empty_store.settings.items() if key.startswith("feedback_")]
    assert len(feedback) == 1
    assert feedback[0]["selected_category"] == "Lebensmittel"
    assert feedback[0]["rejected_suggestions"] == ["Shopping"]

    reloaded = await engine.load_user_preferences()

    assert reloaded is not preferences
    assert reloaded.preferred_categories == ["Lebensmittel"]
    assert reloaded.avoided_categories == ["Shopping"]


@pytest.mark.anyio
async def test_learn_from_feedback_reports_store_failure():
    store = AsyncMock()
    store.put_setting.side_effect = StoreError("read-only")
    engine = SuggestionEngine(store)

    assert await engine.learn_from_feedback(_rewe_tx(), "Lebensmittel") is False


@pytest.mark.anyio
async def test_avoided_category_is_penalised(empty_store):
    engine = SuggestionEngine(empty_store)
    await engine.learn_from_feedback(_rewe_tx(), "Haushalt", ["Lebensmittel"])

    suggestions = await engine.get_suggestions(_rewe_tx(), min_confidence=0.0)

    assert suggestions[0].category == "Lebensmittel"
    assert suggestions[0].confidence == pytest.approx(0.72)


@pytest.mark.anyio
async def test_refresh_clears_caches_and_preferences(netflix_store):
    engine = SuggestionEngine(netflix_store)
    await engine.get_suggestions(_netflix_tx())
    assert len(engine.cache) == 1
    assert len(engine.similarity.cache) > 0
    assert engine.preferences.is_loaded

    engine.refresh()

    assert len(engine.cache) == 0
    assert len(engine.similarity.cache) == 0
    assert not engine.preferences.is_loaded


@pytest.mark.anyio
async def test_load_user_preferences_rereads_store(netflix_store):
    engine = SuggestionEngine(netflix_store)

    preferences = await engine.load_user_preferences()

    assert preferences.preferred_categories == ["Unterhaltung"]
    assert engine.preferences.is_loaded


@pytest.mark.anyio
async def test_precompute_and_schedule(empty_store):
    engine = SuggestionEngine(empty_store)
    tx = _rewe_tx()

    task = engine.schedule_precompute(tx)
    assert await task is True
    assert cache_key(tx) in engine.cache
    assert await engine.precompute_suggestions(tx) is False
    assert engine.get_stats()["pending_precomputes"] == 0


@pytest.mark.anyio
async def test_get_stats(empty_store):
    engine = SuggestionEngine(empty_store)
    await engine.get_suggestions(_rewe_tx())

    stats = engine.get_stats()

    assert stats["cache_size"] == 1
    assert stats["sources"] == ["similarity", "pattern", "rule", "user_behavior"]
    assert stats["thresholds"] == {"HIGH": 0.85, "MEDIUM": 0.70, "LOW": 0.50}
    assert stats["preferences_loaded"] is False
    assert stats["similarity"]["thresholds"]["min"] == 0.6


def test_from_config_wires_knobs():
    config = EngineConfig(
        history_limit=200,
        similarity_history_limit=50,
        similarity_min_score=0.7,
        suggestion_cache_size=16,
        similarity_cache_size=32,
        suggestion_cache_ttl=30,
    )

    engine = SuggestionEngine.from_config(InMemoryTransactionStore(), config)

    assert engine.max_suggestions == 5
    assert engine.min_confidence == 0.5
    assert engine.history_limit == 200
    assert engine.patterns.history_limit == 200
    assert engine.similarity.history_limit == 50
    assert engine.similarity.min_similarity == 0.7
    assert engine.similarity.cache.max_size == 32
    assert engine.cache.max_size == 16
    assert engine.cache.ttl == 30


@pytest.mark.anyio
async def test_mixed_timezone_history_still_suggests(mixed_tz_history):
    engine = SuggestionEngine(InMemoryTransactionStore(mixed_tz_history))

    suggestions = await engine.get_suggestions(_netflix_tx())

    assert suggestions[0].category == "Unterhaltung"
    assert suggestions[0].confidence_level == "HIGH"
    assert suggestions[0].last_used == datetime(2024, 5, 15)


@pytest.mark.anyio
async def test_failed_usage_lookup_keeps_suggestions(empty_store):
    empty_store.count_transactions_by_category = AsyncMock(side_effect=RuntimeError("index missing"))
    engine = SuggestionEngine(empty_store)

    suggestions = await engine.get_suggestions(_rewe_tx())

    assert [s.category for s in suggestions] == ["Lebensmittel"]
    assert suggestions[0].usage_count == 0
    assert suggestions[0].confidence_level == "HIGH"


@pytest.mark.anyio
async def test_failed_last_used_lookup_keeps_suggestions(netflix_store):
    netflix_store.get_last_transaction_date_by_category = AsyncMock(side_effect=StoreError("timeout"))
    engine = SuggestionEngine(netflix_store)

    suggestions = await engine.get_suggestions(_netflix_tx())

    assert suggestions[0].category == "Unterhaltung"
    assert suggestions[0].last_used is None
    assert suggestions[0].usage_count == 5


@pytest.mark.anyio
async def test_cached_list_is_not_shared_with_callers(empty_store):
    engine = SuggestionEngine(empty_store)
    tx = _rewe_tx()

    first = await engine.get_suggestions(tx)
    first.clear()
    second = await engine.get_suggestions(tx)

    assert [s.category for s in second] == ["Lebensmittel"]


@pytest.mark.anyio
async def test_configured_limits_are_default_for_get_suggestions(empty_store):
    engine = SuggestionEngine.from_config(empty_store, EngineConfig(min_confidence=0.95))

    assert await engine.get_suggestions(_rewe_tx()) == []
    assert [s.category for s in await engine.get_suggestions(_rewe_tx(), min_confidence=0.5)] == ["Lebensmittel"]


@pytest.mark.anyio
async def test_configured_max_suggestions_truncates(empty_store):
    engine = SuggestionEngine.from_config(empty_store, EngineConfig(max_suggestions=1))
    engine.rules.suggest = AsyncMock(return_value=[
        RuleContribution(category="Lebensmittel", original_confidence=0.9, weight=0.25, rule_id=0),
        RuleContribution(category="Haushalt", original_confidence=0.8, weight=0.25, rule_id=1),
    ])

    suggestions = await engine.get_suggestions(_rewe_tx())

    assert [s.category for s in suggestions] == ["Lebensmittel"]


@pytest.mark.anyio
async def test_precompute_reports_empty_results(empty_store):
    engine = SuggestionEngine(empty_store)
    tx = Transaction(date=datetime(2024, 6, 8), recipient="Kiosk am Eck", amount=-3.2)

    assert await engine.precompute_suggestions(tx) is False
    assert cache_key(tx) not in engine.cache
