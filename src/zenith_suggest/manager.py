import asyncio
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from zenith_suggest.classifiers.base import SuggestionSource
from zenith_suggest.classifiers.patterns import PatternDetector
from zenith_suggest.classifiers.rules import RuleEngine
from zenith_suggest.classifiers.similarity import SimilarityMatcher
from zenith_suggest.classifiers.user import UserBehaviorSource
from zenith_suggest.core.configuration import EngineConfig
from zenith_suggest.domain.cache import LRUCache
from zenith_suggest.domain.categories import category_icon, category_info
from zenith_suggest.integration.store import TransactionStore
from zenith_suggest.logger import get_logger
from zenith_suggest.models import (
    ConfidenceLevel,
    Contribution,
    FeedbackRecord,
    SuggestedAction,
    Suggestion,
    Transaction,
    UserPreferences,
)
from zenith_suggest.services.preferences import PreferenceManager

logger = get_logger(__name__)

SOURCE_WEIGHTS = {
    "similarity": 0.35,
    "pattern": 0.30,
    "rule": 0.25,
    "user_behavior": 0.10,
}

CONFIDENCE_THRESHOLDS = {
    "HIGH": 0.85,
    "MEDIUM": 0.70,
    "LOW": 0.50,
}

_LEVEL_RANK = {"HIGH": 3, "MEDIUM": 2, "LOW": 1, "VERY_LOW": 0}

MAX_CONFIDENCE = 0.99
PREFERRED_BOOST = 1.1
AVOIDED_PENALTY = 0.8
DEFAULT_HISTORY_LIMIT = 1000
DEFAULT_CACHE_SIZE = 2048
DEFAULT_MAX_SUGGESTIONS = 5
DEFAULT_MIN_CONFIDENCE = 0.5
PRECOMPUTE_MAX_SUGGESTIONS = 8


def cache_key(transaction: Transaction) -> str:
    return "|".join((
        transaction.date.isoformat(),
        transaction.recipient,
        str(transaction.amount),
        transaction.description[:50],
    ))


def merge_contributions(
    contributions: Iterable[Contribution],
    *,
    include_reasons: bool = True,
) -> list[Suggestion]:
    """Fold source contributions into one suggestion per category.

    The merged confidence is the weighted mean of the raw source confidences,
    using each contribution's source weight, capped at ``MAX_CONFIDENCE``.
    """
    grouped: dict[str, list[Contribution]] = {}
    for contribution in contributions:
        grouped.setdefault(contribution.category, []).append(contribution)

    merged: list[Suggestion] = []
    for category, items in grouped.items():
        total_weight = sum(item.weight for item in items)
        if total_weight <= 0:
            continue
        confidence = sum(item.confidence for item in items) / total_weight

        sources: list[str] = []
        reasons: list[str] = []
        evidence: dict[str, list[dict[str, Any]]] = {}
        for item in items:
            if item.source not in sources:
                sources.append(item.source)
            if include_reasons and item.reasoning:
                reasons.append(item.reasoning)
            evidence.setdefault(item.source, []).append(item.evidence)

        merged.append(Suggestion(
            category=category,
            confidence=min(max(confidence, 0.0), MAX_CONFIDENCE),
            sources=sources,
            reasons=reasons,
            evidence=evidence,
        ))
    return merged


def apply_user_preferences(
    suggestions: Sequence[Suggestion],
    preferences: UserPreferences | None,
) -> list[Suggestion]:
    if preferences is None:
        return list(suggestions)

    adjusted: list[Suggestion] = []
    for suggestion in suggestions:
        confidence = suggestion.confidence
        if suggestion.category in preferences.preferred_categories:
            confidence *= PREFERRED_BOOST
        if suggestion.category in preferences.avoided_categories:
            confidence *= AVOIDED_PENALTY
        adjusted.append(suggestion.model_copy(update={"confidence": min(confidence, MAX_CONFIDENCE)}))
    return adjusted


def get_confidence_level(confidence: float) -> ConfidenceLevel:
    if confidence >= CONFIDENCE_THRESHOLDS["HIGH"]:
        return "HIGH"
    if confidence >= CONFIDENCE_THRESHOLDS["MEDIUM"]:
        return "MEDIUM"
    if confidence >= CONFIDENCE_THRESHOLDS["LOW"]:
        return "LOW"
    return "VERY_LOW"


def get_suggested_action(confidence: float) -> SuggestedAction:
    if confidence >= 0.9:
        return "auto_apply"
    if confidence >= 0.75:
        return "suggest_strongly"
    if confidence >= 0.6:
        return "suggest"
    return "show_option"


def generate_combined_reasoning(reasons: Sequence[str]) -> str:
    if not reasons:
        return "Basierend auf Transaktionsanalyse"
    if len(reasons) == 1:
        return reasons[0]
    extra = len(reasons) - 1
    noun = "Indikator" if extra == 1 else "Indikatoren"
    return f"{reasons[0]} (+{extra} weitere {noun})"


class SuggestionEngine:
    """Runs every suggestion source for a transaction and ranks the merged result."""

    def __init__(
        self,
        store: TransactionStore,
        *,
        similarity: SimilarityMatcher | None = None,
        patterns: PatternDetector | None = None,
        rules: RuleEngine | None = None,
        preferences: PreferenceManager | None = None,
        user_behavior: UserBehaviorSource | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        cache_size: int = DEFAULT_CACHE_SIZE,
        cache_ttl: float | None = None,
        max_suggestions: int = DEFAULT_MAX_SUGGESTIONS,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    ) -> None:
        self.store = store
        self.history_limit = history_limit
        self.max_suggestions = max_suggestions
        self.min_confidence = min_confidence

        self.similarity = similarity or SimilarityMatcher(store, weight=SOURCE_WEIGHTS["similarity"])
        self.patterns = patterns or PatternDetector(
            store,
            weight=SOURCE_WEIGHTS["pattern"],
            history_limit=history_limit,
        )
        self.rules = rules or RuleEngine(weight=SOURCE_WEIGHTS["rule"])
        self.preferences = preferences or PreferenceManager(store)
        self.user_behavior = user_behavior or UserBehaviorSource(
            self.preferences,
            weight=SOURCE_WEIGHTS["user_behavior"],
        )

        self.sources: list[SuggestionSource] = [
            self.similarity,
            self.patterns,
            self.rules,
            self.user_behavior,
        ]
        self.cache: LRUCache[list[Suggestion]] = LRUCache(cache_size, ttl=cache_ttl)
        self._background_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, store: TransactionStore, config: EngineConfig) -> "SuggestionEngine":
        similarity = SimilarityMatcher(
            store,
            weight=SOURCE_WEIGHTS["similarity"],
            min_similarity=config.similarity_min_score,
            history_limit=config.similarity_history_limit,
            cache_size=config.similarity_cache_size,
        )
        return cls(
            store,
            similarity=similarity,
            history_limit=config.history_limit,
            cache_size=config.suggestion_cache_size,
            cache_ttl=config.suggestion_cache_ttl or None,
            max_suggestions=config.max_suggestions,
            min_confidence=config.min_confidence,
        )

    async def get_suggestions(
        self,
        transaction: Transaction,
        *,
        max_suggestions: int | None = None,
        min_confidence: float | None = None,
        include_reasons: bool = True,
        prefer_high_confidence: bool = True,
    ) -> list[Suggestion]:
        """Ranked suggestions for ``transaction``.

        ``max_suggestions`` and ``min_confidence`` fall back to the engine's
        configured values when omitted.
        """
        if max_suggestions is None:
            max_suggestions = self.max_suggestions
        if min_confidence is None:
            min_confidence = self.min_confidence

        key = cache_key(transaction)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("[SUGGEST] Cache hit for '%s'", transaction.recipient[:50])
            return list(cached)

        try:
            preferences = await self.preferences.get()
            history = await self.store.get_transactions(
                order_by="date",
                most_recent_first=True,
                limit=self.history_limit,
            )

            results = await asyncio.gather(
                *(source.suggest(transaction, history) for source in self.sources)
            )
            contributions: list[Contribution] = []
            for source, source_results in zip(self.sources, results):
                logger.debug(
                    "[SUGGEST] %s returned %d contribution(s) for '%s'",
                    source.name,
                    len(source_results),
                    transaction.recipient[:50],
                )
                contributions.extend(source_results)

            suggestions = merge_contributions(contributions, include_reasons=include_reasons)
            suggestions = apply_user_preferences(suggestions, preferences)
            suggestions = [s for s in suggestions if s.confidence >= min_confidence]

            if prefer_high_confidence:
                suggestions.sort(
                    key=lambda s: (_LEVEL_RANK[get_confidence_level(s.confidence)], s.confidence),
                    reverse=True,
                )
            else:
                suggestions.sort(key=lambda s: s.confidence, reverse=True)

            suggestions = await self.enrich_suggestions(suggestions[:max_suggestions])
        except Exception:
            logger.exception("[SUGGEST] Failed to build suggestions for '%s'", transaction.recipient[:50])
            return []

        if suggestions:
            self.cache.set(key, list(suggestions))
        logger.debug(
            "[SUGGEST] %d suggestion(s) for '%s': %s",
            len(suggestions),
            transaction.recipient[:50],
            ", ".join(f"{s.category}={s.confidence:.2f}" for s in suggestions),
        )
        return suggestions

    async def get_category_usage_count(self, category: str) -> int:
        try:
            return await self.store.count_transactions_by_category(category)
        except Exception as exc:
            logger.debug("[SUGGEST] Usage count for '%s' unavailable: %s", category, exc)
            return 0

    async def get_last_used_date(self, category: str) -> datetime | None:
        try:
            return await self.store.get_last_transaction_date_by_category(category)
        except Exception as exc:
            logger.debug("[SUGGEST] Last use of '%s' unavailable: %s", category, exc)
            return None

    async def enrich_suggestions(self, suggestions: Sequence[Suggestion]) -> list[Suggestion]:
        enriched: list[Suggestion] = []
        for suggestion in suggestions:
            usage_count = await self.get_category_usage_count(suggestion.category)
            last_used = await self.get_last_used_date(suggestion.category)
            info = category_info(suggestion.category)
            enriched.append(suggestion.model_copy(update={
                "confidence_level": get_confidence_level(suggestion.confidence),
                "suggested_action": get_suggested_action(suggestion.confidence),
                "icon": category_icon(suggestion.category),
                "color": info.color,
                "last_used": last_used,
                "usage_count": usage_count,
                "combined_reasoning": generate_combined_reasoning(suggestion.reasons),
            }))
        return enriched

    async def learn_from_feedback(
        self,
        transaction: Transaction,
        selected_category: str,
        rejected_suggestions: Sequence[str] | None = None,
    ) -> bool:
        rejected = list(rejected_suggestions or [])
        record = FeedbackRecord(
            transaction=transaction,
            selected_category=selected_category,
            rejected_suggestions=rejected,
        )
        try:
            key = f"feedback_{int(record.timestamp.timestamp() * 1000)}"
            await self.store.put_setting(key, record.model_dump(mode="json"))
            await self.preferences.update(selected_category, rejected)
        except Exception:
            logger.exception("[PREFS] Failed to learn from feedback for '%s'", selected_category)
            return False

        logger.info(
            "[PREFS] Learned '%s' (rejected: %s)",
            selected_category,
            ", ".join(rejected) or "-",
        )
        return True

    async def load_user_preferences(self) -> UserPreferences | None:
        self.preferences.reset()
        return await self.preferences.get()

    def refresh(self) -> None:
        suggestions = self.cache.clear()
        pairs = self.similarity.clear_cache()
        self.preferences.reset()
        logger.info("[SUGGEST] Refreshed: dropped %d suggestion lists and %d similarity scores", suggestions, pairs)

    async def precompute_suggestions(self, transaction: Transaction) -> bool:
        """Warm the cache for ``transaction``; True only when a new list was cached."""
        if cache_key(transaction) in self.cache:
            return False
        try:
            suggestions = await self.get_suggestions(transaction, max_suggestions=PRECOMPUTE_MAX_SUGGESTIONS)
        except Exception:
            logger.exception("[SUGGEST] Precompute failed for '%s'", transaction.recipient[:50])
            return False
        return bool(suggestions)

    def schedule_precompute(self, transaction: Transaction) -> asyncio.Task:
        task = asyncio.create_task(self.precompute_suggestions(transaction))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    def get_stats(self) -> dict[str, Any]:
        return {
            "cache_size": len(self.cache),
            "cache_capacity": self.cache.max_size,
            "preferences_loaded": self.preferences.is_loaded,
            "sources": [source.name for source in self.sources],
            "source_weights": {source.name: source.weight for source in self.sources},
            "thresholds": dict(CONFIDENCE_THRESHOLDS),
            "pending_precomputes": len(self._background_tasks),
            "similarity": self.similarity.get_stats(),
        }
