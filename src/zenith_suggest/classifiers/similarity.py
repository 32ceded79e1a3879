from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from zenith_suggest.classifiers.base import SuggestionSource
from zenith_suggest.domain.cache import LRUCache
from zenith_suggest.domain.dates import days_between
from zenith_suggest.domain.text import full_text, jaccard, substring_overlap, tokenize
from zenith_suggest.features.extractor import FeatureBag, FeatureExtractor
from zenith_suggest.integration.store import TransactionStore
from zenith_suggest.logger import get_logger
from zenith_suggest.models import (
    CategoryScore,
    ComponentScore,
    SimilarityContribution,
    SimilarityExample,
    SimilarityResult,
    SimilarityScore,
    Transaction,
)

logger = get_logger(__name__)

COMPONENT_WEIGHTS = {
    "text": 0.40,
    "amount": 0.30,
    "temporal": 0.15,
    "features": 0.15,
}

DEFAULT_HISTORY_LIMIT = 500
DEFAULT_CACHE_SIZE = 20_000


def _pair_id(transaction: Transaction) -> str:
    if transaction.id:
        return transaction.id
    return f"{transaction.date.isoformat()}_{transaction.amount}_{transaction.recipient}"


class SimilarityMatcher(SuggestionSource):
    name = "similarity"

    def __init__(
        self,
        store: TransactionStore,
        extractor: FeatureExtractor | None = None,
        *,
        weight: float = 0.35,
        min_similarity: float = 0.6,
        high_similarity: float = 0.8,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ) -> None:
        self.store = store
        self.extractor = extractor or FeatureExtractor()
        self.weight = weight
        self.min_similarity = min_similarity
        self.high_similarity = high_similarity
        self.history_limit = history_limit
        self.cache: LRUCache[SimilarityScore] = LRUCache(cache_size)

    async def get_historical_transactions(
        self,
        transaction: Transaction,
        time_window_days: int | None = None,
        history: Sequence[Transaction] | None = None,
    ) -> list[Transaction]:
        if history is None:
            history = await self.store.get_transactions(
                order_by="date",
                most_recent_first=True,
                limit=self.history_limit,
            )
        candidates = list(history[: self.history_limit])

        if time_window_days:
            cutoff = datetime.now() - timedelta(days=time_window_days)
            candidates = [tx for tx in candidates if tx.date > cutoff]

        amount = transaction.abs_amount
        return [
            tx for tx in candidates
            if amount * 0.1 < tx.abs_amount < amount * 10
        ]

    async def find_similar_transactions(
        self,
        transaction: Transaction,
        *,
        limit: int = 10,
        min_similarity: float | None = None,
        time_window_days: int | None = None,
        include_features: bool = True,
        history: Sequence[Transaction] | None = None,
    ) -> list[SimilarityResult]:
        threshold = self.min_similarity if min_similarity is None else min_similarity
        candidates = await self.get_historical_transactions(transaction, time_window_days, history)
        features = self.extractor.extract_features(transaction, candidates) if include_features else None

        results: list[SimilarityResult] = []
        for candidate in candidates:
            similarity = self.calculate_transaction_similarity(
                transaction,
                candidate,
                features,
                include_features=include_features,
            )
            if similarity.score >= threshold:
                results.append(SimilarityResult(
                    transaction=candidate,
                    similarity=similarity.score,
                    reasons=similarity.reasons,
                    confidence=self.calculate_confidence(similarity.score, similarity.reasons),
                ))

        results.sort(key=lambda result: result.similarity, reverse=True)
        logger.debug(
            "[SIMILARITY] %d of %d candidates above %.2f for '%s'",
            len(results),
            len(candidates),
            threshold,
            transaction.recipient[:50],
        )
        return results[:limit]

    async def suggest_categories_by_similarity(
        self,
        transaction: Transaction,
        *,
        top_n: int = 3,
        min_similarity_for_suggestion: float | None = None,
        require_high_confidence: bool = False,
        history: Sequence[Transaction] | None = None,
    ) -> list[CategoryScore]:
        similar = await self.find_similar_transactions(
            transaction,
            limit=20,
            min_similarity=min_similarity_for_suggestion,
            history=history,
        )
        if not similar:
            return []

        grouped: dict[str, list[SimilarityResult]] = {}
        for result in similar:
            if result.transaction.category:
                grouped.setdefault(result.transaction.category, []).append(result)

        scores: list[CategoryScore] = []
        for category, matches in grouped.items():
            total = sum(match.similarity * match.confidence for match in matches)
            count = len(matches)
            examples = [
                SimilarityExample(
                    recipient=match.transaction.recipient,
                    amount=match.transaction.amount,
                    similarity=match.similarity,
                )
                for match in matches[:3]
            ]
            scores.append(CategoryScore(
                category=category,
                confidence=min(max(total / count, 0.0), 0.99),
                avg_similarity=sum(match.similarity for match in matches) / count,
                match_count=count,
                examples=examples,
                reasoning=self.generate_reasoning(category, count, len(similar), examples),
            ))

        if require_high_confidence:
            scores = [score for score in scores if score.confidence >= self.high_similarity]
        scores.sort(key=lambda score: score.confidence, reverse=True)
        return scores[:top_n]

    async def suggest(
        self, transaction: Transaction, history: Sequence[Transaction]
    ) -> list[SimilarityContribution]:
        scores = await self.suggest_categories_by_similarity(
            transaction,
            top_n=5,
            min_similarity_for_suggestion=self.min_similarity,
            history=history,
        )
        return [
            SimilarityContribution(
                category=score.category,
                original_confidence=score.confidence,
                weight=self.weight,
                reasoning=score.reasoning,
                evidence={
                    "match_count": score.match_count,
                    "avg_similarity": score.avg_similarity,
                    "examples": [example.model_dump() for example in score.examples],
                },
            )
            for score in scores
        ]

    def calculate_transaction_similarity(
        self,
        first: Transaction,
        second: Transaction,
        first_features: FeatureBag | None = None,
        *,
        include_features: bool = True,
    ) -> SimilarityScore:
        use_features = include_features and first_features is not None
        cache_key = f"{_pair_id(first)}:{_pair_id(second)}:{int(use_features)}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        reasons: list[str] = []
        components: dict[str, float] = {}

        text = self.calculate_text_similarity(first, second)
        components["text"] = text.score
        if text.score > 0.7:
            reasons.append(f"Ähnlicher Text ({round(text.score * 100)}%)")

        amount = self.calculate_amount_similarity(first, second)
        components["amount"] = amount.score
        if amount.score > 0.8:
            reasons.append(f"Ähnlicher Betrag ({amount.reason})")

        temporal = self.calculate_temporal_similarity(first, second)
        components["temporal"] = temporal.score
        if temporal.score > 0.8:
            reasons.append(f"Ähnliche Zeit ({temporal.reason})")

        if use_features:
            second_features = self.extractor.extract_features(second)
            feature_score = self.extractor.calculate_feature_similarity(first_features, second_features)
            components["features"] = feature_score
            if feature_score > 0.8:
                reasons.append(f"Ähnliche Merkmale ({round(feature_score * 100)}%)")

        total_weight = sum(COMPONENT_WEIGHTS[name] for name in components)
        score = sum(COMPONENT_WEIGHTS[name] * value for name, value in components.items()) / total_weight

        result = SimilarityScore(score=score, reasons=reasons, components=components)
        self.cache.set(cache_key, result)
        return result

    def calculate_text_similarity(self, first: Transaction, second: Transaction) -> ComponentScore:
        text_a = full_text(first.recipient, first.description).strip()
        text_b = full_text(second.recipient, second.description).strip()
        if not text_a or not text_b:
            return ComponentScore(score=0.0, reason="Kein Text verfügbar")

        jaccard_score = jaccard(tokenize(text_a), tokenize(text_b))
        substring_score = substring_overlap(first.recipient, second.recipient)
        score = max(jaccard_score, substring_score * 0.8)
        reason = "Ähnlicher Empfänger/Text" if score > 0.7 else "Geringfügige Textähnlichkeit"
        return ComponentScore(score=score, reason=reason)

    def calculate_amount_similarity(self, first: Transaction, second: Transaction) -> ComponentScore:
        amount_a = first.abs_amount
        amount_b = second.abs_amount
        if amount_a == amount_b:
            return ComponentScore(score=1.0, reason="Identischer Betrag")

        diff = abs(amount_a - amount_b)
        if diff < 1:
            return ComponentScore(score=1.0, reason="Nahezu identischer Betrag")

        percent_diff = diff / max(amount_a, amount_b)
        if percent_diff <= 0.1:
            return ComponentScore(score=0.9, reason=f"{round((1 - percent_diff) * 100)}% ähnlicher Betrag")
        if percent_diff <= 0.25:
            return ComponentScore(score=0.7, reason="Ähnlicher Betrag")

        score = max(0.0, 1 - percent_diff * 2)
        reason = "Etwas ähnlicher Betrag" if score > 0.5 else "Unterschiedlicher Betrag"
        return ComponentScore(score=score, reason=reason)

    def calculate_temporal_similarity(self, first: Transaction, second: Transaction) -> ComponentScore:
        day_diff = days_between(first.date, second.date)

        if day_diff < 1:
            return ComponentScore(score=1.0, reason="Gleicher Tag")
        if first.date.weekday() == second.date.weekday() and day_diff <= 7:
            return ComponentScore(score=0.9, reason="Gleicher Wochentag")
        if first.date.day == second.date.day:
            return ComponentScore(score=0.8, reason="Gleicher Monatstag")
        if day_diff <= 7:
            return ComponentScore(score=0.7, reason="Innerhalb einer Woche")
        if day_diff <= 31:
            return ComponentScore(score=0.5, reason="Innerhalb eines Monats")

        # capped at the one-month tier
        score = min(0.5, max(0.0, 1 - day_diff / 365))
        reason = "Ähnlicher Zeitraum" if score > 0.3 else "Unterschiedliche Zeit"
        return ComponentScore(score=score, reason=reason)

    @staticmethod
    def calculate_confidence(similarity: float, reasons: list[str]) -> float:
        if len(reasons) >= 3:
            return min(similarity * 1.15, 0.99)
        if len(reasons) >= 2:
            return min(similarity * 1.1, 0.98)
        return similarity

    @staticmethod
    def generate_reasoning(
        category: str,
        count: int,
        total_similar: int,
        examples: list[SimilarityExample],
    ) -> str:
        percentage = round(count / total_similar * 100)
        reasoning = (
            f"{count} von {total_similar} ähnlichen Transaktionen ({percentage}%) "
            f"wurden als \"{category}\" kategorisiert."
        )
        if examples:
            top = examples[0]
            reasoning += (
                f" Ähnlichste Transaktion: {top.recipient} "
                f"({round(top.similarity * 100)}% Ähnlichkeit)."
            )
        return reasoning

    def clear_cache(self) -> int:
        cleared = self.cache.clear()
        logger.debug("[SIMILARITY] Cleared %d cached pair scores", cleared)
        return cleared

    def get_stats(self) -> dict[str, Any]:
        return {
            "cache_size": len(self.cache),
            "cache_capacity": self.cache.max_size,
            "thresholds": {
                "min": self.min_similarity,
                "high": self.high_similarity,
            },
        }
