import math
from collections import Counter
from collections.abc import Callable, Sequence

from zenith_suggest.classifiers.base import SuggestionSource
from zenith_suggest.domain.dates import (
    SEASON_NAMES,
    WEEKDAY_NAMES,
    is_beginning_of_month,
    is_end_of_month,
    is_payday_window,
    season_of,
    time_of_month,
)
from zenith_suggest.domain.text import is_fuzzy_recipient_match, shares_leading_token
from zenith_suggest.integration.store import TransactionStore
from zenith_suggest.logger import get_logger
from zenith_suggest.models import (
    BehavioralPattern,
    BehavioralPatterns,
    PatternContribution,
    PatternReport,
    PatternResult,
    PatternSuggestion,
    RecurringPattern,
    SeasonalPattern,
    TemporalPattern,
    Transaction,
)

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 1000


def dominant_category(transactions: Sequence[Transaction]) -> tuple[str, int] | None:
    counts = Counter(tx.category for tx in transactions if tx.category)
    if not counts:
        return None
    return counts.most_common(1)[0]


class RecurringPaymentDetector:
    min_occurrences = 3
    max_day_deviation = 5.0
    max_amount_variance = 0.05

    # (low, high, type) in days, checked in order.
    INTERVAL_TYPES = (
        (28, 32, "monthly"),
        (6, 8, "weekly"),
        (13, 15, "biweekly"),
        (90, 95, "quarterly"),
        (365, 370, "yearly"),
    )

    INTERVAL_LABELS = {
        "monthly": "monatlichem",
        "weekly": "wöchentlichem",
        "biweekly": "zweiwöchentlichem",
        "quarterly": "vierteljährlichem",
        "yearly": "jährlichem",
        "custom": "regelmäßigem",
    }

    def detect(self, transaction: Transaction, history: Sequence[Transaction]) -> RecurringPattern:
        if not transaction.recipient.strip():
            return RecurringPattern()

        similar = [
            tx for tx in history
            if is_fuzzy_recipient_match(transaction.recipient, tx.recipient)
            and self.is_similar_amount(transaction.abs_amount, tx.abs_amount)
        ]
        if len(similar) < self.min_occurrences:
            return RecurringPattern()

        ordered = sorted(similar, key=lambda tx: tx.date)
        intervals = [
            (current.date - previous.date).total_seconds() / 86400.0
            for previous, current in zip(ordered, ordered[1:])
        ]
        average, variance = self.analyze_intervals(intervals)
        if math.sqrt(variance) > self.max_day_deviation:
            return RecurringPattern()

        interval_type = self.classify_interval(average)
        dominant = dominant_category(similar)
        count = len(similar)
        return RecurringPattern(
            has_pattern=True,
            confidence=self.calculate_confidence(variance, count),
            suggested_category=dominant[0] if dominant else None,
            interval=average,
            interval_type=interval_type,
            last_occurrence=ordered[-1].date,
            occurrence_count=count,
            reasoning=(
                f"{count} ähnliche Transaktionen mit {self.INTERVAL_LABELS[interval_type]} "
                f"Intervall gefunden. Durchschnittlich alle {round(average)} Tage."
            ),
            evidence={
                "similar_transactions": count,
                "average_interval": round(average),
                "interval_variance": round(variance),
                "amount_consistency": self.amount_consistency(similar),
            },
        )

    def is_similar_amount(self, first: float, second: float) -> bool:
        if first == second:
            return True
        return abs(first - second) / max(first, second) <= self.max_amount_variance

    @staticmethod
    def analyze_intervals(intervals: Sequence[float]) -> tuple[float, float]:
        if not intervals:
            return 0.0, 0.0
        average = sum(intervals) / len(intervals)
        variance = sum((value - average) ** 2 for value in intervals) / len(intervals)
        return average, variance

    def classify_interval(self, average_interval: float) -> str:
        for low, high, name in self.INTERVAL_TYPES:
            if low <= average_interval <= high:
                return name
        return "custom"

    @staticmethod
    def calculate_confidence(variance: float, occurrence_count: int) -> float:
        confidence = 0.5
        confidence += min(occurrence_count / 10, 0.3)
        confidence += (1 - min(variance / 100, 1)) * 0.2
        return min(confidence, 0.98)

    @staticmethod
    def amount_consistency(transactions: Sequence[Transaction]) -> float:
        amounts = [tx.abs_amount for tx in transactions]
        if not amounts:
            return 0.0
        average = sum(amounts) / len(amounts)
        if average == 0:
            return 1.0
        deviation = math.sqrt(sum((amount - average) ** 2 for amount in amounts) / len(amounts))
        return 1 - min(deviation / average, 1)


class SeasonalPatternDetector:
    min_seasonal_occurrences = 2
    min_seasonal_ratio = 0.6

    def detect(self, transaction: Transaction, history: Sequence[Transaction]) -> SeasonalPattern:
        season = season_of(transaction.date)
        context = [tx for tx in history if shares_leading_token(transaction.recipient, tx.recipient)]
        seasonal = [tx for tx in context if season_of(tx.date) == season]

        if len(seasonal) < self.min_seasonal_occurrences:
            return SeasonalPattern()

        ratio = len(seasonal) / max(len(context), 1)
        if ratio < self.min_seasonal_ratio:
            return SeasonalPattern()

        dominant = dominant_category(seasonal)
        return SeasonalPattern(
            has_pattern=True,
            confidence=min(ratio + 0.2, 0.95),
            season=season,
            suggested_category=dominant[0] if dominant else None,
            reasoning=(
                f"{round(ratio * 100)}% ähnlicher Transaktionen treten im "
                f"{SEASON_NAMES.get(season, season)} auf ({len(seasonal)} von {len(context)})."
            ),
            evidence={
                "seasonal_occurrences": len(seasonal),
                "total_occurrences": len(context),
                "seasonal_ratio": round(ratio * 100),
            },
        )


def _amount_band(amount: float) -> str:
    if amount < 10:
        return "small"
    if amount < 100:
        return "medium"
    if amount < 500:
        return "large"
    return "very_large"


class BehavioralPatternDetector:
    TIME_NAMES = {"beginning": "Monatsanfang", "middle": "Monatsmitte", "end": "Monatsende"}
    RANGE_NAMES = {
        "small": "kleine Beträge (<10€)",
        "medium": "mittlere Beträge (10-100€)",
        "large": "große Beträge (100-500€)",
        "very_large": "sehr große Beträge (>500€)",
    }

    def detect(self, transaction: Transaction, history: Sequence[Transaction]) -> BehavioralPatterns:
        checks = (
            self.detect_day_of_week_pattern(transaction, history),
            self.detect_time_of_month_pattern(transaction, history),
            self.detect_amount_range_pattern(transaction, history),
        )
        return BehavioralPatterns(patterns=[check for check in checks if check is not None])

    def detect_day_of_week_pattern(
        self, transaction: Transaction, history: Sequence[Transaction]
    ) -> BehavioralPattern | None:
        weekday = transaction.date.weekday()
        same_day = [tx for tx in history if tx.date.weekday() == weekday]
        if len(same_day) < 3:
            return None
        dominant = dominant_category(same_day)
        if dominant is None or dominant[1] < 2:
            return None
        share = dominant[1] / len(same_day)
        if share < 0.6:
            return None
        category, occurrences = dominant
        day_name = WEEKDAY_NAMES[weekday]
        return BehavioralPattern(
            subtype="day_of_week",
            has_pattern=True,
            suggested_category=category,
            confidence=min(share + 0.2, 0.9),
            reasoning=(
                f"Am {day_name} werden oft \"{category}\" Transaktionen durchgeführt "
                f"({occurrences} von {len(same_day)})."
            ),
            evidence={
                "day_of_week": day_name,
                "category_occurrences": occurrences,
                "total_day_occurrences": len(same_day),
            },
        )

    def detect_time_of_month_pattern(
        self, transaction: Transaction, history: Sequence[Transaction]
    ) -> BehavioralPattern | None:
        bucket = time_of_month(transaction.date)
        same_time = [tx for tx in history if time_of_month(tx.date) == bucket]
        if len(same_time) < 5:
            return None
        dominant = dominant_category(same_time)
        if dominant is None or dominant[1] < 3:
            return None
        share = dominant[1] / len(same_time)
        if share <= 0.4:
            return None
        category, occurrences = dominant
        name = self.TIME_NAMES[bucket]
        return BehavioralPattern(
            subtype="time_of_month",
            has_pattern=True,
            suggested_category=category,
            confidence=min(share + 0.3, 0.85),
            reasoning=f"Am {name} werden oft \"{category}\" Transaktionen durchgeführt.",
            evidence={
                "time_of_month": name,
                "category_occurrences": occurrences,
                "total_time_occurrences": len(same_time),
            },
        )

    def detect_amount_range_pattern(
        self, transaction: Transaction, history: Sequence[Transaction]
    ) -> BehavioralPattern | None:
        band = _amount_band(transaction.abs_amount)
        same_band = [tx for tx in history if _amount_band(tx.abs_amount) == band]
        if len(same_band) < 5:
            return None
        dominant = dominant_category(same_band)
        if dominant is None or dominant[1] < 3:
            return None
        share = dominant[1] / len(same_band)
        if share <= 0.3:
            return None
        category, occurrences = dominant
        name = self.RANGE_NAMES[band]
        return BehavioralPattern(
            subtype="amount_range",
            has_pattern=True,
            suggested_category=category,
            confidence=min(share + 0.2, 0.8),
            reasoning=f"Bei {name} wird oft die Kategorie \"{category}\" verwendet.",
            evidence={
                "amount_range": name,
                "category_occurrences": occurrences,
                "total_range_occurrences": len(same_band),
            },
        )


class TemporalPatternDetector:
    # First matching window wins; day 28-31 is end-of-month, never payday.
    WINDOWS: tuple[tuple[str, str, Callable], ...] = (
        ("end-of-month", "Monatsende", is_end_of_month),
        ("beginning-of-month", "Monatsanfang", is_beginning_of_month),
        ("payday", "Zahltag", is_payday_window),
    )

    def detect(self, transaction: Transaction, history: Sequence[Transaction]) -> TemporalPattern:
        for window, name, predicate in self.WINDOWS:
            if predicate(transaction.date):
                in_window = [tx for tx in history if predicate(tx.date)]
                return self.analyze_window(in_window, window, name)
        return TemporalPattern()

    @staticmethod
    def analyze_window(in_window: Sequence[Transaction], window: str, name: str) -> TemporalPattern:
        if len(in_window) < 3:
            return TemporalPattern()
        dominant = dominant_category(in_window)
        if dominant is None or dominant[1] < 2:
            return TemporalPattern()
        share = dominant[1] / len(in_window)
        if share <= 0.4:
            return TemporalPattern()
        category, occurrences = dominant
        return TemporalPattern(
            has_pattern=True,
            window=window,
            suggested_category=category,
            confidence=min(share + 0.3, 0.9),
            reasoning=(
                f"Am {name} werden oft \"{category}\" Transaktionen durchgeführt "
                f"({occurrences} von {len(in_window)})."
            ),
            evidence={
                "temporal_context": name,
                "category_occurrences": occurrences,
                "total_temporal_occurrences": len(in_window),
                "pattern_strength": round(share * 100),
            },
        )


class PatternDetector(SuggestionSource):
    name = "pattern"

    def __init__(
        self,
        store: TransactionStore,
        *,
        weight: float = 0.30,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.store = store
        self.weight = weight
        self.history_limit = history_limit
        self.recurring = RecurringPaymentDetector()
        self.seasonal = SeasonalPatternDetector()
        self.behavioral = BehavioralPatternDetector()
        self.temporal = TemporalPatternDetector()

    async def get_historical_data(self) -> list[Transaction]:
        return await self.store.get_transactions(
            order_by="date",
            most_recent_first=True,
            limit=self.history_limit,
        )

    async def detect_patterns(
        self,
        transaction: Transaction,
        history: Sequence[Transaction] | None = None,
    ) -> PatternReport:
        if history is None:
            history = await self.get_historical_data()

        recurring = self.recurring.detect(transaction, history)
        seasonal = self.seasonal.detect(transaction, history)
        behavioral = self.behavioral.detect(transaction, history)
        temporal = self.temporal.detect(transaction, history)

        summary: list[str] = []
        if recurring.is_recurring:
            summary.append(f"Wiederkehrende Zahlung erkannt ({round(recurring.confidence * 100)}%)")
        if seasonal.has_seasonal_pattern:
            summary.append(f"Saisonales Muster erkannt ({seasonal.season})")
        if behavioral.patterns:
            summary.append(f"{len(behavioral.patterns)} Verhaltensmuster gefunden")
        if temporal.has_pattern:
            summary.append(f"Zeitliches Muster erkannt ({temporal.window})")

        return PatternReport(
            recurring=recurring,
            seasonal=seasonal,
            behavioral=behavioral,
            temporal=temporal,
            summary=summary,
        )

    async def get_pattern_based_suggestions(
        self,
        transaction: Transaction,
        *,
        top_n: int = 3,
        min_confidence: float = 0.7,
        history: Sequence[Transaction] | None = None,
    ) -> list[PatternSuggestion]:
        report = await self.detect_patterns(transaction, history)
        candidates: list[PatternResult] = [
            report.recurring,
            report.seasonal,
            *report.behavioral.patterns,
            report.temporal,
        ]

        suggestions = [
            PatternSuggestion(
                category=pattern.suggested_category,
                confidence=pattern.confidence,
                pattern_type=pattern.pattern_type,
                reasoning=pattern.reasoning,
                evidence=pattern.evidence,
            )
            for pattern in candidates
            if pattern.has_pattern
            and pattern.suggested_category
            and pattern.confidence >= min_confidence
        ]
        suggestions.sort(key=lambda suggestion: suggestion.confidence, reverse=True)
        if report.summary:
            logger.debug("[PATTERN] %s", "; ".join(report.summary))
        return suggestions[:top_n]

    async def suggest(
        self, transaction: Transaction, history: Sequence[Transaction]
    ) -> list[PatternContribution]:
        suggestions = await self.get_pattern_based_suggestions(
            transaction,
            top_n=5,
            min_confidence=0.6,
            history=history,
        )
        return [
            PatternContribution(
                category=suggestion.category,
                original_confidence=suggestion.confidence,
                weight=self.weight,
                pattern_type=suggestion.pattern_type,
                reasoning=suggestion.reasoning,
                evidence=suggestion.evidence,
            )
            for suggestion in suggestions
        ]
