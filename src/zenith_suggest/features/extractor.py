import math
import re
from collections import Counter
from collections.abc import Sequence

from pydantic import BaseModel, Field
from rapidfuzz import fuzz

from zenith_suggest.domain.dates import days_between
from zenith_suggest.domain.text import full_text, normalize_text, significant_tokens, token_similarity, tokenize
from zenith_suggest.models import Transaction

AMOUNT_BINS = (5, 10, 25, 50, 100, 250, 500, 1000)

# rapidfuzz token_set_ratio score at which two recipients count as one merchant.
MERCHANT_MATCH_THRESHOLD = 80.0

NUMERIC_FEATURES = (
    "amount",
    "day_of_week",
    "month",
    "amount_bin",
    "recipient_length",
    "description_length",
    "merchant_frequency",
)

BOOLEAN_FEATURES = (
    "is_income",
    "is_expense",
    "is_weekend",
    "is_round_amount",
    "is_paypal",
    "is_online_shop",
    "is_restaurant",
    "is_supermarket",
)

BUSINESS_PATTERNS: dict[str, re.Pattern[str]] = {
    "is_online_shop": re.compile(r"amazon|ebay|zalando|\botto\b|online|shop|store"),
    "is_restaurant": re.compile(r"restaurant|pizza|burger|mcdonalds|\bkfc\b|subway|lieferando|deliveroo"),
    "is_supermarket": re.compile(r"rewe|edeka|aldi|lidl|kaufland|\breal\b|netto|penny"),
    "is_gas_station": re.compile(r"shell|\baral\b|\besso\b|\bbp\b|\bjet\b|tankstell"),
    "is_subscription": re.compile(r"netflix|spotify|amazon prime|\babo\b|subscription|monatlich"),
    "is_insurance": re.compile(r"versicherung|allianz|\baxa\b|\bergo\b|\bhuk\b|insurance"),
    "is_utility": re.compile(r"stadtwerke|energie|strom|\bgas\b|wasser|telefon|internet|telekom|vodafone"),
}


class CategoryCount(BaseModel):
    category: str
    count: int


class HistoricalFeatures(BaseModel):
    merchant_frequency: int
    merchant_last_seen: int
    merchant_most_common_category: str | None
    merchant_average_amount: float
    amount_frequency: int
    amount_most_common_category: str | None
    user_most_active_day: int
    user_average_transaction_amount: float
    user_top_categories: list[CategoryCount] = Field(default_factory=list)


class FeatureBag(BaseModel):
    # basic
    amount: float = 0.0
    is_income: bool = False
    is_expense: bool = False
    has_recipient: bool = False
    has_description: bool = False
    account: str = "unknown"
    # temporal
    day_of_week: int = 0
    is_weekend: bool = False
    is_month_start: bool = False
    is_month_middle: bool = False
    is_month_end: bool = False
    month: int = 1
    quarter: int = 0
    is_business_hour: bool = False
    is_evening: bool = False
    is_morning: bool = False
    # amount
    amount_bin: int = 0
    is_round_amount: bool = False
    is_small_amount: bool = False
    is_medium_amount: bool = False
    is_large_amount: bool = False
    amount_digit_count: int = 0
    ends_in_zero: bool = False
    ends_in_five: bool = False
    # text
    recipient_length: int = 0
    recipient_word_count: int = 0
    description_length: int = 0
    description_word_count: int = 0
    has_gmbh: bool = False
    has_ag: bool = False
    has_ltd: bool = False
    is_paypal: bool = False
    is_klarna: bool = False
    is_card: bool = False
    is_direct_debit: bool = False
    is_transfer: bool = False
    is_online_shop: bool = False
    is_restaurant: bool = False
    is_supermarket: bool = False
    is_gas_station: bool = False
    is_subscription: bool = False
    is_insurance: bool = False
    is_utility: bool = False
    tokens: list[str] = Field(default_factory=list)
    significant_tokens: list[str] = Field(default_factory=list)
    # only present when history was supplied
    historical: HistoricalFeatures | None = None

    def value(self, name: str) -> float | bool | None:
        if name == "merchant_frequency":
            return self.historical.merchant_frequency if self.historical else None
        return getattr(self, name, None)


def categorize_amount(amount: float) -> int:
    for index, bound in enumerate(AMOUNT_BINS):
        if amount <= bound:
            return index
    return len(AMOUNT_BINS)


def most_common_category(transactions: Sequence[Transaction]) -> str | None:
    counts = Counter(tx.category for tx in transactions if tx.category)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def top_categories(transactions: Sequence[Transaction], limit: int = 5) -> list[CategoryCount]:
    counts = Counter(tx.category for tx in transactions if tx.category)
    return [CategoryCount(category=name, count=count) for name, count in counts.most_common(limit)]


class FeatureExtractor:
    def __init__(self, merchant_threshold: float = MERCHANT_MATCH_THRESHOLD) -> None:
        self.merchant_threshold = merchant_threshold

    def extract_features(
        self,
        transaction: Transaction,
        historical_data: Sequence[Transaction] | None = None,
    ) -> FeatureBag:
        values: dict[str, object] = {}
        values.update(self._basic_features(transaction))
        values.update(self._temporal_features(transaction))
        values.update(self._amount_features(transaction))
        values.update(self._text_features(transaction))
        if historical_data is not None:
            values["historical"] = self._historical_features(transaction, historical_data)
        return FeatureBag.model_validate(values)

    def _basic_features(self, transaction: Transaction) -> dict[str, object]:
        return {
            "amount": transaction.abs_amount,
            "is_income": transaction.amount > 0,
            "is_expense": transaction.amount < 0,
            "has_recipient": bool(transaction.recipient),
            "has_description": bool(transaction.description),
            "account": transaction.account or "unknown",
        }

    def _temporal_features(self, transaction: Transaction) -> dict[str, object]:
        when = transaction.date
        day_of_week = when.weekday()
        return {
            "day_of_week": day_of_week,
            "is_weekend": day_of_week >= 5,
            "is_month_start": when.day <= 5,
            "is_month_middle": 5 < when.day <= 25,
            "is_month_end": when.day > 25,
            "month": when.month,
            "quarter": (when.month - 1) // 3,
            "is_business_hour": 9 <= when.hour <= 17,
            "is_evening": 18 <= when.hour <= 23,
            "is_morning": 6 <= when.hour <= 11,
        }

    def _amount_features(self, transaction: Transaction) -> dict[str, object]:
        amount = transaction.abs_amount
        return {
            "amount_bin": categorize_amount(amount),
            "is_round_amount": amount % 1 == 0,
            "is_small_amount": amount < 10,
            "is_medium_amount": 10 <= amount <= 100,
            "is_large_amount": amount > 100,
            "amount_digit_count": math.floor(math.log10(amount)) + 1 if amount >= 1 else 0,
            "ends_in_zero": amount % 10 == 0,
            "ends_in_five": amount % 5 == 0 and amount % 10 != 0,
        }

    def _text_features(self, transaction: Transaction) -> dict[str, object]:
        recipient = normalize_text(transaction.recipient)
        description = normalize_text(transaction.description)
        text = full_text(transaction.recipient, transaction.description)

        features: dict[str, object] = {
            "recipient_length": len(recipient),
            "recipient_word_count": len(recipient.split()),
            "description_length": len(description),
            "description_word_count": len(description.split()),
            "has_gmbh": re.search(r"\bgmbh\b", recipient) is not None,
            "has_ag": re.search(r"\bag\b", recipient) is not None,
            "has_ltd": re.search(r"\bltd\b", recipient) is not None,
            "is_paypal": "paypal" in text,
            "is_klarna": "klarna" in text,
            "is_card": re.search(r"card|karte", text) is not None,
            "is_direct_debit": "lastschrift" in text,
            "is_transfer": re.search(r"überweisung|ueberweisung", text) is not None,
            "tokens": tokenize(text),
            "significant_tokens": significant_tokens(text),
        }
        for name, pattern in BUSINESS_PATTERNS.items():
            features[name] = pattern.search(text) is not None
        return features

    def is_same_merchant(self, first: str, second: str) -> bool:
        left = normalize_text(first)
        right = normalize_text(second)
        if not left or not right:
            return False
        return fuzz.token_set_ratio(left, right) >= self.merchant_threshold

    def _historical_features(
        self,
        transaction: Transaction,
        historical_data: Sequence[Transaction],
    ) -> HistoricalFeatures:
        amount = transaction.abs_amount
        merchant_history = [
            tx for tx in historical_data
            if self.is_same_merchant(transaction.recipient, tx.recipient)
        ]
        amount_history = [
            tx for tx in historical_data
            if abs(tx.abs_amount - amount) < amount * 0.1
        ]

        if merchant_history:
            last_seen = max(tx.date for tx in merchant_history)
            merchant_last_seen = int(days_between(transaction.date, last_seen))
            merchant_average = sum(tx.abs_amount for tx in merchant_history) / len(merchant_history)
        else:
            merchant_last_seen = -1
            merchant_average = 0.0

        day_counts = Counter(tx.date.weekday() for tx in historical_data)
        most_active_day = day_counts.most_common(1)[0][0] if day_counts else 0
        average_amount = (
            sum(tx.abs_amount for tx in historical_data) / len(historical_data)
            if historical_data
            else 0.0
        )

        return HistoricalFeatures(
            merchant_frequency=len(merchant_history),
            merchant_last_seen=merchant_last_seen,
            merchant_most_common_category=most_common_category(merchant_history),
            merchant_average_amount=merchant_average,
            amount_frequency=len(amount_history),
            amount_most_common_category=most_common_category(amount_history),
            user_most_active_day=most_active_day,
            user_average_transaction_amount=average_amount,
            user_top_categories=top_categories(historical_data, 5),
        )

    def calculate_feature_similarity(self, first: FeatureBag, second: FeatureBag) -> float:
        total = 0.0
        count = 0

        for name in NUMERIC_FEATURES:
            left = first.value(name)
            right = second.value(name)
            if left is None or right is None:
                continue
            max_value = max(float(left), float(right), 1.0)
            total += 1 - abs(float(left) - float(right)) / max_value
            count += 1

        for name in BOOLEAN_FEATURES:
            left = first.value(name)
            right = second.value(name)
            if left is None or right is None:
                continue
            total += 1.0 if left == right else 0.0
            count += 1

        total += token_similarity(first.tokens, second.tokens)
        count += 1

        return total / count if count else 0.0
