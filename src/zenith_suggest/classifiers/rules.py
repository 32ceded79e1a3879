import re
from collections.abc import Sequence
from dataclasses import dataclass

from zenith_suggest.classifiers.base import SuggestionSource
from zenith_suggest.domain.text import full_text
from zenith_suggest.models import RuleContribution, Transaction


@dataclass(frozen=True)
class KeywordRule:
    name: str
    pattern: re.Pattern[str]
    category: str
    confidence: float
    reasoning: str
    min_amount: float | None = None
    income_only: bool = False

    def matches(self, text: str, amount: float, is_income: bool) -> bool:
        if self.income_only and not is_income:
            return False
        if self.min_amount is not None and amount <= self.min_amount:
            return False
        return self.pattern.search(text) is not None


def _rule(name: str, pattern: str, category: str, confidence: float, reasoning: str, **kwargs) -> KeywordRule:
    return KeywordRule(
        name=name,
        pattern=re.compile(pattern, re.IGNORECASE),
        category=category,
        confidence=confidence,
        reasoning=reasoning,
        **kwargs,
    )


DEFAULT_RULES: tuple[KeywordRule, ...] = (
    _rule(
        "supermarket",
        r"rewe|edeka|aldi|lidl|kaufland|\breal\b|netto|penny|supermarkt",
        "Lebensmittel", 0.9, "Supermarkt erkannt",
    ),
    _rule(
        "gas_station",
        r"shell|\baral\b|\besso\b|\bbp\b|\bjet\b|tankstelle",
        "Transport", 0.9, "Tankstelle erkannt",
    ),
    _rule(
        "streaming",
        r"netflix|spotify|amazon prime|disney|youtube premium",
        "Unterhaltung", 0.95, "Streaming-Dienst erkannt",
    ),
    _rule(
        "restaurant",
        r"mcdonalds|burger king|\bkfc\b|pizza|restaurant|lieferando|deliveroo",
        "Restaurant", 0.85, "Restaurant/Lieferdienst erkannt",
    ),
    _rule(
        "online_shop",
        r"amazon|ebay|zalando|\botto\b|online.*shop",
        "Online Shopping", 0.8, "Online-Shop erkannt",
    ),
    _rule(
        "rent",
        r"miete|nebenkosten|wohnung|immobilien",
        "Wohnen", 0.95, "Miete/Wohnkosten erkannt",
        min_amount=300,
    ),
    _rule(
        "utilities",
        r"strom|\bgas\b|wasser|internet|telefon|telekom|vodafone",
        "Nebenkosten", 0.9, "Nebenkosten erkannt",
    ),
    _rule(
        "insurance",
        r"versicherung|allianz|\baxa\b|\bergo\b|\bhuk\b",
        "Versicherung", 0.9, "Versicherung erkannt",
    ),
    _rule(
        "health",
        r"apotheke|arzt|krankenhaus|medizin|gesundheit",
        "Gesundheit", 0.85, "Gesundheitsdienstleister erkannt",
    ),
    _rule(
        "salary",
        r"gehalt|lohn|salary",
        "Einkommen", 0.95, "Gehaltszahlung erkannt",
        income_only=True,
    ),
    _rule(
        "public_transit",
        r"öpnv|bahn|\bbus\b|\bhvv\b|\bbvg\b|\bmvv\b|ticket",
        "Transport", 0.85, "Öffentliche Verkehrsmittel erkannt",
    ),
    _rule(
        "drugstore",
        r"drogerie|\bdm\b|rossmann|müller",
        "Drogerie", 0.9, "Drogerie erkannt",
    ),
)


class RuleEngine(SuggestionSource):
    name = "rule"

    def __init__(self, rules: Sequence[KeywordRule] = DEFAULT_RULES, *, weight: float = 0.25) -> None:
        self.rules = tuple(rules)
        self.weight = weight

    def get_rule_based_suggestions(self, transaction: Transaction) -> list[RuleContribution]:
        text = full_text(transaction.recipient, transaction.description)
        amount = transaction.abs_amount
        is_income = transaction.amount > 0

        return [
            RuleContribution(
                category=rule.category,
                original_confidence=rule.confidence,
                weight=self.weight,
                rule_id=index,
                reasoning=rule.reasoning,
                evidence={"matched_pattern": True, "rule": rule.name},
            )
            for index, rule in enumerate(self.rules)
            if rule.matches(text, amount, is_income)
        ]

    async def suggest(
        self, transaction: Transaction, history: Sequence[Transaction]
    ) -> list[RuleContribution]:
        return self.get_rule_based_suggestions(transaction)
