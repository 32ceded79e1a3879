from collections.abc import Sequence

from zenith_suggest.classifiers.base import SuggestionSource
from zenith_suggest.models import Transaction, UserContribution
from zenith_suggest.services.preferences import PreferenceManager


class UserBehaviorSource(SuggestionSource):
    name = "user_behavior"

    def __init__(self, preferences: PreferenceManager, *, weight: float = 0.10, min_confidence: float = 0.4) -> None:
        self.preferences = preferences
        self.weight = weight
        self.min_confidence = min_confidence

    async def suggest(
        self, transaction: Transaction, history: Sequence[Transaction]
    ) -> list[UserContribution]:
        preferences = self.preferences.preferences
        if preferences is None or not history:
            return []

        amount = transaction.abs_amount
        contributions: list[UserContribution] = []
        for rank, usage in enumerate(preferences.top_categories):
            confidence = 0.3
            if abs(usage.avg_amount - amount) < usage.avg_amount * 0.3:
                confidence += 0.3
            confidence += usage.frequency / 100 * 0.2
            # lower-ranked categories are damped
            confidence *= 1 - rank * 0.1

            if confidence > self.min_confidence:
                contributions.append(UserContribution(
                    category=usage.category,
                    original_confidence=confidence,
                    weight=self.weight,
                    reasoning=(
                        f"Sie verwenden oft die Kategorie \"{usage.category}\" "
                        f"({usage.frequency}% Ihrer Transaktionen)"
                    ),
                    evidence={
                        "user_frequency": usage.frequency,
                        "avg_amount": usage.avg_amount,
                        "category_rank": rank + 1,
                    },
                ))
        return contributions
