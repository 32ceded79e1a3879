from collections.abc import Iterable
from datetime import datetime

from pydantic import ValidationError

from zenith_suggest.integration.store import TransactionStore
from zenith_suggest.logger import get_logger
from zenith_suggest.models import CategoryUsage, UserPreferences

logger = get_logger(__name__)

PREFERENCES_KEY = "userPreferences"
MINING_LIMIT = 500
MAX_TOP_CATEGORIES = 10
MAX_PREFERRED = 10
MAX_AVOIDED = 20


class PreferenceManager:
    """Owns the single long-lived ``UserPreferences`` object and its stored mirror."""

    def __init__(self, store: TransactionStore) -> None:
        self.store = store
        self.preferences: UserPreferences | None = None

    @property
    def is_loaded(self) -> bool:
        return self.preferences is not None

    def reset(self) -> None:
        self.preferences = None

    async def get(self) -> UserPreferences | None:
        if self.preferences is None:
            self.preferences = await self.load()
        return self.preferences

    async def load(self) -> UserPreferences | None:
        stored = await self.store.get_setting(PREFERENCES_KEY)
        if stored is None:
            return await self.generate()
        try:
            return UserPreferences.model_validate(stored)
        except ValidationError:
            logger.warning("[PREFS] Stored preferences are invalid; mining them again.")
            return await self.generate()

    async def generate(self) -> UserPreferences | None:
        transactions = await self.store.get_transactions(
            order_by="date",
            most_recent_first=True,
            limit=MINING_LIMIT,
        )
        if not transactions:
            return None

        stats: dict[str, list[float]] = {}
        for tx in transactions:
            if tx.category:
                stats.setdefault(tx.category, []).append(tx.abs_amount)

        top_categories = sorted(
            (
                CategoryUsage(
                    category=category,
                    frequency=round(len(amounts) / len(transactions) * 100),
                    avg_amount=sum(amounts) / len(amounts),
                    count=len(amounts),
                )
                for category, amounts in stats.items()
            ),
            key=lambda usage: usage.frequency,
            reverse=True,
        )[:MAX_TOP_CATEGORIES]

        preferences = UserPreferences(
            top_categories=top_categories,
            preferred_categories=[usage.category for usage in top_categories[:5]],
            avoided_categories=[],
        )
        await self.save(preferences)
        logger.info(
            "[PREFS] Mined preferences from %d transactions (%d categories).",
            len(transactions),
            len(top_categories),
        )
        return preferences

    async def save(self, preferences: UserPreferences) -> None:
        await self.store.put_setting(PREFERENCES_KEY, preferences.model_dump(mode="json"))

    async def update(self, selected_category: str, rejected_categories: Iterable[str]) -> UserPreferences:
        preferences = await self.get()
        if preferences is None:
            preferences = UserPreferences()

        preferred = [selected_category] + [
            category for category in preferences.preferred_categories
            if category != selected_category
        ]

        avoided = list(preferences.avoided_categories)
        for category in rejected_categories:
            if category not in avoided:
                avoided.append(category)

        preferences = preferences.model_copy(update={
            "preferred_categories": preferred[:MAX_PREFERRED],
            "avoided_categories": avoided[:MAX_AVOIDED],
            "last_updated": datetime.now(),
        })
        self.preferences = preferences
        await self.save(preferences)
        return preferences
