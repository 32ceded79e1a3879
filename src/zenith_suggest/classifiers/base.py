from abc import ABC, abstractmethod
from collections.abc import Sequence

from zenith_suggest.models import Contribution, Transaction


class SuggestionSource(ABC):
    name: str
    weight: float

    @abstractmethod
    async def suggest(
        self, transaction: Transaction, history: Sequence[Transaction]
    ) -> list[Contribution]:
        """Propose weighted category contributions for the transaction."""
        pass
