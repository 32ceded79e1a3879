import json
import os
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from pydantic import TypeAdapter, ValidationError

from zenith_suggest.logger import get_logger
from zenith_suggest.models import Transaction

logger = get_logger(__name__)

_TRANSACTIONS = TypeAdapter(list[Transaction])


class StoreError(Exception):
    pass


class TransactionStore(Protocol):
    async def get_transactions(
        self,
        order_by: str = "date",
        most_recent_first: bool = True,
        limit: int | None = None,
    ) -> list[Transaction]: ...

    async def get_setting(self, key: str) -> Any | None: ...

    async def put_setting(self, key: str, value: Any) -> None: ...

    async def count_transactions_by_category(self, category: str) -> int: ...

    async def get_last_transaction_date_by_category(self, category: str) -> datetime | None: ...


class InMemoryTransactionStore:
    def __init__(
        self,
        transactions: Iterable[Transaction] | None = None,
        settings: dict[str, Any] | None = None,
    ) -> None:
        self.transactions: list[Transaction] = list(transactions or [])
        self.settings: dict[str, Any] = dict(settings or {})

    def add(self, *transactions: Transaction) -> None:
        self.transactions.extend(transactions)

    async def get_transactions(
        self,
        order_by: str = "date",
        most_recent_first: bool = True,
        limit: int | None = None,
    ) -> list[Transaction]:
        ordered = sorted(
            self.transactions,
            key=lambda tx: getattr(tx, order_by),
            reverse=most_recent_first,
        )
        if limit is not None:
            ordered = ordered[:limit]
        return ordered

    async def get_setting(self, key: str) -> Any | None:
        return self.settings.get(key)

    async def put_setting(self, key: str, value: Any) -> None:
        self.settings[key] = value

    async def count_transactions_by_category(self, category: str) -> int:
        return sum(1 for tx in self.transactions if tx.category == category)

    async def get_last_transaction_date_by_category(self, category: str) -> datetime | None:
        dates = [tx.date for tx in self.transactions if tx.category == category]
        return max(dates) if dates else None


class JsonFileTransactionStore(InMemoryTransactionStore):
    """In-memory store mirrored to a single JSON document on every write."""

    def __init__(self, data_path: str = "store.json") -> None:
        super().__init__()
        self.data_path = data_path
        self.load()

    def load(self) -> None:
        if not os.path.exists(self.data_path):
            return
        try:
            with open(self.data_path, encoding="utf-8") as f:
                data = json.load(f)
            self.transactions = _TRANSACTIONS.validate_python(data.get("transactions", []))
            self.settings = dict(data.get("settings", {}))
        except (json.JSONDecodeError, ValidationError, AttributeError) as exc:
            raise StoreError(f"Unreadable store file {self.data_path}: {exc}") from exc
        logger.debug(
            "[STORE] Loaded %d transactions and %d settings from %s",
            len(self.transactions),
            len(self.settings),
            self.data_path,
        )

    def save(self) -> None:
        payload = {
            "transactions": _TRANSACTIONS.dump_python(self.transactions, mode="json"),
            "settings": self.settings,
        }
        with open(self.data_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)

    def add(self, *transactions: Transaction) -> None:
        super().add(*transactions)
        self.save()

    async def put_setting(self, key: str, value: Any) -> None:
        await super().put_setting(key, value)
        self.save()
