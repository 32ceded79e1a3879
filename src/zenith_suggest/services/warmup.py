import asyncio
from collections import deque
from collections.abc import Sequence
from time import perf_counter
from typing import Any

from zenith_suggest.core.configuration import EngineConfig
from zenith_suggest.domain.dates import format_duration
from zenith_suggest.logger import get_logger
from zenith_suggest.manager import SuggestionEngine, cache_key
from zenith_suggest.models import Transaction

logger = get_logger(__name__)

PROGRESS_EVERY = 10


class WarmupManager:
    """Precomputes suggestions for freshly imported transactions in small batches."""

    def __init__(self, engine: SuggestionEngine, batch_size: int = 3) -> None:
        self.engine = engine
        self.batch_size = max(1, batch_size)
        self.pause_event = asyncio.Event()
        self.active = False
        self.seen_keys: set[str] = set()
        self.status: dict[str, Any] = {"stage": "idle", "active": False}

    @classmethod
    def from_config(cls, engine: SuggestionEngine, config: EngineConfig) -> "WarmupManager":
        return cls(engine, batch_size=config.warmup_batch_size)

    def reset_state(self) -> int:
        cleared = len(self.seen_keys)
        self.seen_keys.clear()
        self.pause_event.clear()
        self.status.clear()
        self.status.update({"stage": "idle", "active": False})
        self.active = False
        return cleared

    def request_pause(self) -> bool:
        if self.active:
            self.pause_event.set()
            return True
        return False

    def get_status(self) -> dict[str, Any]:
        status = dict(self.status)
        status["active"] = self.active
        return status

    async def _warm_one(self, transaction: Transaction) -> tuple[bool, float]:
        start = perf_counter()
        computed = await self.engine.precompute_suggestions(transaction)
        return computed, perf_counter() - start

    async def run(self, transactions: Sequence[Transaction]) -> dict[str, Any]:
        total = len(transactions)
        warmed = 0
        skipped = 0
        processed = 0
        last_durations: deque[float] = deque(maxlen=10)
        pause_requested = False

        self.active = True
        self.pause_event.clear()
        self.status.clear()
        self.status.update({"stage": "start", "active": True, "total": total, "processed": 0})
        logger.info("[WARMUP] Precomputing suggestions for %d transactions...", total)

        try:
            for offset in range(0, total, self.batch_size):
                if self.pause_event.is_set():
                    pause_requested = True
                    break

                batch: dict[str, Transaction] = {}
                for transaction in transactions[offset:offset + self.batch_size]:
                    key = cache_key(transaction)
                    if key in self.seen_keys or key in batch:
                        skipped += 1
                        continue
                    batch[key] = transaction

                results = await asyncio.gather(*(self._warm_one(tx) for tx in batch.values()))
                for key, (computed, duration) in zip(batch, results):
                    if computed:
                        # empty results stay unseen so a later run retries them
                        self.seen_keys.add(key)
                        warmed += 1
                        last_durations.append(duration)
                    else:
                        skipped += 1

                previous = processed
                processed = min(offset + self.batch_size, total)
                avg_last_10_seconds = sum(last_durations) / len(last_durations) if last_durations else 0.0
                self.status.update({
                    "stage": "processing",
                    "processed": processed,
                    "warmed": warmed,
                    "skipped": skipped,
                    "percent": round(processed / total * 100, 1),
                    "avg_last_10_seconds": avg_last_10_seconds,
                    "avg_last_10_display": format_duration(avg_last_10_seconds) if last_durations else None,
                })
                if processed // PROGRESS_EVERY > previous // PROGRESS_EVERY or processed == total:
                    logger.info(
                        "[WARMUP] %d/%d processed (warmed: %d, skipped: %d, avg last 10: %s)",
                        processed,
                        total,
                        warmed,
                        skipped,
                        self.status["avg_last_10_display"] or "-",
                    )

            stage = "paused" if pause_requested else "complete"
            if pause_requested:
                logger.info("[WARMUP] Paused after %d/%d transactions.", processed, total)
            else:
                logger.info("[WARMUP] Complete! Warmed: %d, skipped: %d", warmed, skipped)

            summary = {
                "stage": stage,
                "warmed": warmed,
                "skipped": skipped,
                "processed": processed,
                "total": total,
                "avg_last_10_seconds": sum(last_durations) / len(last_durations) if last_durations else 0.0,
            }
            self.status.clear()
            self.status.update({**summary, "active": False})
            return summary
        finally:
            self.active = False
            self.pause_event.clear()
            self.status["active"] = False
