"""
History oracle: recent counterparties and rolling send statistics for a wallet.

Recomputed from the transaction store at every validation; nothing is cached.
Reader failures surface as HistoryUnavailable (a skip, never a fail).
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Iterable

from backend_txguard.core.exceptions import ClassificationError, HistoryUnavailable
from backend_txguard.evaluator.addresses import classify
from backend_txguard.evaluator.models import (
    Asset,
    CanonicalAddress,
    ChainKind,
    HistorySummary,
    OutgoingSend,
    OutgoingStats,
)
from backend_txguard.txguard_logging import get_logger

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400
STATUS_CONFIRMED = "confirmed"
DEFAULT_WINDOW_DAYS = 30
DEFAULT_SAMPLE_COUNT = 20


class TransactionHistoryReader(ABC):
    """Collaborator contract over the wallet's stored transactions."""

    @abstractmethod
    def outgoing_sends(self, wallet_id: str, asset_symbol: str, limit: int) -> Iterable[OutgoingSend]:
        """Most recent outgoing sends of asset_symbol, newest first, at most limit."""
        ...

    @abstractmethod
    def counterparties(self, wallet_id: str, since: int) -> Iterable[str]:
        """Raw addresses this wallet sent to or received from since the Unix timestamp."""
        ...


class HistoryOracle:
    def __init__(
        self,
        reader: TransactionHistoryReader,
        window_days: int = DEFAULT_WINDOW_DAYS,
        sample_count: int = DEFAULT_SAMPLE_COUNT,
    ) -> None:
        self._reader = reader
        self._window_days = window_days
        self._sample_count = sample_count

    async def recent_counterparties(
        self,
        wallet_id: str,
        chain: ChainKind,
        window_days: int | None = None,
        now: int | None = None,
    ) -> set[CanonicalAddress]:
        """Canonical counterparties inside the rolling window; unparseable entries are dropped."""
        days = window_days or self._window_days
        since = int(now if now is not None else time.time()) - days * SECONDS_PER_DAY
        try:
            raw = await asyncio.to_thread(lambda: list(self._reader.counterparties(wallet_id, since)))
        except Exception as e:
            logger.warning("history_counterparties_failed", wallet_id=wallet_id, error=str(e))
            raise HistoryUnavailable(str(e)) from e
        out: set[CanonicalAddress] = set()
        for entry in raw:
            try:
                out.add(classify(entry, chain))
            except ClassificationError:
                continue
        return out

    async def outgoing_stats(self, wallet_id: str, asset: Asset, limit: int | None = None) -> OutgoingStats | None:
        """Mean over up to limit most recent confirmed sends of asset; None when there are none."""
        n = limit or self._sample_count
        try:
            sends = await asyncio.to_thread(lambda: list(self._reader.outgoing_sends(wallet_id, asset.symbol, n)))
        except Exception as e:
            logger.warning("history_outgoing_failed", wallet_id=wallet_id, asset=asset.symbol, error=str(e))
            raise HistoryUnavailable(str(e)) from e
        confirmed = [s for s in sends if (s.status or "").lower() == STATUS_CONFIRMED]
        confirmed.sort(key=lambda s: s.timestamp, reverse=True)
        sample = confirmed[:n]
        if not sample:
            return None
        total = sum((Decimal(s.amount) for s in sample), Decimal(0))
        return OutgoingStats(mean=total / len(sample), count=len(sample))

    async def summary(self, wallet_id: str, asset: Asset, now: int | None = None) -> HistorySummary:
        counterparties, stats = await asyncio.gather(
            self.recent_counterparties(wallet_id, asset.chain, now=now),
            self.outgoing_stats(wallet_id, asset),
        )
        return HistorySummary(
            recent_counterparties=counterparties,
            send_amount_mean=stats.mean if stats else None,
            send_count=stats.count if stats else 0,
            window_days=self._window_days,
        )
