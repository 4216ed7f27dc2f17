from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Protocol

from .raffle import RaffleSnapshot
from .registry import RaffleRegistry

log = logging.getLogger(__name__)


class RaffleView(Protocol):
    address: str

    def snapshot(self) -> RaffleSnapshot:
        ...


class StatisticsAggregator:
    """Cross-raffle figures, read from consistent per-raffle snapshots."""

    def __init__(self, registry: RaffleRegistry) -> None:
        self.registry = registry
        self._views: List[RaffleView] = []
        self._lock = threading.Lock()

    def sync(self) -> int:
        """Pull raffles created since the last sync; returns how many were added."""
        with self._lock:
            known = {v.address for v in self._views}
            added = [r for r in self.registry.list() if r.address not in known]
            self._views.extend(added)
        if added:
            log.debug("Statistics synced %d new raffle(s)", len(added))
        return len(added)

    def _snapshots(self) -> List[RaffleSnapshot]:
        with self._lock:
            views = list(self._views)
        return [v.snapshot() for v in views]

    def total_instances(self) -> int:
        with self._lock:
            return len(self._views)

    def total_funds_across_instances(self) -> int:
        return sum(s.pool_balance for s in self._snapshots())

    def historical_winners(self) -> Dict[str, Optional[str]]:
        return {s.address: s.recent_winner for s in self._snapshots()}
