from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .accounts import derive_address
from .errors import UnknownRaffle
from .events import EventBus
from .ledger import Ledger
from .project_constants import (
    DEFAULT_DRAW_INTERVAL,
    DEFAULT_ENTRANCE_FEE,
    DEFAULT_KEY_HASH,
    DEFAULT_REWARD_AMOUNT,
    RAFFLE_NAMESPACE,
)
from .raffle import RaffleInstance
from .randomness import RandomnessProvider
from .rewards import RewardToken

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RaffleParams:
    entrance_fee: int = DEFAULT_ENTRANCE_FEE
    draw_interval: int = DEFAULT_DRAW_INTERVAL
    reward_amount: int = DEFAULT_REWARD_AMOUNT
    key_hash: str = DEFAULT_KEY_HASH

    def validate(self) -> None:
        if self.entrance_fee <= 0:
            raise ValueError("entrance_fee must be positive.")
        if self.draw_interval < 0:
            raise ValueError("draw_interval must be non-negative.")
        if self.reward_amount < 0:
            raise ValueError("reward_amount must be non-negative.")


class RaffleRegistry:
    """Creates raffles and keeps them in creation order."""

    def __init__(
        self,
        ledger: Ledger,
        provider: RandomnessProvider,
        reward_token: RewardToken,
        events: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ledger = ledger
        self.provider = provider
        self.reward_token = reward_token
        self.events = events or EventBus()
        self.clock = clock
        self._raffles: Dict[str, RaffleInstance] = {}
        self._lock = threading.Lock()

    def create(self, params: RaffleParams) -> RaffleInstance:
        params.validate()
        with self._lock:
            address = derive_address(RAFFLE_NAMESPACE, len(self._raffles))
            raffle = RaffleInstance(
                address=address,
                entrance_fee=params.entrance_fee,
                draw_interval=params.draw_interval,
                reward_amount=params.reward_amount,
                ledger=self.ledger,
                provider=self.provider,
                reward_issuer=self.reward_token,
                events=self.events,
                clock=self.clock,
                key_hash=params.key_hash,
            )
            self.reward_token.grant_minter(self.reward_token.owner, address)
            self._raffles[address] = raffle
        log.info(
            "Created raffle %s (fee=%d interval=%ds reward=%d)",
            address,
            params.entrance_fee,
            params.draw_interval,
            params.reward_amount,
        )
        return raffle

    def add(self, raffle: RaffleInstance) -> None:
        """Re-register a raffle restored from saved state."""
        with self._lock:
            self._raffles[raffle.address] = raffle

    def get(self, address: str) -> RaffleInstance:
        with self._lock:
            raffle = self._raffles.get(address)
        if raffle is None:
            raise UnknownRaffle(address)
        return raffle

    def list(self) -> List[RaffleInstance]:
        with self._lock:
            return list(self._raffles.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._raffles)
