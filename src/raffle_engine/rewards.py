from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Protocol, Set

from .project_constants import REWARD_TOKEN_NAME, REWARD_TOKEN_SYMBOL, UNIT_DECIMALS

log = logging.getLogger(__name__)


class RewardIssuer(Protocol):
    def mint(self, minter: str, to: str, amount: int) -> None:
        ...


@dataclass
class NotMinter(Exception):
    caller: str

    def __str__(self) -> str:
        return f"NotMinter: {self.caller} may not mint"


class RewardToken:
    """
    Fixed-decimals reward credit paid to every winner.
    Only the owner and granted minters (raffle instances) can mint.
    """

    def __init__(
        self,
        owner: str,
        name: str = REWARD_TOKEN_NAME,
        symbol: str = REWARD_TOKEN_SYMBOL,
    ) -> None:
        self.owner = owner
        self.name = name
        self.symbol = symbol
        self.decimals = UNIT_DECIMALS
        self._balances: Dict[str, int] = {}
        self._minters: Set[str] = set()
        self._total_supply = 0
        self._lock = threading.Lock()

    @property
    def total_supply(self) -> int:
        return self._total_supply

    def balance_of(self, address: str) -> int:
        with self._lock:
            return self._balances.get(address, 0)

    def is_minter(self, address: str) -> bool:
        return address == self.owner or address in self._minters

    def grant_minter(self, caller: str, minter: str) -> None:
        if caller != self.owner:
            raise NotMinter(caller)
        with self._lock:
            self._minters.add(minter)

    def revoke_minter(self, caller: str, minter: str) -> None:
        if caller != self.owner:
            raise NotMinter(caller)
        with self._lock:
            self._minters.discard(minter)

    def mint(self, minter: str, to: str, amount: int) -> None:
        if not self.is_minter(minter):
            raise NotMinter(minter)
        if amount <= 0:
            raise ValueError("Mint amount must be positive.")
        with self._lock:
            self._balances[to] = self._balances.get(to, 0) + amount
            self._total_supply += amount
        log.debug("%s minted %d %s to %s", minter, amount, self.symbol, to)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "owner": self.owner,
                "name": self.name,
                "symbol": self.symbol,
                "balances": dict(sorted(self._balances.items())),
                "minters": sorted(self._minters),
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RewardToken":
        token = cls(data["owner"], name=data["name"], symbol=data["symbol"])
        token._balances = {k: int(v) for k, v in data.get("balances", {}).items()}
        token._minters = set(data.get("minters", []))
        token._total_supply = sum(token._balances.values())
        return token
