from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Set

log = logging.getLogger(__name__)


@dataclass
class InsufficientFunds(Exception):
    address: str
    balance: int
    requested: int

    def __str__(self) -> str:
        return f"InsufficientFunds: {self.address} has {self.balance}, needs {self.requested}"


@dataclass
class TransferRejected(Exception):
    recipient: str

    def __str__(self) -> str:
        return f"TransferRejected: {self.recipient} does not accept deposits"


class Ledger:
    """Native-value balances. A failed transfer leaves every balance untouched."""

    def __init__(self) -> None:
        self._balances: Dict[str, int] = {}
        self._refusing: Set[str] = set()
        self._lock = threading.Lock()

    def balance_of(self, address: str) -> int:
        with self._lock:
            return self._balances.get(address, 0)

    def mint(self, address: str, amount: int) -> None:
        if amount <= 0:
            raise ValueError("Mint amount must be positive.")
        with self._lock:
            self._balances[address] = self._balances.get(address, 0) + amount
        log.debug("Minted %d to %s", amount, address)

    def refuse_deposits(self, address: str) -> None:
        with self._lock:
            self._refusing.add(address)

    def accept_deposits(self, address: str) -> None:
        with self._lock:
            self._refusing.discard(address)

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        if amount <= 0:
            raise ValueError("Transfer amount must be positive.")
        with self._lock:
            if recipient in self._refusing:
                raise TransferRejected(recipient)
            balance = self._balances.get(sender, 0)
            if balance < amount:
                raise InsufficientFunds(sender, balance, amount)
            self._balances[sender] = balance - amount
            self._balances[recipient] = self._balances.get(recipient, 0) + amount
        log.debug("Transferred %d from %s to %s", amount, sender, recipient)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "balances": dict(sorted(self._balances.items())),
                "refusing": sorted(self._refusing),
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Ledger":
        ledger = cls()
        ledger._balances = {k: int(v) for k, v in data.get("balances", {}).items()}
        ledger._refusing = set(data.get("refusing", []))
        return ledger
