"""
Raffle errors.

Callers can catch the base `RaffleError` to handle every raffle failure, or
the concrete subclasses for finer control. Entry and draw-request errors are
recoverable and raised straight to the caller; `TransferFailed` is the one
fatal payout error and must reach monitoring.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class RaffleError(Exception):
    """Base class for all raffle errors."""
    pass


@dataclass
class InsufficientPayment(RaffleError):
    """Entry value is below the entrance fee."""

    required: int
    provided: int

    def __str__(self) -> str:
        return f"InsufficientPayment: required={self.required} provided={self.provided}"


@dataclass
class NotOpen(RaffleError):
    """Entry attempted while a draw is in flight."""

    state: str

    def __str__(self) -> str:
        return f"NotOpen: raffle state is {self.state}"


@dataclass
class UpkeepNotNeeded(RaffleError):
    """A draw was requested while the raffle is not eligible."""

    balance: int
    entrant_count: int
    state: str

    def __str__(self) -> str:
        return (
            f"UpkeepNotNeeded: balance={self.balance} "
            f"entrants={self.entrant_count} state={self.state}"
        )


@dataclass
class StaleOrUnknownRequest(RaffleError):
    """
    Fulfillment for a request id that is not the outstanding one.

    Never raised by the raffle: a duplicate or out-of-order delivery is not a
    fault. It is attached to the `FulfillmentResult` for observers.
    """

    request_id: int
    expected: Optional[int]

    def __str__(self) -> str:
        return f"StaleOrUnknownRequest: request_id={self.request_id} expected={self.expected}"


@dataclass
class TransferFailed(RaffleError):
    """
    The pool could not be paid to the winner.

    Bookkeeping has already been reset; the funds stay at the raffle address
    until an operator recovers them.
    """

    raffle: str
    recipient: str
    amount: int
    reason: str

    def __str__(self) -> str:
        return (
            f"TransferFailed: raffle={self.raffle} recipient={self.recipient} "
            f"amount={self.amount} ({self.reason})"
        )


@dataclass
class RewardIssuanceFailed(RaffleError):
    """The winner was paid but the reward token credit could not be minted."""

    recipient: str
    amount: int
    reason: str

    def __str__(self) -> str:
        return f"RewardIssuanceFailed: recipient={self.recipient} amount={self.amount} ({self.reason})"


@dataclass
class OnlyProviderCanFulfill(RaffleError):
    sender: str
    expected: str

    def __str__(self) -> str:
        return f"OnlyProviderCanFulfill: sender={self.sender} expected={self.expected}"


@dataclass
class InvalidPayload(RaffleError):
    reason: str

    def __str__(self) -> str:
        return f"InvalidPayload: {self.reason}"


@dataclass
class UnknownRaffle(RaffleError):
    address: str

    def __str__(self) -> str:
        return f"UnknownRaffle: {self.address}"


@dataclass
class SelfReferral(RaffleError):
    address: str

    def __str__(self) -> str:
        return f"SelfReferral: {self.address} cannot refer itself"
