"""
The raffle state machine.

One `RaffleInstance` owns one pool, one roster and the OPEN/DRAWING cycle:

    OPEN --enter--> OPEN
    OPEN --request_draw (eligible)--> DRAWING
    DRAWING --on_random_ready (matching id)--> OPEN

Every mutating call runs under the instance lock, so enter, request_draw and
fulfillment never interleave for the same raffle. Nothing leaves DRAWING
except a matching fulfillment; an abandoned randomness request keeps the
raffle closed to entries.
"""

from __future__ import annotations

import enum
import logging
import struct
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .draw import select_winner
from .errors import (
    InsufficientPayment,
    InvalidPayload,
    NotOpen,
    OnlyProviderCanFulfill,
    RewardIssuanceFailed,
    StaleOrUnknownRequest,
    TransferFailed,
    UpkeepNotNeeded,
)
from .events import (
    DrawRequested,
    EventBus,
    PayoutFailed,
    RaffleEntered,
    RewardIssuanceFailedEvent,
    WinnerPicked,
)
from .ledger import InsufficientFunds, Ledger, TransferRejected
from .project_constants import DEFAULT_KEY_HASH
from .randomness import DrawRequestParams, RandomnessProvider
from .rewards import RewardIssuer

log = logging.getLogger(__name__)

_PAYLOAD = struct.Struct(">Q")


class RaffleState(enum.Enum):
    OPEN = "OPEN"
    DRAWING = "DRAWING"


class FulfillmentStatus(enum.Enum):
    PAID = "paid"
    PAID_REWARD_FAILED = "paid_reward_failed"
    IGNORED = "ignored"


@dataclass(frozen=True)
class DrawRecord:
    """Everything needed to re-derive a winner after the fact."""

    raffle: str
    request_id: int
    random_value: int
    entrants: Tuple[str, ...]
    winner_index: int
    winner: str
    amount: int
    drawn_at: float


@dataclass(frozen=True)
class FulfillmentResult:
    status: FulfillmentStatus
    winner: Optional[str] = None
    winner_index: Optional[int] = None
    amount: int = 0
    rejection: Optional[StaleOrUnknownRequest] = None
    reward_error: Optional[RewardIssuanceFailed] = None


@dataclass(frozen=True)
class RaffleSnapshot:
    """Point-in-time copy of a raffle's public state."""

    address: str
    state: RaffleState
    entrance_fee: int
    draw_interval: int
    last_draw_timestamp: float
    entrant_count: int
    pool_balance: int
    recent_winner: Optional[str]
    outstanding_request_id: Optional[int]


def encode_payload(interval: int) -> bytes:
    if interval < 0:
        raise ValueError("Interval must be non-negative.")
    return _PAYLOAD.pack(int(interval))


def decode_payload(payload: bytes) -> int:
    if not isinstance(payload, (bytes, bytearray)) or len(payload) != _PAYLOAD.size:
        raise InvalidPayload(f"expected {_PAYLOAD.size} bytes, got {payload!r}")
    return _PAYLOAD.unpack(bytes(payload))[0]


class RaffleInstance:
    def __init__(
        self,
        address: str,
        entrance_fee: int,
        draw_interval: int,
        reward_amount: int,
        ledger: Ledger,
        provider: RandomnessProvider,
        reward_issuer: RewardIssuer,
        events: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time,
        key_hash: str = DEFAULT_KEY_HASH,
        created_at: Optional[float] = None,
    ) -> None:
        if entrance_fee <= 0:
            raise ValueError("Entrance fee must be positive.")
        if draw_interval < 0:
            raise ValueError("Draw interval must be non-negative.")
        if reward_amount < 0:
            raise ValueError("Reward amount must be non-negative.")

        self.address = address
        self._entrance_fee = int(entrance_fee)
        self._draw_interval = int(draw_interval)
        self._reward_amount = int(reward_amount)
        self.key_hash = key_hash

        self._ledger = ledger
        self._provider = provider
        self._reward_issuer = reward_issuer
        self.events = events or EventBus()
        self._clock = clock
        self._lock = threading.RLock()

        self._state = RaffleState.OPEN
        self._entrants: List[str] = []
        self._pooled_value = 0
        self._last_draw_ts = clock() if created_at is None else created_at
        self._recent_winner: Optional[str] = None
        self._outstanding: Optional[int] = None
        self._last_draw: Optional[DrawRecord] = None

    # ------------------------------------------------------------------ entry

    def enter(self, sender: str, value: int) -> None:
        with self._lock:
            if value < self._entrance_fee:
                raise InsufficientPayment(self._entrance_fee, value)
            if self._state is not RaffleState.OPEN:
                raise NotOpen(self._state.value)
            # Moves the deposit first; InsufficientFunds leaves the roster untouched.
            self._ledger.transfer(sender, self.address, value)
            self._entrants.append(sender)
            self._pooled_value += value
            log.debug("%s entered %s with %d", sender, self.address, value)
            self.events.emit(RaffleEntered(self.address, sender, value))

    # ------------------------------------------------------------ eligibility

    def check_draw(self, custom_interval: Optional[int] = None) -> Tuple[bool, bytes]:
        interval = self._draw_interval if custom_interval is None else int(custom_interval)
        payload = encode_payload(interval)
        with self._lock:
            return self._eligible(interval), payload

    def _eligible(self, interval: int) -> bool:
        elapsed = self._clock() - self._last_draw_ts
        return (
            self._state is RaffleState.OPEN
            and elapsed > interval
            and len(self._entrants) > 0
            and self._pooled_value > 0
        )

    # ----------------------------------------------------------- draw request

    def request_draw(self, payload: bytes) -> int:
        interval = decode_payload(payload)
        with self._lock:
            if not self._eligible(interval):
                raise UpkeepNotNeeded(self.pool_balance, len(self._entrants), self._state.value)
            self._state = RaffleState.DRAWING
            try:
                request_id = self._provider.request_random(
                    self, DrawRequestParams(key_hash=self.key_hash)
                )
            except Exception:
                # No request went out, so there is nothing to wait for.
                self._state = RaffleState.OPEN
                raise
            self._outstanding = request_id
            log.info("Raffle %s requested draw %d", self.address, request_id)
            self.events.emit(DrawRequested(self.address, request_id))
            return request_id

    # ------------------------------------------------------------ fulfillment

    def on_random_ready(self, sender: str, request_id: int, values: Sequence[int]) -> FulfillmentResult:
        """
        Inbound fulfillment from the randomness provider.

        A request id other than the outstanding one is ignored without any
        state change. On a match the winner is recorded and the raffle is
        reset before the pool is paid out; a failed payout raises
        TransferFailed and leaves the funds at the raffle address.
        """
        with self._lock:
            if sender != self._provider.address:
                raise OnlyProviderCanFulfill(sender, self._provider.address)
            if self._outstanding is None or request_id != self._outstanding:
                rejection = StaleOrUnknownRequest(request_id, self._outstanding)
                log.warning("Raffle %s ignored fulfillment: %s", self.address, rejection)
                return FulfillmentResult(FulfillmentStatus.IGNORED, rejection=rejection)
            if not values:
                raise ValueError(f"Request {request_id} delivered no random values.")

            random_value = int(values[0])
            roster = tuple(self._entrants)
            index, winner = select_winner(random_value, roster)
            amount = self._ledger.balance_of(self.address)
            now = self._clock()

            self._recent_winner = winner
            self._entrants = []
            self._pooled_value = 0
            self._state = RaffleState.OPEN
            self._last_draw_ts = now
            self._outstanding = None
            self._last_draw = DrawRecord(
                raffle=self.address,
                request_id=request_id,
                random_value=random_value,
                entrants=roster,
                winner_index=index,
                winner=winner,
                amount=amount,
                drawn_at=now,
            )
            self.events.emit(WinnerPicked(self.address, winner, request_id, index, amount))

            if amount > 0:
                try:
                    self._ledger.transfer(self.address, winner, amount)
                except (TransferRejected, InsufficientFunds) as e:
                    log.error("Raffle %s could not pay %d to %s: %s", self.address, amount, winner, e)
                    self.events.emit(PayoutFailed(self.address, winner, amount, str(e)))
                    raise TransferFailed(self.address, winner, amount, str(e)) from e

            reward_error = self._issue_reward(winner)
            log.info("Raffle %s paid %d to %s (entrant #%d)", self.address, amount, winner, index)
            return FulfillmentResult(
                FulfillmentStatus.PAID_REWARD_FAILED if reward_error else FulfillmentStatus.PAID,
                winner=winner,
                winner_index=index,
                amount=amount,
                reward_error=reward_error,
            )

    def _issue_reward(self, winner: str) -> Optional[RewardIssuanceFailed]:
        if self._reward_amount <= 0:
            return None
        try:
            self._reward_issuer.mint(self.address, winner, self._reward_amount)
        except Exception as e:
            err = RewardIssuanceFailed(winner, self._reward_amount, str(e))
            log.error("Raffle %s: %s", self.address, err)
            self.events.emit(
                RewardIssuanceFailedEvent(self.address, winner, self._reward_amount, str(e))
            )
            return err
        return None

    # -------------------------------------------------------------- accessors

    @property
    def state(self) -> RaffleState:
        return self._state

    @property
    def entrance_fee(self) -> int:
        return self._entrance_fee

    @property
    def draw_interval(self) -> int:
        return self._draw_interval

    @property
    def reward_amount(self) -> int:
        return self._reward_amount

    @property
    def last_draw_timestamp(self) -> float:
        return self._last_draw_ts

    @property
    def recent_winner(self) -> Optional[str]:
        return self._recent_winner

    @property
    def outstanding_request_id(self) -> Optional[int]:
        return self._outstanding

    @property
    def entrant_count(self) -> int:
        return len(self._entrants)

    def entrant(self, index: int) -> str:
        with self._lock:
            return self._entrants[index]

    @property
    def entrants(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._entrants)

    @property
    def pooled_value(self) -> int:
        return self._pooled_value

    @property
    def pool_balance(self) -> int:
        return self._ledger.balance_of(self.address)

    @property
    def last_draw(self) -> Optional[DrawRecord]:
        return self._last_draw

    def snapshot(self) -> RaffleSnapshot:
        with self._lock:
            return RaffleSnapshot(
                address=self.address,
                state=self._state,
                entrance_fee=self._entrance_fee,
                draw_interval=self._draw_interval,
                last_draw_timestamp=self._last_draw_ts,
                entrant_count=len(self._entrants),
                pool_balance=self.pool_balance,
                recent_winner=self._recent_winner,
                outstanding_request_id=self._outstanding,
            )

    # ------------------------------------------------------------ persistence

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            last = self._last_draw
            return {
                "address": self.address,
                "entrance_fee": self._entrance_fee,
                "draw_interval": self._draw_interval,
                "reward_amount": self._reward_amount,
                "key_hash": self.key_hash,
                "state": self._state.value,
                "entrants": list(self._entrants),
                "pooled_value": self._pooled_value,
                "last_draw_timestamp": self._last_draw_ts,
                "recent_winner": self._recent_winner,
                "outstanding_request_id": self._outstanding,
                "last_draw": None
                if last is None
                else {
                    "raffle": last.raffle,
                    "request_id": last.request_id,
                    "random_value": str(last.random_value),  # big int; store as string
                    "entrants": list(last.entrants),
                    "winner_index": last.winner_index,
                    "winner": last.winner,
                    "amount": last.amount,
                    "drawn_at": last.drawn_at,
                },
            }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        ledger: Ledger,
        provider: RandomnessProvider,
        reward_issuer: RewardIssuer,
        events: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time,
    ) -> "RaffleInstance":
        raffle = cls(
            address=data["address"],
            entrance_fee=int(data["entrance_fee"]),
            draw_interval=int(data["draw_interval"]),
            reward_amount=int(data["reward_amount"]),
            ledger=ledger,
            provider=provider,
            reward_issuer=reward_issuer,
            events=events,
            clock=clock,
            key_hash=data.get("key_hash", DEFAULT_KEY_HASH),
            created_at=float(data["last_draw_timestamp"]),
        )
        raffle._state = RaffleState(data["state"])
        raffle._entrants = list(data.get("entrants", []))
        raffle._pooled_value = int(data.get("pooled_value", 0))
        raffle._recent_winner = data.get("recent_winner")
        outstanding = data.get("outstanding_request_id")
        raffle._outstanding = None if outstanding is None else int(outstanding)
        last = data.get("last_draw")
        if last:
            raffle._last_draw = DrawRecord(
                raffle=last["raffle"],
                request_id=int(last["request_id"]),
                random_value=int(last["random_value"]),
                entrants=tuple(last["entrants"]),
                winner_index=int(last["winner_index"]),
                winner=last["winner"],
                amount=int(last["amount"]),
                drawn_at=float(last["drawn_at"]),
            )
        return raffle
