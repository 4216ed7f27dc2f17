from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Type, Union

from .project_constants import EVENT_LOG_LIMIT

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RaffleEntered:
    raffle: str
    entrant: str
    value: int


@dataclass(frozen=True)
class DrawRequested:
    raffle: str
    request_id: int


@dataclass(frozen=True)
class WinnerPicked:
    raffle: str
    winner: str
    request_id: int
    winner_index: int
    amount: int


@dataclass(frozen=True)
class PayoutFailed:
    raffle: str
    winner: str
    amount: int
    reason: str


@dataclass(frozen=True)
class RewardIssuanceFailedEvent:
    raffle: str
    winner: str
    amount: int
    reason: str


Event = Union[RaffleEntered, DrawRequested, WinnerPicked, PayoutFailed, RewardIssuanceFailedEvent]
Subscriber = Callable[[Event], None]


class EventBus:
    """
    Ordered, in-memory notification log with synchronous subscribers.
    Only the newest `max_events` are kept; subscribers see every event.
    """

    def __init__(self, max_events: int = EVENT_LOG_LIMIT) -> None:
        if max_events <= 0:
            raise ValueError("max_events must be positive.")
        self._log: Deque[Event] = deque(maxlen=max_events)
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def emit(self, event: Event) -> None:
        with self._lock:
            self._log.append(event)
            subscribers = list(self._subscribers)
        log.info("event %s", event)
        for cb in subscribers:
            cb(event)

    def events(self, kind: Optional[Type] = None) -> List[Event]:
        with self._lock:
            if kind is None:
                return list(self._log)
            return [e for e in self._log if isinstance(e, kind)]
