from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Tuple

from .errors import UpkeepNotNeeded
from .randomness import PROVIDER_ERRORS
from .registry import RaffleRegistry

log = logging.getLogger(__name__)


class Upkeeper:
    """Periodic trigger: check every raffle and request a draw where eligible."""

    def __init__(self, registry: RaffleRegistry, interval: Optional[int] = None) -> None:
        self.registry = registry
        # None means each raffle's own draw interval.
        self.interval = interval

    def perform(self) -> List[Tuple[str, int]]:
        triggered: List[Tuple[str, int]] = []
        for raffle in self.registry.list():
            eligible, payload = raffle.check_draw(self.interval)
            if not eligible:
                continue
            try:
                request_id = raffle.request_draw(payload)
            except UpkeepNotNeeded as e:
                log.info("Skipped %s: %s", raffle.address, e)
                continue
            except PROVIDER_ERRORS as e:
                # request_draw reverted the raffle to OPEN; the next pass retries.
                log.error("Draw request for %s failed: %s", raffle.address, e)
                continue
            triggered.append((raffle.address, request_id))
        log.debug("Upkeep pass triggered %d draw(s)", len(triggered))
        return triggered

    def run_forever(
        self,
        every_s: float,
        iterations: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> int:
        done = 0
        total = 0
        while iterations is None or done < iterations:
            total += len(self.perform())
            done += 1
            if iterations is None or done < iterations:
                sleep(every_s)
        return total
