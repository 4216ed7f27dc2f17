from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from .errors import SelfReferral
from .project_constants import REFERRAL_DIVISOR
from .raffle import RaffleInstance

log = logging.getLogger(__name__)


class ReferralLedger:
    """
    Referral credits. A referee's first referred entry pays the referrer
    value // REFERRAL_DIVISOR; later referred entries by the same referee
    are forwarded without credit.
    """

    def __init__(self) -> None:
        self._referrer_of: Dict[str, str] = {}
        self._rewards: Dict[str, int] = {}
        self._lock = threading.Lock()

    def enter_with_referral(self, raffle: RaffleInstance, referee: str, referrer: str, value: int) -> int:
        """Returns the credit granted by this entry (0 if already referred)."""
        if referee == referrer:
            raise SelfReferral(referee)
        with self._lock:
            first = referee not in self._referrer_of
            # Only credit once the entry itself went through.
            raffle.enter(referee, value)
            if not first:
                log.debug("%s already referred by %s; no credit", referee, self._referrer_of[referee])
                return 0
            credit = value // REFERRAL_DIVISOR
            self._referrer_of[referee] = referrer
            self._rewards[referrer] = self._rewards.get(referrer, 0) + credit
        log.info("Referral: %s referred %s, credited %d", referrer, referee, credit)
        return credit

    def reward_of(self, referrer: str) -> int:
        with self._lock:
            return self._rewards.get(referrer, 0)

    def referrer_of(self, referee: str) -> Optional[str]:
        with self._lock:
            return self._referrer_of.get(referee)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "referrer_of": dict(sorted(self._referrer_of.items())),
                "rewards": dict(sorted(self._rewards.items())),
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReferralLedger":
        ledger = cls()
        ledger._referrer_of = dict(data.get("referrer_of", {}))
        ledger._rewards = {k: int(v) for k, v in data.get("rewards", {}).items()}
        return ledger
