from __future__ import annotations

from typing import List

import pytest

from raffle_engine.accounts import derive_address
from raffle_engine.draw import to_units
from raffle_engine.ledger import Ledger
from raffle_engine.project_constants import OWNER_NAMESPACE, PROVIDER_NAMESPACE
from raffle_engine.randomness import LocalRandomnessProvider
from raffle_engine.registry import RaffleParams, RaffleRegistry
from raffle_engine.rewards import RewardToken

FEE = to_units("1.0")
INTERVAL = 30
REWARD = to_units("100")
OWNER = derive_address(OWNER_NAMESPACE, "test")


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def user(i: int) -> str:
    return derive_address("user", i)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> Ledger:
    return Ledger()


@pytest.fixture
def provider() -> LocalRandomnessProvider:
    return LocalRandomnessProvider(derive_address(PROVIDER_NAMESPACE, "test"))


@pytest.fixture
def token() -> RewardToken:
    return RewardToken(OWNER)


@pytest.fixture
def registry(ledger, provider, token, clock) -> RaffleRegistry:
    return RaffleRegistry(ledger, provider, token, clock=clock)


@pytest.fixture
def raffle(registry):
    return registry.create(RaffleParams(entrance_fee=FEE, draw_interval=INTERVAL, reward_amount=REWARD))


@pytest.fixture
def players(ledger) -> List[str]:
    out = [user(i) for i in range(4)]
    for p in out:
        ledger.mint(p, 10 * FEE)
    return out
