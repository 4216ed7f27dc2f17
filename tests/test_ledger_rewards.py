from __future__ import annotations

import pytest

from raffle_engine.events import EventBus, RaffleEntered
from raffle_engine.ledger import InsufficientFunds, Ledger, TransferRejected
from raffle_engine.rewards import NotMinter, RewardToken


def test_transfer_moves_value():
    ledger = Ledger()
    ledger.mint("a", 10)
    ledger.transfer("a", "b", 4)
    assert ledger.balance_of("a") == 6
    assert ledger.balance_of("b") == 4


def test_failed_transfers_change_nothing():
    ledger = Ledger()
    ledger.mint("a", 10)
    with pytest.raises(InsufficientFunds):
        ledger.transfer("a", "b", 11)
    ledger.refuse_deposits("b")
    with pytest.raises(TransferRejected):
        ledger.transfer("a", "b", 1)
    with pytest.raises(ValueError):
        ledger.transfer("a", "c", 0)
    assert ledger.balance_of("a") == 10
    assert ledger.balance_of("b") == 0
    ledger.accept_deposits("b")
    ledger.transfer("a", "b", 1)
    assert ledger.balance_of("b") == 1


def test_ledger_round_trip():
    ledger = Ledger()
    ledger.mint("a", 10)
    ledger.refuse_deposits("b")
    restored = Ledger.from_dict(ledger.to_dict())
    assert restored.balance_of("a") == 10
    with pytest.raises(TransferRejected):
        restored.transfer("a", "b", 1)


def test_only_minters_mint():
    token = RewardToken("owner")
    with pytest.raises(NotMinter):
        token.mint("raffle", "w", 5)
    with pytest.raises(NotMinter):
        token.grant_minter("raffle", "raffle")
    token.grant_minter("owner", "raffle")
    token.mint("raffle", "w", 5)
    token.mint("owner", "w", 1)
    assert token.balance_of("w") == 6
    assert token.total_supply == 6

    token.revoke_minter("owner", "raffle")
    with pytest.raises(NotMinter):
        token.mint("raffle", "w", 5)


def test_token_round_trip():
    token = RewardToken("owner")
    token.grant_minter("owner", "raffle")
    token.mint("raffle", "w", 7)
    restored = RewardToken.from_dict(token.to_dict())
    assert restored.balance_of("w") == 7
    assert restored.total_supply == 7
    assert restored.is_minter("raffle")
    assert restored.symbol == token.symbol


def test_event_bus_log_and_subscribers():
    bus = EventBus()
    seen = []
    bus.subscribe(seen.append)
    e = RaffleEntered("r", "a", 1)
    bus.emit(e)
    assert seen == [e]
    assert bus.events() == [e]
    assert bus.events(RaffleEntered) == [e]


def test_event_bus_keeps_only_newest_events():
    bus = EventBus(max_events=2)
    seen = []
    bus.subscribe(seen.append)
    for i in range(5):
        bus.emit(RaffleEntered("r", f"p{i}", i))

    assert [e.entrant for e in bus.events()] == ["p3", "p4"]
    assert len(seen) == 5
    with pytest.raises(ValueError):
        EventBus(max_events=0)
