from __future__ import annotations

import threading
from typing import List

from raffle_engine.errors import NotOpen, UpkeepNotNeeded
from raffle_engine.events import DrawRequested, RaffleEntered
from raffle_engine.raffle import FulfillmentStatus, RaffleState

from .conftest import FEE, INTERVAL, user

ENTRANTS = 6
ENTRIES_EACH = 40
DRAWERS = 2


def _run(threads: List[threading.Thread]) -> None:
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
        assert not t.is_alive()


def test_entries_racing_a_draw_stay_consistent(raffle, ledger, provider, clock):
    clock.advance(INTERVAL + 1)
    senders = [user(100 + i) for i in range(ENTRANTS)]
    for s in senders:
        ledger.mint(s, ENTRIES_EACH * FEE)

    start = threading.Barrier(ENTRANTS + DRAWERS)
    accepted = [0] * ENTRANTS
    request_ids: List[int] = []
    failures: List[BaseException] = []

    def enter_loop(i: int) -> None:
        start.wait()
        try:
            for _ in range(ENTRIES_EACH):
                try:
                    raffle.enter(senders[i], FEE)
                except NotOpen:
                    continue
                accepted[i] += 1
        except Exception as e:
            failures.append(e)

    def draw_loop() -> None:
        start.wait()
        try:
            while raffle.state is RaffleState.OPEN:
                eligible, payload = raffle.check_draw()
                if not eligible:
                    continue
                try:
                    request_ids.append(raffle.request_draw(payload))
                except UpkeepNotNeeded:
                    continue
        except Exception as e:
            failures.append(e)

    _run(
        [threading.Thread(target=enter_loop, args=(i,)) for i in range(ENTRANTS)]
        + [threading.Thread(target=draw_loop) for _ in range(DRAWERS)]
    )

    assert failures == []
    total = sum(accepted)
    assert raffle.state is RaffleState.DRAWING
    assert raffle.entrant_count == total
    assert raffle.pool_balance == raffle.entrant_count * FEE
    assert ledger.balance_of(raffle.address) == total * FEE
    for s, n in zip(senders, accepted):
        assert ledger.balance_of(s) == (ENTRIES_EACH - n) * FEE

    [rid] = request_ids
    assert raffle.outstanding_request_id == rid
    assert provider.pending() == [rid]

    log = [e for e in raffle.events.events() if e.raffle == raffle.address]
    drawn_at = next(i for i, e in enumerate(log) if isinstance(e, DrawRequested))
    assert all(isinstance(e, RaffleEntered) for e in log[:drawn_at])
    assert len(log[:drawn_at]) == total
    assert log[drawn_at + 1:] == []


def test_duplicate_deliveries_pay_once(raffle, players, provider, clock):
    for p in players:
        raffle.enter(p, FEE)
    clock.advance(INTERVAL + 1)
    rid = raffle.request_draw(raffle.check_draw()[1])

    start = threading.Barrier(4)
    results = []

    def deliver() -> None:
        start.wait()
        results.append(raffle.on_random_ready(provider.address, rid, [7]))

    _run([threading.Thread(target=deliver) for _ in range(4)])

    statuses = sorted(r.status.value for r in results)
    assert statuses.count(FulfillmentStatus.PAID.value) == 1
    assert statuses.count(FulfillmentStatus.IGNORED.value) == 3
    assert raffle.recent_winner == players[3]
    assert raffle.state is RaffleState.OPEN
