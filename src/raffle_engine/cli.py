from __future__ import annotations

import argparse
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional, Tuple

from .accounts import derive_address, load_address_list, require_address
from .audit import AuditMismatch, verify_audit, write_audit
from .config import Settings
from .draw import to_tokens, to_units
from .errors import RaffleError, TransferFailed
from .project_constants import (
    DEFAULT_DRAW_INTERVAL,
    DEFAULT_REWARD_AMOUNT,
    PROVIDER_NAMESPACE,
)
from .ledger import InsufficientFunds
from .raffle import FulfillmentResult, FulfillmentStatus, RaffleInstance
from .randomness import (
    PROVIDER_ERRORS,
    HttpRandomnessProvider,
    LocalRandomnessProvider,
    RandomnessProvider,
    UnknownRequest,
)
from .registry import RaffleParams
from .stats import StatisticsAggregator
from .store import StateFileError, World, load_state, save_state
from .upkeep import Upkeeper

log = logging.getLogger("raffle")


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


@contextmanager
def open_world(args: argparse.Namespace) -> Iterator[World]:
    """Loads state, yields it, and always saves it back (even after a failed payout)."""
    settings = Settings.from_env(
        state_file_override=args.state_file,
        rpc_url_override=args.rpc_url,
    )
    provider: Optional[RandomnessProvider] = None
    if settings.rpc_url:
        provider = HttpRandomnessProvider(
            settings.rpc_url,
            address=derive_address(PROVIDER_NAMESPACE, settings.rpc_url),
            timeout_s=args.timeout,
        )
    try:
        world = load_state(settings.state_file, provider=provider, owner=settings.owner)
        try:
            yield world
        finally:
            save_state(settings.state_file, world)
    finally:
        if isinstance(provider, HttpRandomnessProvider):
            provider.close()


def _fmt_ts(ts: float) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _print_raffle(raffle: RaffleInstance) -> None:
    snap = raffle.snapshot()
    print(f"Raffle        : {snap.address}")
    print(f"State         : {snap.state.value}")
    print(f"Entrance fee  : {to_tokens(snap.entrance_fee)}")
    print(f"Draw interval : {snap.draw_interval}s")
    print(f"Last draw     : {_fmt_ts(snap.last_draw_timestamp)}")
    print(f"Entrants      : {snap.entrant_count}")
    print(f"Pool          : {to_tokens(snap.pool_balance)}")
    print(f"Recent winner : {snap.recent_winner or '-'}")
    if snap.outstanding_request_id is not None:
        print(f"Awaiting draw : request {snap.outstanding_request_id}")


def _report_fulfillment(raffle: RaffleInstance, result: FulfillmentResult, audit_out: Optional[str]) -> None:
    if result.status is FulfillmentStatus.IGNORED:
        print(f"Ignored: {result.rejection}")
        return
    print("========================================")
    print("🏆 WINNER")
    print(f"Raffle        : {raffle.address}")
    print(f"Address       : {result.winner}")
    print(f"Entrant index : {result.winner_index}")
    print(f"Payout        : {to_tokens(result.amount)}")
    if result.reward_error is not None:
        print(f"⚠️  Reward not issued: {result.reward_error}")
    if audit_out and raffle.last_draw is not None:
        write_audit(raffle.last_draw, audit_out)
        print(f"🧾 Wrote audit: {audit_out}")


def cmd_create(args: argparse.Namespace) -> int:
    params = RaffleParams(
        entrance_fee=to_units(args.fee),
        draw_interval=args.interval,
        reward_amount=to_units(args.reward) if args.reward is not None else DEFAULT_REWARD_AMOUNT,
    )
    with open_world(args) as world:
        raffle = world.registry.create(params)
        print(raffle.address)
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    with open_world(args) as world:
        raffles = world.registry.list()
        if not raffles:
            print("No raffles yet.")
        for i, raffle in enumerate(raffles):
            if i:
                print("-" * 40)
            _print_raffle(raffle)
    return 0


def cmd_fund(args: argparse.Namespace) -> int:
    addresses = load_address_list(args.addresses_file) if args.addresses_file else []
    if args.address:
        addresses.append(require_address(args.address))
    if not addresses:
        raise SystemExit("Nothing to fund: pass --address or --addresses-file.")
    amount = to_units(args.amount)
    with open_world(args) as world:
        for address in addresses:
            world.ledger.mint(address, amount)
            log.info("Funded %s with %s", address, to_tokens(amount))
    return 0


def cmd_enter(args: argparse.Namespace) -> int:
    sender = require_address(args.address)
    with open_world(args) as world:
        raffle = world.registry.get(args.raffle)
        value = to_units(args.value) if args.value is not None else raffle.entrance_fee
        if args.referrer:
            credit = world.referrals.enter_with_referral(
                raffle, sender, require_address(args.referrer), value
            )
            if credit:
                print(f"Referrer {args.referrer} credited {to_tokens(credit)}")
        else:
            raffle.enter(sender, value)
        print(f"Entered {raffle.address} ({raffle.entrant_count} entrants, pool {to_tokens(raffle.pool_balance)})")
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    with open_world(args) as world:
        raffle = world.registry.get(args.raffle)
        eligible, payload = raffle.check_draw(args.interval)
        print(f"Eligible      : {eligible}")
        print(f"Payload       : 0x{payload.hex()}")
    return 0


def cmd_upkeep(args: argparse.Namespace) -> int:
    with open_world(args) as world:
        keeper = Upkeeper(world.registry, interval=args.interval)
        if args.watch:
            total = keeper.run_forever(args.every, iterations=args.iterations)
            print(f"Draws requested: {total}")
        else:
            for address, request_id in keeper.perform():
                print(f"{address} -> request {request_id}")
    return 0


def cmd_fulfill(args: argparse.Namespace) -> int:
    with open_world(args) as world:
        if not isinstance(world.provider, LocalRandomnessProvider):
            raise SystemExit("fulfill drives the local provider; use 'poll' with --rpc-url.")
        raffle = world.provider.consumer_of(args.request_id)
        values = [args.value] if args.value is not None else None
        try:
            result = world.provider.fulfill(args.request_id, values)
        except TransferFailed as e:
            print(f"❌ {e}")
            return 2
        _report_fulfillment(raffle, result, args.audit_out)
    return 0


def cmd_poll(args: argparse.Namespace) -> int:
    with open_world(args) as world:
        if not isinstance(world.provider, HttpRandomnessProvider):
            raise SystemExit("poll needs a remote provider (--rpc-url or RANDOMNESS_RPC_URL).")
        pending = {rid: world.registry.get(addr) for addr, rid in _outstanding(world)}

        def audit_path(request_id: int) -> Optional[str]:
            if not args.audit_dir:
                return None
            return os.path.join(args.audit_dir, f"audit-{request_id}.json")

        def report(request_id: int, result: FulfillmentResult) -> None:
            _report_fulfillment(pending[request_id], result, audit_path(request_id))

        # Report each draw as it lands so a later failed payout cannot hide earlier ones.
        try:
            delivered = world.provider.poll(on_delivered=report)
        except TransferFailed as e:
            print(f"❌ {e}")
            draw = world.registry.get(e.raffle).last_draw
            out = audit_path(draw.request_id) if draw is not None else None
            if out:
                write_audit(draw, out)
                print(f"🧾 Wrote audit: {out}")
            return 2
        if not delivered:
            print("No fulfillments ready.")
    return 0


def _outstanding(world: World) -> Iterator[Tuple[str, int]]:
    for raffle in world.registry.list():
        if raffle.outstanding_request_id is not None:
            yield raffle.address, raffle.outstanding_request_id


def cmd_stats(args: argparse.Namespace) -> int:
    with open_world(args) as world:
        agg = StatisticsAggregator(world.registry)
        agg.sync()
        print(f"Raffles       : {agg.total_instances()}")
        print(f"Total funds   : {to_tokens(agg.total_funds_across_instances())}")
        print("Recent winners:")
        for address, winner in agg.historical_winners().items():
            print(f"  {address}: {winner or '-'}")
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    result = verify_audit(args.audit)
    print("✅ AUDIT VERIFIED")
    print(f"Raffle        : {result['raffle']}")
    print(f"Request       : {result['request_id']}")
    print(f"Winner        : {result['winner']}")
    print(f"Entrant index : {result['winner_index']} of {result['entrant_count']}")
    print(f"Payout        : {to_tokens(result['amount'])}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="raffle-engine",
        description="Recurring raffle with verifiable randomness draws.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--state-file", default=None, help="State JSON path (else RAFFLE_STATE_FILE).")
    p.add_argument("--rpc-url", default=None, help="Randomness RPC URL (else RANDOMNESS_RPC_URL).")
    p.add_argument("--timeout", type=float, default=60.0, help="RPC timeout seconds.")

    sub = p.add_subparsers(dest="cmd", required=True)

    c = sub.add_parser("create", help="Create a new raffle.")
    c.add_argument("--fee", required=True, help="Entrance fee in tokens (e.g. 1.0).")
    c.add_argument("--interval", type=int, default=DEFAULT_DRAW_INTERVAL, help="Seconds between draws.")
    c.add_argument("--reward", default=None, help="Reward tokens minted to each winner.")
    c.set_defaults(func=cmd_create)

    ls = sub.add_parser("list", help="Show every raffle.")
    ls.set_defaults(func=cmd_list)

    f = sub.add_parser("fund", help="Credit native value to addresses (local ledger).")
    f.add_argument("--address", default=None)
    f.add_argument("--addresses-file", default=None, help="One address per line.")
    f.add_argument("--amount", required=True, help="Tokens to credit.")
    f.set_defaults(func=cmd_fund)

    e = sub.add_parser("enter", help="Enter a raffle.")
    e.add_argument("--raffle", required=True)
    e.add_argument("--address", required=True, help="Entrant address.")
    e.add_argument("--value", default=None, help="Tokens to deposit (default: entrance fee).")
    e.add_argument("--referrer", default=None, help="Referrer address.")
    e.set_defaults(func=cmd_enter)

    ch = sub.add_parser("check", help="Check draw eligibility.")
    ch.add_argument("--raffle", required=True)
    ch.add_argument("--interval", type=int, default=None, help="Override the draw interval.")
    ch.set_defaults(func=cmd_check)

    u = sub.add_parser("upkeep", help="Request draws for every eligible raffle.")
    u.add_argument("--interval", type=int, default=None, help="Override every raffle's interval.")
    u.add_argument("--watch", action="store_true", help="Keep running.")
    u.add_argument("--every", type=float, default=10.0, help="Seconds between passes.")
    u.add_argument("--iterations", type=int, default=None, help="Stop after N passes.")
    u.set_defaults(func=cmd_upkeep)

    fu = sub.add_parser("fulfill", help="Deliver randomness for a pending request (local provider).")
    fu.add_argument("--request-id", required=True, type=int)
    fu.add_argument("--value", type=int, default=None, help="Random value (default: derived).")
    fu.add_argument("--audit-out", default=None, help="Write the draw audit JSON here.")
    fu.set_defaults(func=cmd_fulfill)

    po = sub.add_parser("poll", help="Pull ready randomness from the remote provider.")
    po.add_argument("--audit-dir", default=None, help="Write one audit JSON per draw here.")
    po.set_defaults(func=cmd_poll)

    s = sub.add_parser("stats", help="Cross-raffle statistics.")
    s.set_defaults(func=cmd_stats)

    v = sub.add_parser("verify", help="Verify a draw audit JSON deterministically.")
    v.add_argument("--audit", required=True, help="Path to audit JSON.")
    v.set_defaults(func=cmd_verify)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    try:
        code = args.func(args)
    except (RaffleError, InsufficientFunds, UnknownRequest, AuditMismatch, StateFileError, ValueError) as e:
        log.error("%s", e)
        code = 1
    except PROVIDER_ERRORS as e:
        log.error("Randomness provider error: %s", e)
        code = 1
    raise SystemExit(code)
