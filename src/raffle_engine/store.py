from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .accounts import derive_address
from .events import EventBus
from .ledger import Ledger
from .project_constants import OWNER_NAMESPACE, PROVIDER_NAMESPACE
from .raffle import RaffleInstance
from .randomness import HttpRandomnessProvider, LocalRandomnessProvider, RandomnessProvider
from .referral import ReferralLedger
from .registry import RaffleRegistry
from .rewards import RewardToken

log = logging.getLogger(__name__)

STATE_VERSION = 1


class StateFileError(RuntimeError):
    pass


@dataclass
class World:
    """Everything a CLI invocation operates on, saved between runs."""

    owner: str
    ledger: Ledger
    reward_token: RewardToken
    provider: RandomnessProvider
    registry: RaffleRegistry
    referrals: ReferralLedger
    events: EventBus


def new_world(
    owner: Optional[str] = None,
    provider: Optional[RandomnessProvider] = None,
    clock: Callable[[], float] = time.time,
) -> World:
    owner = owner or derive_address(OWNER_NAMESPACE, 0)
    ledger = Ledger()
    token = RewardToken(owner)
    provider = provider or LocalRandomnessProvider(derive_address(PROVIDER_NAMESPACE, "local"))
    events = EventBus()
    registry = RaffleRegistry(ledger, provider, token, events=events, clock=clock)
    return World(owner, ledger, token, provider, registry, ReferralLedger(), events)


def _provider_kind(provider: RandomnessProvider) -> str:
    return "local" if isinstance(provider, LocalRandomnessProvider) else "http"


def world_to_dict(world: World) -> Dict[str, Any]:
    provider: Dict[str, Any]
    if _provider_kind(world.provider) == "local":
        provider = {"kind": "local", **world.provider.to_dict()}
    else:
        provider = {"kind": "http", "address": world.provider.address}
    return {
        "version": STATE_VERSION,
        "owner": world.owner,
        "ledger": world.ledger.to_dict(),
        "reward_token": world.reward_token.to_dict(),
        "provider": provider,
        "raffles": [r.to_dict() for r in world.registry.list()],
        "referrals": world.referrals.to_dict(),
    }


def world_from_dict(
    data: Dict[str, Any],
    clock: Callable[[], float] = time.time,
    provider: Optional[RandomnessProvider] = None,
) -> World:
    if int(data.get("version", 0)) != STATE_VERSION:
        raise StateFileError(f"Unsupported state version: {data.get('version')!r}")

    ledger = Ledger.from_dict(data["ledger"])
    token = RewardToken.from_dict(data["reward_token"])
    saved_provider = data["provider"]
    if provider is None:
        if saved_provider.get("kind") != "local":
            raise StateFileError("State was saved with a remote provider; pass --rpc-url.")
        provider = LocalRandomnessProvider.from_dict(saved_provider)
    elif saved_provider.get("kind") != _provider_kind(provider):
        # Saving under another kind would drop the outstanding requests and strand those raffles.
        raise StateFileError(
            f"State was saved with the {saved_provider.get('kind')} provider, not {_provider_kind(provider)}."
        )

    events = EventBus()
    registry = RaffleRegistry(ledger, provider, token, events=events, clock=clock)
    for item in data.get("raffles", []):
        registry.add(RaffleInstance.from_dict(item, ledger, provider, token, events=events, clock=clock))

    if isinstance(provider, LocalRandomnessProvider):
        provider.load_pending(saved_provider.get("pending", []), registry.get)
    elif isinstance(provider, HttpRandomnessProvider):
        for raffle in registry.list():
            if raffle.outstanding_request_id is not None:
                provider.track(raffle.outstanding_request_id, raffle)

    return World(
        owner=data["owner"],
        ledger=ledger,
        reward_token=token,
        provider=provider,
        registry=registry,
        referrals=ReferralLedger.from_dict(data.get("referrals", {})),
        events=events,
    )


def save_state(path: str, world: World) -> None:
    tmp = f"{path}.tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(world_to_dict(world), f, indent=2)
    os.replace(tmp, path)
    log.debug("Saved state to %s", path)


def load_state(
    path: str,
    clock: Callable[[], float] = time.time,
    provider: Optional[RandomnessProvider] = None,
    owner: Optional[str] = None,
) -> World:
    """Loads saved state, or starts a fresh world if the file does not exist yet."""
    if not os.path.exists(path):
        log.info("No state at %s; starting fresh", path)
        return new_world(owner=owner, provider=provider, clock=clock)
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return world_from_dict(data, clock=clock, provider=provider)
