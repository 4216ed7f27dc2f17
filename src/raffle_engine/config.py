from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .accounts import require_address

DEFAULT_STATE_FILE = "raffle_state.json"


@dataclass(frozen=True)
class Settings:
    state_file: str
    rpc_url: Optional[str] = None
    owner: Optional[str] = None

    @staticmethod
    def from_env(
        state_file_override: str | None = None,
        rpc_url_override: str | None = None,
    ) -> "Settings":
        load_dotenv()

        # CLI flags win over the environment.
        state_file = state_file_override or os.getenv("RAFFLE_STATE_FILE", "").strip()

        # No RPC URL means the in-process randomness provider.
        rpc_url = rpc_url_override or os.getenv("RANDOMNESS_RPC_URL", "").strip() or None

        owner = os.getenv("RAFFLE_OWNER", "").strip() or None
        if owner:
            require_address(owner)

        return Settings(
            state_file=state_file or DEFAULT_STATE_FILE,
            rpc_url=rpc_url,
            owner=owner,
        )
