from __future__ import annotations

import hashlib
from decimal import Decimal, InvalidOperation
from typing import List, Sequence, Tuple

from .project_constants import UNIT_DECIMALS


def to_tokens(raw_amount: int) -> float:
    return round(raw_amount / (10**UNIT_DECIMALS), UNIT_DECIMALS)


def to_units(tokens: float | str | Decimal) -> int:
    # Decimal keeps "0.1" exact before scaling.
    try:
        amount = Decimal(str(tokens))
    except InvalidOperation:
        raise ValueError(f"Not a token amount: {tokens!r}") from None
    if not amount.is_finite():
        raise ValueError(f"Not a token amount: {tokens!r}")
    return int(amount * (10**UNIT_DECIMALS))


def winner_index(random_value: int, entrant_count: int) -> int:
    if entrant_count <= 0:
        raise ValueError("Cannot pick a winner from an empty roster.")
    return random_value % entrant_count


def select_winner(random_value: int, entrants: Sequence[str]) -> Tuple[int, str]:
    idx = winner_index(random_value, len(entrants))
    return idx, entrants[idx]


def derive_random_words(seed: str, request_id: int, num_words: int) -> List[int]:
    """
    Random words for a request, one SHA-256 per word.
    Anyone holding the seed can recompute them.
    """
    words: List[int] = []
    for i in range(num_words):
        digest_hex = hashlib.sha256(f"{seed}:{request_id}:{i}".encode("utf-8")).hexdigest()
        words.append(int(digest_hex, 16))
    return words
