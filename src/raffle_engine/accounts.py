from __future__ import annotations

import hashlib
from typing import List

import base58

ADDRESS_BYTES = 32


def derive_address(namespace: str, index: int | str) -> str:
    """
    Deterministic base58 address for a namespace/index pair.
    SHA-256 over "namespace:index" gives exactly ADDRESS_BYTES bytes.
    """
    digest = hashlib.sha256(f"{namespace}:{index}".encode("utf-8")).digest()
    return base58.b58encode(digest).decode("ascii")


def is_valid_address(address: str) -> bool:
    if not address:
        return False
    try:
        raw = base58.b58decode(address)
    except ValueError:
        return False
    return len(raw) == ADDRESS_BYTES


def require_address(address: str) -> str:
    if not is_valid_address(address):
        raise ValueError(f"Not a valid base58 address: {address!r}")
    return address


def load_address_list(path: str | None) -> List[str]:
    """One address per line; blank lines and '#' comments are skipped."""
    if not path:
        return []
    out: List[str] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            w = line.strip()
            if not w or w.startswith("#"):
                continue
            out.append(require_address(w))
    return out
