from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict

from .draw import select_winner
from .raffle import DrawRecord


class AuditMismatch(RuntimeError):
    pass


def build_audit(record: DrawRecord) -> Dict[str, Any]:
    return {
        "metadata": {
            "tool": "raffle-engine",
            "version": "1.0.0",
            "generated_at_utc": datetime.now(timezone.utc).isoformat(),
            "raffle": record.raffle,
            "request_id": record.request_id,
            "random_value": str(record.random_value),  # big int; store as string for safety
            "entrant_count": len(record.entrants),
            "winner_index": record.winner_index,
            "drawn_at": record.drawn_at,
        },
        "winner": {
            "address": record.winner,
            "amount": record.amount,
        },
        # Roster in entry order so anyone can re-run the selection.
        "all_entrants": list(record.entrants),
    }


def write_audit(record: DrawRecord, path: str) -> Dict[str, Any]:
    audit = build_audit(record)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(audit, f, indent=2)
    return audit


def verify_audit(audit_path: str) -> Dict[str, Any]:
    with open(audit_path, "r", encoding="utf-8") as f:
        audit = json.load(f)

    meta = audit["metadata"]
    random_value = int(meta["random_value"])
    entrants = list(audit["all_entrants"])

    if len(entrants) != int(meta["entrant_count"]):
        raise AuditMismatch(
            f"Entrant count mismatch: audit={meta['entrant_count']} recomputed={len(entrants)}"
        )

    index, winner = select_winner(random_value, entrants)
    if index != int(meta["winner_index"]):
        raise AuditMismatch(
            f"Winner index mismatch: audit={meta['winner_index']} recomputed={index}"
        )

    winner_expected = audit["winner"]["address"]
    if winner != winner_expected:
        raise AuditMismatch(f"Winner mismatch: audit={winner_expected} recomputed={winner}")

    return {
        "ok": True,
        "raffle": meta["raffle"],
        "request_id": int(meta["request_id"]),
        "random_value": random_value,
        "winner": winner,
        "winner_index": index,
        "entrant_count": len(entrants),
        "amount": int(audit["winner"]["amount"]),
    }
