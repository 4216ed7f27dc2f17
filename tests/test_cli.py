from __future__ import annotations

import json
import sys

import pytest

from raffle_engine import cli, config
from raffle_engine.accounts import derive_address
from raffle_engine.config import DEFAULT_STATE_FILE, Settings
from raffle_engine.store import load_state


@pytest.fixture
def state_file(tmp_path, monkeypatch):
    monkeypatch.delenv("RAFFLE_STATE_FILE", raising=False)
    monkeypatch.delenv("RANDOMNESS_RPC_URL", raising=False)
    monkeypatch.delenv("RAFFLE_OWNER", raising=False)
    monkeypatch.setattr(config, "load_dotenv", lambda: None)
    monkeypatch.chdir(tmp_path)
    return str(tmp_path / "state.json")


def run(monkeypatch, state_file, *argv) -> int:
    monkeypatch.setattr(sys, "argv", ["raffle-engine", "--state-file", state_file, *argv])
    with pytest.raises(SystemExit) as exc:
        cli.main()
    return exc.value.code


def test_settings_defaults(state_file):
    s = Settings.from_env()
    assert s.state_file == DEFAULT_STATE_FILE
    assert s.rpc_url is None
    assert s.owner is None


def test_settings_overrides(state_file, monkeypatch):
    monkeypatch.setenv("RAFFLE_STATE_FILE", "env.json")
    monkeypatch.setenv("RANDOMNESS_RPC_URL", "http://env")
    assert Settings.from_env().state_file == "env.json"
    s = Settings.from_env(state_file_override="flag.json", rpc_url_override="http://flag")
    assert (s.state_file, s.rpc_url) == ("flag.json", "http://flag")


def test_settings_reject_bad_owner(state_file, monkeypatch):
    monkeypatch.setenv("RAFFLE_OWNER", "not-an-address")
    with pytest.raises(ValueError):
        Settings.from_env()


def test_full_cycle_through_cli(monkeypatch, state_file, tmp_path, capsys):
    assert run(monkeypatch, state_file, "create", "--fee", "1.0", "--interval", "30") == 0
    raffle = capsys.readouterr().out.strip()

    players = [derive_address("cli", i) for i in range(4)]
    for p in players:
        assert run(monkeypatch, state_file, "fund", "--address", p, "--amount", "2") == 0
        assert run(monkeypatch, state_file, "enter", "--raffle", raffle, "--address", p) == 0

    r = load_state(state_file).registry.get(raffle)
    assert r.entrant_count == 4
    assert r.pool_balance == 4_000_000

    # Pretend the raffle was created a minute ago.
    with open(state_file, "r", encoding="utf-8") as f:
        data = json.load(f)
    data["raffles"][0]["last_draw_timestamp"] -= 60
    with open(state_file, "w", encoding="utf-8") as f:
        json.dump(data, f)

    assert run(monkeypatch, state_file, "upkeep") == 0
    request_id = load_state(state_file).registry.get(raffle).outstanding_request_id
    assert request_id == 1

    audit = str(tmp_path / "audit.json")
    assert run(monkeypatch, state_file, "fulfill", "--request-id", "1", "--value", "5", "--audit-out", audit) == 0
    out = capsys.readouterr().out
    assert players[1] in out

    world = load_state(state_file)
    assert world.registry.get(raffle).recent_winner == players[1]
    assert world.ledger.balance_of(players[1]) == 5_000_000

    assert run(monkeypatch, state_file, "verify", "--audit", audit) == 0
    assert run(monkeypatch, state_file, "stats") == 0
    assert "Raffles       : 1" in capsys.readouterr().out


def test_entry_error_exits_nonzero(monkeypatch, state_file, capsys):
    run(monkeypatch, state_file, "create", "--fee", "1.0")
    raffle = capsys.readouterr().out.strip()
    p = derive_address("cli", 0)
    run(monkeypatch, state_file, "fund", "--address", p, "--amount", "2")
    assert run(monkeypatch, state_file, "enter", "--raffle", raffle, "--address", p, "--value", "0.5") == 1
    assert load_state(state_file).registry.get(raffle).entrant_count == 0


@pytest.mark.parametrize(
    "argv",
    [
        ("create", "--fee", "abc"),
        ("create", "--fee", "nan"),
        ("fund", "--address", derive_address("cli", 0), "--amount", "1e"),
    ],
)
def test_malformed_amount_exits_nonzero(monkeypatch, state_file, argv):
    assert run(monkeypatch, state_file, *argv) == 1
    assert load_state(state_file).registry.list() == []


def test_state_of_another_provider_kind_exits_nonzero(monkeypatch, state_file, capsys):
    run(monkeypatch, state_file, "create", "--fee", "1.0")
    before = open(state_file, encoding="utf-8").read()

    assert run(monkeypatch, state_file, "--rpc-url", "http://rng.test/rpc", "list") == 1
    assert open(state_file, encoding="utf-8").read() == before

    data = json.loads(before)
    data["provider"] = {"kind": "http", "address": "remote-rng"}
    with open(state_file, "w", encoding="utf-8") as f:
        json.dump(data, f)
    assert run(monkeypatch, state_file, "list") == 1
