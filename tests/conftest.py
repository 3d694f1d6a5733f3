from __future__ import annotations

import json
import shlex
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from config import load_protocol
from models import RunConfig
from steps import build_run_state

PROTOCOL_PATH = Path(__file__).resolve().parents[1] / "plugins" / "drill" / "config" / "protocol.yaml"
CLI = "cleos -u http://127.0.0.1:8888"
PUBKEY = "EOS" + "6" * 50


class FakeLedger:
    """In-memory backend speaking the bundled protocol's command lines."""

    def __init__(
        self,
        cli: str = CLI,
        symbol: str = "DRL",
        squad_size: int = 3,
        claims_needed: int = 1,
        responses: Optional[Dict[str, Tuple[str, int]]] = None,
    ) -> None:
        self.cli = cli
        self.symbol = symbol
        self.squad_size = squad_size
        self.claims_needed = claims_needed
        # action name -> canned (output, exit_status), overriding the simulation
        self.responses = responses or {}
        self.commands: List[str] = []
        self.actions: List[Tuple[str, List[Any]]] = []
        self.accounts: List[str] = []
        self.players: List[str] = []
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            "characters": [], "squads": [], "teams": [], "proposals": [],
        }
        self.balances: Dict[str, Decimal] = {}
        self.claims: Dict[str, int] = {}
        self.enrolled: List[str] = []

    def __call__(self, command_line: str) -> Tuple[str, Optional[int]]:
        self.commands.append(command_line)
        assert command_line.startswith(self.cli + " "), command_line
        argv = shlex.split(command_line[len(self.cli):])
        if argv[:2] == ["create", "account"]:
            return self._respond("create_account", lambda: self._create(argv[3]))
        if argv[:2] == ["push", "action"]:
            action, data = argv[3], json.loads(argv[4])
            self.actions.append((action, data))
            return self._respond(action, lambda: self._push(action, data))
        if argv[:2] == ["get", "table"]:
            return self._respond("get_table", lambda: self._table(argv[4], int(argv[6]), argv[8]))
        if argv[:3] == ["get", "currency", "balance"]:
            return self._respond("balance", lambda: self._balance(argv[4]))
        return f"unknown command: {argv}", 1

    def _respond(self, name: str, simulate) -> Tuple[str, int]:
        if name in self.responses:
            return self.responses[name]
        output = simulate()
        # cleos exits 1 whenever the node answers with an error
        return output, 1 if output.startswith("Error ") else 0

    # -- commands ----------------------------------------------------------

    def _create(self, name: str) -> str:
        if name in self.accounts:
            return f"Error 3050003: account {name} already exists"
        self.accounts.append(name)
        return f"executed transaction: newaccount {name}"

    def _table(self, table: str, limit: int, lower: str) -> str:
        rows = self.tables[table]
        start = int(lower) if lower else 0
        end = start + limit
        more = end < len(rows)
        return json.dumps({
            "rows": rows[start:end],
            "more": more,
            "next_key": str(end) if more else "",
        })

    def _balance(self, name: str) -> str:
        if name not in self.balances:
            return ""
        return f"{self.balances[name]:.4f} {self.symbol}\n"

    def _push(self, action: str, data: List[Any]) -> str:
        actor = data[0]
        if action == "signup":
            if actor in self.players:
                return "Error 3050003: assertion failure with message: already registered"
            self.players.append(actor)
        elif action == "mintchar":
            chars = self.tables["characters"]
            chars.append({"id": len(chars) + 1, "owner": actor, "role": 0})
        elif action == "setrole":
            for row in self.tables["characters"]:
                if row["id"] == data[1]:
                    row["role"] = data[2]
        elif action == "claim":
            self.claims[actor] = self.claims.get(actor, 0) + 1
            if self.claims[actor] < self.claims_needed:
                return "Error 3050003: assertion failure with message: nothing to claim"
            index = len(self.balances)
            self.balances[actor] = Decimal("100.0000") + Decimal("11.1111") * (index + 1)
        elif action == "enroll":
            if actor in self.enrolled:
                return "Error 3050003: assertion failure with message: already enrolled"
            self.enrolled.append(actor)
            self._draft(actor)
        elif action == "propose":
            proposals = self.tables["proposals"]
            proposals.append({
                "id": len(proposals) + 1, "proposer": actor,
                "squad_id": data[1], "ranking": data[2],
            })
        return f"executed transaction: {action} {json.dumps(data)}"

    def _draft(self, actor: str) -> None:
        squads, teams = self.tables["squads"], self.tables["teams"]
        if not teams or len(teams[-1]["members"]) >= self.squad_size:
            squad_id = len(squads) + 1
            squads.append({"id": squad_id, "faction": 2, "role": 1, "active": 1})
            teams.append({"id": 100 + squad_id, "squad_id": squad_id, "members": []})
        teams[-1]["members"].append({"key": actor, "value": len(teams[-1]["members"]) + 1})

    # -- inspection --------------------------------------------------------

    def calls(self, action: str) -> List[List[Any]]:
        return [data for name, data in self.actions if name == action]


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def protocol():
    return load_protocol(PROTOCOL_PATH)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def sleep():
    return RecordingSleep()


def make_config(**overrides) -> RunConfig:
    fields = dict(
        cli=CLI, account="drillmaster", pubkey=PUBKEY, variant=0,
        prefix="tst", count=3, faction=2, seed=0,
    )
    fields.update(overrides)
    return RunConfig(**fields)


@pytest.fixture
def make_state(protocol, ledger, sleep):
    def build(**overrides):
        return build_run_state(make_config(**overrides), protocol, ledger, sleep)
    return build
