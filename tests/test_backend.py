from __future__ import annotations

import pytest

from conftest import CLI, PUBKEY
from models import AuthorizationError, InvocationError, Outcome


def test_command_renders_fields_and_actor(make_state):
    state = make_state(variant=1, faction=3)
    line = state.backend.command("join_faction", "tstaaaaaa")
    assert line == (
        f"{CLI} push action drillgametst joinfaction '[\"tstaaaaaa\", 3]' -p tstaaaaaa@active"
    )


def test_create_account_uses_controlling_account_and_key(make_state):
    line = make_state().backend.command("create_account", "tstaaaaab")
    assert line == f"{CLI} create account drillmaster tstaaaaab {PUBKEY} {PUBKEY}"


def test_push_sequential_fills_actor_then_second_value(make_state, ledger):
    state = make_state()
    r = state.backend.push_sequential("work", ["tstaaaaaa", 4])
    assert r.outcome is Outcome.SUCCESS
    assert ledger.commands[-1] == (
        f"{CLI} push action drillgame work '[\"tstaaaaaa\", 4]' -p drillmaster@active"
    )


def test_push_classifies_with_the_action_policy(make_state, ledger):
    state = make_state()
    assert state.backend.push("register", "tstaaaaaa").outcome is Outcome.SUCCESS
    again = state.backend.push("register", "tstaaaaaa")
    assert again.outcome is Outcome.BENIGN_DUPLICATE
    assert again.rule == "already registered"


def test_fetch_table_follows_pagination(make_state, ledger, protocol):
    protocol.settings.table_limit = 2
    state = make_state()
    ledger.tables["characters"] = [{"id": i, "owner": f"o{i}", "role": 0} for i in range(1, 6)]
    rows = state.backend.fetch_table("characters")
    assert [r["id"] for r in rows] == [1, 2, 3, 4, 5]
    gets = [c for c in ledger.commands if " get table " in c]
    assert len(gets) == 3
    assert gets[0].endswith("--limit 2 --lower ''")
    assert gets[1].endswith("--limit 2 --lower '2'")


def test_fetch_table_rejects_malformed_listing(make_state, ledger):
    ledger.responses["get_table"] = ("<html>502 Bad Gateway</html>", 0)
    with pytest.raises(InvocationError):
        make_state().backend.fetch_table("squads")


def test_fetch_table_rejects_stuck_pagination(make_state, ledger):
    ledger.responses["get_table"] = ('{"rows": [], "more": true, "next_key": ""}', 0)
    with pytest.raises(InvocationError):
        make_state().backend.fetch_table("squads")


def test_fetch_table_authorization_failure(make_state, ledger):
    ledger.responses["get_table"] = ("Error 3090003: missing authority of drillmaster", 1)
    with pytest.raises(AuthorizationError):
        make_state().backend.fetch_table("squads")


def test_balance(make_state, ledger):
    state = make_state()
    assert state.backend.balance("tstaaaaaa") is None
    ledger.balances["tstaaaaaa"] = 12
    assert state.backend.balance("tstaaaaaa") == "12.0000"


def test_balance_process_failure(make_state, ledger):
    ledger.responses["balance"] = ("connection refused", 1)
    with pytest.raises(InvocationError):
        make_state().backend.balance("tstaaaaaa")
