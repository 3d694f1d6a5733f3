from __future__ import annotations

import re
from decimal import Decimal

import pytest

from conftest import FakeLedger, RecordingSleep, make_config
from election import role_holders, run_election, stake_amount
from models import AuthorizationError, InvocationError, Outcome, RuleRejectionError
from steps import build_run_state

BALANCE_RE = re.compile(r"^\d+\.\d{4}$")


@pytest.mark.parametrize(
    "balance, expected",
    [("111.1111", "11.1111"), ("10.0000", "1.0000"), ("0.0009", "0.0000"), ("99.9999", "9.9999")],
)
def test_stake_amount_is_a_tenth_rounded_down(balance, expected):
    assert stake_amount(balance) == expected


def test_election_end_to_end(make_state, ledger, sleep):
    state = make_state(count=3, seed=0)
    run_election(state)
    actors = ["tstaaaaaa", "tstaaaaab", "tstaaaaac"]

    assert state.actors == actors
    assert ledger.accounts == actors
    assert ledger.players == actors

    chars = ledger.tables["characters"]
    assert sorted(c["owner"] for c in chars) == actors
    for actor in actors:
        s = state.state(actor)
        row = next(c for c in chars if c["id"] == s.char_id)
        assert row["owner"] == actor
        assert 1 <= s.role <= 15
        assert row["role"] == s.role
        assert BALANCE_RE.match(s.balance)
        assert Decimal(s.balance) > 0

    # one balance wait per actor: empty balance, claim, sleep, positive balance
    assert sleep.calls == [60.0, 60.0, 60.0]
    assert [d[0] for d in ledger.calls("claim")] == actors

    stakes = ledger.calls("stake")
    assert [d[0] for d in stakes] == actors
    for data in stakes:
        amount, symbol = data[1].split()
        assert symbol == "DRL"
        assert amount == stake_amount(state.state(data[0]).balance)
        assert data[2] == 604800
    assert [d[0] for d in ledger.calls("open")] == actors


def test_votes_cover_every_occupied_role_slot(make_state, ledger):
    state = make_state(count=4, seed=3)
    run_election(state)

    holders = role_holders(state)
    occupied = [slot for slot, actors in holders.items() if actors]
    votes = ledger.calls("vote")
    assert len(votes) == len(state.actors) * len(occupied)

    char_role = {c["id"]: c["role"] for c in ledger.tables["characters"]}
    for voter, slot, candidate in votes:
        assert slot in occupied
        assert char_role[candidate] == slot


def test_role_upgrades_only_move_upwards(make_state, ledger):
    state = make_state(count=8, seed=1)
    run_election(state)
    setroles = ledger.calls("setrole")
    base = setroles[:8]
    assert all(1 <= role <= 5 for _, _, role in base)
    assert all(6 <= role <= 15 for _, _, role in setroles[8:])
    assert state.results[0].name == "EnsureActorsExist"


def test_same_seed_same_decisions(protocol):
    def run(seed):
        ledger = FakeLedger()
        run_election(build_run_state(make_config(count=5, seed=seed), protocol, ledger, RecordingSleep()))
        return ledger.actions

    assert run(11) == run(11)


def test_rerun_treats_existing_state_as_benign(make_state, ledger):
    run_election(make_state(count=2))
    mints = len(ledger.calls("mintchar"))

    second = make_state(count=2)
    run_election(second)
    assert len(ledger.calls("mintchar")) == mints
    exists = second.results[0]
    assert exists.counts[Outcome.BENIGN_DUPLICATE] == 2
    entities = next(r for r in second.results if r.name == "EnsureOneEntityPerActor")
    assert entities.skipped == 2


def test_bulk_work_uses_actor_then_character(make_state, ledger):
    state = make_state(count=2, work_rounds=2)
    run_election(state)
    work = ledger.calls("work")
    assert work == [
        ["tstaaaaaa", 1], ["tstaaaaab", 2],
        ["tstaaaaaa", 1], ["tstaaaaab", 2],
    ]


def test_authorization_failure_aborts_before_later_phases(make_state, ledger):
    ledger.responses["joinfaction"] = ("Error 3090003: missing authority of tstaaaaaa", 1)
    with pytest.raises(AuthorizationError) as exc:
        run_election(make_state(count=3))
    assert exc.value.phase == "JoinFactionPhase"
    assert exc.value.actor == "tstaaaaaa"
    assert len(ledger.calls("joinfaction")) == 1
    assert ledger.calls("setrole") == []


def test_persistent_mint_rejection_is_fatal(make_state, ledger, sleep):
    ledger.responses["mintchar"] = ("Error 3050003: assertion failure with message: minting paused", 1)
    with pytest.raises(RuleRejectionError):
        run_election(make_state(count=2))
    assert len(ledger.calls("mintchar")) == 3
    assert sleep.calls == [60.0, 60.0]


def test_recoverable_vote_rejection_continues(make_state, ledger):
    ledger.responses["vote"] = ("Error 3050003: assertion failure with message: voting closed", 1)
    state = make_state(count=2)
    run_election(state)
    votes = next(r for r in state.results if r.name == "DistributeVotes")
    assert votes.counts[Outcome.RECOVERABLE_REJECTION] == 2
    assert len(ledger.calls("stake")) == 2


def test_rerun_against_failing_exit_codes_continues(protocol, sleep):
    ledger = FakeLedger(claims_needed=2)
    first = build_run_state(make_config(count=2), protocol, ledger, sleep)
    run_election(first)
    # every "nothing to claim" reply came back with exit status 1 and was retried
    assert [d[0] for d in ledger.calls("claim")] == ["tstaaaaaa", "tstaaaaaa", "tstaaaaab", "tstaaaaab"]

    second = build_run_state(make_config(count=2), protocol, ledger, sleep)
    run_election(second)
    exists, registered = second.results[0], second.results[1]
    assert exists.counts[Outcome.BENIGN_DUPLICATE] == 2
    assert registered.counts[Outcome.BENIGN_DUPLICATE] == 2


def test_character_row_without_id_aborts(make_state, ledger):
    ledger.tables["characters"] = [{"owner": "tstaaaaaa", "role": 0}]
    with pytest.raises(InvocationError) as exc:
        run_election(make_state(count=2))
    assert exc.value.phase == "ResolveEntityIds"
    assert exc.value.actor == "tstaaaaaa"


def test_unreadable_role_aborts(make_state, ledger):
    ledger.tables["characters"] = [
        {"id": 1, "owner": "tstaaaaaa", "role": "captain"},
        {"id": 2, "owner": "tstaaaaab", "role": 0},
    ]
    # leave the listed roles untouched
    ledger.responses["setrole"] = ("executed transaction: setrole", 0)
    with pytest.raises(InvocationError) as exc:
        run_election(make_state(count=2))
    assert exc.value.phase == "ResolveAssignedRoles"
    assert exc.value.actor == "tstaaaaaa"
