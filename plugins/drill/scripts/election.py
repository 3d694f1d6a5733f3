#!/usr/bin/env python3
"""
Office Election Drill

Drives every actor through account setup, roles, token claims, candidacy,
one vote per occupied role slot, and finally a governance stake of a tenth
of the observed balance.
"""
from __future__ import annotations

import logging
from decimal import Decimal, ROUND_DOWN
from typing import Dict, List, Optional

from models import (
    BASE_ROLES, FINAL_ROLES, MID_ROLES, ROLE_COUNT,
    Classification, ConsistencyError, Outcome, RunState,
)
from phases import check_outcome
from poller import await_condition
from steps import (
    assign_roles, char_id_of, ensure_actors_exist, ensure_actors_registered,
    ensure_one_entity_per_actor, join_faction, resolve_assigned_roles,
    resolve_entity_ids, run_for_actors,
)
from utils import narrate

logger = logging.getLogger("drill")

STAKE_FRACTION = Decimal(10)
AMOUNT_QUANTUM = Decimal("0.0001")


def stake_amount(balance: str) -> str:
    """A tenth of balance, rounded down to four decimals."""
    return str((Decimal(balance) / STAKE_FRACTION).quantize(AMOUNT_QUANTUM, rounding=ROUND_DOWN))


def bulk_work(state: RunState) -> None:
    """Optional work rounds, authorised by the controlling account."""
    for round_no in range(1, state.config.work_rounds + 1):
        run_for_actors(
            state,
            f"BulkWorkPhase {round_no}/{state.config.work_rounds}",
            lambda a: state.backend.push_sequential("work", [a, char_id_of(state, a)]),
        )


def await_token_balance(state: RunState) -> None:
    """Claim until every actor holds a positive balance."""
    phase = "AwaitTokenBalance"

    def action(actor: str) -> Classification:
        def check():
            amount = state.backend.balance(actor)
            return amount is not None and Decimal(amount) > 0, amount

        amount = await_condition(
            check,
            nudge=lambda: state.backend.push("claim", actor),
            backoff=state.backoff,
            sleep=state.sleep,
            description=f"[{phase}] {actor} balance",
            phase=phase,
            actor=actor,
        )
        state.state(actor).balance = amount
        narrate(f"[{phase}] {actor}: balance {amount} {state.backend.symbol}")
        return Classification(Outcome.SUCCESS, output=amount)

    run_for_actors(state, phase, action)


def register_candidacy(state: RunState) -> None:
    run_for_actors(
        state,
        "RegisterCandidacy",
        lambda a: state.backend.push("register_candidate", a, char_id=char_id_of(state, a)),
    )


def role_holders(state: RunState) -> Dict[int, List[str]]:
    """Role slot -> actors holding it, in actor order."""
    holders: Dict[int, List[str]] = {slot: [] for slot in range(1, ROLE_COUNT + 1)}
    for actor in state.actors:
        role = state.state(actor).role
        if role in holders:
            holders[role].append(actor)
    return holders


def distribute_votes(state: RunState) -> None:
    """Each actor votes once per occupied role slot for a uniformly chosen holder."""
    phase = "DistributeVotes"
    holders = role_holders(state)

    def action(actor: str) -> Optional[Classification]:
        last = None
        for slot in range(1, ROLE_COUNT + 1):
            if not holders[slot]:
                continue
            pick = state.engine.choose_one(holders[slot])
            logger.debug(f"[{phase}] {actor}: slot {slot} -> {pick}")
            last = state.backend.push(
                "vote", actor, role=slot, candidate=char_id_of(state, pick)
            )
            check_outcome(last, phase, actor)
        return last

    run_for_actors(state, phase, action)


def stake_to_governance_target(state: RunState) -> None:
    """Open a stake channel, then stake a tenth of the observed balance."""
    phase = "StakeToGovernanceTarget"
    duration = state.protocol.settings.stake_duration

    def action(actor: str) -> Classification:
        balance = state.state(actor).balance
        if balance is None:
            raise ConsistencyError(f"{actor} has no observed balance", phase=phase, actor=actor)
        check_outcome(state.backend.push("open_stake", actor), phase, actor)
        amount = stake_amount(balance)
        narrate(f"[{phase}] {actor}: staking {amount} of {balance} {state.backend.symbol}")
        return state.backend.push("stake", actor, amount=amount, duration=duration)

    run_for_actors(state, phase, action)


def run_election(state: RunState) -> None:
    """Run the office-election phase sequence."""
    settings = state.protocol.settings
    ensure_actors_exist(state)
    ensure_actors_registered(state)
    ensure_one_entity_per_actor(state)
    resolve_entity_ids(state)
    if state.config.work_rounds:
        bulk_work(state)
    join_faction(state)
    assign_roles(state, "AssignRoleBase", BASE_ROLES)
    assign_roles(state, "AssignRoleMid", MID_ROLES, rate=settings.upgrade_rate)
    assign_roles(state, "AssignRoleFinal", FINAL_ROLES, rate=settings.upgrade_rate)
    resolve_assigned_roles(state)
    await_token_balance(state)
    register_candidacy(state)
    distribute_votes(state)
    stake_to_governance_target(state)
