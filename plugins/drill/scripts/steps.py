#!/usr/bin/env python3
"""
Ledger Drill Shared Phases

Phases common to the election and playoff drivers: account setup,
registration, one character per actor, faction membership and roles.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

from backend import Backend
from config import Protocol
from decisions import DecisionEngine
from invoker import Invoker
from models import (
    ActorState, Classification, ConsistencyError, InvocationError, RunConfig, RunState,
)
from phases import Action, retry_recoverable, run_phase
from sequencer import actor_names
from utils import banner, narrate

logger = logging.getLogger("drill")

CHARACTERS_TABLE = "characters"


def build_run_state(
    config: RunConfig,
    protocol: Protocol,
    invoker: Invoker,
    sleep: Callable[[float], None] = time.sleep,
) -> RunState:
    """Create the run aggregate: named actors, empty states, seeded engine."""
    actors = list(actor_names(config.prefix, config.count, config.start))
    return RunState(
        config=config,
        protocol=protocol,
        backend=Backend(config, protocol, invoker),
        engine=DecisionEngine(config.seed),
        actors=actors,
        states={a: ActorState(name=a) for a in actors},
        sleep=sleep,
    )


def run_for_actors(state: RunState, name: str, action: Action) -> None:
    """Run one phase over every actor and keep its tally."""
    state.results.append(run_phase(name, state.actors, action))


def char_id_of(state: RunState, actor: str) -> int:
    char_id = state.state(actor).char_id
    if char_id is None:
        raise ConsistencyError(f"{actor} has no resolved character", actor=actor)
    return char_id


def _characters_by_owner(state: RunState) -> Dict[str, List[Dict]]:
    owned: Dict[str, List[Dict]] = {}
    for row in state.backend.fetch_table(CHARACTERS_TABLE):
        owned.setdefault(str(row.get("owner")), []).append(row)
    return owned


# =============================================================================
# Setup phases
# =============================================================================

def ensure_actors_exist(state: RunState) -> None:
    run_for_actors(state, "EnsureActorsExist", lambda a: state.backend.push("create_account", a))


def ensure_actors_registered(state: RunState) -> None:
    run_for_actors(state, "EnsureActorsRegistered", lambda a: state.backend.push("register", a))


def ensure_one_entity_per_actor(state: RunState) -> None:
    """Mint a character for every actor that owns none."""
    owned = _characters_by_owner(state)
    attempts = state.protocol.settings.entity_retries
    phase = "EnsureOneEntityPerActor"

    def action(actor: str) -> Optional[Classification]:
        if owned.get(actor):
            logger.debug(f"[{phase}] {actor}: already owns {len(owned[actor])} character(s)")
            return None
        return retry_recoverable(
            lambda: state.backend.push("mint_entity", actor),
            attempts, state.backoff, state.sleep, phase, actor,
        )

    run_for_actors(state, phase, action)


def resolve_entity_ids(state: RunState) -> None:
    """Record each actor's first listed character."""
    banner("PHASE: ResolveEntityIds")
    owned = _characters_by_owner(state)
    for actor in state.actors:
        rows = owned.get(actor)
        if not rows:
            raise ConsistencyError(
                f"{actor} owns no character after minting", phase="ResolveEntityIds", actor=actor
            )
        char_id = rows[0].get("id")
        if char_id is None:
            raise InvocationError(
                f"Character row without id: {rows[0]!r}", phase="ResolveEntityIds", actor=actor
            )
        state.state(actor).char_id = char_id
        narrate(f"[ResolveEntityIds] {actor}: character {char_id}")


def join_faction(state: RunState) -> None:
    run_for_actors(state, "JoinFactionPhase", lambda a: state.backend.push("join_faction", a))


# =============================================================================
# Roles
# =============================================================================

def assign_roles(
    state: RunState, phase: str, roles: List[int], rate: Optional[float] = None
) -> None:
    """Give each actor a role drawn uniformly from roles.

    With a rate, each actor first flips a coin and only upgrades on heads.
    """
    def action(actor: str) -> Optional[Classification]:
        if rate is not None and not state.engine.bernoulli(rate):
            logger.debug(f"[{phase}] {actor}: not selected")
            return None
        role = state.engine.choose_one(roles)
        narrate(f"[{phase}] {actor}: role {role}")
        return state.backend.push("set_role", actor, char_id=char_id_of(state, actor), role=role)

    run_for_actors(state, phase, action)


def resolve_assigned_roles(state: RunState) -> None:
    """Read back the role the backend holds for each actor's character."""
    banner("PHASE: ResolveAssignedRoles")
    by_id = {row.get("id"): row for row in state.backend.fetch_table(CHARACTERS_TABLE)}
    for actor in state.actors:
        char_id = char_id_of(state, actor)
        row = by_id.get(char_id)
        if row is None:
            raise ConsistencyError(
                f"Character {char_id} of {actor} is not listed",
                phase="ResolveAssignedRoles", actor=actor,
            )
        try:
            role = int(row.get("role") or 0)
        except (TypeError, ValueError):
            raise InvocationError(
                f"Character {char_id} has unreadable role {row.get('role')!r}",
                phase="ResolveAssignedRoles", actor=actor,
            )
        state.state(actor).role = role or None
        narrate(f"[ResolveAssignedRoles] {actor}: role {role or 'none'}")
