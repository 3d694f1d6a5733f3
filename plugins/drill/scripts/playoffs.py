#!/usr/bin/env python3
"""
Squad Playoff Drill

After setup, actors wait to be drafted into squads by the backend, some of
them propose a ranking of their squad, and everyone votes on one proposal
made for their squad.
"""
from __future__ import annotations

import json
import logging
from typing import List, Optional

from models import Classification, ConsistencyError, Outcome, RunState
from poller import await_condition
from steps import (
    assign_roles, char_id_of, ensure_actors_exist, ensure_actors_registered,
    ensure_one_entity_per_actor, join_faction, resolve_assigned_roles,
    resolve_entity_ids, run_for_actors,
)
from utils import banner, narrate
from views import refresh_group_view, refresh_proposals

logger = logging.getLogger("drill")


def await_cohort_assignment(state: RunState) -> None:
    """Enroll and poll until each actor appears in some squad. Waits forever."""
    phase = "AwaitCohortAssignment"

    def action(actor: str) -> Classification:
        def check():
            state.view = refresh_group_view(state.backend)
            squad_id = state.view.squad_of(actor)
            return squad_id is not None, squad_id

        squad_id = await_condition(
            check,
            nudge=lambda: state.backend.push("enroll", actor, char_id=char_id_of(state, actor)),
            backoff=state.backoff,
            sleep=state.sleep,
            description=f"[{phase}] {actor} squad",
            phase=phase,
            actor=actor,
        )
        state.state(actor).squad_id = squad_id
        narrate(f"[{phase}] {actor}: squad {squad_id}")
        return Classification(Outcome.SUCCESS, output=str(squad_id))

    run_for_actors(state, phase, action)

    # Later drafts may have moved earlier actors; settle on one final view
    state.view = refresh_group_view(state.backend)
    for actor in state.actors:
        squad_id = state.view.squad_of(actor)
        if squad_id is None:
            raise ConsistencyError(f"{actor} dropped out of every squad", phase=phase, actor=actor)
        state.state(actor).squad_id = squad_id


def squad_members(state: RunState, squad_id: int) -> List[str]:
    group = state.view.groups.get(squad_id)
    if group is None:
        raise ConsistencyError(f"Squad {squad_id} missing from group view", phase="squads")
    return list(group.members)


def propose_ranking(state: RunState) -> None:
    """Some actors submit a shuffled ranking of their squad."""
    phase = "ProposeRanking"
    rate = state.protocol.settings.proposal_rate

    def action(actor: str) -> Optional[Classification]:
        if not state.engine.bernoulli(rate):
            logger.debug(f"[{phase}] {actor}: not proposing")
            return None
        squad_id = state.state(actor).squad_id
        ranking = state.engine.shuffle(squad_members(state, squad_id))
        narrate(f"[{phase}] {actor}: squad {squad_id} ranking {ranking}")
        return state.backend.push(
            "propose", actor, squad_id=squad_id, ranking=json.dumps(list(ranking))
        )

    run_for_actors(state, phase, action)


def load_proposals(state: RunState) -> None:
    banner("PHASE: RefreshProposals")
    state.proposals = refresh_proposals(state.backend)
    narrate(f"[RefreshProposals] {len(state.proposals)} proposals")


def vote_on_proposal(state: RunState) -> None:
    """Each actor votes for one proposal made for their squad, if there is any."""
    phase = "VoteOnProposal"

    def action(actor: str) -> Optional[Classification]:
        squad_id = state.state(actor).squad_id
        options = [
            pid for pid, row in state.proposals.items() if row.get("squad_id") == squad_id
        ]
        if not options:
            narrate(f"[{phase}] {actor}: no proposals for squad {squad_id}, skipping")
            return None
        pick = state.engine.choose_one(options)
        narrate(f"[{phase}] {actor}: voting for proposal {pick}")
        return state.backend.push("vote_proposal", actor, proposal_id=pick)

    run_for_actors(state, phase, action)


def run_playoffs(state: RunState) -> None:
    """Run the squad/playoff phase sequence."""
    ensure_actors_exist(state)
    ensure_actors_registered(state)
    ensure_one_entity_per_actor(state)
    resolve_entity_ids(state)
    join_faction(state)
    assign_roles(state, "AssignRoleBase", state.protocol.settings.playoff_roles)
    resolve_assigned_roles(state)
    await_cohort_assignment(state)
    propose_ranking(state)
    load_proposals(state)
    vote_on_proposal(state)
