#!/usr/bin/env python3
"""
Ledger Drill Derived Views

Squads and teams are listed by the backend as two separate tables. The
joined view pairs every squad with its team and indexes members back to
their squad. Views are rebuilt from scratch on every refresh.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from backend import Backend
from models import ConsistencyError, GroupRecord, JoinedGroupView, ProposalSet
from parsers import member_name

logger = logging.getLogger("drill")

SQUADS_TABLE = "squads"
TEAMS_TABLE = "teams"
PROPOSALS_TABLE = "proposals"
SQUAD_KEY = "squad_id"


def join_groups(
    squads: List[Dict[str, Any]],
    teams: List[Dict[str, Any]],
    foreign_key: str = SQUAD_KEY,
) -> JoinedGroupView:
    """Join squads to teams on teams[foreign_key] == squads["id"].

    The first matching team wins. A squad without a team raises
    ConsistencyError and no view is returned. A member listed under several
    squads is indexed to the last of them in squad order.
    """
    view = JoinedGroupView()
    for squad in squads:
        squad_id = squad.get("id")
        team = next((t for t in teams if t.get(foreign_key) == squad_id), None)
        if team is None:
            raise ConsistencyError(
                f"Squad {squad_id} has no team with {foreign_key}={squad_id}",
                phase="join",
            )

        try:
            members = [member_name(m) for m in team.get("members") or []]
        except ValueError as e:
            raise ConsistencyError(f"Team {team.get('id')} of squad {squad_id}: {e}", phase="join")
        view.groups[squad_id] = GroupRecord(
            squad_id=squad_id,
            team_id=team.get("id"),
            category=squad.get("faction"),
            role=squad.get("role"),
            active=bool(squad.get("active")),
            members=members,
        )
        for member in members:
            # Why a player can sit in more than one squad is unclear; keep the last
            previous = view.player_to_squad.get(member)
            if previous is not None and previous != squad_id:
                logger.debug(f"{member} listed in squads {previous} and {squad_id}, keeping {squad_id}")
            view.player_to_squad[member] = squad_id

    return view


def refresh_group_view(backend: Backend) -> JoinedGroupView:
    """Fetch squads and teams and rebuild the joined view."""
    squads = backend.fetch_table(SQUADS_TABLE)
    teams = backend.fetch_table(TEAMS_TABLE)
    view = join_groups(squads, teams)
    logger.debug(
        f"Group view: {len(view.groups)} squads, {len(view.player_to_squad)} players"
    )
    return view


def refresh_proposals(backend: Backend) -> ProposalSet:
    """Fetch proposals keyed by proposal id."""
    proposals: ProposalSet = {}
    for row in backend.fetch_table(PROPOSALS_TABLE):
        if "id" not in row:
            raise ConsistencyError(f"Proposal row without id: {row!r}", phase="proposals")
        proposals[row["id"]] = row
    return proposals
