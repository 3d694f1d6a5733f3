#!/usr/bin/env python3
"""
Ledger Drill Data Models

Data classes for the drill: run configuration, per-actor state, invocation
outcomes, the joined squad view, and the error taxonomy.
"""
from __future__ import annotations

import dataclasses
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from utils import validate_account, validate_prefix, validate_suffix

if TYPE_CHECKING:
    from backend import Backend
    from config import Protocol
    from decisions import DecisionEngine

logger = logging.getLogger("drill")

PUBKEY_LENGTH = 53
VARIANTS = (0, 1, 2)
FACTIONS = (1, 2, 3, 4)
ROLE_COUNT = 15

# Role ranges granted by the three upgrade sub-phases
BASE_ROLES = list(range(1, 6))
MID_ROLES = list(range(6, 11))
FINAL_ROLES = list(range(11, 16))


# =============================================================================
# Errors
# =============================================================================

class DrillError(Exception):
    """Base class for drill errors."""


class ConfigurationError(DrillError):
    """Invalid run input, raised before any backend interaction."""


class RunAborted(DrillError):
    """The run cannot continue. Maps to a nonzero process exit."""

    def __init__(
        self,
        message: str,
        phase: Optional[str] = None,
        actor: Optional[str] = None,
        outcome: Optional["Outcome"] = None,
    ):
        super().__init__(message)
        self.phase = phase
        self.actor = actor
        self.outcome = outcome


class AuthorizationError(RunAborted):
    """The controlling account or an actor lacks a required permission."""


class RuleRejectionError(RunAborted):
    """A backend rule rejection the current phase cannot tolerate."""


class InvocationError(RunAborted):
    """The backend process failed, timed out, or emitted unparseable text."""


class ConsistencyError(RunAborted):
    """Two independently fetched views of the backend disagree."""


class NameSpaceExhausted(RunAborted):
    """The actor-name sequence carried out of its most significant position."""


class ConvergenceTimeout(RunAborted):
    """A bounded convergence wait ran out of attempts."""


# =============================================================================
# Outcomes
# =============================================================================

class Outcome(Enum):
    """Classification of one backend invocation."""
    SUCCESS = "success"
    BENIGN_DUPLICATE = "benign_duplicate"            # already applied, continue
    RECOVERABLE_REJECTION = "recoverable_rejection"  # log and continue
    FATAL_REJECTION = "fatal_rejection"              # abort
    INVOCATION_FAILURE = "invocation_failure"        # abort

    @property
    def is_fatal(self) -> bool:
        return self in (Outcome.FATAL_REJECTION, Outcome.INVOCATION_FAILURE)


@dataclasses.dataclass
class Classification:
    """An Outcome plus the rule that produced it and the raw output."""
    outcome: Outcome
    rule: Optional[str] = None
    output: str = ""
    exit_status: Optional[int] = 0
    checked: bool = False  # set once the abort policy has been applied

    def excerpt(self, limit: int = 200) -> str:
        text = " ".join(self.output.split())
        return text[:limit] + "..." if len(text) > limit else text


# =============================================================================
# Run configuration and state
# =============================================================================

@dataclasses.dataclass(frozen=True)
class RunConfig:
    """Immutable inputs for one run."""
    cli: str
    account: str
    pubkey: str
    variant: int
    prefix: str
    count: int
    faction: int
    seed: int
    start: str = "aaaaaa"
    backoff: Optional[float] = None   # None = protocol default
    timeout: Optional[float] = None   # None = protocol default
    work_rounds: int = 0

    def validate(self) -> None:
        """Validate every field. Raises ConfigurationError on the first problem."""
        if not self.cli.strip():
            raise ConfigurationError("Backend command prefix must not be empty")
        try:
            validate_account(self.account)
            validate_prefix(self.prefix)
            validate_suffix(self.start)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        if len(self.pubkey) != PUBKEY_LENGTH:
            raise ConfigurationError(
                f"Public key must be exactly {PUBKEY_LENGTH} chars, got {len(self.pubkey)}"
            )
        if self.variant not in VARIANTS:
            raise ConfigurationError(f"Variant must be one of {VARIANTS}, got {self.variant}")
        if self.count <= 0:
            raise ConfigurationError(f"Actor count must be positive, got {self.count}")
        if self.faction not in FACTIONS:
            raise ConfigurationError(f"Faction must be one of {FACTIONS}, got {self.faction}")
        if self.backoff is not None and self.backoff < 0:
            raise ConfigurationError(f"Backoff must not be negative, got {self.backoff}")
        if self.work_rounds < 0:
            raise ConfigurationError(f"Work rounds must not be negative, got {self.work_rounds}")


@dataclasses.dataclass
class ActorState:
    """Per-actor record accumulated across phases."""
    name: str
    char_id: Optional[int] = None
    role: Optional[int] = None
    balance: Optional[str] = None   # e.g. "12.3456"
    squad_id: Optional[int] = None


@dataclasses.dataclass
class GroupRecord:
    """One squad merged with its team record."""
    squad_id: int
    team_id: int
    category: Any
    role: Any
    active: bool
    members: List[str]


@dataclasses.dataclass
class JoinedGroupView:
    """Squads joined with teams, plus the member -> squad inverse index."""
    groups: Dict[int, GroupRecord] = dataclasses.field(default_factory=dict)
    player_to_squad: Dict[str, int] = dataclasses.field(default_factory=dict)

    def squad_of(self, actor: str) -> Optional[int]:
        return self.player_to_squad.get(actor)


# Proposal id -> raw table row
ProposalSet = Dict[int, Dict[str, Any]]


@dataclasses.dataclass
class PhaseResult:
    """Tally of outcomes for one phase."""
    name: str
    counts: Dict[Outcome, int] = dataclasses.field(
        default_factory=lambda: {o: 0 for o in Outcome}
    )
    skipped: int = 0

    def record(self, outcome: Outcome) -> None:
        self.counts[outcome] += 1

    def summary(self) -> str:
        parts = [f"{o.value}={n}" for o, n in self.counts.items() if n]
        if self.skipped:
            parts.append(f"skipped={self.skipped}")
        return ", ".join(parts) or "no actions"


@dataclasses.dataclass
class RunState:
    """Everything a phase needs, threaded through the run by the driver."""
    config: RunConfig
    protocol: "Protocol"
    backend: "Backend"
    engine: "DecisionEngine"
    actors: List[str]
    states: Dict[str, ActorState]
    view: JoinedGroupView = dataclasses.field(default_factory=JoinedGroupView)
    proposals: ProposalSet = dataclasses.field(default_factory=dict)
    results: List[PhaseResult] = dataclasses.field(default_factory=list)
    sleep: Callable[[float], None] = time.sleep

    def state(self, actor: str) -> ActorState:
        return self.states[actor]

    @property
    def backoff(self) -> float:
        if self.config.backoff is not None:
            return self.config.backoff
        return self.protocol.settings.backoff_seconds
