#!/usr/bin/env python3
"""
Ledger Drill Phase Runner

A phase applies one action to every actor, strictly in sequencer order.
Each result is settled where it is classified: fatal outcomes abort the
run on the spot, duplicates and recoverable rejections are narrated and
the phase moves on to the next actor.
"""
from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from models import (
    AuthorizationError, Classification, InvocationError, Outcome,
    PhaseResult, RuleRejectionError,
)
from utils import banner, narrate

logger = logging.getLogger("drill")

# actor -> result, or None when the actor has nothing to do in this phase
Action = Callable[[str], Optional[Classification]]

AUTHORIZATION_RULE = "authorization"


def check_outcome(
    result: Classification, phase: Optional[str] = None, actor: Optional[str] = None
) -> Outcome:
    """Apply the abort policy to one classified result.

    Raises InvocationError, AuthorizationError or RuleRejectionError for
    fatal outcomes. Returns the outcome otherwise.
    """
    outcome = result.outcome
    if result.checked:
        return outcome
    result.checked = True

    where = f"[{phase}] {actor}" if actor else f"[{phase}]"
    if outcome is Outcome.INVOCATION_FAILURE:
        narrate(
            f"{where}: invocation failed (exit status {result.exit_status}): {result.excerpt()}",
            logging.ERROR,
        )
        raise InvocationError(
            f"{where}: backend invocation failed with exit status {result.exit_status}",
            phase=phase, actor=actor, outcome=outcome,
        )
    if outcome is Outcome.FATAL_REJECTION:
        narrate(f"{where}: fatal rejection ({result.rule}): {result.excerpt()}", logging.ERROR)
        error_cls = AuthorizationError if result.rule == AUTHORIZATION_RULE else RuleRejectionError
        raise error_cls(
            f"{where}: fatal rejection matching '{result.rule}'",
            phase=phase, actor=actor, outcome=outcome,
        )
    if outcome is Outcome.BENIGN_DUPLICATE:
        narrate(f"{where}: already applied ({result.rule}), continuing")
    elif outcome is Outcome.RECOVERABLE_REJECTION:
        narrate(f"{where}: rejected ({result.rule}), continuing: {result.excerpt()}", logging.WARNING)
    else:
        logger.debug(f"{where}: ok")
    return outcome


def run_phase(name: str, actors: Iterable[str], action: Action) -> PhaseResult:
    """Run action for each actor in order and tally the outcomes."""
    actors = list(actors)
    banner(f"PHASE: {name} ({len(actors)} actors)")
    result = PhaseResult(name=name)

    for actor in actors:
        outcome = action(actor)
        if outcome is None:
            result.skipped += 1
            continue
        result.record(outcome.outcome)
        check_outcome(outcome, name, actor)

    narrate(f"PHASE {name} done: {result.summary()}")
    return result


def retry_recoverable(
    call: Callable[[], Classification],
    attempts: int,
    backoff: float,
    sleep: Callable[[float], None],
    phase: Optional[str] = None,
    actor: Optional[str] = None,
) -> Classification:
    """Retry call while it is rejected recoverably.

    Any other outcome is returned unsettled. A rejection that persists past
    the last attempt is promoted to a fatal RuleRejectionError.
    """
    where = f"[{phase}] {actor}" if actor else f"[{phase}]"
    for attempt in range(1, attempts + 1):
        result = call()
        if result.outcome is not Outcome.RECOVERABLE_REJECTION:
            return result
        if attempt < attempts:
            narrate(
                f"{where}: rejected ({result.rule}), retry {attempt}/{attempts - 1} in {backoff}s",
                logging.WARNING,
            )
            sleep(backoff)

    narrate(f"{where}: still rejected after {attempts} attempts: {result.excerpt()}", logging.ERROR)
    raise RuleRejectionError(
        f"{where}: rejection '{result.rule}' persisted after {attempts} attempts",
        phase=phase, actor=actor, outcome=Outcome.FATAL_REJECTION,
    )
