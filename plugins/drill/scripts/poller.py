#!/usr/bin/env python3
"""
Ledger Drill Convergence Poller

Blocking wait for backend state that changes asynchronously.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Tuple, TypeVar

from models import Classification, ConvergenceTimeout
from phases import check_outcome
from utils import narrate

logger = logging.getLogger("drill")

T = TypeVar("T")


def await_condition(
    check: Callable[[], Tuple[bool, T]],
    nudge: Optional[Callable[[], Classification]] = None,
    backoff: float = 60.0,
    sleep: Callable[[float], None] = time.sleep,
    max_attempts: Optional[int] = None,
    description: str = "condition",
    phase: Optional[str] = None,
    actor: Optional[str] = None,
) -> T:
    """Poll check until it reports done, then return its value.

    Between polls the optional nudge action runs once (a fatal nudge outcome
    aborts the run) and the loop sleeps for backoff seconds. max_attempts=None
    waits forever.
    """
    attempt = 0
    while True:
        attempt += 1
        done, value = check()
        if done:
            if attempt > 1:
                narrate(f"{description}: converged after {attempt} polls")
            return value

        if max_attempts is not None and attempt >= max_attempts:
            narrate(f"{description}: gave up after {attempt} polls", logging.ERROR)
            raise ConvergenceTimeout(
                f"{description} did not converge after {attempt} polls",
                phase=phase, actor=actor,
            )

        if nudge is not None:
            check_outcome(nudge(), phase, actor)
        narrate(f"{description}: not yet (poll {attempt}), sleeping {backoff}s")
        sleep(backoff)
