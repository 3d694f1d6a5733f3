from __future__ import annotations

import pytest

from models import AuthorizationError, Classification, ConvergenceTimeout, Outcome
from poller import await_condition


def test_returns_immediately_without_nudging(sleep):
    nudges = []
    value = await_condition(
        lambda: (True, "ready"),
        nudge=lambda: nudges.append(1),
        sleep=sleep,
    )
    assert value == "ready"
    assert nudges == []
    assert sleep.calls == []


def test_nudges_and_sleeps_between_polls(sleep):
    polls = iter([(False, None), (False, None), (True, 42)])
    nudges = []

    def nudge():
        nudges.append(1)
        return Classification(Outcome.RECOVERABLE_REJECTION, "nothing to claim")

    value = await_condition(lambda: next(polls), nudge=nudge, backoff=60.0, sleep=sleep)
    assert value == 42
    assert len(nudges) == 2
    assert sleep.calls == [60.0, 60.0]


def test_polls_without_nudge(sleep):
    polls = iter([(False, None), (True, "x")])
    assert await_condition(lambda: next(polls), backoff=1.5, sleep=sleep) == "x"
    assert sleep.calls == [1.5]


def test_fatal_nudge_aborts(sleep):
    with pytest.raises(AuthorizationError):
        await_condition(
            lambda: (False, None),
            nudge=lambda: Classification(Outcome.FATAL_REJECTION, "authorization"),
            sleep=sleep,
            phase="AwaitTokenBalance",
            actor="a",
        )
    assert sleep.calls == []


def test_bounded_wait_gives_up(sleep):
    with pytest.raises(ConvergenceTimeout):
        await_condition(lambda: (False, None), backoff=2.0, sleep=sleep, max_attempts=3)
    assert sleep.calls == [2.0, 2.0]
