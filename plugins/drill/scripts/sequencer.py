#!/usr/bin/env python3
"""
Ledger Drill Actor Sequencer

Actor names are a fixed prefix plus a six-letter suffix counted like an
odometer in base 26 ('a' = 0).
"""
from __future__ import annotations

from typing import Iterator

from models import NameSpaceExhausted

SUFFIX_LENGTH = 6
FIRST_SUFFIX = "a" * SUFFIX_LENGTH


def next_name(pattern: str) -> str:
    """Return pattern incremented by one.

    The rightmost character is least significant; 'z' rolls over to 'a' and
    carries left. Raises NameSpaceExhausted when the carry runs off the left
    end (e.g. "zzzzzz").
    """
    chars = list(pattern)
    for i in range(len(chars) - 1, -1, -1):
        if chars[i] != "z":
            chars[i] = chr(ord(chars[i]) + 1)
            return "".join(chars)
        chars[i] = "a"
    raise NameSpaceExhausted(f"Actor name space exhausted after '{pattern}'")


def actor_names(prefix: str, count: int, start: str = FIRST_SUFFIX) -> Iterator[str]:
    """Yield count actor names, beginning with prefix + start."""
    suffix = start
    for i in range(count):
        if i:
            suffix = next_name(suffix)
        yield prefix + suffix
