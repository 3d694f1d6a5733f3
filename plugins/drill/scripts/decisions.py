#!/usr/bin/env python3
"""
Ledger Drill Decision Engine

Every random choice in a run (role picks, upgrade coin flips, vote targets,
ranking shuffles) is drawn from one seeded stream, in phase and actor order.
Same seed plus same backend responses gives the same decisions.
"""
from __future__ import annotations

import random
from typing import List, MutableSequence, Optional, Sequence, TypeVar

T = TypeVar("T")


class DecisionEngine:
    """Single seeded pseudo-random source for a run."""

    def __init__(self, seed: Optional[int] = None):
        self.seed: Optional[int] = None
        self.random = random.Random()
        self.draws = 0
        if seed is not None:
            self.reseed(seed)

    def reseed(self, seed: int) -> None:
        """Seed the stream. Allowed exactly once per run."""
        if self.seed is not None:
            raise RuntimeError(f"Decision engine already seeded with {self.seed}")
        self.seed = seed
        self.random.seed(seed)

    def uniform_int(self, bound: int) -> int:
        """Uniform integer in [0, bound)."""
        if bound <= 0:
            raise ValueError(f"bound must be positive, got {bound}")
        self.draws += 1
        return self.random.randrange(bound)

    def uniform_float(self) -> float:
        """Uniform float in [0, 1)."""
        self.draws += 1
        return self.random.random()

    def bernoulli(self, p: float) -> bool:
        return self.uniform_float() < p

    def shuffle(self, seq: MutableSequence[T]) -> MutableSequence[T]:
        """Fisher-Yates, in place, from the last index down to 1."""
        for i in range(len(seq) - 1, 0, -1):
            j = self.uniform_int(i + 1)
            seq[i], seq[j] = seq[j], seq[i]
        return seq

    def choose_one(self, seq: Sequence[T]) -> T:
        """Uniform pick. Callers check for an empty sequence first."""
        return seq[self.uniform_int(len(seq))]

    def shuffled(self, seq: Sequence[T]) -> List[T]:
        return list(self.shuffle(list(seq)))
