"""Open set and duplicate detection for the branch-and-bound search."""

from __future__ import annotations

import bisect
import itertools


class VisitedSet:
    """Trials seen so far, identified by their full constraint set."""

    def __init__(self):
        self._signatures = set()

    def add(self, trial):
        self._signatures.add(trial.signature)

    def contains(self, trial) -> bool:
        return trial.signature in self._signatures

    __contains__ = contains

    def __len__(self):
        return len(self._signatures)


class Frontier:
    """
    Trials ordered by ascending bound.

    Entries are keyed by (bound, insertion sequence), so equal bounds pop in
    insertion order and trials themselves are never compared. The key is
    fixed when a trial is pushed.
    """

    def __init__(self):
        self._entries = []
        self._counter = itertools.count()

    def push(self, trial):
        bisect.insort(self._entries, (trial.bound, next(self._counter), trial))

    def pop(self):
        if not self._entries:
            raise IndexError("pop from an empty frontier")
        return self._entries.pop(0)[2]

    def best_bound(self) -> float:
        return self._entries[0][0]

    def worst_bound(self) -> float:
        return self._entries[-1][0]

    def prune_above(self, bound) -> int:
        """Drop trials whose bound exceeds bound, scanning from the worst end."""
        removed = 0
        while self._entries and self._entries[-1][0] > bound:
            self._entries.pop()
            removed += 1
        return removed

    def __len__(self):
        return len(self._entries)

    def __bool__(self):
        return bool(self._entries)

    def __iter__(self):
        return (entry[2] for entry in self._entries)
