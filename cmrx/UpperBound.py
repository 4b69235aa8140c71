"""
Greedy depth-first searches for a first feasible solution.

Both heuristics repeatedly branch on the most significant inversion of the
current fit and follow the cheapest children. They do not backtrack, so the
result is only an upper bound on the optimum, used to prune the exact search
from its first iteration.
"""

from __future__ import annotations

import itertools

from cmrx.SearchState import VisitedSet


def greedy_fan_out(root, covectors, encoder):
    """
    Keep the single cheapest child per step.

    Returns a feasible evaluated trial, or None when some inversion leaves no
    covector with a successful fit.
    """
    if not root.evaluate().ok:
        return None
    ids = itertools.count(1)
    current = root
    inversion = encoder.check(current.fitted)
    while inversion is not None:
        signs = encoder.decode(inversion.zone)
        best = None
        for covector in covectors:
            child = current.branch(inversion, signs, covector, next(ids))
            # no new constraint, same fit, same inversion
            if child is None or child.signature == current.signature:
                continue
            if child.evaluate().ok and (best is None or child.objective < best.objective):
                best = child
        if best is None:
            return None
        current = best
        inversion = encoder.check(current.fitted)
    return current


def greedy_survivors(root, covectors, encoder, width=None):
    """
    Keep every surviving child per step, up to width of the cheapest.

    A child survives while it is infeasible and cheaper than the best feasible
    trial found so far. More MR calls than greedy_fan_out, usually a tighter
    bound. Returns the best feasible trial found, or None.
    """
    if not root.evaluate().ok:
        return None
    inversion = encoder.check(root.fitted)
    if inversion is None:
        return root

    width = width or len(covectors)
    ids = itertools.count(1)
    visited = VisitedSet()
    visited.add(root)
    best = None
    live = [(root, inversion)]
    while live:
        children = []
        for trial, inversion in live:
            signs = encoder.decode(inversion.zone)
            for covector in covectors:
                child = trial.branch(inversion, signs, covector, next(ids))
                if child is None or child in visited:
                    continue
                visited.add(child)
                if not child.evaluate().ok:
                    continue
                if best is not None and child.objective >= best.objective:
                    continue
                child_inversion = encoder.check(child.fitted)
                if child_inversion is None:
                    best = child
                else:
                    children.append((child, child_inversion))
        survivors = [
            entry for entry in children if best is None or entry[0].objective < best.objective
        ]
        survivors.sort(key=lambda entry: entry[0].objective)
        live = survivors[:width]
    return best


SEEDERS = {
    "fan_out": greedy_fan_out,
    "survivors": greedy_survivors,
}
