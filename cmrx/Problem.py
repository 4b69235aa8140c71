"""Problem definition for coupled monotonic regression over covectors."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np
from scipy.linalg import eigvalsh

from cmrx import Zones as zn

SYMMETRY_TOL = 1e-8


class InvalidProblemError(ValueError):
    """Raised when a problem cannot even be checked for feasibility."""


def infeasible_zones_from_covectors(covectors) -> set[int]:
    """Return the positive zone codes that conform to no covector.

    A sign vector conforms to a covector when all of its nonzero entries
    agree with the covector. Zone codes are unsigned, so a sign vector and
    its negation are tested together.
    """
    cv = np.asarray(covectors, dtype=int)
    nvar = cv.shape[1]
    cv = np.vstack([cv, -cv])
    zones = set()
    for signs in itertools.product((-1, 0, 1), repeat=nvar):
        s = np.asarray(signs)
        zone = zn.zone_encode(s)
        if zone <= 0:
            continue
        nonzero = s != 0
        if not np.any(np.all(cv[:, nonzero] == s[nonzero], axis=1)):
            zones.add(zone)
    return zones


def constraints_from_adjacency(adjacency: np.ndarray) -> frozenset:
    """Turn a per-variable adjacency array into (variable, higher, lower) triples."""
    triples = set()
    for k, lower, higher in zip(*np.nonzero(adjacency)):
        if lower != higher:
            triples.add((int(k), int(higher), int(lower)))
    return frozenset(triples)


@dataclass(frozen=True, eq=False)
class CMRxProblem:
    """
    Observed means, fit weights and the admissible orderings.

    Parameters:
        means: (nvar, ncond) observed means
        weights: (nvar, ncond, ncond) symmetric PSD weight matrices
        covectors: (m, nvar) admissible sign patterns in {-1, 0, 1}
        adjacency: (ncond, ncond) or (nvar, ncond, ncond); adjacency[i, j] != 0
            means condition i must not exceed condition j
        infeasible_zones: zone codes counted as inversions; derived from the
            covectors when omitted
        additive_constant: added to every reported objective
    """

    means: np.ndarray
    weights: np.ndarray
    covectors: np.ndarray
    adjacency: np.ndarray | None = None
    infeasible_zones: Iterable[int] | None = None
    additive_constant: float = 0.0
    base_constraints: frozenset = field(init=False, repr=False)

    def __post_init__(self):
        means = np.asarray(self.means, dtype=float)
        if means.ndim != 2 or means.size == 0:
            raise InvalidProblemError(
                f"Expected a non-empty (nvar, ncond) means matrix, got shape {means.shape}."
            )
        if not np.all(np.isfinite(means)):
            raise InvalidProblemError("Means contain non-finite values.")
        nvar, ncond = means.shape

        weights = np.asarray(self.weights, dtype=float)
        if weights.shape != (nvar, ncond, ncond):
            raise InvalidProblemError(
                f"Expected weights with shape ({nvar}, {ncond}, {ncond}), got {weights.shape}."
            )
        for k, w in enumerate(weights):
            if not np.allclose(w, w.T, atol=SYMMETRY_TOL):
                raise InvalidProblemError(f"Weight matrix {k} is not symmetric.")
            if eigvalsh(w)[0] < -SYMMETRY_TOL:
                raise InvalidProblemError(f"Weight matrix {k} is not positive semi-definite.")

        if self.adjacency is None:
            adjacency = np.zeros((nvar, ncond, ncond), dtype=int)
        else:
            adjacency = np.asarray(self.adjacency)
            if adjacency.shape == (ncond, ncond):
                adjacency = np.broadcast_to(adjacency, (nvar, ncond, ncond))
            elif adjacency.shape != (nvar, ncond, ncond):
                raise InvalidProblemError(
                    f"Expected adjacency with shape ({ncond}, {ncond}) or "
                    f"({nvar}, {ncond}, {ncond}), got {adjacency.shape}."
                )
            adjacency = (adjacency != 0).astype(int)

        covectors = np.atleast_2d(np.asarray(self.covectors))
        if covectors.size == 0 or covectors.shape[1] != nvar:
            raise InvalidProblemError(
                f"Expected covectors with shape (m, {nvar}), got {covectors.shape}."
            )
        if not np.all(np.isin(covectors, (-1, 0, 1))):
            raise InvalidProblemError("Covector entries must be -1, 0 or 1.")
        covectors = covectors.astype(int)
        if len({tuple(c) for c in covectors}) != len(covectors):
            raise InvalidProblemError("Covectors must be distinct.")

        if self.infeasible_zones is None:
            zones = infeasible_zones_from_covectors(covectors)
        else:
            zones = {int(z) for z in self.infeasible_zones}
        max_zone = (zn.POW_3[nvar] - 1) // 2
        bad = sorted(z for z in zones if not 0 < z <= max_zone)
        if bad:
            raise InvalidProblemError(
                f"Zone codes {bad} are outside 1..{max_zone} for {nvar} variables."
            )

        object.__setattr__(self, "means", means)
        object.__setattr__(self, "weights", weights)
        object.__setattr__(self, "adjacency", adjacency)
        object.__setattr__(self, "covectors", covectors)
        object.__setattr__(self, "infeasible_zones", frozenset(zones))
        object.__setattr__(self, "additive_constant", float(self.additive_constant))
        object.__setattr__(self, "base_constraints", constraints_from_adjacency(adjacency))

    @property
    def nvar(self) -> int:
        return self.means.shape[0]

    @property
    def ncond(self) -> int:
        return self.means.shape[1]

    def satisfies_base_order(self, x: np.ndarray, tol: float = zn.ZERO_TOL) -> bool:
        """Check x against the base adjacency."""
        return all(x[k, lo] - x[k, hi] <= tol for k, hi, lo in self.base_constraints)


def identity_weights(nvar: int, ncond: int, n=1.0) -> np.ndarray:
    """Weights for independent observations, n samples per cell."""
    n = np.broadcast_to(np.asarray(n, dtype=float), (nvar, ncond))
    return np.stack([np.diag(row) for row in n])


def chain_adjacency(ncond: int) -> np.ndarray:
    """Adjacency requiring condition i <= condition i + 1."""
    return np.eye(ncond, k=1, dtype=int)


def monotone_covectors(nvar: int) -> np.ndarray:
    """The two covectors of a single latent dimension: all variables move together."""
    ones = np.ones(nvar, dtype=int)
    return np.vstack([ones, -ones])


def random_problem(nvar=2, ncond=4, seed=42, n="random", noise=1.0, covectors=None):
    """Random problem around a common increasing trend, with per-cell sample sizes."""
    rng = np.random.default_rng(seed)
    trend = np.sort(rng.uniform(0, 1, ncond))
    means = np.vstack([(k + 1) * trend for k in range(nvar)])
    means = means + noise * rng.normal(0, 0.25, (nvar, ncond))
    if isinstance(n, str) and n == "random":
        n = rng.integers(5, 30, (nvar, ncond))
    if covectors is None:
        covectors = monotone_covectors(nvar)
    return CMRxProblem(means, identity_weights(nvar, ncond, n), covectors)
