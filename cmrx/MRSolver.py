"""
Monotonic regression under pairwise order constraints.

Solves, for fitted means x and observed means y (both nvar x ncond),

    minimize_x    sum_k (x_k - y_k)^T W_k (x_k - y_k)
    subject to    x[k, lower] <= x[k, higher]   for every (k, higher, lower)

as one quadratic program with cvxpy and OSQP. A failed first attempt is
retried once at the secondary tolerance with a larger iteration budget.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from enum import Enum

import cvxpy as cp
import networkx as nx
import numpy as np
import scipy.sparse as sp
from scipy.linalg import block_diag, eigh

TOL1 = 1e-10
TOL2 = 1e-7
MAX_ITER1 = 20000
MAX_ITER2 = 200000


class FitStatus(Enum):
    FITTED = "fitted"
    CYCLIC = "cyclic"
    FAILED = "failed"


@dataclass
class MRFit:
    """Outcome of one MR call; means is None unless status is FITTED."""

    status: FitStatus
    means: np.ndarray | None = None
    objective: float = float("inf")
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status is FitStatus.FITTED


def weighted_objective(weights, means, x) -> float:
    d = np.asarray(x, dtype=float) - np.asarray(means, dtype=float)
    return max(float(np.einsum("ki,kij,kj->", d, weights, d)), 0.0)


def has_cycle(constraints) -> bool:
    """True if any variable's constraints x[lower] <= x[higher] form a directed cycle."""
    G = nx.DiGraph()
    G.add_edges_from(((k, lo), (k, hi)) for k, hi, lo in constraints)
    return not nx.is_directed_acyclic_graph(G)


def order_matrix(constraints, nvar, ncond) -> sp.csr_matrix:
    """Signed incidence matrix D with (D @ x.ravel())_c = x[k, lower] - x[k, higher]."""
    constraints = sorted(constraints)
    m = len(constraints)
    rows = np.repeat(np.arange(m), 2)
    cols = np.empty(2 * m, dtype=int)
    vals = np.tile([1.0, -1.0], m)
    for c, (k, hi, lo) in enumerate(constraints):
        cols[2 * c] = k * ncond + lo
        cols[2 * c + 1] = k * ncond + hi
    return sp.csr_matrix((vals, (rows, cols)), shape=(m, nvar * ncond))


def _root_factor(w: np.ndarray) -> np.ndarray:
    vals, vecs = eigh(w)
    return (vecs * np.sqrt(np.clip(vals, 0.0, None))).T


class MRSolver:
    """
    Weighted monotonic regression with a primary and a fallback tolerance.

    Parameters:
        tolerance1: accuracy of the first attempt
        tolerance2: accuracy of the retry after a failed first attempt
        allow_cyclic: when False, constraint sets containing a cycle are
            rejected with FitStatus.CYCLIC instead of being solved
    """

    def __init__(self, tolerance1=TOL1, tolerance2=TOL2, allow_cyclic=True):
        self.allow_cyclic = allow_cyclic
        self.calls = 0
        self.set_tolerance(tolerance1, tolerance2)
        self._weights = None
        self._factor = None

    def set_tolerance(self, tol1, tol2=None):
        if tol2 is None:
            tol2 = tol1 * 10000
        if tol1 <= 0 or tol2 <= 0:
            raise ValueError("Tolerances must be positive.")
        self.tolerance1 = tol1
        self.tolerance2 = tol2

    def reset_tolerance(self):
        self.set_tolerance(TOL1, TOL2)

    def _weight_root(self, weights):
        if weights is not self._weights:
            self._factor = block_diag(*[_root_factor(w) for w in weights])
            self._weights = weights
        return self._factor

    def solve(self, weights, means, constraints) -> MRFit:
        self.calls += 1
        weights = np.asarray(weights, dtype=float)
        means = np.asarray(means, dtype=float)
        nvar, ncond = means.shape

        if not constraints:
            return MRFit(FitStatus.FITTED, means.copy(), 0.0)
        if not self.allow_cyclic and has_cycle(constraints):
            return MRFit(FitStatus.CYCLIC, message="cyclic constraint set")

        R = self._weight_root(weights)
        D = order_matrix(constraints, nvar, ncond)
        y = means.ravel()
        x = cp.Variable(nvar * ncond)
        problem = cp.Problem(cp.Minimize(cp.sum_squares(R @ (x - y))), [D @ x <= 0])

        attempts = [
            (10 * self.tolerance1, MAX_ITER1, (cp.OPTIMAL,)),
            (10 * self.tolerance2, MAX_ITER2, (cp.OPTIMAL, cp.OPTIMAL_INACCURATE)),
        ]
        status = None
        for eps, max_iter, accepted in attempts:
            try:
                problem.solve(
                    solver=cp.OSQP,
                    eps_abs=eps,
                    eps_rel=eps,
                    max_iter=max_iter,
                    verbose=False,
                )
            except cp.SolverError as exc:
                status = str(exc)
                continue
            status = problem.status
            if status in accepted and x.value is not None:
                fitted = np.asarray(x.value).reshape(nvar, ncond)
                return MRFit(FitStatus.FITTED, fitted, weighted_objective(weights, means, fitted))

        warnings.warn(
            f"MR fit failed with {len(constraints)} constraints (status: {status})."
        )
        return MRFit(FitStatus.FAILED, message=str(status))
