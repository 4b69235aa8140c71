"""Search-tree node: a set of order constraints and its lazily computed MR fit."""

from __future__ import annotations

import numpy as np

from cmrx import MRSolver as mr


class TrialEvaluatedError(RuntimeError):
    """Raised when constraints are added to a trial that has already been fitted."""


class Trial:
    """
    One branch-and-bound node.

    Constraints are (variable, higher, lower) triples meaning
    x[variable, higher] >= x[variable, lower]. The trial's bound is the
    inherited lower bound until it is evaluated and its own objective after.
    Adding constraints can only shrink the feasible region, so a child's
    objective is never below its parent's and the inherited bound is valid.
    """

    def __init__(
        self, solver, weights, means, base_constraints=frozenset(), bound=0.0, trial_id=0
    ):
        self.solver = solver
        self.weights = weights
        self.means = means
        self.trial_id = trial_id
        self._constraints = set(base_constraints)
        self._bound = bound
        self._fit = None

    @property
    def nvar(self) -> int:
        return self.means.shape[0]

    @property
    def ncond(self) -> int:
        return self.means.shape[1]

    @property
    def evaluated(self) -> bool:
        return self._fit is not None

    @property
    def constraints(self) -> frozenset:
        return frozenset(self._constraints)

    @property
    def signature(self) -> frozenset:
        return frozenset(self._constraints)

    @property
    def bound(self) -> float:
        if self._fit is None:
            return self._bound
        return self._fit.objective

    @property
    def fit(self) -> mr.MRFit | None:
        return self._fit

    @property
    def fitted(self) -> np.ndarray | None:
        return None if self._fit is None else self._fit.means

    @property
    def objective(self) -> float:
        if self._fit is None:
            raise RuntimeError(f"Trial {self.trial_id} has not been evaluated.")
        return self._fit.objective

    def split(self, new_id) -> Trial:
        return Trial(
            self.solver,
            self.weights,
            self.means,
            self._constraints,
            bound=self.bound,
            trial_id=new_id,
        )

    def add_constraint(self, variable, higher, lower):
        if self._fit is not None:
            raise TrialEvaluatedError(
                f"Trial {self.trial_id} is already evaluated; constraints are frozen."
            )
        if not 0 <= variable < self.nvar:
            raise IndexError(f"Variable {variable} out of range for {self.nvar} variables.")
        if not (0 <= higher < self.ncond and 0 <= lower < self.ncond):
            raise IndexError(
                f"Conditions ({higher}, {lower}) out of range for {self.ncond} conditions."
            )
        if higher != lower:
            self._constraints.add((int(variable), int(higher), int(lower)))

    def evaluate(self) -> mr.MRFit:
        """Fit once; repeated calls return the cached result."""
        if self._fit is None:
            self._fit = self.solver.solve(self.weights, self.means, self._constraints)
        return self._fit

    def branch(self, inversion, sign_vector, covector, new_id) -> Trial | None:
        """
        Child that moves the inverted pair towards covector, or None.

        Variables where the covector disagrees with the observed sign get a
        constraint in the covector's direction; a zero covector entry adds
        nothing for that variable.
        """
        disagree = [
            k
            for k in range(self.nvar)
            if covector[k] != sign_vector[k] and sign_vector[k] != 0
        ]
        if not disagree:
            return None

        child = self.split(new_id)
        for k in disagree:
            if covector[k] > 0:
                child.add_constraint(k, inversion.row, inversion.column)
            elif covector[k] < 0:
                child.add_constraint(k, inversion.column, inversion.row)
        return child

    def adjacency(self) -> np.ndarray:
        """Effective constraints as adj[k, lower, higher] = 1."""
        adj = np.zeros((self.nvar, self.ncond, self.ncond), dtype=int)
        for k, hi, lo in self._constraints:
            adj[k, lo, hi] = 1
        return adj

    def __repr__(self):
        state = f"f={self.bound:.6g}" if self.evaluated else f"bound={self.bound:.6g}"
        return f"Trial(id={self.trial_id}, constraints={len(self._constraints)}, {state})"
