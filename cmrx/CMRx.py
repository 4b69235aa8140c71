"""
Branch-and-bound solver for coupled monotonic regression (CMRx).

The search starts from the MR fit under the base adjacency. Whenever a fit
contains an inversion, one child per covector is created that forces the
inverted pair towards that covector for the disagreeing variables. Children
inherit their parent's objective as lower bound, the frontier is explored
best-bound first, and feasible fits tighten the incumbent until the gap
between the two closes to the requested relative tolerance.
"""

from __future__ import annotations

import dataclasses
import itertools
import time
from dataclasses import dataclass, field

import numpy as np

from cmrx import MRSolver as mr
from cmrx import Zones as zn
from cmrx.SearchState import Frontier, VisitedSet
from cmrx.Trial import Trial
from cmrx.UpperBound import SEEDERS


class MRSolverError(RuntimeError):
    """An MR fit failed while the solver was configured to fail fast."""

    def __init__(self, trial):
        self.trial = trial
        self.fit = trial.fit
        super().__init__(
            f"MR fit failed for trial {trial.trial_id} "
            f"({self.fit.status.value}: {self.fit.message})"
        )


@dataclass(frozen=True)
class SolverConfig:
    """
    Options of CMRxSolver.

    easy_fail: raise MRSolverError on the first failed MR fit instead of
        dropping the branch
    allow_cyclic: solve constraint sets with cycles; when False they are
        rejected by the MR solver and counted in cyclic_avoided
    tolerance: relative gap at which the search stops, 0 for the exact optimum
    mr_tolerance1, mr_tolerance2: MR solver accuracies, 0 keeps its defaults
    seeder: upper bound heuristic, "fan_out" or "survivors"
    progress_interval: iterations between listener updates
    verbose: print a timing summary when done
    """

    easy_fail: bool = False
    allow_cyclic: bool = True
    tolerance: float = 0.0
    mr_tolerance1: float = 0.0
    mr_tolerance2: float = 0.0
    seeder: str = "fan_out"
    progress_interval: int = 100
    verbose: bool = False

    def __post_init__(self):
        if not 0.0 <= self.tolerance < 1.0:
            raise ValueError("tolerance must be in [0, 1).")
        if self.mr_tolerance1 < 0 or self.mr_tolerance2 < 0:
            raise ValueError("MR tolerances must be non-negative.")
        if self.seeder not in SEEDERS:
            raise ValueError(
                f"Unknown seeder '{self.seeder}', expected one of {sorted(SEEDERS)}."
            )
        if self.progress_interval < 1:
            raise ValueError("progress_interval must be at least 1.")


@dataclass
class CMRIter:
    f_floor: float
    f_bar: float
    upper_floor: float
    remaining: int


@dataclass
class CMRSolution:
    """Result of a CMRx solve; means and adjacency are None for bound-only answers."""

    objective: float
    means: np.ndarray | None
    adjacency: np.ndarray | None
    iterations: list = field(default_factory=list)
    seconds: float = 0.0
    calls: int = 0
    f_bar_reductions: int = 0
    collisions: int = 0
    cyclic_avoided: int = 0
    cancelled: bool = False
    bound_only: bool = False

    @property
    def feasible(self) -> bool:
        return bool(np.isfinite(self.objective))


class CMRxSolver:
    def __init__(self, config=None, **overrides):
        config = config or SolverConfig()
        if overrides:
            config = dataclasses.replace(config, **overrides)
        self.config = config

    def make_mr_solver(self) -> mr.MRSolver:
        solver = mr.MRSolver(allow_cyclic=self.config.allow_cyclic)
        if self.config.mr_tolerance1 != 0:
            solver.set_tolerance(self.config.mr_tolerance1, self.config.mr_tolerance2 or None)
        return solver

    def _failed(self, trial) -> int:
        """Handle a failed fit; returns 1 if it counts as an avoided cyclic set."""
        if self.config.easy_fail:
            raise MRSolverError(trial)
        return int(trial.fit.status is mr.FitStatus.CYCLIC)

    def solve(self, problem, listener=None, target=None) -> CMRSolution:
        """
        Find the closest fit whose condition pairs contain no inversion.

        Parameters:
            problem: CMRxProblem
            listener: optional ProgressListener, may cancel the search
            target: when given, stop as soon as the optimum is known to lie
                below or above target and report only the incumbent objective
        """
        cfg = self.config
        start_time = time.time()
        iterations = []
        const = problem.additive_constant
        encoder = zn.ZoneEncoder(problem.nvar, problem.ncond, problem.infeasible_zones)

        if encoder.check(problem.means) is None and problem.satisfies_base_order(problem.means):
            return CMRSolution(
                const,
                problem.means.copy(),
                problem.adjacency.copy(),
                iterations,
                seconds=time.time() - start_time,
            )

        solver = self.make_mr_solver()
        final_target = None if target is None else target - const

        def finish(f_bar, x_bar, adj_bar, **kwargs):
            if listener is not None:
                listener.set_finished()
            seconds = time.time() - start_time
            if cfg.verbose:
                print("Time:", seconds, "s")
                print("MR calls:", solver.calls)
                print("Incumbent improvements:", f_bar_reductions)
                print("Minimum:", f_bar + const)
            return CMRSolution(
                f_bar + const,
                x_bar,
                adj_bar,
                iterations,
                seconds=seconds,
                calls=solver.calls,
                f_bar_reductions=f_bar_reductions,
                collisions=collisions,
                cyclic_avoided=cyclic_avoided,
                **kwargs,
            )

        f_floor = -np.inf
        f_bar = np.inf
        x_bar = None
        adj_bar = None
        f_bar_reductions = 0
        collisions = 0
        cyclic_avoided = 0

        if listener is not None:
            listener.message("Running CMRx")

        root = Trial(solver, problem.weights, problem.means, problem.base_constraints)
        if not root.evaluate().ok:
            cyclic_avoided += self._failed(root)
            iterations.append(CMRIter(f_bar, f_bar, f_bar, 0))
            return finish(f_bar, x_bar, adj_bar)

        seeded = SEEDERS[cfg.seeder](root, problem.covectors, encoder)
        if seeded is not None:
            f_bar = seeded.objective
            x_bar = seeded.fitted
            adj_bar = seeded.adjacency()
            f_bar_reductions += 1
            if final_target is not None and f_bar < final_target:
                return finish(f_bar, None, None, bound_only=True)

        tolerance_m1 = 1.0 - cfg.tolerance
        frontier = Frontier()
        frontier.push(root)
        visited = VisitedSet()
        visited.add(root)
        trial_ids = itertools.count(1)
        cancelled = False

        while frontier and f_floor < f_bar * tolerance_m1:
            current = frontier.pop()
            f_floor = current.bound
            upper_floor = frontier.worst_bound() if frontier else f_floor

            if listener is not None and len(iterations) % cfg.progress_interval == 0:
                if not listener.update_status(
                    f_floor,
                    f_bar,
                    upper_floor,
                    len(frontier),
                    len(iterations),
                    f_bar_reductions,
                    cyclic_avoided,
                ):
                    cancelled = True
                    break

            if final_target is not None and (
                f_bar < final_target or (f_floor >= final_target and f_bar >= final_target)
            ):
                return finish(f_bar, None, None, bound_only=True)

            iterations.append(CMRIter(f_floor, f_bar, upper_floor, len(frontier)))

            if f_floor >= f_bar * tolerance_m1:
                continue

            fit = current.evaluate()
            if not fit.ok:
                cyclic_avoided += self._failed(current)
                continue
            if fit.objective >= f_bar:
                continue

            inversion = encoder.check(fit.means)
            if inversion is None:
                f_bar = fit.objective
                x_bar = fit.means
                adj_bar = current.adjacency()
                f_bar_reductions += 1
                frontier.prune_above(f_bar)
                continue

            signs = encoder.decode(inversion.zone)
            for covector in problem.covectors:
                child = current.branch(inversion, signs, covector, next(trial_ids))
                if child is None:
                    continue
                if child in visited:
                    collisions += 1
                else:
                    frontier.push(child)
                    visited.add(child)

        iterations.append(CMRIter(f_bar, f_bar, f_bar, len(frontier)))
        return finish(f_bar, x_bar, adj_bar, cancelled=cancelled)


def solve_cmrx(problem, listener=None, target=None, **config) -> CMRSolution:
    return CMRxSolver(**config).solve(problem, listener=listener, target=target)
