# %%
import itertools

import numpy as np
import pytest

from cmrx import CMRx as cmrx
from cmrx import MRSolver as mr
from cmrx import Problem as pb
from cmrx import Zones as zn
from cmrx.Progress import ProgressListener


class RecordingListener(ProgressListener):
    def __init__(self, stop_after=None):
        self.updates = []
        self.messages = []
        self.finished = False
        self.stop_after = stop_after

    def message(self, text):
        self.messages.append(text)

    def update_status(self, *status):
        self.updates.append(status)
        return self.stop_after is None or len(self.updates) < self.stop_after

    def set_finished(self):
        self.finished = True


def brute_force(problem):
    """Optimum over all common condition orders for co-monotone variables."""
    solver = mr.MRSolver()
    best = np.inf
    for order in itertools.permutations(range(problem.ncond)):
        constraints = {
            (k, order[i + 1], order[i])
            for k in range(problem.nvar)
            for i in range(problem.ncond - 1)
        }
        fit = solver.solve(problem.weights, problem.means, constraints | problem.base_constraints)
        best = min(best, fit.objective)
    return best + problem.additive_constant


@pytest.fixture
def crossing_problem():
    return pb.CMRxProblem(
        means=[[1.0, 2.0], [2.0, 1.0]],
        weights=pb.identity_weights(2, 2),
        covectors=pb.monotone_covectors(2),
    )


def test_feasible_means_return_immediately():
    problem = pb.CMRxProblem(
        means=[[1.0, 3.0, 2.0], [2.0, 5.0, 4.0]],
        weights=pb.identity_weights(2, 3),
        covectors=pb.monotone_covectors(2),
        additive_constant=1.5,
    )
    solution = cmrx.CMRxSolver().solve(problem)
    assert solution.objective == 1.5
    assert solution.calls == 0
    np.testing.assert_array_equal(solution.means, problem.means)


def test_no_infeasible_zones_return_immediately():
    problem = pb.CMRxProblem(
        means=[[1.0, 2.0], [2.0, 1.0]],
        weights=pb.identity_weights(2, 2),
        covectors=pb.monotone_covectors(2),
        infeasible_zones=set(),
    )
    solution = cmrx.solve_cmrx(problem)
    assert solution.objective == 0.0
    assert solution.calls == 0
    assert solution.iterations == []


@pytest.mark.parametrize("constant", [0.0, 2.0])
def test_single_variable_golden_value(constant):
    # only the base order applies: pool conditions 2 and 3
    problem = pb.CMRxProblem(
        means=[[1.0, 3.0, 2.0]],
        weights=pb.identity_weights(1, 3),
        covectors=[[1]],
        adjacency=pb.chain_adjacency(3),
        infeasible_zones=set(),
        additive_constant=constant,
    )
    solution = cmrx.CMRxSolver().solve(problem)
    assert solution.objective == pytest.approx(0.5 + constant, abs=1e-6)
    np.testing.assert_allclose(solution.means, [[1.0, 2.5, 2.5]], atol=1e-5)
    assert solution.adjacency[0, 0, 1] == solution.adjacency[0, 1, 2] == 1


@pytest.mark.parametrize("seeder", ["fan_out", "survivors"])
def test_crossing_pair(seeder, crossing_problem):
    solution = cmrx.CMRxSolver(seeder=seeder).solve(crossing_problem)
    assert solution.objective == pytest.approx(0.5, abs=1e-6)
    assert zn.is_feasible(solution.means, crossing_problem.infeasible_zones)
    assert solution.f_bar_reductions >= 1
    assert solution.adjacency.sum() == 1
    last = solution.iterations[-1]
    assert last.f_floor == last.f_bar == solution.objective


@pytest.mark.parametrize(
    "nvar, ncond, seed",
    [
        (2, 3, 1),
        (2, 4, 2),
        (2, 4, 3),
        (3, 4, 4),
        (2, 5, 5),
    ],
)
def test_matches_brute_force(nvar, ncond, seed):
    problem = pb.random_problem(nvar=nvar, ncond=ncond, seed=seed, noise=2.0)
    solution = cmrx.CMRxSolver().solve(problem)
    expected = brute_force(problem)
    assert solution.objective == pytest.approx(expected, abs=1e-4), "CMRx missed the optimum."
    assert zn.is_feasible(solution.means, problem.infeasible_zones)
    assert np.isclose(
        mr.weighted_objective(problem.weights, problem.means, solution.means),
        solution.objective,
        atol=1e-6,
    )


def test_seeders_agree_on_optimum():
    problem = pb.random_problem(nvar=3, ncond=5, seed=21, noise=2.0)
    a = cmrx.CMRxSolver(seeder="fan_out").solve(problem)
    b = cmrx.CMRxSolver(seeder="survivors").solve(problem)
    assert a.objective == pytest.approx(b.objective, abs=1e-4)


@pytest.mark.parametrize("seed", [6, 7, 8])
def test_tolerance_stops_within_gap(seed):
    problem = pb.random_problem(nvar=3, ncond=5, seed=seed, noise=2.0)
    exact = cmrx.CMRxSolver().solve(problem)
    loose = cmrx.CMRxSolver(tolerance=0.1).solve(problem)
    assert loose.objective >= exact.objective - 1e-6
    assert exact.objective >= 0.9 * loose.objective - 1e-6, "Stopped outside the 10% gap."
    assert loose.calls <= exact.calls
    for record in loose.iterations[:-1]:
        assert record.f_floor <= record.f_bar


@pytest.fixture
def tangled_problem():
    return pb.CMRxProblem(
        means=[[1.0, 2.0, 3.0, 4.0], [4.0, 3.0, 2.0, 1.0], [1.0, 3.0, 2.0, 4.0]],
        weights=pb.identity_weights(3, 4),
        covectors=pb.monotone_covectors(3),
    )


def test_iteration_log_is_monotone(tangled_problem):
    problem = tangled_problem
    solution = cmrx.CMRxSolver().solve(problem)
    f_bars = [record.f_bar for record in solution.iterations]
    assert all(b <= a for a, b in zip(f_bars, f_bars[1:])), "Incumbent got worse."
    assert solution.iterations[-1].f_bar == solution.objective


def test_duplicate_branches_are_counted():
    # the zero entry of the second covector reproduces the parent's constraint set
    problem = pb.CMRxProblem(
        means=[[1.0, 2.0], [2.0, 1.0]],
        weights=pb.identity_weights(2, 2),
        covectors=[[1, 1], [0, 1], [-1, -1]],
        infeasible_zones={2},
    )
    solution = cmrx.CMRxSolver().solve(problem)
    assert solution.collisions > 0
    assert solution.objective == pytest.approx(0.5, abs=1e-6)


def test_target_above_incumbent_returns_bound_only(crossing_problem):
    solution = cmrx.CMRxSolver().solve(crossing_problem, target=10.0)
    assert solution.bound_only
    assert solution.means is None and solution.adjacency is None
    assert solution.objective == pytest.approx(0.5, abs=1e-6)


def test_target_below_lower_bound_returns_bound_only(crossing_problem):
    solution = cmrx.CMRxSolver().solve(crossing_problem, target=-1.0)
    assert solution.bound_only
    assert solution.objective == pytest.approx(0.5, abs=1e-6)


def test_target_between_bounds_runs_to_optimum(crossing_problem):
    # children inherit the root's bound of 0, so the floor never reaches the target
    solution = cmrx.CMRxSolver().solve(crossing_problem, target=0.1)
    assert not solution.bound_only
    assert solution.objective == pytest.approx(0.5, abs=1e-6)


def test_target_respects_additive_constant():
    problem = pb.CMRxProblem(
        means=[[1.0, 2.0], [2.0, 1.0]],
        weights=pb.identity_weights(2, 2),
        covectors=pb.monotone_covectors(2),
        additive_constant=100.0,
    )
    below = cmrx.CMRxSolver().solve(problem, target=100.6)
    assert below.bound_only and below.objective == pytest.approx(100.5, abs=1e-6)


def test_listener_and_cancellation(tangled_problem):
    problem = tangled_problem
    listener = RecordingListener()
    solution = cmrx.CMRxSolver(progress_interval=1).solve(problem, listener=listener)
    assert listener.finished and not solution.cancelled
    assert listener.messages == ["Running CMRx"]
    assert len(listener.updates) == len(solution.iterations) - 1

    stopper = RecordingListener(stop_after=1)
    cancelled = cmrx.CMRxSolver(progress_interval=1).solve(problem, listener=stopper)
    assert cancelled.cancelled and stopper.finished
    assert cancelled.objective >= solution.objective - 1e-6
    assert cancelled.means is not None


def cyclic_problem():
    # var 0 is pinned to cond0 <= cond1; the [1, 1] branch would reverse it
    adjacency = np.array([[[0, 1], [0, 0]], [[0, 0], [0, 0]]])
    return pb.CMRxProblem(
        means=[[1.0, 2.0], [2.0, 1.0]],
        weights=pb.identity_weights(2, 2),
        covectors=pb.monotone_covectors(2),
        adjacency=adjacency,
    )


def test_cyclic_branches_are_counted():
    solution = cmrx.CMRxSolver(allow_cyclic=False).solve(cyclic_problem())
    assert solution.cyclic_avoided == 1
    assert solution.objective == pytest.approx(0.5, abs=1e-6)

    allowed = cmrx.CMRxSolver(allow_cyclic=True).solve(cyclic_problem())
    assert allowed.cyclic_avoided == 0
    assert allowed.objective == pytest.approx(0.5, abs=1e-6)


def test_easy_fail_raises():
    with pytest.raises(cmrx.MRSolverError) as excinfo:
        cmrx.CMRxSolver(allow_cyclic=False, easy_fail=True).solve(cyclic_problem())
    assert excinfo.value.fit.status is mr.FitStatus.CYCLIC


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(tolerance=1.0),
        dict(tolerance=-0.1),
        dict(seeder="exhaustive"),
        dict(progress_interval=0),
        dict(mr_tolerance1=-1.0),
    ],
)
def test_invalid_config(kwargs):
    with pytest.raises(ValueError):
        cmrx.CMRxSolver(**kwargs)


def test_mr_tolerances_are_forwarded():
    solver = cmrx.CMRxSolver(mr_tolerance1=1e-8, mr_tolerance2=1e-6).make_mr_solver()
    assert (solver.tolerance1, solver.tolerance2) == (1e-8, 1e-6)
    default = cmrx.CMRxSolver().make_mr_solver()
    assert default.tolerance1 == mr.TOL1
