# %%
import numpy as np

from cmrx import CMRx as cmrx
from cmrx import Problem as pb
from cmrx import Zones as zn
from cmrx.Progress import TqdmProgress

# %%
# Two dependent variables measured in five conditions. A single latent
# variable would move both in the same direction between any two conditions.
means = np.array(
    [
        [0.20, 0.35, 0.30, 0.60, 0.75],
        [0.10, 0.25, 0.40, 0.38, 0.70],
    ]
)
n = np.array(
    [
        [20, 18, 22, 19, 21],
        [20, 18, 22, 19, 21],
    ]
)
problem = pb.CMRxProblem(
    means=means,
    weights=pb.identity_weights(2, 5, n),
    covectors=pb.monotone_covectors(2),
)
print("Infeasible zones:", sorted(problem.infeasible_zones))
print("Observed means feasible:", zn.is_feasible(means, problem.infeasible_zones))

# %%
solution = cmrx.CMRxSolver(verbose=True).solve(problem, listener=TqdmProgress())
print(np.round(solution.means, 4))
print("Feasible:", zn.is_feasible(solution.means, problem.infeasible_zones))

# %%
# Bound-only query: is the misfit below 0.05?
answer = cmrx.CMRxSolver().solve(problem, target=0.05)
print(answer.objective, answer.bound_only)

# %%
# Stop within 10% of the optimum
loose = cmrx.CMRxSolver(tolerance=0.1).solve(problem)
print(loose.objective, solution.objective, loose.calls, solution.calls)

# %%
