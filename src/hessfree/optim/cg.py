"""
Module: optim.cg
----------------
Truncated conjugate gradient on a quadratic model, with the stopping
rule and backtracking checkpoints of Martens (2010).

Classes
-------
- `Checkpoint`:
    A CG iterate kept for later comparison, with its true objective
- `CGSolver`:
    Minimizes one objective's quadratic model for one mini-batch
"""

import math

from beartype.typing import List, NamedTuple, Optional, Sequence

from hessfree.linalg.param_delta import Parameter, ParamDelta

from .hf_types import DEFAULT_BACKTRACK_RATE, ConvergenceCriteria
from .objective import Objective
from .samples import SampleSet
from .ui import UI, SilentUI


class Checkpoint(NamedTuple):
    """Snapshot of a CG iterate and its true objective value."""

    delta: ParamDelta
    value: float


class CGSolver:
    """
    Description
    -----------
    Runs CG on the quadratic model of `objective` over `samples`.

    The solver is lazy: nothing is evaluated until the first `step`.
    Each `step` performs one CG update and one curvature-vector
    product. Iterates are snapshotted on a geometric schedule so that
    `best` can fall back to an earlier iterate when later ones overshoot
    because the quadratic model stopped being trustworthy.

    Attributes
    ----------
    - `objective` (Objective):
        Objective for this mini-batch.
    - `samples` (SampleSet):
        The mini-batch.
    - `parameters` (List[Parameter]):
        Parameters the solution ranges over.
    - `convergence` (ConvergenceCriteria):
        Relative-progress stopping rule.
    - `backtrack_rate` (float):
        Constant above 1; checkpoints are taken when the iteration count
        passes the next power of this rate.
    - `max_iterations` (Optional[int]):
        Optional cap on the number of CG iterations.
    - `solution` (ParamDelta):
        Current CG iterate. Starts at the warm-start delta or zero.
    - `quad_values` (List[float]):
        Quadratic model value after every iteration.
    - `start_objective` (Optional[float]):
        True objective at the zero delta, set on the first step.
    - `checkpoints` (List[Checkpoint]):
        Snapshots collected so far.
    - `done` (bool):
        True once CG has terminated.
    """

    def __init__(
        self,
        objective: Objective,
        samples: SampleSet,
        parameters: Sequence[Parameter],
        convergence: ConvergenceCriteria = ConvergenceCriteria(),
        backtrack_rate: float = DEFAULT_BACKTRACK_RATE,
        ui: Optional[UI] = None,
        solution: Optional[ParamDelta] = None,
        max_iterations: Optional[int] = None,
    ) -> None:
        self.objective = objective
        self.samples = samples
        self.parameters: List[Parameter] = list(parameters)
        self.convergence = convergence
        self.backtrack_rate = backtrack_rate
        self.ui = ui if ui is not None else SilentUI()
        self.max_iterations = max_iterations
        if solution is None:
            self.solution = ParamDelta.zero(self.parameters)
        else:
            self.solution = solution.aligned(self.parameters)

        self.quad_values: List[float] = []
        self.start_objective: Optional[float] = None
        self.checkpoints: List[Checkpoint] = []
        self.done = False

        self._initialized = False
        self._residual: Optional[ParamDelta] = None
        self._direction: Optional[ParamDelta] = None
        self._residual_mag2 = 0.0
        self._hessian_product: Optional[ParamDelta] = None
        self._just_backtracked = False
        self._backtrack_count = 0

    @property
    def iterations(self) -> int:
        return len(self.quad_values)

    @property
    def residual_magnitude_squared(self) -> float:
        return self._residual_mag2

    def _initialize_if_needed(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        self._residual = self.objective.quad_grad(self.solution, self.samples).scale(-1)
        self._direction = self._residual.copy()
        self._residual_mag2 = self._residual.magnitude_squared()
        self.start_objective = self.objective.objective(ParamDelta(), self.samples)

        self._hessian_product, quad_value = self.objective.quad_hessian(
            self._direction, self.solution, self.samples
        )
        self.ui.log_cg_start(quad_value, self.start_objective)

    def step(self) -> bool:
        """
        Description
        -----------
        Run one CG iteration.

        Returns
        -------
        - `should_continue` (bool):
            False once CG has terminated, either because the search
            direction has zero curvature or the residual vanished,
            because progress fell below the convergence threshold, or
            because the iteration cap was reached.

        Flow
        ----
        1. α = |r|² / (p·Hp); stop if either factor is zero
        2. x ← x + αp, r ← r - αHp, β = |r_new|² / |r|²
        3. p ← r + βp, then recompute Hp and the model value at x
        4. Check convergence, then the backtracking schedule
        """
        if self.done:
            return False
        self._initialize_if_needed()

        projected_curvature = self._direction.dot(self._hessian_product)
        if projected_curvature == 0 or self._residual_mag2 == 0:
            self.done = True
            return False

        self._just_backtracked = False
        step_size = self._residual_mag2 / projected_curvature

        self.solution.add(self._direction, step_size)

        old_residual_mag2 = self._residual_mag2
        self._residual.add(self._hessian_product, -step_size)
        self._residual_mag2 = self._residual.magnitude_squared()

        beta = self._residual_mag2 / old_residual_mag2
        self._direction.scale(beta)
        self._direction.add(self._residual, 1)

        self._hessian_product, quad_value = self.objective.quad_hessian(
            self._direction, self.solution, self.samples
        )
        self.quad_values.append(quad_value)
        self.ui.log_cg_iteration(step_size, quad_value)

        if self.converging():
            self.done = True
            return False

        self._update_backtracking()

        if self.max_iterations is not None and self.iterations >= self.max_iterations:
            self.done = True
            return False
        return True

    def converging(self) -> bool:
        """
        Description
        -----------
        Windowed relative-progress test of Martens (2010).

        With ``k = max(min_k, k_scale * iterations)``, CG has converged
        when the model improvement gained over the last ``k`` iterations,
        relative to the total improvement, is below ``k * epsilon``. The
        test needs at least two model values, a latest value below the
        starting objective, and more than ``k`` iterations.
        """
        count = len(self.quad_values)
        if count < 2 or not self.quad_values[-1] < self.start_objective:
            return False

        criteria = self.convergence
        k = int(max(criteria.min_k, criteria.k_scale * count))
        if k >= count:
            return False

        current_improvement = self.quad_values[-1] - self.start_objective
        old_improvement = self.quad_values[-1 - k] - self.start_objective
        relative = (current_improvement - old_improvement) / current_improvement
        return relative < k * criteria.epsilon

    def _update_backtracking(self) -> None:
        done_iters = self.iterations
        if int(math.pow(self.backtrack_rate, self._backtrack_count)) > done_iters:
            return
        while int(math.pow(self.backtrack_rate, self._backtrack_count)) <= done_iters:
            self._backtrack_count += 1
        self._checkpoint()

    def _checkpoint(self) -> None:
        value = self.objective.objective(self.solution, self.samples)
        self.checkpoints.append(Checkpoint(delta=self.solution.copy(), value=value))
        self._just_backtracked = True

    def best(self) -> ParamDelta:
        """
        Description
        -----------
        Best known solution among the checkpoints and the current
        iterate, by true objective value. Ties go to the earliest
        checkpoint.
        """
        self._initialize_if_needed()
        if not self._just_backtracked:
            self._checkpoint()
        best_checkpoint = self.checkpoints[0]
        for checkpoint in self.checkpoints[1:]:
            if checkpoint.value < best_checkpoint.value:
                best_checkpoint = checkpoint
        return best_checkpoint.delta
