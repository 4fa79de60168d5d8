"""Tests for the truncated CG solver."""

import chex
import jax
import jax.numpy as jnp
import pytest
from absl.testing import parameterized

jax.config.update("jax_enable_x64", True)

from hessfree.linalg.param_delta import Parameter, ParamDelta
from hessfree.optim.cg import CGSolver, Checkpoint
from hessfree.optim.hf_types import make_convergence_criteria
from hessfree.optim.samples import ArraySampleSet
from hessfree.optim.ui import SilentUI


class DiagonalQuadratic:
    """Objective whose model is ``g·d + ½ dᵀ diag(h) d`` over one parameter.

    The true objective adds ``quartic * |d|⁴`` so that long steps can be
    worse than the model predicts.
    """

    def __init__(self, param, curvature, gradient, quartic=0.0):
        self.param = param
        self.curvature = jnp.asarray(curvature, dtype=jnp.float64)
        self.gradient = jnp.asarray(gradient, dtype=jnp.float64)
        self.quartic = quartic
        self.hessian_calls = 0

    def _vector(self, delta):
        return delta.aligned([self.param])[self.param]

    def quad(self, delta, samples):
        d = self._vector(delta)
        return float(jnp.dot(self.gradient, d) + 0.5 * jnp.dot(d, self.curvature * d))

    def objective(self, delta, samples):
        d = self._vector(delta)
        return self.quad(delta, samples) + self.quartic * float(jnp.dot(d, d)) ** 2

    def quad_grad(self, delta, samples):
        d = self._vector(delta)
        return ParamDelta({self.param: self.curvature * d + self.gradient})

    def quad_hessian(self, direction, point, samples):
        self.hessian_calls += 1
        product = ParamDelta({self.param: self.curvature * self._vector(direction)})
        return product, self.quad(point, samples)


class RecordingUI(SilentUI):
    def __init__(self):
        super().__init__()
        self.starts = []
        self.iterations = []

    def log_cg_start(self, quad_value, start_objective):
        super().log_cg_start(quad_value, start_objective)
        self.starts.append((quad_value, start_objective))

    def log_cg_iteration(self, step_size, quad_value):
        super().log_cg_iteration(step_size, quad_value)
        self.iterations.append((step_size, quad_value))


def _samples(count=4):
    return ArraySampleSet(jnp.zeros((count, 1)), jnp.zeros((count, 1)))


class TestCGExactness(chex.TestCase):
    """CG on a fixed SPD diagonal system."""

    def setUp(self):
        self.param = Parameter(jnp.zeros(3), name="x")
        self.objective = DiagonalQuadratic(self.param, [1.0, 2.0, 3.0], [1.0, 1.0, 1.0])

    def test_converges_in_three_iterations(self):
        solver = CGSolver(self.objective, _samples(), [self.param])
        for _ in range(3):
            assert solver.step()
        chex.assert_trees_all_close(
            solver.solution[self.param],
            jnp.array([-1.0, -0.5, -1.0 / 3.0]),
            atol=1e-10,
        )
        assert solver.residual_magnitude_squared < 1e-20

    def test_logs_start_and_iterations(self):
        ui = RecordingUI()
        solver = CGSolver(self.objective, _samples(), [self.param], ui=ui)
        solver.step()
        assert len(ui.starts) == 1
        quad_value, start_objective = ui.starts[0]
        assert quad_value == pytest.approx(0.0)
        assert start_objective == pytest.approx(0.0)
        assert len(ui.iterations) == 1
        step_size, _ = ui.iterations[0]
        # First CG step length is |g|² / gᵀHg.
        assert step_size == pytest.approx(3.0 / 6.0)

    def test_warm_start_is_copied(self):
        warm = ParamDelta({self.param: jnp.array([-1.0, 0.0, 0.0])})
        solver = CGSolver(self.objective, _samples(), [self.param], solution=warm)
        solver.step()
        chex.assert_trees_all_close(warm[self.param], jnp.array([-1.0, 0.0, 0.0]))

    def test_warm_start_at_optimum_is_degenerate(self):
        optimum = ParamDelta({self.param: jnp.array([-1.0, -0.5, -1.0 / 3.0])})
        solver = CGSolver(self.objective, _samples(), [self.param], solution=optimum)
        assert not solver.step()
        assert solver.done
        assert solver.iterations == 0

    def test_zero_gradient_stops_immediately(self):
        flat = DiagonalQuadratic(self.param, [1.0, 2.0, 3.0], [0.0, 0.0, 0.0])
        solver = CGSolver(flat, _samples(), [self.param])
        assert not solver.step()
        best = solver.best()
        assert best.magnitude_squared() == 0
        assert not solver.step()

    def test_done_solver_computes_nothing_more(self):
        flat = DiagonalQuadratic(self.param, [1.0, 2.0, 3.0], [0.0, 0.0, 0.0])
        solver = CGSolver(flat, _samples(), [self.param])
        solver.step()
        calls = flat.hessian_calls
        solver.step()
        solver.step()
        assert flat.hessian_calls == calls


class TestConvergenceWindow(chex.TestCase):
    """Windowed relative-progress criterion."""

    def setUp(self):
        param = Parameter(jnp.zeros(3))
        objective = DiagonalQuadratic(param, [1.0, 2.0, 3.0], [1.0, 1.0, 1.0])
        self.solver = CGSolver(objective, _samples(), [param])
        self.solver.start_objective = 0.0

    @parameterized.parameters({"count": 2}, {"count": 5}, {"count": 9}, {"count": 10})
    def test_never_fires_without_history(self, count: int):
        self.solver.quad_values = [-1.0] * count
        assert not self.solver.converging()
        self.solver.quad_values = [-float(i) for i in range(count)]
        assert not self.solver.converging()

    def test_fires_on_stalled_progress(self):
        self.solver.quad_values = [-1.0] * 11
        assert self.solver.converging()

    def test_keeps_going_on_steady_progress(self):
        self.solver.quad_values = [-float(i + 1) for i in range(11)]
        assert not self.solver.converging()

    def test_requires_improvement_over_start(self):
        self.solver.quad_values = [1.0] * 20
        assert not self.solver.converging()
        self.solver.quad_values = [0.0] * 20
        assert not self.solver.converging()

    def test_window_grows_with_iterations(self):
        criteria = make_convergence_criteria(min_k=2, k_scale=0.5, epsilon=0.0005)
        self.solver.convergence = criteria
        # k = max(2, 0.5 * 8) = 4: compares against quad_values[-5].
        self.solver.quad_values = [-1.0, -1.0, -1.0, -2.0, -4.0, -4.0, -4.0, -4.0]
        assert not self.solver.converging()
        self.solver.quad_values = [-1.0, -1.0, -1.0, -4.0, -4.0, -4.0, -4.0, -4.0]
        assert self.solver.converging()


class TestBacktracking(chex.TestCase):
    """Checkpoint schedule and best-checkpoint selection."""

    def setUp(self):
        self.param = Parameter(jnp.zeros(30))
        curvature = jnp.arange(1.0, 31.0)
        self.never_converge = make_convergence_criteria(min_k=1000)
        self.objective = DiagonalQuadratic(self.param, curvature, jnp.ones(30))

    def test_geometric_schedule(self):
        solver = CGSolver(
            self.objective,
            _samples(),
            [self.param],
            convergence=self.never_converge,
            backtrack_rate=1.3,
            max_iterations=20,
        )
        while solver.step():
            pass
        assert solver.iterations == 20
        # Checkpoints after iterations 1, 2, 3, 4, 6, 8, 10, 13 and 17.
        assert len(solver.checkpoints) == 9

    def test_best_includes_final_iterate(self):
        solver = CGSolver(
            self.objective,
            _samples(),
            [self.param],
            convergence=self.never_converge,
            max_iterations=5,
        )
        while solver.step():
            pass
        count = len(solver.checkpoints)
        solver.best()
        assert len(solver.checkpoints) == count + 1
        solver.best()
        assert len(solver.checkpoints) == count + 1

    @parameterized.parameters({"quartic": 0.0}, {"quartic": 0.05}, {"quartic": 5.0})
    def test_best_never_regresses(self, quartic: float):
        objective = DiagonalQuadratic(
            self.param, jnp.arange(1.0, 31.0), jnp.ones(30), quartic=quartic
        )
        solver = CGSolver(
            objective,
            _samples(),
            [self.param],
            convergence=self.never_converge,
            max_iterations=15,
        )
        while solver.step():
            pass
        final_value = objective.objective(solver.solution, None)
        best = solver.best()
        assert objective.objective(best, None) <= final_value
        assert objective.objective(best, None) == min(c.value for c in solver.checkpoints)

    def test_ties_go_to_earliest_checkpoint(self):
        solver = CGSolver(self.objective, _samples(), [self.param])
        first = ParamDelta({self.param: jnp.ones(30)})
        second = ParamDelta({self.param: jnp.zeros(30)})
        solver.checkpoints.append(Checkpoint(first, -1.0))
        solver.checkpoints.append(Checkpoint(second, -1.0))
        assert solver.best() is first
        # The current iterate (value 0) was added as a candidate too.
        assert len(solver.checkpoints) == 3
