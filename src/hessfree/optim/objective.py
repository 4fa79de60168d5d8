"""
Module: optim.objective
-----------------------
Objectives: the true cost and its local quadratic model.

An objective is a closure over a center (the parameter values when it
was made) and is queried with explicit deltas from that center.

Classes
-------
- `Objective`:
    Protocol shared by all objectives
- `DampedObjective`:
    Adds an isotropic Tikhonov penalty to another objective's model
- `GaussNewtonObjective`:
    Gauss-Newton model of ``cost_fn(model_fn(values, inputs), targets)``

Internal Classes
----------------
- `BatchStats`:
    Per-batch quantities cached by `GaussNewtonObjective`
"""

import jax
import jax.numpy as jnp
from beartype.typing import Callable, NamedTuple, Optional, Protocol, Sequence, Tuple
from jax import lax
from jaxtyping import Array, Float, Shaped

from hessfree.linalg.linearizer import BatchFn, Linearizer
from hessfree.linalg.param_delta import Parameter, ParamDelta
from hessfree.linalg.tree_ops import tree_add

from .samples import ArraySampleSet, SampleSet

CostFn = Callable[[Float[Array, "B ..."], Shaped[Array, "B ..."]], Float[Array, ""]]


class Objective(Protocol):
    """
    Description
    -----------
    A true objective together with a quadratic model of it around a
    fixed center.

    Methods
    -------
    - `objective(delta, samples)`:
        True cost at ``center + delta`` over `samples`.
    - `quad(delta, samples)`:
        Value of the quadratic model at `delta`.
    - `quad_grad(delta, samples)`:
        Gradient of the quadratic model at `delta`.
    - `quad_hessian(direction, point, samples)`:
        Curvature-vector product ``H @ direction`` and the quadratic
        model value at `point`.
    """

    def objective(self, delta: ParamDelta, samples: SampleSet) -> float: ...

    def quad(self, delta: ParamDelta, samples: SampleSet) -> float: ...

    def quad_grad(self, delta: ParamDelta, samples: SampleSet) -> ParamDelta: ...

    def quad_hessian(
        self,
        direction: ParamDelta,
        point: ParamDelta,
        samples: SampleSet,
    ) -> Tuple[ParamDelta, float]: ...


class DampedObjective:
    """
    Description
    -----------
    Wraps an objective and adds ``coeff * n * ||delta||²`` to its
    quadratic model, where ``n`` is the number of samples.

    The true objective is passed through untouched; damping only
    changes the model used to pick a step.

    Attributes
    ----------
    - `wrapped` (Objective):
        Undamped objective.
    - `coeff` (float):
        Damping coefficient λ.
    """

    def __init__(self, wrapped: Objective, coeff: float) -> None:
        self.wrapped = wrapped
        self.coeff = coeff

    def _scaler(self, samples: SampleSet) -> float:
        return self.coeff * len(samples)

    def objective(self, delta: ParamDelta, samples: SampleSet) -> float:
        return self.wrapped.objective(delta, samples)

    def quad(self, delta: ParamDelta, samples: SampleSet) -> float:
        res = self.wrapped.quad(delta, samples)
        return res + self._scaler(samples) * delta.magnitude_squared()

    def quad_grad(self, delta: ParamDelta, samples: SampleSet) -> ParamDelta:
        res = self.wrapped.quad_grad(delta, samples)
        return res.add(delta, 2 * self._scaler(samples))

    def quad_hessian(
        self,
        direction: ParamDelta,
        point: ParamDelta,
        samples: SampleSet,
    ) -> Tuple[ParamDelta, float]:
        product, quad_value = self.wrapped.quad_hessian(direction, point, samples)
        scaler = self._scaler(samples)
        product.add(direction, 2 * scaler)
        return product, quad_value + scaler * point.magnitude_squared()


class BatchStats(NamedTuple):
    """Model outputs and cost derivatives at the center for one batch."""

    inputs: Shaped[Array, "B ..."]
    targets: Shaped[Array, "B ..."]
    outputs: Float[Array, "B ..."]
    cost: Float[Array, ""]
    output_grad: Float[Array, "B ..."]


class GaussNewtonObjective:
    """
    Description
    -----------
    Gauss-Newton objective for a batched model and a convex cost.

    With ``f`` the model at the center, ``J`` its Jacobian with respect
    to the parameters and ``L`` the cost as a function of the outputs,
    the quadratic model is

        ``quad(δ) = L(f) + ∇L(f)·Jδ + ½ (Jδ)ᵀ ∇²L(f) (Jδ)``

    whose Hessian ``Jᵀ ∇²L(f) J`` is positive semi-definite for a convex
    cost. Nothing is materialized: ``J`` is only applied through a
    `Linearizer`, and ``∇²L`` through forward-over-reverse AD.

    Attributes
    ----------
    - `model_fn` (BatchFn):
        ``model_fn(values, inputs) -> outputs``.
    - `cost_fn` (CostFn):
        ``cost_fn(outputs, targets) -> scalar``, summed over samples.
    - `parameters` (Tuple[Parameter, ...]):
        Parameters the deltas range over.
    - `center` (ParamDelta):
        Parameter values at construction time.
    - `linearizer` (Linearizer):
        First-order surrogate of `model_fn` at `center`.
    """

    def __init__(
        self,
        model_fn: BatchFn,
        cost_fn: CostFn,
        parameters: Sequence[Parameter],
    ) -> None:
        self.model_fn = model_fn
        self.cost_fn = cost_fn
        self.parameters: Tuple[Parameter, ...] = tuple(parameters)
        self.center = ParamDelta.current(self.parameters)
        self.linearizer = Linearizer(model_fn, self.center)
        self._cached_samples: Optional[ArraySampleSet] = None
        self._cached_stats: Optional[BatchStats] = None

    def _batch(self, samples: ArraySampleSet) -> BatchStats:
        if self._cached_samples is samples and self._cached_stats is not None:
            return self._cached_stats
        inputs = lax.stop_gradient(samples.inputs)
        targets = samples.targets
        outputs = self.model_fn(self.center, inputs)
        cost, output_grad = jax.value_and_grad(self.cost_fn)(outputs, targets)
        stats = BatchStats(
            inputs=inputs,
            targets=targets,
            outputs=outputs,
            cost=cost,
            output_grad=output_grad,
        )
        self._cached_samples = samples
        self._cached_stats = stats
        return stats

    def _cost_hvp(
        self,
        stats: BatchStats,
        vector: Float[Array, "B ..."],
    ) -> Float[Array, "B ..."]:
        def output_grad(outputs):
            return jax.grad(self.cost_fn)(outputs, stats.targets)

        _, product = jax.jvp(output_grad, (stats.outputs,), (vector,))
        return product

    def _quad_value(
        self,
        stats: BatchStats,
        linear_outputs: Float[Array, "B ..."],
    ) -> Float[Array, ""]:
        offset = linear_outputs - stats.outputs
        curvature = self._cost_hvp(stats, offset)
        return (
            stats.cost
            + jnp.vdot(stats.output_grad, offset)
            + 0.5 * jnp.vdot(offset, curvature)
        )

    def objective(self, delta: ParamDelta, samples: ArraySampleSet) -> float:
        values = tree_add(self.center, delta.aligned(self.parameters))
        outputs = self.model_fn(values, samples.inputs)
        return float(self.cost_fn(outputs, samples.targets))

    def quad(self, delta: ParamDelta, samples: ArraySampleSet) -> float:
        stats = self._batch(samples)
        outputs = self.linearizer.linear_batch(delta, stats.inputs, len(samples))
        return float(self._quad_value(stats, outputs))

    def quad_grad(self, delta: ParamDelta, samples: ArraySampleSet) -> ParamDelta:
        """
        Description
        -----------
        Gradient of the quadratic model at `delta`.

        Flow
        ----
        1. Express the model value as a function of the delta through
           `Linearizer.linear_batch`
        2. Back-propagate with ``jax.grad``; the linearizer routes the
           output cotangent through ``Jᵀ`` into the delta
        """
        stats = self._batch(samples)
        batch_size = len(samples)

        def model_value(d: ParamDelta) -> Float[Array, ""]:
            outputs = self.linearizer.linear_batch(d, stats.inputs, batch_size)
            return self._quad_value(stats, outputs)

        return jax.grad(model_value)(delta.aligned(self.parameters))

    def quad_hessian(
        self,
        direction: ParamDelta,
        point: ParamDelta,
        samples: ArraySampleSet,
    ) -> Tuple[ParamDelta, float]:
        """
        Description
        -----------
        Gauss-Newton product ``Jᵀ ∇²L(f) J @ direction`` and the model
        value at `point`.

        Flow
        ----
        1. `Linearizer.linear_batch_r` gives the linear output at
           `point` and ``J @ direction``
        2. Apply the output-space cost Hessian to ``J @ direction``
        3. Pull the result back through the linearizer with ``jax.vjp``
        """
        stats = self._batch(samples)
        batch_size = len(samples)
        outputs, r_outputs = self.linearizer.linear_batch_r(
            point, direction, stats.inputs, batch_size
        )
        quad_value = self._quad_value(stats, outputs)
        curvature = self._cost_hvp(stats, r_outputs)

        def linear_outputs(d: ParamDelta) -> Float[Array, "B ..."]:
            return self.linearizer.linear_batch(d, stats.inputs, batch_size)

        _, pullback = jax.vjp(linear_outputs, point.aligned(self.parameters))
        (product,) = pullback(curvature)
        return product, float(quad_value)
