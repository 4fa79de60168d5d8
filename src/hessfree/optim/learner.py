"""
Module: optim.learner
---------------------
Learners own trainable parameters, manufacture objectives centered at
the current parameter values, and commit accepted steps.

The trainer calls `make_objective` once per mini-batch, minimizes the
objective's quadratic model, and hands the chosen delta to `adjust`.
This cycle lets a learner tune each new objective using what it saw
during the previous one, which is how damping is adapted.

Classes
-------
- `Learner`:
    Protocol shared by all learners
- `GaussNewtonLearner`:
    Learner for a batched model and a convex cost
- `DampingLearner`:
    Wraps a learner in the Martens (2010) damping heuristic

Functions
---------
- `update_damping`:
    Levenberg-Marquardt style update of the damping coefficient
"""

import math

from beartype.typing import List, Optional, Protocol, Sequence, Tuple

from hessfree.linalg.linearizer import BatchFn
from hessfree.linalg.param_delta import Parameter, ParamDelta, UnknownParameterError

from .hf_types import DEFAULT_DAMPING_COEFF
from .objective import CostFn, DampedObjective, GaussNewtonObjective, Objective
from .samples import SampleSet

DAMPING_INCREASE: float = 3.0 / 2.0
DAMPING_DECREASE: float = 2.0 / 3.0
LOW_TRUST: float = 0.25
HIGH_TRUST: float = 0.75


class Learner(Protocol):
    """
    Description
    -----------
    Something with learnable parameters that can build objectives
    around their current values.

    Methods
    -------
    - `parameters()`:
        The fixed, ordered parameters that `adjust` may change.
    - `make_objective()`:
        Objective centered at the current parameter values. Called
        exactly once before every `adjust`.
    - `adjust(delta, samples)`:
        Commit `delta`; `samples` are the samples the delta was chosen
        for, in case the learner needs to analyze its effect.
    """

    def parameters(self) -> List[Parameter]: ...

    def make_objective(self) -> Objective: ...

    def adjust(self, delta: ParamDelta, samples: SampleSet) -> None: ...


class GaussNewtonLearner:
    """
    Description
    -----------
    Learner for ``cost_fn(model_fn(values, inputs), targets)``, producing
    `GaussNewtonObjective` instances.

    Attributes
    ----------
    - `model_fn` (BatchFn):
        Batched model taking a `ParamDelta` of parameter values.
    - `cost_fn` (CostFn):
        Cost summed over samples, convex in the outputs.
    """

    def __init__(
        self,
        model_fn: BatchFn,
        cost_fn: CostFn,
        parameters: Sequence[Parameter],
    ) -> None:
        params = list(parameters)
        if not params:
            raise ValueError("A learner needs at least one parameter")
        if len(set(params)) != len(params):
            raise ValueError("Parameters must not repeat")
        self.model_fn = model_fn
        self.cost_fn = cost_fn
        self._parameters: List[Parameter] = params

    def parameters(self) -> List[Parameter]:
        return list(self._parameters)

    def make_objective(self) -> GaussNewtonObjective:
        return GaussNewtonObjective(self.model_fn, self.cost_fn, self._parameters)

    def adjust(self, delta: ParamDelta, samples: SampleSet) -> None:
        owned = set(self._parameters)
        for param in delta:
            if param not in owned:
                raise UnknownParameterError(f"Unknown parameter: {param!r}")
        delta.add_to_parameters()


def update_damping(coeff: float, trust: float) -> float:
    """
    Description
    -----------
    Adapt the damping coefficient to the trust ratio
    ``(actual reduction) / (predicted reduction)``.

    Parameters
    ----------
    - `coeff` (float):
        Current damping coefficient.
    - `trust` (float):
        Observed trust ratio ρ.

    Returns
    -------
    - `new_coeff` (float):
        ``1.5 * coeff`` if ρ < 0.25, ``(2/3) * coeff`` if ρ > 0.75,
        otherwise `coeff`. A non-finite ρ leaves `coeff` unchanged.
    """
    if not math.isfinite(trust):
        return coeff
    if trust < LOW_TRUST:
        return coeff * DAMPING_INCREASE
    if trust > HIGH_TRUST:
        return coeff * DAMPING_DECREASE
    return coeff


class DampingLearner:
    """
    Description
    -----------
    Wraps a learner in the damping mechanism of Martens (2010).

    Attributes
    ----------
    - `wrapped` (Learner):
        Learner whose objectives are damped.
    - `damping_coeff` (float):
        Coefficient of the squared delta in the damping term, adapted
        after every `adjust`. A value of 0 is replaced by the default on
        the first `make_objective`. The penalty is multiplied by the
        number of samples, since the cost is assumed to be a sum over
        samples.
    - `last_trust_ratio` (Optional[float]):
        Trust ratio observed by the latest `adjust`, or None when it was
        undefined.
    """

    def __init__(self, wrapped: Learner, damping_coeff: float = 0.0) -> None:
        if damping_coeff < 0:
            raise ValueError(f"damping_coeff must be non-negative, got {damping_coeff}")
        self.wrapped = wrapped
        self.damping_coeff = damping_coeff
        self.last_trust_ratio: Optional[float] = None
        self._last_objective: Optional[Objective] = None

    def parameters(self) -> List[Parameter]:
        return self.wrapped.parameters()

    def make_objective(self) -> DampedObjective:
        if self.damping_coeff == 0:
            self.damping_coeff = DEFAULT_DAMPING_COEFF
        self._last_objective = self.wrapped.make_objective()
        return DampedObjective(self._last_objective, self.damping_coeff)

    def evaluate_step(
        self,
        delta: ParamDelta,
        samples: SampleSet,
    ) -> Tuple[float, float, float]:
        """
        Description
        -----------
        Evaluate the undamped model and the true cost for `delta`.

        Returns
        -------
        - `quad_value` (float):
            Quadratic model at `delta`.
        - `center_value` (float):
            True cost without a step.
        - `step_value` (float):
            True cost after the step.
        """
        if self._last_objective is None:
            raise RuntimeError("make_objective must be called before adjust")
        objective = self._last_objective
        quad_value = objective.quad(delta, samples)
        center_value = objective.objective(ParamDelta(), samples)
        step_value = objective.objective(delta, samples)
        return quad_value, center_value, step_value

    def adjust(self, delta: ParamDelta, samples: SampleSet) -> None:
        quad_value, center_value, step_value = self.evaluate_step(delta, samples)
        self.wrapped.adjust(delta, samples)
        self._last_objective = None

        predicted = quad_value - center_value
        if predicted == 0:
            self.last_trust_ratio = None
            return
        trust = (step_value - center_value) / predicted
        self.last_trust_ratio = trust if math.isfinite(trust) else None
        self.damping_coeff = update_damping(self.damping_coeff, trust)
