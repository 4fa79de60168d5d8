"""
Module: hessfree.linalg.linearizer
----------------------------------

First-order surrogates of batched model functions.

A `Linearizer` approximates a batched function as a linear function of
its parameters around a fixed center. The function is not linearized
with respect to its inputs, which stay constant for a mini-batch.

For a neural network, approximating the Gauss-Newton matrix involves
linearizing every layer up to the output; wrapping those layers in a
single batched function and handing it to a `Linearizer` does exactly
that. No Jacobian is ever materialized: each call costs one forward
pass with a tangent (``jax.jvp``), and differentiating through the
result costs one extra backward pass.

Classes
-------
- `Linearizer`:
    First-order Taylor expansion of a batched function around a center
"""

import jax
import jax.numpy as jnp
from beartype.typing import Callable, Tuple
from jax import lax
from jaxtyping import Array, Float

from .param_delta import ParamDelta

BatchFn = Callable[[ParamDelta, Float[Array, "B ..."]], Float[Array, "B ..."]]


class Linearizer:
    """
    Description
    -----------
    Linearizes `batch_fn` around `center`.

    Attributes
    ----------
    - `batch_fn` (BatchFn):
        Batched model ``batch_fn(values, inputs) -> outputs`` where
        `values` is a `ParamDelta` of parameter values and `inputs`
        has the samples along its leading axis.
    - `center` (ParamDelta):
        Parameter values at which the function is linearized.
    """

    def __init__(self, batch_fn: BatchFn, center: ParamDelta) -> None:
        self.batch_fn = batch_fn
        self.center = center
        self._parameters = tuple(center.keys())

    def _constant_inputs(
        self,
        inputs: Float[Array, "..."],
        batch_size: int,
    ) -> Float[Array, "B ..."]:
        inputs = jnp.asarray(inputs)
        if batch_size <= 0 or inputs.size % batch_size != 0:
            raise ValueError(
                f"Cannot split {inputs.size} input values into {batch_size} samples"
            )
        if inputs.ndim == 0 or inputs.shape[0] != batch_size:
            inputs = jnp.reshape(inputs, (batch_size, -1))
        return lax.stop_gradient(inputs)

    def _at_center(self, inputs: Float[Array, "B ..."]) -> Callable:
        def evaluate(values: ParamDelta) -> Float[Array, "B ..."]:
            return self.batch_fn(values, inputs)

        return evaluate

    def linear_batch(
        self,
        delta: ParamDelta,
        inputs: Float[Array, "..."],
        batch_size: int,
    ) -> Float[Array, "B ..."]:
        """
        Description
        -----------
        Evaluate the linearized function on a parameter delta and a
        batch of constant inputs.

        The result is differentiable with respect to `delta`: back-
        propagating a cotangent through it left-multiplies by the
        transposed Jacobian at the center and hands the result on to
        whatever computation produced `delta`. A constant `delta`
        yields no upstream contribution.

        Parameters
        ----------
        - `delta` (ParamDelta):
            Displacement from the center. Missing entries are zero.
        - `inputs` (Float[Array, "..."]):
            Batch of inputs; reshaped to ``(batch_size, -1)`` unless
            the leading axis already has `batch_size` entries.
        - `batch_size` (int):
            Number of samples in `inputs`.

        Returns
        -------
        - `output` (Float[Array, "B ..."]):
            ``f(center) + J @ delta``.

        Flow
        ----
        1. Treat inputs as constants
        2. Push `delta` through ``batch_fn`` with ``jax.jvp`` at the center
        3. Return primal output plus tangent output
        """
        ins = self._constant_inputs(inputs, batch_size)
        tangent = delta.aligned(self._parameters)
        output, output_tangent = jax.jvp(self._at_center(ins), (self.center,), (tangent,))
        return output + output_tangent

    def linear_batch_r(
        self,
        delta: ParamDelta,
        delta_r: ParamDelta,
        inputs: Float[Array, "..."],
        batch_size: int,
    ) -> Tuple[Float[Array, "B ..."], Float[Array, "B ..."]]:
        """
        Description
        -----------
        Like `linear_batch`, but also returns the directional derivative
        of the linearized output along a second displacement `delta_r`.

        Since the surrogate is affine in the delta, that derivative is
        ``J @ delta_r``; it is the forward half of a Gauss-Newton
        curvature-vector product.

        Returns
        -------
        - `output` (Float[Array, "B ..."]):
            ``f(center) + J @ delta``.
        - `r_output` (Float[Array, "B ..."]):
            ``J @ delta_r``.

        Flow
        ----
        1. Linearize ``batch_fn`` once at the center with ``jax.linearize``
        2. Apply the linear map to `delta` and to `delta_r`
        """
        ins = self._constant_inputs(inputs, batch_size)
        output, jvp_fn = jax.linearize(self._at_center(ins), self.center)
        output_tangent = jvp_fn(delta.aligned(self._parameters))
        r_output = jvp_fn(delta_r.aligned(self._parameters))
        return output + output_tangent, r_output
