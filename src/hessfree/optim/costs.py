"""
Module: optim.costs
-------------------
Per-batch cost functions for Gauss-Newton objectives.

Each cost is the sum of per-sample costs and is convex in the model
outputs, so the Gauss-Newton curvature built from it is positive
semi-definite.

Functions
---------
- `squared_error_cost`:
    Half the summed squared difference between outputs and targets
- `softmax_cross_entropy_cost`:
    Summed cross entropy between targets and softmax of the outputs
"""

import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

jax.config.update("jax_enable_x64", True)


@jaxtyped(typechecker=beartype)
def squared_error_cost(
    outputs: Float[Array, "B ..."],
    targets: Float[Array, "B ..."],
) -> Float[Array, ""]:
    """
    Description
    -----------
    Compute ``0.5 * sum((outputs - targets) ** 2)``.

    Parameters
    ----------
    - `outputs` (Float[Array, "B ..."]):
        Model outputs for a batch.
    - `targets` (Float[Array, "B ..."]):
        Desired outputs, same shape as `outputs`.

    Returns
    -------
    - `cost` (Float[Array, ""]):
        Summed cost over the batch.
    """
    difference: Float[Array, "B ..."] = outputs - jnp.reshape(targets, outputs.shape)
    return 0.5 * jnp.sum(difference**2)


@jaxtyped(typechecker=beartype)
def softmax_cross_entropy_cost(
    outputs: Float[Array, "B C"],
    targets: Float[Array, "B C"],
) -> Float[Array, ""]:
    """
    Description
    -----------
    Compute ``-sum(targets * log_softmax(outputs))`` over a batch.

    Parameters
    ----------
    - `outputs` (Float[Array, "B C"]):
        Unnormalized log-probabilities.
    - `targets` (Float[Array, "B C"]):
        Target distributions, typically one-hot rows.

    Returns
    -------
    - `cost` (Float[Array, ""]):
        Summed cross entropy over the batch.
    """
    log_probs: Float[Array, "B C"] = jax.nn.log_softmax(outputs, axis=-1)
    return -jnp.sum(targets * log_probs)
