"""
Module: hessfree.linalg.tree_ops
--------------------------------

Leaf-wise arithmetic on PyTrees of parameter arrays.

`ParamDelta` is itself a PyTree, so these helpers back its inner
product, scaling and zero construction, and let an objective offset its
center by an aligned delta. They only use `jax.tree_util` and `jnp`
primitives and are therefore valid on traced values.

Functions
---------
- `tree_dot`:
    Inner product summed over all leaves
- `tree_add`:
    Leaf-wise sum of two PyTrees
- `tree_scalar_mul`:
    Every leaf multiplied by one scalar
- `tree_zeros_like`:
    Zero arrays in the shape of every leaf
"""

import jax
import jax.numpy as jnp
from beartype.typing import Union
from jaxtyping import Array, Float, PyTree

jax.config.update("jax_enable_x64", True)


def tree_dot(
    tree_a: PyTree,
    tree_b: PyTree,
) -> Float[Array, ""]:
    """
    Description
    -----------
    Inner product of two PyTrees whose leaves pair up one to one.

    Leaves are flattened before the product, so a pair only has to hold
    the same number of elements.

    Parameters
    ----------
    - `tree_a` (PyTree):
        Left operand.
    - `tree_b` (PyTree):
        Right operand, with as many leaves as `tree_a`.

    Returns
    -------
    - `result` (Float[Array, ""]):
        ``sum_i vdot(a_i, b_i)``; zero when both trees are empty.
    """
    leaves_a = jax.tree_util.tree_leaves(tree_a)
    leaves_b = jax.tree_util.tree_leaves(tree_b)
    result: Float[Array, ""] = jnp.zeros(())
    for a, b in zip(leaves_a, leaves_b):
        result = result + jnp.vdot(jnp.ravel(a), jnp.ravel(b))
    return result


def tree_add(
    tree_a: PyTree,
    tree_b: PyTree,
) -> PyTree:
    """Leaf-wise ``a + b``; both trees need the same structure."""
    return jax.tree_util.tree_map(lambda a, b: a + b, tree_a, tree_b)


def tree_scalar_mul(
    scalar: Union[float, Float[Array, ""]],
    tree: PyTree,
) -> PyTree:
    """Leaf-wise ``scalar * x``, keeping the structure of `tree`."""
    return jax.tree_util.tree_map(lambda x: scalar * x, tree)


def tree_zeros_like(
    tree: PyTree,
) -> PyTree:
    return jax.tree_util.tree_map(jnp.zeros_like, tree)
