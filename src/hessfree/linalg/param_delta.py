"""
Module: hessfree.linalg.param_delta
-----------------------------------
Parameter handles and parameter-space displacement vectors.

A `ParamDelta` is a displacement ``t - t0`` where ``t`` holds new
parameter values and ``t0`` the current values of those parameters.
It is registered as a JAX PyTree, so deltas can be passed directly
through `jax.jvp`, `jax.vjp`, `jax.grad` and `jax.jit`.

Classes
-------
- `Parameter`:
    Opaque handle for one learnable array owned by a model
- `ParamDelta`:
    Mapping from `Parameter` to a dense displacement array

Exceptions
----------
- `UnknownParameterError`:
    Raised when a delta names a parameter outside the expected set

Note
----
`add` and `scale` mutate the receiving delta by rebinding its entries
to new arrays; the arrays themselves are immutable JAX arrays and are
therefore safe to share between copies.
"""

import jax
import jax.numpy as jnp
from beartype.typing import Dict, Iterable, Iterator, Optional, Sequence, Tuple, Union
from jax.tree_util import register_pytree_node_class
from jaxtyping import Array, Float

from .tree_ops import tree_dot, tree_scalar_mul, tree_zeros_like

jax.config.update("jax_enable_x64", True)


class UnknownParameterError(KeyError):
    """A delta refers to a parameter that is not part of the parameter set."""


class Parameter:
    """
    Description
    -----------
    Stable handle for one learnable array.

    Handles compare and hash by identity. The current value lives in
    `value` and is replaced whenever a delta is committed.

    Attributes
    ----------
    - `value` (Float[Array, "..."]):
        Current value of the parameter.
    - `name` (Optional[str]):
        Label used in error messages and reprs.
    """

    __slots__ = ("value", "name")

    def __init__(
        self,
        value: Union[Float[Array, "..."], Sequence[float], float],
        name: Optional[str] = None,
    ) -> None:
        self.value: Float[Array, "..."] = jnp.asarray(value, dtype=jnp.float64)
        self.name = name

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self.value.shape)

    def __repr__(self) -> str:
        label = self.name if self.name is not None else hex(id(self))
        return f"Parameter({label}, shape={self.shape})"


def _label(param: Parameter) -> str:
    return param.name if param.name is not None else repr(param)


def _check_shape(param: Parameter, expected: Tuple[int, ...], got: Tuple[int, ...]) -> None:
    if tuple(expected) != tuple(got):
        raise ValueError(
            f"Shape mismatch for parameter {_label(param)}: "
            f"expected {tuple(expected)}, got {tuple(got)}"
        )


@register_pytree_node_class
class ParamDelta:
    """
    Description
    -----------
    Displacement vector in parameter space.

    Entries are keyed by `Parameter` handles and keep insertion order,
    which is also the PyTree leaf order. Two deltas are PyTree-compatible
    when they have the same keys in the same order; `aligned` produces
    such a delta from any other.

    Empty (zero-size) and absent entries behave as zero vectors.
    """

    def __init__(
        self,
        vectors: Optional[Dict[Parameter, Float[Array, "..."]]] = None,
    ) -> None:
        self._vectors: Dict[Parameter, Float[Array, "..."]] = {}
        if vectors is not None:
            for param, vector in vectors.items():
                self._vectors[param] = jnp.asarray(vector)

    @classmethod
    def zero(cls, parameters: Iterable[Parameter]) -> "ParamDelta":
        """Zero displacement for every parameter in `parameters`."""
        return tree_zeros_like(cls.current(parameters))

    @classmethod
    def current(cls, parameters: Iterable[Parameter]) -> "ParamDelta":
        """Snapshot of the live values of `parameters`."""
        return cls({param: param.value for param in parameters})

    def tree_flatten(self):
        keys = tuple(self._vectors)
        return tuple(self._vectors[key] for key in keys), keys

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        delta = cls.__new__(cls)
        delta._vectors = dict(zip(aux_data, children))
        return delta

    def __getitem__(self, param: Parameter) -> Float[Array, "..."]:
        return self._vectors[param]

    def __setitem__(self, param: Parameter, vector: Float[Array, "..."]) -> None:
        self._vectors[param] = jnp.asarray(vector)

    def __contains__(self, param: object) -> bool:
        return param in self._vectors

    def __iter__(self) -> Iterator[Parameter]:
        return iter(self._vectors)

    def __len__(self) -> int:
        return len(self._vectors)

    def keys(self):
        return self._vectors.keys()

    def items(self):
        return self._vectors.items()

    def values(self):
        return self._vectors.values()

    def __repr__(self) -> str:
        entries = ", ".join(
            f"{_label(param)}: {tuple(vector.shape)}"
            for param, vector in self._vectors.items()
        )
        return f"ParamDelta({{{entries}}})"

    def add(self, other: "ParamDelta", scalar: float = 1.0) -> "ParamDelta":
        """
        Description
        -----------
        In-place ``self += scalar * other``.

        Parameters
        ----------
        - `other` (ParamDelta):
            Delta to scale and add.
        - `scalar` (float):
            Multiplier for `other`. Default 1.0.

        Returns
        -------
        - `self` (ParamDelta):
            The receiving delta, for chaining.

        Raises
        ------
        - ValueError:
            If a shared key holds arrays of different shapes.
        """
        for param, vector in other.items():
            if vector.size == 0:
                continue
            current = self._vectors.get(param)
            if current is None or current.size == 0:
                self._vectors[param] = scalar * vector
                continue
            _check_shape(param, current.shape, vector.shape)
            self._vectors[param] = current + scalar * vector
        return self

    def scale(self, factor: float) -> "ParamDelta":
        """In-place ``self *= factor``; returns `self`."""
        self._vectors = tree_scalar_mul(factor, self)._vectors
        return self

    def dot(self, other: "ParamDelta") -> float:
        """Sum over shared keys of the inner products of the entries."""
        left, right = [], []
        for param, vector in self._vectors.items():
            if param not in other or vector.size == 0:
                continue
            other_vector = other[param]
            if other_vector.size == 0:
                continue
            _check_shape(param, vector.shape, other_vector.shape)
            left.append(vector)
            right.append(other_vector)
        return float(tree_dot(left, right))

    def magnitude_squared(self) -> float:
        return self.dot(self)

    def copy(self) -> "ParamDelta":
        return ParamDelta(self._vectors)

    def aligned(self, parameters: Sequence[Parameter]) -> "ParamDelta":
        """
        Description
        -----------
        Re-key this delta onto exactly `parameters`, in that order.

        Missing or empty entries become zero arrays shaped like the
        parameter, which makes the result PyTree-compatible with
        ``ParamDelta.current(parameters)``.

        Raises
        ------
        - UnknownParameterError:
            If this delta holds a non-empty entry for a parameter that
            is not in `parameters`.
        - ValueError:
            If an entry's shape differs from its parameter's shape.
        """
        wanted = set(parameters)
        for param, vector in self._vectors.items():
            if param not in wanted and vector.size != 0:
                raise UnknownParameterError(f"Unknown parameter: {_label(param)}")
        result: Dict[Parameter, Float[Array, "..."]] = {}
        for param in parameters:
            vector = self._vectors.get(param)
            if vector is None or vector.size == 0:
                result[param] = jnp.zeros_like(param.value)
            else:
                _check_shape(param, param.shape, vector.shape)
                result[param] = vector
        return ParamDelta(result)

    def add_to_parameters(self) -> None:
        """Commit the delta by adding each entry to its parameter's value."""
        for param, vector in self._vectors.items():
            if vector.size == 0:
                continue
            _check_shape(param, param.shape, vector.shape)
        for param, vector in self._vectors.items():
            if vector.size == 0:
                continue
            param.value = param.value + vector
