"""
Module: optim.samples
---------------------
Sample sets consumed by the Hessian-Free trainer.

The trainer only needs to copy, shuffle and slice a sample set; the
objectives need the paired inputs and targets of a mini-batch.

Classes
-------
- `SampleSet`:
    Protocol of what the trainer needs from a sample set
- `ArraySampleSet`:
    Paired input/target arrays with the samples on the leading axis
"""

import jax
import jax.numpy as jnp
from beartype.typing import Optional, Protocol, runtime_checkable
from jaxtyping import Array, Float, PRNGKeyArray, Shaped


@runtime_checkable
class SampleSet(Protocol):
    """Ordered collection of training samples."""

    def __len__(self) -> int: ...

    def copy(self) -> "SampleSet": ...

    def shuffle(self) -> None: ...

    def subset(self, start: int, end: int) -> "SampleSet": ...


class ArraySampleSet:
    """
    Description
    -----------
    Sample set backed by two arrays with matching leading dimension.

    Attributes
    ----------
    - `inputs` (Float[Array, "N ..."]):
        Model inputs, one sample per leading index.
    - `targets` (Shaped[Array, "N ..."]):
        Desired outputs, one sample per leading index.
    - `key` (PRNGKeyArray):
        Random state for `shuffle`; split on every call.
    """

    def __init__(
        self,
        inputs: Float[Array, "N ..."],
        targets: Shaped[Array, "N ..."],
        key: Optional[PRNGKeyArray] = None,
    ) -> None:
        inputs = jnp.asarray(inputs)
        targets = jnp.asarray(targets)
        if inputs.ndim == 0 or targets.ndim == 0:
            raise ValueError("Inputs and targets need a leading sample axis")
        if inputs.shape[0] != targets.shape[0]:
            raise ValueError(
                f"Got {inputs.shape[0]} inputs but {targets.shape[0]} targets"
            )
        self.inputs = inputs
        self.targets = targets
        self.key = key if key is not None else jax.random.PRNGKey(0)

    def __len__(self) -> int:
        return int(self.inputs.shape[0])

    def copy(self) -> "ArraySampleSet":
        """Independent snapshot with its own random stream."""
        self.key, child_key = jax.random.split(self.key)
        return ArraySampleSet(self.inputs, self.targets, child_key)

    def shuffle(self) -> None:
        """Randomly permute the samples in place."""
        self.key, subkey = jax.random.split(self.key)
        order = jax.random.permutation(subkey, len(self))
        self.inputs = self.inputs[order]
        self.targets = self.targets[order]

    def subset(self, start: int, end: int) -> "ArraySampleSet":
        """Samples ``start`` (inclusive) through ``end`` (exclusive)."""
        self.key, child_key = jax.random.split(self.key)
        return ArraySampleSet(
            self.inputs[start:end], self.targets[start:end], child_key
        )
