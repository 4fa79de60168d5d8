"""
Module: optim.hf_types
----------------------
Configuration structures and type aliases for Hessian-Free training.

Type Aliases
------------
- `scalar_float`:
    Type alias for float or Float array of 0 dimensions
- `scalar_int`:
    Type alias for int or Integer array of 0 dimensions
- `non_jax_number`:
    Type alias for non-JAX numeric types (int, float)

Classes
-------
- `ConvergenceCriteria`:
    A named tuple for the relative-progress CG stopping rule of
    Martens (2010)
- `TrainerConfig`:
    A named tuple with every tunable of the training loop

Factory Functions
-----------------
- `make_convergence_criteria`:
    Creates a ConvergenceCriteria instance with validation
- `make_trainer_config`:
    Creates a TrainerConfig instance with validation
- `load_trainer_config`:
    Reads a TrainerConfig from a TOML file

Note
----
Always use these factory functions instead of directly instantiating the
NamedTuple classes so that invalid settings fail at construction time
rather than in the middle of training.
"""

import tomllib
from pathlib import Path

import jax
from beartype import beartype
from beartype.typing import Any, Dict, NamedTuple, Optional, TypeAlias, Union
from jaxtyping import Array, Float, Int, jaxtyped

jax.config.update("jax_enable_x64", True)

scalar_float: TypeAlias = Union[float, Float[Array, ""]]
scalar_int: TypeAlias = Union[int, Int[Array, ""]]
non_jax_number: TypeAlias = Union[int, float]

DEFAULT_CONVERGENCE_MIN_K: int = 10
DEFAULT_CONVERGENCE_K_SCALE: float = 0.1
DEFAULT_CONVERGENCE_EPSILON: float = 0.0005
DEFAULT_BACKTRACK_RATE: float = 1.3
DEFAULT_DAMPING_COEFF: float = 1.0


class ConvergenceCriteria(NamedTuple):
    """
    Description
    -----------
    Parameters of the windowed relative-progress criterion used to
    truncate CG.

    Attributes
    ----------
    - `min_k` (int):
        Smallest window, in CG iterations.
    - `k_scale` (float):
        Window grows as ``k_scale * iterations`` once that exceeds `min_k`.
    - `epsilon` (float):
        Per-iteration relative progress below which CG stops.
    """

    min_k: int = DEFAULT_CONVERGENCE_MIN_K
    k_scale: float = DEFAULT_CONVERGENCE_K_SCALE
    epsilon: float = DEFAULT_CONVERGENCE_EPSILON


class TrainerConfig(NamedTuple):
    """
    Description
    -----------
    Settings of the Hessian-Free training loop.

    Attributes
    ----------
    - `batch_size` (int):
        Samples per mini-batch. The last mini-batch of an epoch may be
        smaller.
    - `convergence` (ConvergenceCriteria):
        CG stopping rule.
    - `backtrack_rate` (float):
        Constant above 1 controlling how often CG checkpoints are taken.
    - `damping_coeff` (float):
        Initial damping coefficient for a `DampingLearner`.
    - `max_epochs` (Optional[int]):
        Number of epochs to run, or None to train until stopped.
    - `max_cg_iterations` (Optional[int]):
        Hard cap on CG iterations per mini-batch, or None for no cap.
    """

    batch_size: int
    convergence: ConvergenceCriteria = ConvergenceCriteria()
    backtrack_rate: float = DEFAULT_BACKTRACK_RATE
    damping_coeff: float = DEFAULT_DAMPING_COEFF
    max_epochs: Optional[int] = None
    max_cg_iterations: Optional[int] = None


@jaxtyped(typechecker=beartype)
def make_convergence_criteria(
    min_k: int = DEFAULT_CONVERGENCE_MIN_K,
    k_scale: non_jax_number = DEFAULT_CONVERGENCE_K_SCALE,
    epsilon: non_jax_number = DEFAULT_CONVERGENCE_EPSILON,
) -> ConvergenceCriteria:
    """
    Description
    -----------
    Factory function for ConvergenceCriteria with validation.

    Parameters
    ----------
    - `min_k` (int):
        Minimum window size. Default 10.
    - `k_scale` (non_jax_number):
        Window growth factor. Default 0.1.
    - `epsilon` (non_jax_number):
        Relative progress threshold. Default 0.0005.

    Returns
    -------
    - `criteria` (ConvergenceCriteria):
        Validated convergence criteria

    Raises
    ------
    - ValueError:
        If any value is out of range

    Validations
    -----------
    - min_k is positive
    - k_scale is non-negative
    - epsilon is positive
    """
    if min_k <= 0:
        raise ValueError(f"min_k must be positive, got {min_k}")
    if k_scale < 0:
        raise ValueError(f"k_scale must be non-negative, got {k_scale}")
    if epsilon <= 0:
        raise ValueError(f"epsilon must be positive, got {epsilon}")
    return ConvergenceCriteria(
        min_k=min_k,
        k_scale=float(k_scale),
        epsilon=float(epsilon),
    )


@jaxtyped(typechecker=beartype)
def make_trainer_config(
    batch_size: int,
    convergence: Optional[ConvergenceCriteria] = None,
    backtrack_rate: non_jax_number = DEFAULT_BACKTRACK_RATE,
    damping_coeff: non_jax_number = DEFAULT_DAMPING_COEFF,
    max_epochs: Optional[int] = None,
    max_cg_iterations: Optional[int] = None,
) -> TrainerConfig:
    """
    Description
    -----------
    Factory function for TrainerConfig with validation.

    Parameters
    ----------
    - `batch_size` (int):
        Samples per mini-batch
    - `convergence` (Optional[ConvergenceCriteria]):
        CG stopping rule, defaults from Martens (2010) when None
    - `backtrack_rate` (non_jax_number):
        Checkpoint schedule rate. Default 1.3.
    - `damping_coeff` (non_jax_number):
        Initial damping coefficient. Default 1.0.
    - `max_epochs` (Optional[int]):
        Epoch limit, None to run until stopped
    - `max_cg_iterations` (Optional[int]):
        CG iteration cap per mini-batch, None for no cap

    Returns
    -------
    - `config` (TrainerConfig):
        Validated trainer configuration

    Raises
    ------
    - ValueError:
        If any value is out of range

    Validations
    -----------
    - batch_size is at least 1
    - backtrack_rate is greater than 1
    - damping_coeff is positive
    - max_epochs and max_cg_iterations are positive when given
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")
    if backtrack_rate <= 1:
        raise ValueError(f"backtrack_rate must be greater than 1, got {backtrack_rate}")
    if damping_coeff <= 0:
        raise ValueError(f"damping_coeff must be positive, got {damping_coeff}")
    if max_epochs is not None and max_epochs < 1:
        raise ValueError(f"max_epochs must be positive, got {max_epochs}")
    if max_cg_iterations is not None and max_cg_iterations < 1:
        raise ValueError(
            f"max_cg_iterations must be positive, got {max_cg_iterations}"
        )
    if convergence is None:
        convergence = make_convergence_criteria()
    return TrainerConfig(
        batch_size=batch_size,
        convergence=convergence,
        backtrack_rate=float(backtrack_rate),
        damping_coeff=float(damping_coeff),
        max_epochs=max_epochs,
        max_cg_iterations=max_cg_iterations,
    )


_TRAINER_KEYS = frozenset(
    ["batch_size", "backtrack_rate", "damping_coeff", "max_epochs", "max_cg_iterations"]
)
_CONVERGENCE_KEYS = frozenset(["min_k", "k_scale", "epsilon"])


def load_trainer_config(path: Union[str, Path]) -> TrainerConfig:
    """
    Description
    -----------
    Read a TrainerConfig from the ``[trainer]`` table of a TOML file.

    An optional ``[trainer.convergence]`` sub-table sets the CG stopping
    rule. Values not given fall back to the factory defaults.

    Parameters
    ----------
    - `path` (Union[str, Path]):
        Location of the TOML file

    Returns
    -------
    - `config` (TrainerConfig):
        Validated trainer configuration

    Raises
    ------
    - FileNotFoundError:
        If the file does not exist
    - tomllib.TOMLDecodeError:
        If the file is not valid TOML
    - ValueError:
        If the trainer table is missing or holds unknown or invalid keys
    """
    with open(Path(path), "rb") as file:
        document: Dict[str, Any] = tomllib.load(file)

    if "trainer" not in document:
        raise ValueError(f"No [trainer] table in {path}")
    table: Dict[str, Any] = dict(document["trainer"])
    convergence_table: Dict[str, Any] = dict(table.pop("convergence", {}))

    unknown = set(table) - _TRAINER_KEYS
    if unknown:
        raise ValueError(f"Unknown trainer settings: {sorted(unknown)}")
    unknown = set(convergence_table) - _CONVERGENCE_KEYS
    if unknown:
        raise ValueError(f"Unknown convergence settings: {sorted(unknown)}")
    if "batch_size" not in table:
        raise ValueError("Trainer setting 'batch_size' is required")

    convergence = make_convergence_criteria(**convergence_table)
    return make_trainer_config(convergence=convergence, **table)
