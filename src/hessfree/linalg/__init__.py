"""
Module: hessfree.linalg
-----------------------
Parameter-space algebra and matrix-free linearization.

Submodules
----------
- `param_delta`:
    Parameter handles and displacement vectors registered as PyTrees
- `linearizer`:
    First-order surrogates of batched functions via forward-mode AD
- `tree_ops`:
    Leaf-wise PyTree arithmetic backing the delta algebra
"""

from .linearizer import Linearizer
from .param_delta import Parameter, ParamDelta, UnknownParameterError
from .tree_ops import (
    tree_add,
    tree_dot,
    tree_scalar_mul,
    tree_zeros_like,
)

__all__: list[str] = [
    "Linearizer",
    "Parameter",
    "ParamDelta",
    "UnknownParameterError",
    "tree_add",
    "tree_dot",
    "tree_scalar_mul",
    "tree_zeros_like",
]
