"""
==========================================================
hessfree - Hessian-Free optimization with JAX
==========================================================

.. currentmodule:: hessfree

Truncated-Newton training of parameterized models following
Martens (2010): a Gauss-Newton quadratic model of the cost is minimized
with conjugate gradient using matrix-free curvature-vector products,
under adaptive damping and with backtracking over the CG trajectory.

Subpackages
-----------
- `linalg`:
    Parameter handles, parameter-space deltas and linearization
- `optim`:
    Objectives, learners, the CG solver and the training loop
"""

from .linalg import *
from .optim import *
