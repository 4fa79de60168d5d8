"""
Module: hessfree.optim
----------------------
Hessian-Free (truncated-Newton) optimization following Martens (2010).

Submodules
----------
- `objective`:
    True objectives, Gauss-Newton quadratic models and damping
- `learner`:
    Learners that build objectives and commit steps, with adaptive
    damping
- `cg`:
    Truncated CG with relative-progress stopping and backtracking
- `trainer`:
    Mini-batch training loop with cooperative cancellation
- `costs`:
    Convex per-batch cost functions
- `samples`:
    Sample sets the trainer shuffles and slices
- `ui`:
    Progress reporting and stop signals
- `hf_types`:
    Configuration structures, factories and type aliases
"""

from .cg import CGSolver, Checkpoint
from .costs import softmax_cross_entropy_cost, squared_error_cost
from .hf_types import (
    ConvergenceCriteria,
    TrainerConfig,
    load_trainer_config,
    make_convergence_criteria,
    make_trainer_config,
    non_jax_number,
    scalar_float,
    scalar_int,
)
from .learner import DampingLearner, GaussNewtonLearner, Learner, update_damping
from .objective import DampedObjective, GaussNewtonObjective, Objective
from .samples import ArraySampleSet, SampleSet
from .trainer import Trainer
from .ui import UI, ConsoleUI, SilentUI

__all__: list[str] = [
    "CGSolver",
    "Checkpoint",
    "softmax_cross_entropy_cost",
    "squared_error_cost",
    "ConvergenceCriteria",
    "TrainerConfig",
    "load_trainer_config",
    "make_convergence_criteria",
    "make_trainer_config",
    "non_jax_number",
    "scalar_float",
    "scalar_int",
    "DampingLearner",
    "GaussNewtonLearner",
    "Learner",
    "update_damping",
    "DampedObjective",
    "GaussNewtonObjective",
    "Objective",
    "ArraySampleSet",
    "SampleSet",
    "Trainer",
    "UI",
    "ConsoleUI",
    "SilentUI",
]
