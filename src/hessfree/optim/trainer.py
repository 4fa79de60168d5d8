"""
Module: optim.trainer
---------------------
Hessian-Free training loop.

Classes
-------
- `Trainer`:
    Runs mini-batch Hessian-Free on a `Learner`
"""

from beartype.typing import Optional

from hessfree.linalg.param_delta import ParamDelta

from .cg import CGSolver
from .hf_types import TrainerConfig
from .learner import DampingLearner, Learner
from .samples import SampleSet
from .ui import UI, SilentUI


class Trainer:
    """
    Description
    -----------
    Trains a learner with Hessian-Free optimization.

    Attributes
    ----------
    - `learner` (Learner):
        Learner being trained. A `DampingLearner` still at a zero
        coefficient starts from `config.damping_coeff`.
    - `samples` (SampleSet):
        All training samples.
    - `config` (TrainerConfig):
        Mini-batch size, CG stopping rule and backtracking rate.
    - `ui` (UI):
        Receives progress notifications and the stop signal.
    - `last_solution` (Optional[ParamDelta]):
        Delta accepted for the previous mini-batch, used to warm-start
        the next CG run.
    """

    def __init__(
        self,
        learner: Learner,
        samples: SampleSet,
        config: TrainerConfig,
        ui: Optional[UI] = None,
    ) -> None:
        if len(samples) == 0:
            raise ValueError("Cannot train on an empty sample set")
        if isinstance(learner, DampingLearner) and learner.damping_coeff == 0:
            learner.damping_coeff = config.damping_coeff
        self.learner = learner
        self.samples = samples
        self.config = config
        self.ui = ui if ui is not None else SilentUI()
        self.last_solution: Optional[ParamDelta] = None

    def make_solver(self, samples: SampleSet) -> CGSolver:
        """Fresh CG solver for one mini-batch, warm-started if possible."""
        return CGSolver(
            objective=self.learner.make_objective(),
            samples=samples,
            parameters=self.learner.parameters(),
            convergence=self.config.convergence,
            backtrack_rate=self.config.backtrack_rate,
            ui=self.ui,
            solution=self.last_solution,
            max_iterations=self.config.max_cg_iterations,
        )

    def train(self) -> int:
        """
        Description
        -----------
        Run epochs until the UI asks to stop or `config.max_epochs`
        epochs are done.

        Returns
        -------
        - `committed` (int):
            Number of mini-batches whose step was committed.

        Flow
        ----
        1. Copy and shuffle the samples, cut them into mini-batches
        2. For each mini-batch, check for a stop request, then run CG
           to completion, checking again after every iteration
        3. Commit the best checkpoint through the learner
        4. A stop request returns immediately; an unfinished CG run is
           never committed
        """
        batch_size = self.config.batch_size
        committed = 0
        epoch = 0
        while self.config.max_epochs is None or epoch < self.config.max_epochs:
            shuffled = self.samples.copy()
            shuffled.shuffle()
            total = len(shuffled)

            for mini_batch, start in enumerate(range(0, total, batch_size)):
                subset = shuffled.subset(start, min(start + batch_size, total))
                if self.ui.should_stop():
                    return committed
                self.ui.log_new_mini_batch(epoch, mini_batch)

                solver = self.make_solver(subset)
                while solver.step():
                    if self.ui.should_stop():
                        return committed
                use_delta = solver.best()
                self.learner.adjust(use_delta, subset)
                self.last_solution = use_delta
                committed += 1
            epoch += 1
        return committed
