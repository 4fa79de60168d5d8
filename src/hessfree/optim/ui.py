"""
Module: optim.ui
----------------
Progress reporting and cooperative cancellation for the trainer.

A UI receives notifications from the training loop and answers one
question: should training stop? Nothing it returns feeds back into the
numerics.

Classes
-------
- `UI`:
    Protocol of the notifications and the stop signal
- `SilentUI`:
    Keeps counters and a stop flag, prints nothing
- `ConsoleUI`:
    Prints progress and turns SIGINT into a cooperative stop
"""

import signal
import threading

from beartype.typing import Any, Optional, Protocol


class UI(Protocol):
    def should_stop(self) -> bool: ...

    def log_new_mini_batch(self, epoch: int, batch: int) -> None: ...

    def log_cg_start(self, quad_value: float, start_objective: float) -> None: ...

    def log_cg_iteration(self, step_size: float, quad_value: float) -> None: ...


class SilentUI:
    """
    Description
    -----------
    UI that records progress without printing it.

    Attributes
    ----------
    - `mini_batches` (int):
        Number of mini-batches started.
    - `cg_iterations` (int):
        Number of CG iterations run, over all mini-batches.
    - `last_quad_value` (Optional[float]):
        Quadratic model value of the latest CG iterate.
    """

    def __init__(self) -> None:
        self._stop = threading.Event()
        self.mini_batches = 0
        self.cg_iterations = 0
        self.last_quad_value: Optional[float] = None

    def stop(self) -> None:
        """Ask the trainer to return at its next check."""
        self._stop.set()

    def should_stop(self) -> bool:
        return self._stop.is_set()

    def log_new_mini_batch(self, epoch: int, batch: int) -> None:
        self.mini_batches += 1

    def log_cg_start(self, quad_value: float, start_objective: float) -> None:
        self.last_quad_value = quad_value

    def log_cg_iteration(self, step_size: float, quad_value: float) -> None:
        self.cg_iterations += 1
        self.last_quad_value = quad_value


class ConsoleUI(SilentUI):
    """
    Description
    -----------
    UI that prints progress to standard output.

    After `catch_interrupts`, the first SIGINT requests a cooperative
    stop and a second one raises `KeyboardInterrupt` as usual.

    Attributes
    ----------
    - `verbose` (bool):
        Print every CG iteration, not only mini-batch and CG start lines.
    """

    def __init__(self, verbose: bool = True) -> None:
        super().__init__()
        self.verbose = verbose
        self._previous_handler: Any = None

    def catch_interrupts(self) -> None:
        """Install the SIGINT handler. Must run on the main thread."""
        self._previous_handler = signal.signal(signal.SIGINT, self._on_interrupt)

    def release_interrupts(self) -> None:
        """Restore the SIGINT handler replaced by `catch_interrupts`."""
        if self._previous_handler is not None:
            signal.signal(signal.SIGINT, self._previous_handler)
            self._previous_handler = None

    def _on_interrupt(self, signum, frame) -> None:
        if self.should_stop():
            self.release_interrupts()
            raise KeyboardInterrupt
        print("\nCaught interrupt, stopping after the current CG iteration.")
        self.stop()

    def log_new_mini_batch(self, epoch: int, batch: int) -> None:
        super().log_new_mini_batch(epoch, batch)
        print(f"Epoch {epoch}, mini-batch {batch}")

    def log_cg_start(self, quad_value: float, start_objective: float) -> None:
        super().log_cg_start(quad_value, start_objective)
        print(f"CG start: quad={quad_value:.6g}, objective={start_objective:.6g}")

    def log_cg_iteration(self, step_size: float, quad_value: float) -> None:
        super().log_cg_iteration(step_size, quad_value)
        if self.verbose:
            print(
                f"CG iteration {self.cg_iterations}: "
                f"step={step_size:.6g}, quad={quad_value:.6g}"
            )
