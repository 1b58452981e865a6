"""Registration oracle interface.

The engine only talks to :class:`RegistrationOracle`; the concrete alignment
algorithm (ICP in :mod:`scanner_frontend.icp`, a test double, a wrapper
around an external library) can be swapped without touching the engine.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class ConvergenceState(Enum):
    NOT_CONVERGED = "not_converged"
    ITERATION_LIMIT = "iteration_limit"
    TRANSFORM_THRESHOLD = "transform_threshold"
    ABSOLUTE_MSE = "absolute_mse"
    RELATIVE_MSE = "relative_mse"
    NO_CORRESPONDENCES = "no_correspondences"

    def describe(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    ConvergenceState.NOT_CONVERGED: "Not converged",
    ConvergenceState.ITERATION_LIMIT: "Converged: maximum number of iterations reached",
    ConvergenceState.TRANSFORM_THRESHOLD: "Converged: transformation increment below threshold",
    ConvergenceState.ABSOLUTE_MSE: "Converged: absolute mean squared error change below threshold",
    ConvergenceState.RELATIVE_MSE: "Converged: relative mean squared error change below threshold",
    ConvergenceState.NO_CORRESPONDENCES: "Not converged: not enough correspondences",
}


@dataclass
class AlignmentResult:
    converged: bool
    fitness: float
    transform: np.ndarray = field(default_factory=lambda: np.eye(4))
    convergence_state: ConvergenceState = ConvergenceState.NOT_CONVERGED
    iterations: int = 0


class RegistrationOracle(ABC):
    """Aligns ``source`` onto ``target``; the returned transform maps source points into the target frame."""

    @abstractmethod
    def align(self,
              source: np.ndarray,
              target: np.ndarray,
              initial_guess: np.ndarray,
              correspondence_tolerance: float) -> AlignmentResult:
        raise NotImplementedError
