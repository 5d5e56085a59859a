"""
Typed observation and prediction records.

An output variable is observed N times. Predictions for it come either from
a single deterministic run (R = 1) or from R simulation replicates, stored
replicate-major: index ``i + k*N`` is observation ``i`` under replicate ``k``.
"""

from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np

from .exceptions import InvalidInput

ArrayLike = Union[Sequence[float], np.ndarray]


def _as_vector(values: ArrayLike, what: str) -> np.ndarray:
    arr = np.array(values, dtype=float).ravel()
    if arr.size == 0:
        raise InvalidInput(f"{what} is empty")
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True, eq=False)
class ObservationSeries:
    """Observed values of one output variable."""
    name: str
    values: np.ndarray

    def __post_init__(self):
        values = _as_vector(self.values, f"Observations '{self.name}'")
        if not np.all(np.isfinite(values)):
            raise InvalidInput(f"Observations '{self.name}' contain non-finite values")
        object.__setattr__(self, "values", values)

    def __len__(self) -> int:
        return self.values.size


@dataclass(frozen=True, eq=False)
class PredictionSeries:
    """Predicted values of one output, possibly replicated."""
    name: str
    values: np.ndarray
    n_replicates: int = 1

    def __post_init__(self):
        values = _as_vector(self.values, f"Predictions '{self.name}'")
        if self.n_replicates < 1:
            raise InvalidInput(f"n_replicates must be >= 1, got {self.n_replicates}")
        if values.size % self.n_replicates != 0:
            raise InvalidInput(
                f"Predictions '{self.name}': {values.size} values cannot be split "
                f"into {self.n_replicates} replicates"
            )
        object.__setattr__(self, "values", values)

    def __len__(self) -> int:
        return self.values.size

    @property
    def n_per_replicate(self) -> int:
        return self.values.size // self.n_replicates

    def aligned_with(self, observations: ObservationSeries) -> int:
        """Return the replicate count R implied by the observation length."""
        return replicate_count(len(observations), len(self))


def replicate_count(n_observed: int, n_predicted: int) -> int:
    """R such that n_predicted == R * n_observed."""
    if n_observed == 0:
        raise InvalidInput("Observations are empty")
    if n_predicted == 0:
        raise InvalidInput("Predictions are empty")
    if n_predicted % n_observed != 0:
        raise InvalidInput(
            f"Prediction length {n_predicted} is not a multiple of "
            f"observation length {n_observed}"
        )
    return n_predicted // n_observed
