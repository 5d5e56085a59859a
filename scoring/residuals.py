"""
Weighted residuals under a configured error model.

Residuals are (y - p) / g(p) after transforming observations and predictions
to the scale of the observation distribution:

- normal:       identity
- lognormal:    log
- logitnormal:  log((y - lo) / (hi - y))

with g(p) = sqrt(a^2 + (b p^c)^2) for combined2 and a + b p^c otherwise.
"""

from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .error_models import ErrorModel
from .exceptions import InvalidInput
from .series import ObservationSeries, PredictionSeries, replicate_count

DISTRIBUTIONS = ("normal", "lognormal", "logitnormal")


def transform(
    values: np.ndarray,
    distribution: str = "normal",
    limits: Optional[Tuple[float, float]] = None
) -> np.ndarray:
    """Map values to the scale on which the residual error is Gaussian."""
    dist = distribution.lower()
    values = np.asarray(values, dtype=float)
    if dist == "normal":
        return values
    if dist == "lognormal":
        return np.log(values)
    if dist == "logitnormal":
        if limits is None:
            raise InvalidInput("logitnormal distribution requires limits (lo, hi)")
        lo, hi = limits
        if not lo < hi:
            raise InvalidInput(f"Invalid logit limits: {limits}")
        return np.log((values - lo) / (hi - values))
    raise InvalidInput(f"Unknown distribution '{distribution}' (expected one of {DISTRIBUTIONS})")


def error_parameters(estimates: Mapping[str, float], names: Sequence[str] = ()) -> Dict[str, float]:
    """
    Collect a, b, c for one output from named population estimates.

    ``names`` lists the estimate names bound to this output's error model,
    e.g. ["a1", "b1"]; the first letter decides the role. Without names, the
    plain keys "a", "b", "c" are looked up. Missing a, b default to 0 and
    c defaults to 1.
    """
    params = {"a": 0.0, "b": 0.0, "c": 1.0}
    if names:
        for name in names:
            if name not in estimates:
                raise InvalidInput(f"Error parameter '{name}' not found in estimates")
            role = name[0].lower()
            if role in params:
                params[role] = float(estimates[name])
    else:
        for role in params:
            if role in estimates:
                params[role] = float(estimates[role])
    return params


def compute_residuals(
    observed: Union[ObservationSeries, Sequence[float], np.ndarray],
    predicted: Union[PredictionSeries, Sequence[float], np.ndarray],
    error_model: Union[ErrorModel, str],
    a: float = 0.0,
    b: float = 0.0,
    c: float = 1.0,
    distribution: str = "normal",
    limits: Optional[Tuple[float, float]] = None
) -> np.ndarray:
    """
    Weighted residuals for N observations and N*R replicated predictions.

    Returns:
        Array of length N*R, replicate-major like the predictions
    """
    model = ErrorModel.parse(error_model)
    obs = _values(observed)
    pred = _values(predicted)
    n_rep = replicate_count(obs.size, pred.size)

    y = transform(np.tile(obs, n_rep), distribution, limits)
    p = transform(pred, distribution, limits)

    with np.errstate(divide='ignore', invalid='ignore'):
        if model is ErrorModel.COMBINED2:
            scale = np.sqrt(a**2 + (b * p**c)**2)
        else:
            scale = a + b * p**c
        return (y - p) / scale


def _values(series) -> np.ndarray:
    if isinstance(series, (ObservationSeries, PredictionSeries)):
        return series.values
    arr = np.asarray(series, dtype=float).ravel()
    if arr.size == 0:
        raise InvalidInput("Empty input")
    return arr
