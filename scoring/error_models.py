"""
Residual error models for continuous outputs.

Five candidate forms relate the residual variance to the prediction p:

- constant:      a^2
- proportional:  (b p)^2
- combined1:     (a + b p)^2
- combined2:     a^2 + (b p)^2
- exponential:   a^2 on the log scale

The constant, proportional and exponential scales have closed forms. The two
combined forms are fitted by minimizing the Gaussian -2 log-likelihood (up to
constants) with a warm-start chain: combined2 starts from the constant fit,
combined1 starts from the combined2 solution.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Tuple

import numpy as np
from scipy.optimize import minimize

LOG_2PI = np.log(2 * np.pi)

# Initial slope for the combined2 fit
B_INIT = 0.2


class ErrorModel(Enum):
    """Candidate residual error models, in ranking tie-break order."""
    CONSTANT = "constant"
    PROPORTIONAL = "proportional"
    COMBINED1 = "combined1"
    COMBINED2 = "combined2"
    EXPONENTIAL = "exponential"

    @property
    def df(self) -> int:
        """Number of error parameters."""
        return _DF[self]

    @property
    def log_scale(self) -> bool:
        return self is ErrorModel.EXPONENTIAL

    def variance(self, pred: np.ndarray, a: float = 0.0, b: float = 0.0) -> np.ndarray:
        """Residual variance at each prediction (log scale for exponential)."""
        pred = np.asarray(pred, dtype=float)
        if self is ErrorModel.CONSTANT or self is ErrorModel.EXPONENTIAL:
            return np.full_like(pred, a**2)
        if self is ErrorModel.PROPORTIONAL:
            return (b * pred)**2
        if self is ErrorModel.COMBINED1:
            return (a + b * pred)**2
        return a**2 + (b * pred)**2

    @classmethod
    def parse(cls, value) -> "ErrorModel":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            names = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown error model '{value}' (expected one of: {names})")


_DF = {
    ErrorModel.CONSTANT: 1,
    ErrorModel.PROPORTIONAL: 1,
    ErrorModel.COMBINED1: 2,
    ErrorModel.COMBINED2: 2,
    ErrorModel.EXPONENTIAL: 1,
}


@dataclass
class ErrorModelFit:
    """Fitted parameters of one error model."""
    error_model: ErrorModel
    a: float = 0.0
    b: float = 0.0
    converged: bool = True
    method: str = "closed_form"
    objective: float = np.nan
    message: str = ""

    @property
    def parameters(self) -> Dict[str, float]:
        if self.error_model is ErrorModel.PROPORTIONAL:
            return {"b": self.b}
        if self.error_model in (ErrorModel.COMBINED1, ErrorModel.COMBINED2):
            return {"a": self.a, "b": self.b}
        return {"a": self.a}

    def variance(self, pred: np.ndarray) -> np.ndarray:
        return self.error_model.variance(pred, self.a, self.b)


def combined1_objective(x: np.ndarray, pred: np.ndarray, obs: np.ndarray) -> float:
    sigma2 = (x[0] + x[1] * pred)**2
    return np.sum((obs - pred)**2 / sigma2) + np.sum(np.log(sigma2))


def combined2_objective(x: np.ndarray, pred: np.ndarray, obs: np.ndarray) -> float:
    sigma2 = x[0]**2 + (x[1] * pred)**2
    return np.sum((obs - pred)**2 / sigma2) + np.sum(np.log(sigma2))


def minimize_objective(
    objective: Callable[..., float],
    x0: np.ndarray,
    args: Tuple = (),
    maxiter: int = 1000
) -> Tuple[np.ndarray, float, bool, str, str]:
    """
    Unconstrained minimization from a fixed starting point.

    BFGS first; if it does not report success, Nelder-Mead is restarted from
    the best finite point seen so far. The lowest finite objective wins.

    Returns:
        (x, objective value, converged, method, message)
    """
    x0 = np.asarray(x0, dtype=float)

    def safe_objective(x):
        with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
            value = objective(x, *args)
        return value if np.isfinite(value) else np.inf

    best_x = x0.copy()
    best_fun = safe_objective(x0)
    method = "none"
    message = ""
    converged = False

    result = minimize(safe_objective, x0, method='BFGS', options={'maxiter': maxiter})
    if np.isfinite(result.fun) and result.fun <= best_fun:
        best_x, best_fun = result.x.copy(), float(result.fun)
        method = 'BFGS'
    message = str(result.message)
    converged = bool(result.success) and np.isfinite(result.fun)

    if not converged:
        result = minimize(
            safe_objective,
            best_x,
            method='Nelder-Mead',
            options={'maxiter': 2000 * len(x0), 'xatol': 1e-10, 'fatol': 1e-12}
        )
        if np.isfinite(result.fun) and result.fun <= best_fun:
            best_x, best_fun = result.x.copy(), float(result.fun)
            method = 'Nelder-Mead'
        message = str(result.message)
        converged = bool(result.success) and np.isfinite(best_fun)

    return best_x, best_fun, converged, method, message


def fit_error_models(obs: np.ndarray, pred: np.ndarray) -> Dict[ErrorModel, ErrorModelFit]:
    """
    Fit all five error models to positive observation/prediction pairs.

    Args:
        obs: Observed values, already tiled to the prediction length
        pred: Predicted values

    Returns:
        Mapping ErrorModel -> ErrorModelFit
    """
    obs = np.asarray(obs, dtype=float)
    pred = np.asarray(pred, dtype=float)

    a_cons = np.sqrt(np.mean((obs - pred)**2))
    b_prop = np.sqrt(np.mean((obs / pred - 1)**2))
    a_expo = np.sqrt(np.mean((np.log(obs) - np.log(pred))**2))

    x, fun, ok, method, msg = minimize_objective(
        combined2_objective, np.array([a_cons, B_INIT]), args=(pred, obs)
    )
    a_comb2, b_comb2 = abs(x[0]), abs(x[1])
    comb2 = ErrorModelFit(ErrorModel.COMBINED2, a=a_comb2, b=b_comb2,
                          converged=ok, method=method, objective=fun, message=msg)

    x, fun, ok, method, msg = minimize_objective(
        combined1_objective, np.array([a_comb2, b_comb2]), args=(pred, obs)
    )
    comb1 = ErrorModelFit(ErrorModel.COMBINED1, a=float(x[0]), b=float(x[1]),
                          converged=ok, method=method, objective=fun, message=msg)

    return {
        ErrorModel.CONSTANT: ErrorModelFit(ErrorModel.CONSTANT, a=float(a_cons)),
        ErrorModel.PROPORTIONAL: ErrorModelFit(ErrorModel.PROPORTIONAL, b=float(b_prop)),
        ErrorModel.COMBINED1: comb1,
        ErrorModel.COMBINED2: comb2,
        ErrorModel.EXPONENTIAL: ErrorModelFit(ErrorModel.EXPONENTIAL, a=float(a_expo)),
    }


def log_likelihood(
    fit: ErrorModelFit,
    obs: np.ndarray,
    pred: np.ndarray,
    n_replicates: int = 1
) -> float:
    """
    Gaussian log-likelihood of the residuals under a fitted error model,
    averaged over replicates.

    The exponential model is scored on log(obs) and carries the Jacobian
    term 2*log(obs) so it stays comparable with the linear-scale models.
    """
    obs = np.asarray(obs, dtype=float)
    pred = np.asarray(pred, dtype=float)
    sigma2 = fit.variance(pred)

    with np.errstate(divide='ignore', invalid='ignore'):
        if fit.error_model.log_scale:
            resid2 = (np.log(obs) - np.log(pred))**2
            terms = resid2 / sigma2 + LOG_2PI + np.log(sigma2) + 2 * np.log(obs)
        else:
            terms = (obs - pred)**2 / sigma2 + LOG_2PI + np.log(sigma2)
        return float(-0.5 * np.sum(terms) / n_replicates)
