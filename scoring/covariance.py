"""
Random-effect covariance from population parameter estimates.

Estimates are exported as flat named values: standard deviations
``omega_<name>`` (or variances ``omega2_<name>``) and correlations
``corr_<name1>_<name2>``.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Tuple

import numpy as np

from .exceptions import InvalidInput


@dataclass
class CovarianceEstimate:
    """Correlation and covariance matrices of the random effects."""
    names: List[str]
    correlation: np.ndarray
    covariance: np.ndarray

    @property
    def standard_deviations(self) -> np.ndarray:
        return np.sqrt(np.diag(self.covariance))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "names": list(self.names),
            "correlation": self.correlation.tolist(),
            "covariance": self.covariance.tolist(),
        }


def estimated_covariance(estimates: Mapping[str, float]) -> CovarianceEstimate:
    """
    Rebuild correlation and covariance matrices.

    Args:
        estimates: Population parameter name -> estimated value

    Returns:
        CovarianceEstimate with cov = diag(sd) R diag(sd)
    """
    names, sd = _standard_deviations(estimates)
    index = {name: i for i, name in enumerate(names)}

    corr = np.eye(len(names))
    for key, value in estimates.items():
        if not key.startswith("corr_"):
            continue
        first, second = _split_pair(key[len("corr_"):], index)
        i, j = index[first], index[second]
        corr[i, j] = corr[j, i] = float(value)

    cov = np.diag(sd) @ corr @ np.diag(sd)
    return CovarianceEstimate(names=names, correlation=corr, covariance=cov)


def _standard_deviations(estimates: Mapping[str, float]) -> Tuple[List[str], np.ndarray]:
    names = [k[len("omega_"):] for k in estimates if k.startswith("omega_")]
    if names:
        sd = np.array([float(estimates["omega_" + n]) for n in names])
        return names, sd

    names = [k[len("omega2_"):] for k in estimates if k.startswith("omega2_")]
    if not names:
        raise InvalidInput("No omega_ or omega2_ estimates found")
    variances = np.array([float(estimates["omega2_" + n]) for n in names])
    if np.any(variances < 0):
        raise InvalidInput("Negative omega2_ variance estimate")
    return names, np.sqrt(variances)


def _split_pair(suffix: str, index: Mapping[str, int]) -> Tuple[str, str]:
    # names may contain underscores: try every split point
    parts = suffix.split("_")
    for k in range(1, len(parts)):
        first = "_".join(parts[:k])
        second = "_".join(parts[k:])
        if first in index and second in index:
            return first, second
    raise InvalidInput(f"Correlation 'corr_{suffix}' does not name two known random effects")
