"""
Error-model selection by penalized likelihood.

Scores the five residual error models for one output and ranks them by an
information criterion (BIC, AIC, or a custom penalty weight per parameter).
Also provides a driver that repeats the scoring for every continuous output
of a prediction source.
"""

import numbers
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

import numpy as np

from .error_models import ErrorModel, ErrorModelFit, fit_error_models, log_likelihood
from .exceptions import FitFailure, InsufficientData, InvalidInput
from .series import ObservationSeries, PredictionSeries, replicate_count

# Fewer surviving pairs than this cannot support the two-parameter fits
MIN_PAIRS = 3

Criterion = Union[str, float]


@dataclass
class ScoredCandidate:
    """One error model with its likelihood and criterion value."""
    error_model: ErrorModel
    log_likelihood: float
    df: int
    criterion_value: float
    parameters: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_model": self.error_model.value,
            "ll": self.log_likelihood,
            "df": self.df,
            "criterion": self.criterion_value,
            "parameters": dict(self.parameters),
        }


@dataclass
class RankedResult:
    """Candidates sorted ascending by criterion value (best first)."""
    candidates: List[ScoredCandidate]
    criterion: str
    penalty: float
    n_pairs: int
    n_replicates: int
    failures: Dict[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.candidates)

    def __iter__(self) -> Iterator[ScoredCandidate]:
        return iter(self.candidates)

    def __getitem__(self, index: int) -> ScoredCandidate:
        return self.candidates[index]

    @property
    def best(self) -> ScoredCandidate:
        return self.candidates[0]

    @property
    def n_effective(self) -> float:
        """Number of non-replicate observations used for the penalty."""
        return self.n_pairs / self.n_replicates

    @property
    def error_models(self) -> List[str]:
        return [c.error_model.value for c in self.candidates]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "criterion": self.criterion,
            "penalty": self.penalty,
            "n_pairs": self.n_pairs,
            "n_replicates": self.n_replicates,
            "n_effective": self.n_effective,
            "candidates": [c.to_dict() for c in self.candidates],
            "failures": dict(self.failures),
        }


def penalty_weight(criterion: Criterion, n_effective: float) -> float:
    """
    Per-parameter penalty for an information criterion.

    "BIC" -> ln(N), "AIC" -> 2, a number -> used as is.
    """
    if isinstance(criterion, str):
        label = criterion.strip().upper()
        if label == "BIC":
            return float(np.log(n_effective))
        if label == "AIC":
            return 2.0
        raise InvalidInput(f"Unknown criterion '{criterion}' (expected 'BIC', 'AIC' or a number)")
    if isinstance(criterion, bool) or not isinstance(criterion, numbers.Real):
        raise InvalidInput(f"Criterion must be 'BIC', 'AIC' or a number, got {criterion!r}")
    if not np.isfinite(criterion):
        raise InvalidInput(f"Penalty weight must be finite, got {criterion}")
    return float(criterion)


def _criterion_label(criterion: Criterion) -> str:
    if isinstance(criterion, str):
        return criterion.strip().upper()
    return f"penalty={float(criterion):g}"


def positive_pairs(
    observed: np.ndarray,
    predicted: np.ndarray
) -> tuple:
    """Tile observations over replicates and keep strictly positive pairs."""
    n_rep = replicate_count(observed.size, predicted.size)
    obs = np.tile(observed, n_rep)
    with np.errstate(invalid='ignore'):
        keep = np.isfinite(obs) & np.isfinite(predicted) & (obs > 0) & (predicted > 0)
    return obs[keep], predicted[keep], n_rep


def _values(series: Any) -> np.ndarray:
    if isinstance(series, (ObservationSeries, PredictionSeries)):
        return series.values
    return np.asarray(series, dtype=float).ravel()


def score(
    observed: Union[ObservationSeries, Sequence[float], np.ndarray],
    predicted: Union[PredictionSeries, Sequence[float], np.ndarray],
    criterion: Criterion = "BIC",
    top_k: int = 1
) -> RankedResult:
    """
    Fit and rank the five residual error models for one output.

    Args:
        observed: N observed values
        predicted: N*R predicted values, replicate-major
        criterion: "BIC", "AIC", or a numeric penalty weight per parameter
        top_k: Number of best candidates to return

    Returns:
        RankedResult, ascending by criterion value

    Raises:
        InvalidInput: Empty or misaligned inputs, unknown criterion, top_k < 1
        InsufficientData: Fewer than 3 positive pairs survive filtering
        FitFailure: No candidate could be fitted
    """
    if isinstance(top_k, bool) or not isinstance(top_k, numbers.Integral) or top_k < 1:
        raise InvalidInput(f"top_k must be a positive integer, got {top_k!r}")
    penalty_weight(criterion, 1.0)

    obs, pred, n_rep = positive_pairs(_values(observed), _values(predicted))
    n = obs.size
    if n < MIN_PAIRS:
        raise InsufficientData(
            f"{n} positive observation/prediction pairs, at least {MIN_PAIRS} required"
        )

    penalty = penalty_weight(criterion, n / n_rep)
    fits = fit_error_models(obs, pred)

    scored: List[ScoredCandidate] = []
    failures: Dict[str, str] = {}

    for error_model in ErrorModel:
        fit = fits[error_model]
        try:
            ll = _checked_log_likelihood(fit, obs, pred, n_rep)
        except FitFailure as e:
            failures[error_model.value] = e.reason
            warnings.warn(str(e), RuntimeWarning, stacklevel=2)
            continue
        scored.append(ScoredCandidate(
            error_model=error_model,
            log_likelihood=ll,
            df=error_model.df,
            criterion_value=-2 * ll + penalty * error_model.df,
            parameters=fit.parameters
        ))

    if not scored:
        raise FitFailure("all", "no error model could be fitted")

    # sorted() is stable: ties keep enum declaration order
    scored = sorted(scored, key=lambda c: c.criterion_value)

    return RankedResult(
        candidates=scored[:min(top_k, len(scored))],
        criterion=_criterion_label(criterion),
        penalty=penalty,
        n_pairs=n,
        n_replicates=n_rep,
        failures=failures
    )


def _checked_log_likelihood(
    fit: ErrorModelFit,
    obs: np.ndarray,
    pred: np.ndarray,
    n_rep: int
) -> float:
    if not fit.converged:
        raise FitFailure(fit.error_model.value, f"minimization did not converge ({fit.message})")
    ll = log_likelihood(fit, obs, pred, n_rep)
    if not np.isfinite(ll):
        raise FitFailure(fit.error_model.value, "log-likelihood is not finite (degenerate variance)")
    return ll


def select_error_models(
    source: Any,
    criterion: Criterion = "BIC",
    top_k: int = 1,
    outputs: Optional[Sequence[str]] = None,
    simulated: bool = True,
    verbose: bool = False
) -> Dict[str, RankedResult]:
    """
    Score the error models of every continuous output of a prediction source.

    Args:
        source: Object providing continuous_outputs(), fetch_observations(name),
            fetch_predictions(name) and fetch_simulated_predictions(name)
        criterion: "BIC", "AIC" or a numeric penalty weight
        top_k: Number of candidates kept per output
        outputs: Restrict to these outputs (default: all continuous outputs)
        simulated: Use simulated (replicated) predictions instead of the
            individual predictions
        verbose: Print progress

    Returns:
        Dict output name -> RankedResult, in output order
    """
    available = list(source.continuous_outputs())
    if outputs is None:
        names = available
    else:
        unknown = [name for name in outputs if name not in available]
        if unknown:
            raise InvalidInput(f"Unknown continuous outputs: {unknown}")
        names = list(outputs)

    results: Dict[str, RankedResult] = {}
    for name in names:
        observed = source.fetch_observations(name)
        if simulated:
            predicted = source.fetch_simulated_predictions(name)
        else:
            predicted = source.fetch_predictions(name)
        predicted.aligned_with(observed)

        if verbose:
            print(f"Scoring output '{name}' ({len(observed)} observations, "
                  f"{predicted.n_replicates} replicate(s))")

        results[name] = score(observed, predicted, criterion=criterion, top_k=top_k)

        if verbose:
            best = results[name].best
            print(f"  best: {best.error_model.value} "
                  f"({results[name].criterion}={best.criterion_value:.4f})")

    return results


def best_error_models(results: Dict[str, RankedResult]) -> Dict[str, str]:
    """Reduce a selection to {output: best error model name}."""
    return {name: result.best.error_model.value for name, result in results.items()}
