"""
Scoring runtime for error-model selection.

Provides residual error model fitting, penalized-likelihood ranking,
weighted residuals and random-effect covariance reconstruction.
"""

from .error_models import ErrorModel, ErrorModelFit, fit_error_models, log_likelihood
from .exceptions import FitFailure, InsufficientData, InvalidInput
from .series import ObservationSeries, PredictionSeries
from .selection import (
    RankedResult,
    ScoredCandidate,
    best_error_models,
    penalty_weight,
    score,
    select_error_models
)
from .residuals import compute_residuals, error_parameters
from .covariance import CovarianceEstimate, estimated_covariance

__all__ = [
    "ErrorModel",
    "ErrorModelFit",
    "fit_error_models",
    "log_likelihood",
    "FitFailure",
    "InsufficientData",
    "InvalidInput",
    "ObservationSeries",
    "PredictionSeries",
    "RankedResult",
    "ScoredCandidate",
    "best_error_models",
    "penalty_weight",
    "score",
    "select_error_models",
    "compute_residuals",
    "error_parameters",
    "CovarianceEstimate",
    "estimated_covariance"
]
