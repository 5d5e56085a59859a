"""
errsel - Error-model selection for exported mixed-effects projects.

This module provides the standard interface for loading and validating
projects exported from a nonlinear mixed-effects modeling engine.
"""

from .loaders import load, validate_project
from .schemas import PROJECT_SCHEMA

__version__ = "0.1.0"
__all__ = ["load", "validate_project", "PROJECT_SCHEMA"]
