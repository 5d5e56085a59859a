"""
Exceptions raised by the scoring runtime.
"""


class InvalidInput(ValueError):
    """Inputs are empty, misaligned, or an option is not recognised."""


class InsufficientData(ValueError):
    """Too few usable observation/prediction pairs to fit the error models."""


class FitFailure(RuntimeError):
    """A candidate error model could not be fitted."""

    def __init__(self, error_model: str, reason: str):
        super().__init__(f"{error_model}: {reason}")
        self.error_model = error_model
        self.reason = reason
