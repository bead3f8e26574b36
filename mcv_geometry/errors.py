"""
Typed failures raised by the geometry solvers.

Hierarchy:
    SolverError
        InputError        - caller must supply more labels/samples
            InsufficientPointsError
            InsufficientSamplesError
        DegeneracyError   - configuration cannot constrain the unknowns
            DegenerateConfigurationError
            ParallelLinesError
        NumericError      - iterative refinement failed within its budget
            NonConvergenceError

Each failure carries a stable ``code`` string that is reported verbatim in the
``error`` field of a failure response.
"""

from typing import Any, Dict, Optional


class SolverError(Exception):
    """Base class for all solver failures."""

    code = "SOLVER_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Render as the ``error`` object of a failure response."""
        error = {'code': self.code, 'message': self.message}
        if self.details is not None:
            error['details'] = self.details
        return error


class InputError(SolverError):
    code = "INPUT_ERROR"


class InsufficientPointsError(InputError):
    code = "INSUFFICIENT_POINTS"


class InsufficientSamplesError(InputError):
    code = "INSUFFICIENT_SAMPLES"


class DegeneracyError(SolverError):
    code = "DEGENERACY_ERROR"


class DegenerateConfigurationError(DegeneracyError):
    code = "DEGENERATE_CONFIGURATION"


class ParallelLinesError(DegeneracyError):
    code = "PARALLEL_LINES"


class NumericError(SolverError):
    code = "NUMERIC_ERROR"


class NonConvergenceError(NumericError):
    code = "NON_CONVERGENCE"
