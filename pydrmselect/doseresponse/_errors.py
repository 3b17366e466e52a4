"""Exception taxonomy for dose-response fitting and model selection.

Every error is recoverable at the level it is raised for: a bad
(target, model) pair is dropped from the candidate pool, a target with no
adequate model is reported by name, and the run carries on.
"""

from __future__ import annotations


class DoseResponseError(Exception):
    """Base class for all dose-response analysis errors."""


class DomainError(DoseResponseError, ValueError):
    """Input violates a model's mathematical precondition (e.g. zero dose
    under a log-dose model)."""


class ConvergenceError(DoseResponseError, RuntimeError):
    """Nonlinear solver did not converge, or the Jacobian at the solution
    is singular."""


class UndefinedStatisticError(DoseResponseError, ArithmeticError):
    """A score cannot be computed because of insufficient degrees of
    freedom or replication."""


class NumericalError(DoseResponseError, ArithmeticError):
    """Effective-dose root lies outside the dose range, or the parameter
    covariance is degenerate."""


class NoAdequateModelError(DoseResponseError):
    """No candidate model passed the adequacy filter for a target."""

    def __init__(self, target, candidates=()) -> None:
        self.target = target
        self.candidates = tuple(candidates)
        reasons = "; ".join(
            f"{c.model.value}: {c.status}" for c in self.candidates
        )
        msg = f"No adequate model for target {target!r}"
        if reasons:
            msg += f" ({reasons})"
        super().__init__(msg)
